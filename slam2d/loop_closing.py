"""Loop detection between a new frame and older submaps, with pose-graph correction."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from slam2d.frame import Frame
from slam2d.multi_resolution_likelihood_field import MRLikelihoodField
from slam2d.optimizer import Cauchy, EdgeSE2, LevenbergMarquardt, VertexSE2
from slam2d.se2 import SE2
from slam2d.submap import Submap

logger = logging.getLogger(__name__)

CANDIDATE_DISTANCE_TH = 15.0
SUBMAP_GAP = 1
LOOP_RK_DELTA = 1.0
_CONSECUTIVE_INFORMATION = 1e4


@dataclass
class LoopConstraint:
    """Relative pose between two submaps found by loop detection."""

    id_submap1: int
    id_submap2: int
    t12: SE2
    valid: bool = True


class LoopClosing:
    """Single-threaded loop closing over submaps.

    Candidates are older submaps close to the current frame; each is matched
    with a multi-resolution likelihood field, and accepted matches are checked
    and applied by a pose graph over all submap poses.
    """

    def __init__(self, debug_path=None) -> None:
        self._current_frame: Frame | None = None
        self._last_submap_id = 0
        self._submaps: dict[int, Submap] = {}
        self._submap_to_field: dict[int, MRLikelihoodField] = {}
        self._current_candidates: list[int] = []
        self._loop_constraints: dict[tuple[int, int], LoopConstraint] = {}
        self.has_new_loops = False
        self._debug_path = Path(debug_path) if debug_path is not None else None
        if self._debug_path is not None:
            self._debug_path.write_text("", encoding="utf-8")

    def add_new_submap(self, submap: Submap) -> None:
        """Register the newest submap, which may still be under construction."""
        self._submaps[submap.id] = submap
        self._last_submap_id = submap.id

    def add_finished_submap(self, submap: Submap) -> None:
        """Build the matching field of a submap that will no longer change."""
        mr_field = MRLikelihoodField()
        mr_field.set_pose(submap.pose)
        mr_field.set_field_image_from_occu_map(submap.occu_map.occupancy_grid)
        self._submap_to_field[submap.id] = mr_field

    def add_new_frame(self, frame: Frame) -> None:
        """Look for loops from a new keyframe and correct submap poses if found."""
        self._current_frame = frame
        if not self._detect_loop_candidates():
            return
        self._match_in_history_submaps()
        if self.has_new_loops:
            self._optimize()

    def get_loops(self) -> dict[tuple[int, int], LoopConstraint]:
        """All loop constraints, keyed by the pair of submap ids."""
        return dict(self._loop_constraints)

    def _detect_loop_candidates(self) -> bool:
        self.has_new_loops = False
        if self._last_submap_id < SUBMAP_GAP:
            return False

        self._current_candidates = []
        frame = self._current_frame
        frame_pos = frame.pose.translation
        for sid, submap in sorted(self._submaps.items()):
            if self._last_submap_id - sid <= SUBMAP_GAP:
                continue
            existing = self._loop_constraints.get((sid, self._last_submap_id))
            if existing is not None and existing.valid:
                continue
            dis = float(np.linalg.norm(submap.pose.translation - frame_pos))
            if dis < CANDIDATE_DISTANCE_TH:
                logger.info(
                    "taking %d with %d, last submap id: %d", frame.keyframe_id, sid, self._last_submap_id
                )
                self._current_candidates.append(sid)

        return bool(self._current_candidates)

    def _match_in_history_submaps(self) -> None:
        frame = self._current_frame
        for cand in self._current_candidates:
            mr = self._submap_to_field[cand]
            mr.set_source_scan(frame.scan)
            submap = self._submaps[cand]
            pose_in_target = submap.pose.inverse() * frame.pose

            aligned = mr.align_g2o(pose_in_target)
            if aligned is not None:
                t_this_cur = aligned * frame.pose.inverse() * self._submaps[self._last_submap_id].pose
                key = (cand, self._last_submap_id)
                self._loop_constraints.setdefault(key, LoopConstraint(cand, self._last_submap_id, t_this_cur))
                logger.info("adding loop from submap %d to %d", cand, self._last_submap_id)
                self.has_new_loops = True

            self._write_debug(frame, cand, submap.pose)
        self._current_candidates = []

    def _write_debug(self, frame: Frame, cand: int, pose: SE2) -> None:
        if self._debug_path is None:
            return
        with open(self._debug_path, "a", encoding="utf-8") as fout:
            fout.write(f"{frame.id} {cand} {pose.x!r} {pose.y!r} {pose.theta!r}\n")

    def _optimize(self) -> None:
        optimizer = LevenbergMarquardt()
        for sid in sorted(self._submaps):
            optimizer.add_vertex(VertexSE2(sid, self._submaps[sid].pose))

        for i in range(self._last_submap_id):
            first, nxt = self._submaps[i], self._submaps[i + 1]
            optimizer.add_edge(
                EdgeSE2(
                    optimizer.vertex(i),
                    optimizer.vertex(i + 1),
                    first.pose.inverse() * nxt.pose,
                    np.eye(3) * _CONSECUTIVE_INFORMATION,
                )
            )

        loop_edges: dict[tuple[int, int], EdgeSE2] = {}
        for key, constraint in self._loop_constraints.items():
            if not constraint.valid:
                continue
            edge = EdgeSE2(
                optimizer.vertex(self._submaps[key[0]].id),
                optimizer.vertex(self._submaps[key[1]].id),
                constraint.t12,
                np.eye(3),
                Cauchy(LOOP_RK_DELTA),
            )
            optimizer.add_edge(edge)
            loop_edges[key] = edge

        optimizer.optimize(10)

        inliers = 0
        for key, edge in loop_edges.items():
            chi2 = edge.chi2()
            if math.isfinite(chi2) and chi2 < LOOP_RK_DELTA:
                logger.info("loop from %d to %d is correct, chi2: %g", key[0], key[1], chi2)
                edge.robust_kernel = None
                self._loop_constraints[key].valid = True
                inliers += 1
            else:
                edge.level = 1
                logger.info("loop from %d to %d is invalid, chi2: %g", key[0], key[1], chi2)
                self._loop_constraints[key].valid = False

        optimizer.optimize(5)

        for sid, submap in self._submaps.items():
            submap.set_pose(optimizer.vertex(sid).estimate)
            submap.update_frame_pose_world()

        logger.info("loop inliers: %d/%d", inliers, len(self._loop_constraints))

        self._loop_constraints = {k: c for k, c in self._loop_constraints.items() if c.valid}