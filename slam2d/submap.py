"""Submaps: keyframes with their own occupancy grid and likelihood field."""

from __future__ import annotations

from slam2d.frame import Frame
from slam2d.likelihood_field import LikelihoodField
from slam2d.occupancy_map import GridMethod, OccupancyMap
from slam2d.se2 import SE2

_FRAMES_FROM_PREVIOUS = 10


class Submap:
    """A local map anchored at a world pose (T_w_s)."""

    def __init__(self, pose: SE2 | None = None) -> None:
        self.pose = pose if pose is not None else SE2()
        self.id = 0
        self.frames: list[Frame] = []
        self.field = LikelihoodField()
        self.occu_map = OccupancyMap()
        self.occu_map.set_pose(self.pose)
        self.field.set_pose(self.pose)
        self.field.set_field_image_from_occu_map(self.occu_map.occupancy_grid)

    def set_pose(self, pose: SE2) -> None:
        self.pose = pose
        self.occu_map.set_pose(pose)
        self.field.set_pose(pose)

    def num_frames(self) -> int:
        return len(self.frames)

    def add_key_frame(self, frame: Frame) -> None:
        self.frames.append(frame)

    def has_outside_points(self) -> bool:
        """Whether the last added scan had endpoints outside the grid."""
        return self.occu_map.has_outside_points

    def set_occu_from_other_submap(self, other: "Submap") -> None:
        """Seed the grid with the last keyframes of another submap."""
        frames = other.frames
        n = len(frames)
        if n >= _FRAMES_FROM_PREVIOUS:
            for i in range(n - _FRAMES_FROM_PREVIOUS, n):
                if i > 0:
                    self.occu_map.add_lidar_frame(frames[i])
        self.field.set_field_image_from_occu_map(self.occu_map.occupancy_grid)

    def match_scan(self, frame: Frame) -> bool:
        """Match a frame against this submap and update its poses."""
        self.field.set_source_scan(frame.scan)
        frame.pose_submap = self.field.align_g2o(frame.pose_submap)
        frame.pose = self.pose * frame.pose_submap
        return True

    def add_scan_in_occupancy_map(self, frame: Frame) -> None:
        """Add a frame to the grid and rebuild the likelihood field."""
        self.occu_map.add_lidar_frame(frame, GridMethod.MODEL_POINTS)
        self.field.set_field_image_from_occu_map(self.occu_map.occupancy_grid)

    def update_frame_pose_world(self) -> None:
        """Recompute each keyframe's world pose from the submap pose."""
        for frame in self.frames:
            frame.pose = self.pose * frame.pose_submap