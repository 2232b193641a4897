"""Laser scans and scan frames."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from slam2d.se2 import SE2


@dataclass
class Scan2d:
    """One 2D laser scan."""

    ranges: list[float] = field(default_factory=list)
    angle_min: float = 0.0
    angle_max: float = 0.0
    angle_increment: float = 0.0
    range_min: float = 0.0
    range_max: float = 0.0

    def valid_points(self) -> Iterator[tuple[int, float, float]]:
        """Yield (index, range, angle) for each beam within the range limits."""
        for i, r in enumerate(self.ranges):
            if r < self.range_min or r > self.range_max:
                continue
            yield i, float(r), self.angle_min + i * self.angle_increment


@dataclass(eq=False)
class Frame:
    """A scan with its identifiers and poses (world and submap)."""

    scan: Scan2d | None = None
    id: int = 0
    keyframe_id: int = 0
    timestamp: float = 0.0
    pose: SE2 = field(default_factory=SE2)
    pose_submap: SE2 = field(default_factory=SE2)

    def dump(self, filename) -> None:
        """Write the frame to a text file."""
        scan = self.scan if self.scan is not None else Scan2d()
        with open(filename, "w", encoding="utf-8") as fout:
            fout.write(f"{self.id} {self.keyframe_id} {self.timestamp!r}\n")
            fout.write(f"{self.pose.x!r} {self.pose.y!r} {self.pose.theta!r}\n")
            fout.write(
                f"{scan.angle_min!r} {scan.angle_max!r} {scan.angle_increment!r} "
                f"{scan.range_min!r} {scan.range_max!r} {len(scan.ranges)}\n"
            )
            fout.write("".join(f"{float(r)!r} " for r in scan.ranges))

    @classmethod
    def load(cls, filename) -> "Frame":
        """Read a frame written by :meth:`dump`."""
        tokens = Path(filename).read_text(encoding="utf-8").split()
        try:
            frame_id, kf_id = int(tokens[0]), int(tokens[1])
            timestamp, x, y, theta = (float(t) for t in tokens[2:6])
            a_min, a_max, a_inc, r_min, r_max = (float(t) for t in tokens[6:11])
            count = int(tokens[11])
            ranges = [float(t) for t in tokens[12 : 12 + count]]
        except (IndexError, ValueError) as exc:
            raise ValueError(f"malformed frame file {filename}") from exc
        if len(ranges) != count:
            raise ValueError(f"malformed frame file {filename}")
        scan = Scan2d(ranges, a_min, a_max, a_inc, r_min, r_max)
        return cls(scan=scan, id=frame_id, keyframe_id=kf_id, timestamp=timestamp, pose=SE2(x, y, theta))