# slam2d

A small 2D lidar SLAM library built on NumPy and SciPy. Scans go in as
`Scan2d` objects. Poses come out as `SE2` values. Maps and field images are
NumPy arrays.

## Modules

- `slam2d.se2`: `SE2`, an immutable planar pose `(x, y, theta)`.
  - Methods: `SE2.exp`, `log`, `inverse`, `apply` (one point or an N x 2 array), `oplus` and composition with `*`.
  - It also provides `normalize_angle`.
- `slam2d.optimizer`: a dense Levenberg-Marquardt solver, `LevenbergMarquardt`.
  - It works on `VertexSE2` vertices.
  - Edges: `EdgeSE2` (relative pose) and `EdgeSE2LikelihoodField` (unary edge that reads a field image).
  - Optional robust kernels: `Huber` and `Cauchy`.
  - `bilinear_pixel` interpolates a single-channel image.
- `slam2d.frame`: `Scan2d` and `Frame`.
  - `Scan2d.valid_points()` yields `(index, range, angle)` for each beam within the range limits.
  - `Frame.dump(filename)` writes a frame to a plain text file.
  - `Frame.load(filename)` reads such a file back. It raises `ValueError` on a malformed file.
- `slam2d.lidar_2d_utils`:
  - `visualize_2d_scan` draws a scan into an H x W x 3 `uint8` image. It creates a white image when none is given.
  - `draw_circle` draws a circle into an image.
- `slam2d.icp_2d`:
  - `Icp2d` does point-to-point and point-to-line Gauss-Newton scan matching.
  - `fit_line_2d` fits a normalised line `a*x + b*y + c = 0`.
- `slam2d.likelihood_field`: `LikelihoodField` builds a 1000 x 1000 distance-like field.
  - Sources: a target scan or an occupancy grid.
  - Alignment: `align_gauss_newton` or `align_g2o` (robust Levenberg-Marquardt).
- `slam2d.multi_resolution_likelihood_field`: `MRLikelihoodField` is a four-level field pyramid.
  - Levels are 125, 250, 500 and 1000 pixels.
  - Matching runs from coarse to fine.
  - A level is rejected unless more than 100 points are inliers and the inlier ratio is above 0.4.
- `slam2d.occupancy_map`: `OccupancyMap` is a 1000 x 1000 `uint8` grid at 20 pixels per metre.
  - Cell values: 127 is unknown, values down to 117 are occupied, values up to 137 are free.
  - Frames are added with `GridMethod.MODEL_POINTS` or `GridMethod.BRESENHAM`.
- `slam2d.submap`: `Submap` holds keyframes with their own occupancy grid and likelihood field.
- `slam2d.loop_closing`:
  - `LoopClosing` detects loops between the current keyframe and older submaps, using multi-resolution matching.
  - It then runs a pose graph over all submap poses and drops loops the graph rejects.
  - The loops are stored as `LoopConstraint`s.
- `slam2d.mapping_2d`: `Mapping2D` is the front end.
  - It matches each scan to the current submap and picks keyframes. A keyframe is added after more than 0.3 m or 15° of motion.
  - It starts a new submap when points fall outside the grid or the submap holds more than 50 keyframes.
  - It renders a global map.

## Installation

```
pip install .
```

## Usage

Scan-to-scan matching:

```python
import math
from slam2d.frame import Scan2d
from slam2d.icp_2d import Icp2d
from slam2d.se2 import SE2

def scan(ranges):
    return Scan2d(ranges=ranges, angle_min=-math.pi, angle_max=math.pi,
                  angle_increment=2 * math.pi / len(ranges),
                  range_min=0.1, range_max=30.0)

target = scan(my_target_ranges)
source = scan(my_source_ranges)

icp = Icp2d()
icp.set_target(target)
icp.set_source(source)
pose = icp.align_gauss_newton(SE2())   # or align_gauss_newton_point_to_plane
if pose is None:
    print("too few matching points")
```

The alignment methods return the estimated `SE2`. When fewer than 20 points can be used, they return `None`:

- `Icp2d.align_gauss_newton`
- `Icp2d.align_gauss_newton_point_to_plane`
- `LikelihoodField.align_gauss_newton`
- `MRLikelihoodField.align_g2o`

`LikelihoodField.align_g2o` always returns a pose.

Incremental mapping:

```python
from slam2d.mapping_2d import Mapping2D

mapping = Mapping2D()              # Mapping2D(loop_debug_path="loops.txt") logs loop candidates
mapping.init(with_loop_closing=True)
for s in scans:
    mapping.process_scan(s)
global_map = mapping.show_global_map(2000)  # H x W x 3 uint8 array
```

Colours are 3-tuples written to the image channels in the order given. The
built-in drawing uses blue-green-red order: for example, trajectory points
are `(0, 0, 255)`, which is red.

## What this package does not do

- It does not read scans from recorded logs or sensors. You build `Scan2d` objects yourself.
- It has no command-line program.
- It opens no windows.
- It does not write image files. Maps are returned as arrays for you to save or display with a library of your choice.
- The only files it writes are:
  - `Frame.dump` text files
  - the optional loop debug log.

## Tests

```
pip install .[test]
pytest
```