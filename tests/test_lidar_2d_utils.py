import numpy as np

from slam2d.frame import Scan2d
from slam2d.lidar_2d_utils import draw_circle, visualize_2d_scan
from slam2d.se2 import SE2

BLUE = (255, 0, 0)


def _scan():
    return Scan2d([0.0, 0.0, 2.0, 0.0, 0.0], angle_min=-1.0, angle_max=1.0, angle_increment=0.5,
                  range_min=0.1, range_max=30.0)


def test_visualize_default_image():
    image = visualize_2d_scan(_scan(), SE2(), None, BLUE)
    assert image.shape == (800, 800, 3)
    assert tuple(image[400, 440]) == BLUE
    assert tuple(image[400, 405]) == BLUE
    assert tuple(image[400, 400]) == (255, 255, 255)


def test_visualize_draws_on_given_image():
    image = np.zeros((100, 100, 3), dtype=np.uint8)
    out = visualize_2d_scan(_scan(), SE2(), image, (0, 0, 255), image_size=100, resolution=10.0)
    assert out is image
    assert tuple(image[50, 70]) == (0, 0, 255)


def test_draw_circle_leaves_centre():
    image = np.zeros((30, 30, 3), dtype=np.uint8)
    draw_circle(image, (15, 15), 5, (9, 9, 9), 2)
    assert tuple(image[15, 20]) == (9, 9, 9)
    assert tuple(image[15, 15]) == (0, 0, 0)