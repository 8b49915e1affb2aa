"""Tests for the ballpoint locator."""
import math

import cv2
import numpy as np
import pytest

from ballpoint_locator import BallpointLocator, average_intersection, line_intersection, snap_to_edge
from image_ops import sharpen, to_gray
from stroke_geometry import Point
from tracker_config import BallpointConfig


def test_line_intersection_of_axis_lines():
    x, y = line_intersection((5.0, 0.0), (7.0, math.pi / 2))
    assert (x, y) == pytest.approx((5.0, 7.0))


def test_line_intersection_of_oblique_lines():
    # x + y = 10 and x - y = 2 meet at (6, 4)
    first = (10 / math.sqrt(2), math.pi / 4)
    second = (-2 / math.sqrt(2), 3 * math.pi / 4)
    assert line_intersection(first, second) == pytest.approx((6.0, 4.0))


def test_parallel_lines_do_not_intersect():
    assert line_intersection((5.0, 0.3), (9.0, 0.3)) is None


class TestAverageIntersection:
    """Averaging of pairwise intersections inside the valid zone."""

    def test_single_pair_inside_zone_is_returned_exactly(self):
        lines = [(5.0, 0.0), (7.0, math.pi / 2)]
        assert average_intersection(lines, (-10, -10, 20, 20)) == Point(5, 7)

    def test_parallel_pairs_are_skipped(self):
        lines = [(4.0, 0.0), (6.0, 0.0), (8.0, math.pi / 2)]
        assert average_intersection(lines, (-10, -10, 20, 20)) == Point(5, 8)

    def test_intersections_outside_zone_are_ignored(self):
        lines = [(5.0, 0.0), (7.0, math.pi / 2), (30.0, 0.0)]
        assert average_intersection(lines, (-10, -10, 20, 20)) == Point(5, 7)

    def test_zone_bounds_are_exclusive(self):
        lines = [(20.0, 0.0), (7.0, math.pi / 2)]
        assert average_intersection(lines, (-10, -10, 20, 20)) is None

    def test_no_lines(self):
        assert average_intersection([], (-10, -10, 20, 20)) is None


class TestSnapToEdge:
    """Expanding ring search for the closest edge pixel."""

    def test_estimate_on_edge_is_kept(self):
        edges = np.zeros((20, 20), dtype=np.uint8)
        edges[10, 10] = 255
        assert snap_to_edge(edges, Point(10, 10), 5) == Point(10, 10)

    def test_nearest_ring_wins(self):
        edges = np.zeros((20, 20), dtype=np.uint8)
        edges[9, 12] = 255
        edges[10, 16] = 255
        assert snap_to_edge(edges, Point(10, 10), 10) == Point(12, 9)

    def test_nothing_within_radius(self):
        edges = np.zeros((40, 40), dtype=np.uint8)
        edges[35, 35] = 255
        assert snap_to_edge(edges, Point(5, 5), 10) is None

    def test_estimate_outside_patch(self):
        edges = np.zeros((20, 20), dtype=np.uint8)
        edges[0, 0] = 255
        assert snap_to_edge(edges, Point(-3, -3), 5) == Point(0, 0)


class TestBallpointLocator:
    """End-to-end tip finding on synthetic patches."""

    def test_valid_zone_defaults_to_template_size(self):
        locator = BallpointLocator((40, 60, 3), BallpointConfig())
        assert locator.valid_zone == (-10, -10, 30, 20)

    def test_configured_valid_zone(self):
        locator = BallpointLocator((40, 40), BallpointConfig(valid_zone=(0, 0, 5, 5)))
        assert locator.valid_zone == (0, 0, 5, 5)

    def test_blank_patch_has_no_tip(self):
        patch = np.full((40, 40, 3), 255, dtype=np.uint8)
        assert BallpointLocator(patch.shape).find_ballpoint(patch) is None

    def test_wedge_tip_is_found_on_an_edge(self):
        patch = np.full((40, 40, 3), 255, dtype=np.uint8)
        wedge = np.array([[10, 12], [0, 39], [22, 39]], dtype=np.int32)
        cv2.fillPoly(patch, [wedge], (30, 30, 30))
        locator = BallpointLocator(patch.shape)
        tip = locator.find_ballpoint(patch)
        assert tip is not None
        assert locator.edge_map(patch)[tip.y, tip.x] > 0
        assert tip.distance_to(Point(10, 12)) < 15

    def test_short_contours_are_discarded(self):
        patch = np.full((40, 40), 255, dtype=np.uint8)
        patch[20:22, 20:22] = 0
        locator = BallpointLocator(patch.shape, BallpointConfig(min_contour_length=50.0))
        assert not locator.edge_map(patch).any()

    def test_tip_lies_on_a_canny_edge_pixel(self):
        patch = np.full((40, 40, 3), 255, dtype=np.uint8)
        wedge = np.array([[10, 12], [0, 39], [22, 39]], dtype=np.int32)
        cv2.fillPoly(patch, [wedge], (30, 30, 30))
        config = BallpointConfig()
        tip = BallpointLocator(patch.shape, config).find_ballpoint(patch)
        gray = sharpen(to_gray(patch), config.sharpen_sigma, config.sharpen_amount)
        canny = cv2.Canny(gray, config.canny_low, config.canny_high)
        assert tip is not None
        assert canny[tip.y, tip.x] > 0

    def test_edge_map_is_not_thickened(self):
        patch = np.full((40, 40), 255, dtype=np.uint8)
        patch[:, 20:] = 0
        edges = BallpointLocator(patch.shape).edge_map(patch)
        # a straight step edge stays one pixel wide on every row
        widths = {int(np.count_nonzero(row)) for row in edges[2:-2]}
        assert widths == {1}

    def test_thin_edges_still_yield_lines(self):
        edges = np.zeros((40, 40), dtype=np.uint8)
        edges[:, 20] = 255
        lines = BallpointLocator(edges.shape).detect_lines(edges)
        assert lines
        rho, theta = lines[0]
        assert theta == pytest.approx(0.0, abs=0.05)
        assert rho == pytest.approx(20.0, abs=1.5)
