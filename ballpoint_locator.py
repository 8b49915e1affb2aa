"""Locates the ballpoint (pen/board contact point) inside the matched patch.

The patch edges are cleaned of short contours, strong straight lines are
found with the Hough transform and the intersections of line pairs that land
in the valid zone near the leading edge of the patch are averaged.  The
average is finally snapped onto the closest edge pixel.
"""
from __future__ import annotations

import itertools
import logging
import math
from typing import Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from image_ops import kernel, sharpen, to_gray
from stroke_geometry import Point
from tracker_config import BallpointConfig

log = logging.getLogger("stroke_tracker.ballpoint")

PolarLine = Tuple[float, float]  # (rho, theta)
PARALLEL_EPS = 1e-6


def line_intersection(first: PolarLine, second: PolarLine) -> Optional[Tuple[float, float]]:
    """Intersection of two lines ``x cos(t) + y sin(t) = rho``; None when parallel."""
    rho1, theta1 = first
    rho2, theta2 = second
    a = np.array([[math.cos(theta1), math.sin(theta1)], [math.cos(theta2), math.sin(theta2)]])
    det = a[0, 0] * a[1, 1] - a[0, 1] * a[1, 0]
    if abs(det) < PARALLEL_EPS:
        return None
    x = (rho1 * a[1, 1] - rho2 * a[0, 1]) / det
    y = (a[0, 0] * rho2 - a[1, 0] * rho1) / det
    return float(x), float(y)


def average_intersection(
    lines: Sequence[PolarLine], zone: Tuple[int, int, int, int]
) -> Optional[Point]:
    """Mean of the pairwise intersections strictly inside ``zone`` (left, top, right, bottom)."""
    left, top, right, bottom = zone
    total_x = total_y = 0.0
    count = 0
    for first, second in itertools.combinations(lines, 2):
        crossing = line_intersection(first, second)
        if crossing is None:
            continue
        x, y = crossing
        if left < x < right and top < y < bottom:
            total_x += x
            total_y += y
            count += 1
    if count == 0:
        return None
    return Point.rounded(total_x / count, total_y / count)


def _ring(centre: Point, radius: int) -> Iterable[Tuple[int, int]]:
    cx, cy = centre.x, centre.y
    for dx in (-radius, radius):
        for dy in range(-radius, radius + 1):
            yield cx + dx, cy + dy
    for dy in (-radius, radius):
        for dx in range(-radius + 1, radius):
            yield cx + dx, cy + dy


def snap_to_edge(edges: np.ndarray, estimate: Point, radius: int) -> Optional[Point]:
    """Nearest non-zero pixel of ``edges`` to ``estimate`` within square rings up to ``radius``."""
    height, width = edges.shape[:2]

    def on_edge(x: int, y: int) -> bool:
        return 0 <= x < width and 0 <= y < height and edges[y, x] > 0

    if on_edge(estimate.x, estimate.y):
        return estimate
    for r in range(1, radius + 1):
        for x, y in _ring(estimate, r):
            if on_edge(x, y):
                return Point(x, y)
    return None


class BallpointLocator:
    def __init__(self, template_shape: Tuple[int, ...], config: Optional[BallpointConfig] = None) -> None:
        self.config = config or BallpointConfig()
        self.valid_zone = self.config.zone_for(template_shape)

    def edge_map(self, patch: np.ndarray) -> np.ndarray:
        cfg = self.config
        gray = sharpen(to_gray(patch), cfg.sharpen_sigma, cfg.sharpen_amount)
        edges = cv2.Canny(gray, cfg.canny_low, cfg.canny_high)
        contours, _ = cv2.findContours(edges, cv2.RETR_LIST, cv2.CHAIN_APPROX_NONE)
        kept = [c for c in contours if cv2.arcLength(c, False) >= cfg.min_contour_length]
        cleaned = np.zeros_like(edges)
        if kept:
            cv2.drawContours(cleaned, kept, -1, 255, 1)
        return cleaned

    def detect_lines(self, edges: np.ndarray) -> List[PolarLine]:
        """Hough lines of ``edges`` after thickening them."""
        thick = cv2.dilate(edges, kernel(self.config.thicken_kernel))
        lines = cv2.HoughLines(thick, 1, np.pi / 180, self.config.hough_threshold)
        if lines is None:
            return []
        # strongest lines come first
        return [(float(rho), float(theta)) for rho, theta in lines.reshape(-1, 2)[: self.config.max_lines]]

    def find_ballpoint(self, patch: np.ndarray) -> Optional[Point]:
        """Tip position in patch coordinates, or None when nothing qualifies."""
        edges = self.edge_map(patch)
        lines = self.detect_lines(edges)
        estimate = average_intersection(lines, self.valid_zone)
        if estimate is None:
            log.debug("ballpoint_none | lines=%d", len(lines))
            return None
        tip = snap_to_edge(edges, estimate, self.config.snap_radius)
        if tip is None:
            log.debug("ballpoint_unsnapped | estimate=%s", estimate.as_tuple())
        return tip
