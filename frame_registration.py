"""Board/camera motion compensation.

Each frame is split into overlapping square zones which are classified as
whiteboard, text or other (hands, pen, clutter).  Registration only uses the
text covered part of the image: a rectangle is grown over the text zones,
feature points inside it are tracked with Lucas-Kanade optical flow and a
partial affine transform is fitted between the previous and current frame.
When too few points survive, a translation is recovered by template matching
instead.  The per-frame transforms are chained into a running transform from
the reference frame (the first frame with enough text) to the current frame.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from image_ops import kernel, to_gray
from stroke_geometry import AffineTransform
from tracker_config import RegistrationConfig

log = logging.getLogger("stroke_tracker.registration")


class ZoneType(enum.Enum):
    WHITEBOARD = 0
    TEXT = 1
    OTHER = 2


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def trimmed(self, margin: int) -> "Rect":
        return Rect(self.x + margin, self.y + margin, self.width - 2 * margin, self.height - 2 * margin)


@dataclass(frozen=True)
class Zone:
    rect: Rect
    kind: ZoneType


ZoneClassifier = Callable[[np.ndarray, RegistrationConfig], List[Zone]]


# ---------------------------------------------------------------------------
# Zone classification
# ---------------------------------------------------------------------------


def _text_score(window: np.ndarray, edges_window: np.ndarray) -> float:
    # Handwriting binarises cleanly, so its edges and its Otsu mask line up.
    normalised = cv2.normalize(window, None, 0, 255, cv2.NORM_MINMAX)
    _, otsu = cv2.threshold(normalised, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    residue = cv2.subtract(edges_window, otsu)
    return float(np.sum(residue, dtype=np.float64)) / float(window.size)


def classify_zones(gray: np.ndarray, config: RegistrationConfig) -> List[Zone]:
    gray = to_gray(gray)
    edges = cv2.Canny(gray, config.canny_low, config.canny_high)
    edges = cv2.dilate(edges, kernel(3))
    _, edges = cv2.threshold(edges, 127, 255, cv2.THRESH_BINARY_INV)

    size = config.window_size
    step = max(1, size // 2)
    height, width = gray.shape[:2]
    zones: List[Zone] = []
    for x in range(0, width - size, step):
        for y in range(0, height - size, step):
            window = gray[y : y + size, x : x + size]
            edges_window = edges[y : y + size, x : x + size]
            dark = float(np.count_nonzero(window <= config.dark_pixel_level)) / float(window.size)
            if dark > config.dark_fraction:
                kind = ZoneType.OTHER
            elif float(np.mean(edges_window)) >= config.white_threshold:
                kind = ZoneType.WHITEBOARD
            elif _text_score(window, edges_window) < config.text_threshold:
                kind = ZoneType.TEXT
            else:
                kind = ZoneType.OTHER
            zones.append(Zone(Rect(x, y, size, size), kind))
    return zones


# ---------------------------------------------------------------------------
# Rectangle selection
# ---------------------------------------------------------------------------


def _mark(grid: np.ndarray, gx: int, gy: int) -> None:
    # a zone spans two grid cells in each direction
    grid[gx : gx + 2, gy : gy + 2] = True


def _rect_from_cell(grid: np.ndarray, a: int, b: int) -> Tuple[int, int]:
    """Largest (width, height) of a filled rectangle anchored at cell (a, b)."""
    nx, ny = grid.shape
    limit = 0
    for j in range(b + 1, ny):
        if not grid[a, j]:
            break
        limit += 1

    lengths = []
    for j in range(b, b + limit + 1):
        run = 0
        while a + run < nx and grid[a + run, j]:
            run += 1
        lengths.append(run)

    best_w, best_h = lengths[0], 1
    narrowest = lengths[0]
    for k in range(1, len(lengths)):
        narrowest = min(narrowest, lengths[k])
        if narrowest * (k + 1) > best_w * best_h:
            best_w, best_h = narrowest, k + 1
    return best_w, best_h


def find_largest_rect(zones: List[Zone]) -> Optional[Rect]:
    """Largest rectangle fully covered by the given zones."""
    if not zones:
        return None
    win_w, win_h = zones[0].rect.width, zones[0].rect.height
    step_x, step_y = max(1, win_w // 2), max(1, win_h // 2)
    min_x = min(z.rect.x for z in zones)
    min_y = min(z.rect.y for z in zones)
    max_x = max(z.rect.x for z in zones) + win_w
    max_y = max(z.rect.y for z in zones) + win_h

    grid = np.zeros(((max_x - min_x) // step_x, (max_y - min_y) // step_y), dtype=bool)
    for zone in zones:
        _mark(grid, (zone.rect.x - min_x) // step_x, (zone.rect.y - min_y) // step_y)

    best: Optional[Tuple[int, int, int, int]] = None
    for a in range(grid.shape[0]):
        for b in range(grid.shape[1]):
            if not grid[a, b]:
                continue
            w, h = _rect_from_cell(grid, a, b)
            if best is None:
                best = (a, b, w, h)
                continue
            area, best_area = w * h, best[2] * best[3]
            # prefer squarer rectangles on ties
            if area > best_area or (area == best_area and min(w, h) > min(best[2], best[3])):
                best = (a, b, w, h)

    if best is None:
        return None
    a, b, w, h = best
    return Rect(a * step_x + min_x, b * step_y + min_y, w * step_x, h * step_y)


def expand_rect(rect: Rect, zones: List[Zone]) -> Rect:
    """Grow ``rect`` upward, then leftward, over rows/columns fully covered by ``zones``."""
    if not zones:
        return rect
    win_w, win_h = zones[0].rect.width, zones[0].rect.height
    step_x, step_y = max(1, win_w // 2), max(1, win_h // 2)

    grid = np.zeros((rect.right // step_x, rect.bottom // step_y), dtype=bool)
    for zone in zones:
        if zone.rect.x <= rect.right - win_w and zone.rect.y <= rect.bottom - win_h:
            _mark(grid, zone.rect.x // step_x, zone.rect.y // step_y)

    cols = range(rect.x // step_x, rect.right // step_x)
    grow_up = 0
    for row in range(rect.y // step_y - 1, -1, -1):
        if not all(grid[col, row] for col in cols):
            break
        grow_up += 1
    rect = Rect(rect.x, rect.y - grow_up * step_y, rect.width, rect.height + grow_up * step_y)

    rows = range(rect.y // step_y, rect.bottom // step_y)
    grow_left = 0
    for col in range(rect.x // step_x - 1, -1, -1):
        if not all(grid[col, row] for row in rows):
            break
        grow_left += 1
    return Rect(rect.x - grow_left * step_x, rect.y, rect.width + grow_left * step_x, rect.height)


# ---------------------------------------------------------------------------
# Transform estimation
# ---------------------------------------------------------------------------


def register_translation(
    prev_gray: np.ndarray, cur_gray: np.ndarray, rect: Rect, search: int
) -> Optional[AffineTransform]:
    """Translation of the ``rect`` content between frames, by template matching."""
    x, y, w, h = rect.x, rect.y, rect.width, rect.height
    if x < search:
        w -= search - x
        x = search
    if y < search:
        h -= search - y
        y = search
    rows, cols = cur_gray.shape[:2]
    w = min(w, cols - x)
    h = min(h, rows - y)
    if w <= 0 or h <= 0:
        return None

    template = prev_gray[y : y + h, x : x + w]
    row_start, col_start = y - search, x - search
    scene = cur_gray[row_start : min(y + h + search, rows), col_start : min(x + w + search, cols)]
    result = cv2.matchTemplate(scene, template, cv2.TM_CCORR_NORMED)
    _, _, _, max_loc = cv2.minMaxLoc(result)
    dx = max_loc[0] + col_start - x
    dy = max_loc[1] + row_start - y
    return AffineTransform.translation(dx, dy)


def transform_error(transform: AffineTransform, prev_pts: np.ndarray, next_pts: np.ndarray) -> float:
    """Mean distance between transformed previous points and their tracked positions."""
    ones = np.ones((len(prev_pts), 1))
    projected = np.hstack([prev_pts, ones]) @ transform.matrix.T
    return float(np.mean(np.linalg.norm(projected - next_pts, axis=1)))


def estimate_transform(prev_pts: np.ndarray, next_pts: np.ndarray) -> Tuple[Optional[AffineTransform], float]:
    matrix, _ = cv2.estimateAffinePartial2D(
        prev_pts.astype(np.float32).reshape(-1, 1, 2),
        next_pts.astype(np.float32).reshape(-1, 1, 2),
    )
    if matrix is None:
        return None, float("inf")
    transform = AffineTransform(matrix)
    return transform, transform_error(transform, prev_pts, next_pts)


class FrameRegistrar:
    """Keeps the running reference->current transform up to date."""

    def __init__(
        self,
        config: Optional[RegistrationConfig] = None,
        zone_classifier: ZoneClassifier = classify_zones,
    ) -> None:
        self.config = config or RegistrationConfig()
        self.zone_classifier = zone_classifier
        self.reset()

    def reset(self) -> None:
        self.full_transform = AffineTransform.identity()
        self.prev_gray: Optional[np.ndarray] = None
        self.prev_zones: List[Zone] = []
        self.prev_text_zones: List[Zone] = []
        self.frames_seen = 0
        self.last_poor = False

    @property
    def has_reference(self) -> bool:
        return self.prev_gray is not None

    def get_full_transform(self) -> AffineTransform:
        return self.full_transform

    def track_movement(self, frame: np.ndarray) -> AffineTransform:
        """Register ``frame`` and return the current->reference transform."""
        self.frames_seen += 1
        gray = to_gray(frame)
        zones = [z for z in self.zone_classifier(gray, self.config) if z.kind != ZoneType.OTHER]
        text_zones = [z for z in zones if z.kind == ZoneType.TEXT]
        cfg = self.config

        if len(text_zones) < cfg.text_zone_min:
            self.last_poor = True
            log.debug("registration_skip | frame=%d | text_zones=%d", self.frames_seen, len(text_zones))
            return self.full_transform.inverse()

        if self.prev_gray is None:
            log.info("registration_reference | frame=%d | text_zones=%d", self.frames_seen, len(text_zones))
            self._remember(gray, zones, text_zones)
            return self.full_transform.inverse()

        transform, poor = self._register(gray)
        self.full_transform = self.full_transform.then(transform)
        self.last_poor = poor
        if not poor:
            self._remember(gray, zones, text_zones)
        return self.full_transform.inverse()

    def _remember(self, gray: np.ndarray, zones: List[Zone], text_zones: List[Zone]) -> None:
        self.prev_gray = gray.copy()
        self.prev_zones = zones
        self.prev_text_zones = text_zones
        self.last_poor = False

    def _register(self, gray: np.ndarray) -> Tuple[AffineTransform, bool]:
        cfg = self.config
        rect = find_largest_rect(self.prev_text_zones)
        if rect is None:
            return AffineTransform.identity(), True
        rect = expand_rect(rect, self.prev_zones).trimmed(cfg.trim_px)
        if rect.is_empty():
            log.debug("registration_rect_empty | frame=%d", self.frames_seen)
            return AffineTransform.identity(), True

        prev_pts, next_pts = self._track_points(gray, rect)
        if len(prev_pts) >= cfg.feature_point_min:
            transform, error = estimate_transform(prev_pts, next_pts)
            if transform is None or error > cfg.transform_error_max:
                log.info(
                    "registration_poor | frame=%d | points=%d | error=%.3f",
                    self.frames_seen,
                    len(prev_pts),
                    error,
                )
                return AffineTransform.identity(), True
            log.debug("registration_affine | frame=%d | points=%d | error=%.3f", self.frames_seen, len(prev_pts), error)
            return transform, False

        transform = register_translation(self.prev_gray, gray, rect, cfg.translation_search_px)
        if transform is None:
            return AffineTransform.identity(), True
        log.debug(
            "registration_translation | frame=%d | points=%d | shift=(%.0f, %.0f)",
            self.frames_seen,
            len(prev_pts),
            transform.matrix[0, 2],
            transform.matrix[1, 2],
        )
        return transform, False

    def _track_points(self, gray: np.ndarray, rect: Rect) -> Tuple[np.ndarray, np.ndarray]:
        """Tracked (previous, current) feature pairs in frame coordinates."""
        cfg = self.config
        empty = (np.empty((0, 2)), np.empty((0, 2)))
        sub_prev = self.prev_gray[rect.y : rect.bottom, rect.x : rect.right]
        sub_cur = gray[rect.y : rect.bottom, rect.x : rect.right]
        if sub_prev.shape != sub_cur.shape or sub_prev.size == 0:
            return empty

        corners = cv2.goodFeaturesToTrack(
            sub_prev, cfg.max_tracking_points, cfg.tracking_quality, cfg.tracking_spacing_px
        )
        if corners is None:
            return empty
        corners = corners.reshape(-1, 2)
        h, w = sub_prev.shape[:2]
        f = cfg.boundary_fraction
        keep = (
            (corners[:, 0] > w * f)
            & (corners[:, 0] < w * (1.0 - f))
            & (corners[:, 1] > h * f)
            & (corners[:, 1] < h * (1.0 - f))
        )
        corners = corners[keep]
        if len(corners) < cfg.feature_point_min:
            return empty

        tracked, status, _ = cv2.calcOpticalFlowPyrLK(
            sub_prev, sub_cur, corners.astype(np.float32).reshape(-1, 1, 2), None
        )
        tracked = tracked.reshape(-1, 2)
        ok = (
            (status.reshape(-1) == 1)
            & (tracked[:, 0] > 0)
            & (tracked[:, 0] < w)
            & (tracked[:, 1] > 0)
            & (tracked[:, 1] < h)
        )
        origin = np.array([rect.x, rect.y], dtype=float)
        return corners[ok].astype(float) + origin, tracked[ok].astype(float) + origin
