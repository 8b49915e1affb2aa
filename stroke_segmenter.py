"""Pen-up/pen-down segmentation of the refined trajectory and stroke clean-up."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence

import cv2
import numpy as np

from image_ops import kernel, polyline_array, render_polylines
from stroke_geometry import Point
from tracker_config import SegmentationConfig

log = logging.getLogger("stroke_tracker.strokes")


@dataclass(frozen=True)
class SubStroke:
    start: Point
    end: Point
    pen_down: bool = True

    @property
    def length(self) -> float:
        return self.start.distance_to(self.end)

    @property
    def bearing(self) -> float:
        """Bearing in degrees: 0 along +y (down the image), 90 along +x."""
        dx = self.end.x - self.start.x
        dy = self.end.y - self.start.y
        return (-math.degrees(math.atan2(dy, dx)) + 90.0 + 360.0) % 360.0

    @property
    def midpoint(self) -> Point:
        return Point.rounded((self.start.x + self.end.x) / 2.0, (self.start.y + self.end.y) / 2.0)


@dataclass
class Stroke:
    sub_strokes: List[SubStroke] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.sub_strokes:
            raise ValueError("a stroke needs at least one sub-stroke")

    @property
    def pen_down(self) -> bool:
        return self.sub_strokes[0].pen_down

    @property
    def length(self) -> float:
        return math.fsum(s.length for s in self.sub_strokes)

    @property
    def points(self) -> List[Point]:
        return [s.start for s in self.sub_strokes] + [self.sub_strokes[-1].end]

    def __len__(self) -> int:
        return len(self.sub_strokes)

    def to_mapping(self) -> dict:
        return {
            "pen_down": self.pen_down,
            "points": [list(p.as_tuple()) for p in self.points],
        }


def angle_difference(a: float, b: float) -> float:
    """Signed difference ``a - b`` wrapped into [-180, 180)."""
    return (a - b + 180.0) % 360.0 - 180.0


# ---------------------------------------------------------------------------
# Pen state classification
# ---------------------------------------------------------------------------


def build_substrokes(points: Sequence[Point]) -> List[SubStroke]:
    return [SubStroke(a, b) for a, b in zip(points, points[1:])]


def ink_difference(ink: np.ndarray, sub: SubStroke, padding: int, thickness: int) -> float:
    """Pixels changed by drawing ``sub`` in ink colour on the trace, per pixel of length."""
    height, width = ink.shape[:2]
    x0 = max(min(sub.start.x, sub.end.x) - padding, 0)
    y0 = max(min(sub.start.y, sub.end.y) - padding, 0)
    x1 = min(max(sub.start.x, sub.end.x) + padding + 1, width)
    y1 = min(max(sub.start.y, sub.end.y) + padding + 1, height)
    if x1 <= x0 or y1 <= y0:
        # entirely off the trace, nothing to confirm it
        return float("inf")
    crop = ink[y0:y1, x0:x1]
    probe = crop.copy()
    cv2.line(probe, (sub.start.x - x0, sub.start.y - y0), (sub.end.x - x0, sub.end.y - y0), 0, thickness)
    changed = np.count_nonzero(cv2.absdiff(crop, probe))
    return float(changed) / max(sub.length, 1.0)


def classify_pen_states(
    sub_strokes: Sequence[SubStroke], ink: np.ndarray, config: SegmentationConfig
) -> List[SubStroke]:
    classified = []
    for sub in sub_strokes:
        diff = ink_difference(ink, sub, config.crop_padding_px, config.probe_thickness)
        classified.append(replace(sub, pen_down=diff <= config.pen_down_max_difference))
    return classified


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------


def segment_strokes(sub_strokes: Sequence[SubStroke]) -> List[Stroke]:
    strokes: List[Stroke] = []
    run: List[SubStroke] = []
    for sub in sub_strokes:
        if run and sub.pen_down != run[-1].pen_down:
            strokes.append(Stroke(run))
            run = []
        run.append(sub)
    if run:
        strokes.append(Stroke(run))
    return strokes


def _join(strokes: Sequence[Stroke], pen_down: bool) -> Stroke:
    return Stroke([replace(s, pen_down=pen_down) for stroke in strokes for s in stroke.sub_strokes])


def assimilate_short_strokes(strokes: Sequence[Stroke], min_sub_strokes: int) -> List[Stroke]:
    """Flip strokes with fewer than ``min_sub_strokes`` segments and merge them into their neighbours."""
    result = list(strokes)
    i = 0
    while i < len(result) and len(result) > 1:
        if len(result[i]) >= min_sub_strokes:
            i += 1
            continue
        if i == 0:
            result[0:2] = [_join(result[0:2], result[1].pen_down)]
        elif i == len(result) - 1:
            result[i - 1 :] = [_join(result[i - 1 :], result[i - 1].pen_down)]
            i -= 1
        else:
            result[i - 1 : i + 2] = [_join(result[i - 1 : i + 2], result[i - 1].pen_down)]
            i -= 1
    return result


def split_by_direction(strokes: Sequence[Stroke], max_turn: float) -> List[Stroke]:
    """Split strokes where consecutive sub-strokes turn by more than ``max_turn`` degrees."""
    result: List[Stroke] = []
    for stroke in strokes:
        run: List[SubStroke] = []
        previous_bearing: Optional[float] = None
        for sub in stroke.sub_strokes:
            if sub.length == 0:
                run.append(sub)
                continue
            if previous_bearing is not None and abs(angle_difference(sub.bearing, previous_bearing)) > max_turn:
                result.append(Stroke(run))
                run = []
            run.append(sub)
            previous_bearing = sub.bearing
        if run:
            result.append(Stroke(run))
    return result


def simplify_stroke(stroke: Stroke, epsilon: float) -> Stroke:
    """Douglas-Peucker simplification of the stroke polyline."""
    points = stroke.points
    if epsilon <= 0 or len(points) < 3:
        return stroke
    approx = cv2.approxPolyDP(polyline_array(points), epsilon, False)
    keep = [Point(int(x), int(y)) for x, y in approx.reshape(-1, 2)]
    if len(keep) < 2:
        return stroke
    return Stroke([SubStroke(a, b, stroke.pen_down) for a, b in zip(keep, keep[1:])])


# ---------------------------------------------------------------------------
# Redundancy removal
# ---------------------------------------------------------------------------


def stroke_contribution(own: np.ndarray, others: np.ndarray) -> float:
    """Summed intensity of the dark pixels of ``own`` that ``others`` leaves uncovered."""
    masked = np.where(others > 0, own, 0).astype(np.uint8)
    return float(np.sum(cv2.subtract(others, masked), dtype=np.float64))


def remove_redundant_strokes(
    strokes: Sequence[Stroke], shape: Sequence[int], config: SegmentationConfig
) -> List[Stroke]:
    """Drop pen-down strokes that add almost nothing over the other pen-down strokes."""
    pen_down = [s for s in strokes if s.pen_down]
    if not pen_down:
        return list(strokes)
    erode = kernel(config.redundancy_erode_kernel)
    redundant = set()
    for i, stroke in enumerate(pen_down):
        own = render_polylines(shape, [stroke.points], config.render_thickness)
        others = render_polylines(
            shape, [s.points for j, s in enumerate(pen_down) if j != i], config.render_thickness
        )
        # eroding the white canvas widens the dark strokes
        others = cv2.erode(others, erode)
        impact = stroke_contribution(own, others)
        if impact < config.redundancy_threshold:
            log.info("stroke_redundant | index=%d | impact=%.0f", i, impact)
            redundant.add(id(stroke))
    return [s for s in strokes if id(s) not in redundant]


# ---------------------------------------------------------------------------
# Character grouping for recognition
# ---------------------------------------------------------------------------


def _touching(first: Stroke, second: Stroke, gap: float) -> bool:
    mids = [s.midpoint for s in second.sub_strokes]
    return any(a.midpoint.distance_to(b) < gap for a in first.sub_strokes for b in mids)


def compile_characters(strokes: Sequence[Stroke], gap: float) -> List[List[List[Point]]]:
    """Group touching pen-down strokes; each group is a list of point traces."""
    groups: List[List[Stroke]] = []
    for stroke in (s for s in strokes if s.pen_down):
        joined = [g for g in groups if any(_touching(stroke, other, gap) for other in g)]
        merged = [stroke]
        for group in joined:
            merged = group + merged
            groups.remove(group)
        groups.append(merged)
    return [[s.points for s in group] for group in groups]


class StrokeSegmenter:
    def __init__(self, config: Optional[SegmentationConfig] = None) -> None:
        self.config = config or SegmentationConfig()

    def process(self, points: Sequence[Point], ink: np.ndarray) -> List[Stroke]:
        cfg = self.config
        sub_strokes = classify_pen_states(build_substrokes(points), ink, cfg)
        strokes = segment_strokes(sub_strokes)
        strokes = assimilate_short_strokes(strokes, cfg.min_stroke_substrokes)
        if cfg.split_by_direction:
            strokes = split_by_direction(strokes, cfg.direction_change_deg)
        if cfg.simplify_epsilon > 0:
            strokes = [simplify_stroke(s, cfg.simplify_epsilon) for s in strokes]
        strokes = remove_redundant_strokes(strokes, ink.shape, cfg)
        log.info(
            "strokes_segmented | sub_strokes=%d | strokes=%d | pen_down=%d",
            len(sub_strokes),
            len(strokes),
            sum(1 for s in strokes if s.pen_down),
        )
        return strokes
