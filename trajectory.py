"""Clean-up of the raw ballpoint record: outliers, smoothing, resampling."""
from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

from stroke_geometry import Point
from tracker_config import TrajectoryConfig

log = logging.getLogger("stroke_tracker.trajectory")


class EmptyRecordError(RuntimeError):
    """Raised when a refinement step is given no points."""


def _require_points(points: Sequence[Point], step: str) -> None:
    if not points:
        raise EmptyRecordError(f"cannot {step} an empty ballpoint record")


def reject_outliers(points: Sequence[Point], threshold: float, lookahead: int) -> List[Point]:
    """Drop short excursions away from the last accepted point.

    When the next point jumps further than ``threshold``, up to ``lookahead``
    later points are checked for one that comes back near the last accepted
    point.  If one does, the excursion is dropped; otherwise the jump is taken
    as a genuine fast movement and the next point is accepted as is.
    """
    _require_points(points, "check")
    accepted = [points[0]]
    i = 1
    while i < len(points):
        anchor = accepted[-1]
        if points[i].distance_to(anchor) <= threshold:
            accepted.append(points[i])
            i += 1
            continue
        back = None
        for j in range(i + 1, min(i + 1 + lookahead, len(points))):
            if points[j].distance_to(anchor) <= threshold:
                back = j
                break
        if back is None:
            accepted.append(points[i])
            i += 1
        else:
            log.debug("outlier_dropped | from=%d | to=%d", i, back - 1)
            accepted.append(points[back])
            i = back + 1
    return accepted


def smooth_points(points: Sequence[Point], weights: Sequence[float] = (1.0, 2.0, 1.0)) -> List[Point]:
    _require_points(points, "smooth")
    w_prev, w_cur, w_next = weights
    total = w_prev + w_cur + w_next
    smoothed = [points[0]]
    for prev, cur, nxt in zip(points, points[1:], points[2:]):
        x = (w_prev * prev.x + w_cur * cur.x + w_next * nxt.x) / total
        y = (w_prev * prev.y + w_cur * cur.y + w_next * nxt.y) / total
        smoothed.append(Point.rounded(x, y))
    if len(points) > 1:
        smoothed.append(points[-1])
    return smoothed


def resample_points(points: Sequence[Point], step: float) -> List[Point]:
    """Walk the polyline through ``points`` emitting a point every ``step`` of arc length.

    The last input point closes the path, so the final segment may be shorter.
    """
    _require_points(points, "resample")
    if step <= 0:
        raise ValueError("resample step must be positive")
    resampled = [points[0]]
    travelled = 0.0  # arc length since the last emitted point
    for start, end in zip(points, points[1:]):
        length = start.distance_to(end)
        if length == 0:
            continue
        position = step - travelled
        while position <= length:
            t = position / length
            resampled.append(Point.rounded(start.x + t * (end.x - start.x), start.y + t * (end.y - start.y)))
            position += step
        travelled = length - (position - step)
    if travelled > 1e-9 and resampled[-1] != points[-1]:
        resampled.append(points[-1])
    return resampled


def path_length(points: Sequence[Point]) -> float:
    return math.fsum(a.distance_to(b) for a, b in zip(points, points[1:]))


class TrajectoryRefiner:
    def __init__(self, config: Optional[TrajectoryConfig] = None) -> None:
        self.config = config or TrajectoryConfig()

    def refine(self, record: Sequence[Point]) -> List[Point]:
        cfg = self.config
        cleaned = reject_outliers(record, cfg.movement_threshold_px, cfg.lookahead)
        smoothed = smooth_points(cleaned, cfg.smoothing_weights)
        resampled = resample_points(smoothed, cfg.resample_step_px)
        log.info(
            "trajectory_refined | raw=%d | cleaned=%d | resampled=%d | length=%.1f",
            len(record),
            len(cleaned),
            len(resampled),
            path_length(resampled),
        )
        return resampled
