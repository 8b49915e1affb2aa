"""Pen patch template tracking.

A small region around the predicted position is searched first; when the
normalised correlation there is not convincing the whole frame is searched
coarse-to-fine over an image pyramid.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from stroke_geometry import Point
from tracker_config import TemplateConfig

log = logging.getLogger("stroke_tracker.template")


class TemplateSizeError(ValueError):
    """The template does not fit inside the image it is searched in."""


@dataclass(frozen=True)
class TemplateMatch:
    location: Point  # top-left corner of the best match
    fitness: float


@dataclass
class TemplateSearch:
    match: TemplateMatch
    roi: Tuple[int, int, int, int]
    global_search: bool = False


def _check_fits(source: np.ndarray, template: np.ndarray) -> None:
    if source.shape[0] < template.shape[0] or source.shape[1] < template.shape[1]:
        raise TemplateSizeError(
            f"template {template.shape[1]}x{template.shape[0]} does not fit in "
            f"image {source.shape[1]}x{source.shape[0]}"
        )


def match_template(source: np.ndarray, template: np.ndarray) -> TemplateMatch:
    _check_fits(source, template)
    result = cv2.matchTemplate(source, template, cv2.TM_CCORR_NORMED)
    _, max_val, _, max_loc = cv2.minMaxLoc(result)
    return TemplateMatch(Point(int(max_loc[0]), int(max_loc[1])), float(max_val))


def build_pyramid(image: np.ndarray, levels: int) -> List[np.ndarray]:
    pyramid = [image]
    for _ in range(1, max(1, levels)):
        pyramid.append(cv2.pyrDown(pyramid[-1]))
    return pyramid


def _window(centre: int, margin: int, size: int, limit: int) -> Tuple[int, int]:
    start = max(centre - margin, 0)
    end = min(centre + margin + size, limit)
    if end - start < size:
        start = max(end - size, 0)
        end = min(start + size, limit)
    return start, end


def match_template_pyramid(
    source: np.ndarray, template: np.ndarray, levels: int = 3, margin: int = 75
) -> TemplateMatch:
    """Coarse-to-fine search of ``template`` over the whole of ``source``."""
    _check_fits(source, template)
    sources = build_pyramid(source, levels)
    templates = build_pyramid(template, levels)
    top = len(sources) - 1

    search = sources[top]
    col_start = row_start = 0
    loc_x = loc_y = 0
    fitness = 0.0
    for level in range(top, -1, -1):
        found = match_template(search, templates[level])
        loc_x, loc_y = found.location.x + col_start, found.location.y + row_start
        fitness = found.fitness
        if level == 0:
            break
        finer, finer_tpl = sources[level - 1], templates[level - 1]
        th, tw = finer_tpl.shape[:2]
        col_start, col_end = _window(2 * loc_x, margin, tw, finer.shape[1])
        row_start, row_end = _window(2 * loc_y, margin, th, finer.shape[0])
        search = finer[row_start:row_end, col_start:col_end]
    return TemplateMatch(Point(loc_x, loc_y), fitness)


class TemplateTracker:
    def __init__(self, template: np.ndarray, config: Optional[TemplateConfig] = None) -> None:
        self.template = template
        self.config = config or TemplateConfig()

    @property
    def size(self) -> Tuple[int, int]:
        return self.template.shape[1], self.template.shape[0]

    def search_global(self, frame: np.ndarray) -> TemplateMatch:
        cfg = self.config
        return match_template_pyramid(frame, self.template, cfg.pyramid_levels, cfg.pyramid_margin_px)

    def _roi(self, frame: np.ndarray, predicted: Point) -> Tuple[int, int, int, int]:
        tw, th = self.size
        margin = self.config.search_margin_px
        height, width = frame.shape[:2]
        x1 = max(predicted.x - margin, 0)
        y1 = max(predicted.y - margin, 0)
        x2 = min(predicted.x + margin + tw, width)
        y2 = min(predicted.y + margin + th, height)
        return (x1, y1, max(0, x2 - x1), max(0, y2 - y1))

    def locate(self, frame: np.ndarray, predicted: Point) -> TemplateSearch:
        """Absolute top-left of the template in ``frame`` near ``predicted``."""
        _check_fits(frame, self.template)
        tw, th = self.size
        x, y, w, h = self._roi(frame, predicted)

        local: Optional[TemplateMatch] = None
        if w >= tw and h >= th:
            found = match_template(frame[y : y + h, x : x + w], self.template)
            local = TemplateMatch(found.location.offset(x, y), found.fitness)

        if local is not None and local.fitness >= self.config.fitness_threshold:
            search = TemplateSearch(local, (x, y, w, h))
        else:
            found = self.search_global(frame)
            log.info(
                "template_global | local_fitness=%s | fitness=%.4f | at=%s",
                "none" if local is None else f"{local.fitness:.4f}",
                found.fitness,
                found.location.as_tuple(),
            )
            search = TemplateSearch(found, (x, y, w, h), global_search=True)
        return search
