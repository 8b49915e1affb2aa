"""Tests for local and pyramid template search."""
import cv2
import numpy as np
import pytest

from stroke_geometry import Point
from template_tracker import (
    TemplateSizeError,
    TemplateTracker,
    build_pyramid,
    match_template,
    match_template_pyramid,
)
from tracker_config import TemplateConfig


def pen_scene():
    frame = np.full((240, 320), 255, dtype=np.uint8)
    cv2.circle(frame, (170, 120), 10, 40, -1)
    cv2.line(frame, (170, 120), (185, 105), 0, 3)
    template = frame[100:140, 150:190].copy()
    return frame, template


def test_match_template_exact():
    frame, template = pen_scene()
    found = match_template(frame, template)
    assert found.location == Point(150, 100)
    assert found.fitness == pytest.approx(1.0, abs=1e-4)


def test_pyramid_levels_halve():
    frame, _ = pen_scene()
    sizes = [level.shape for level in build_pyramid(frame, 3)]
    assert sizes == [(240, 320), (120, 160), (60, 80)]


def test_pyramid_search_finds_template():
    frame, template = pen_scene()
    found = match_template_pyramid(frame, template, levels=3, margin=75)
    assert found.location == Point(150, 100)
    assert found.fitness == pytest.approx(1.0, abs=1e-4)


class TestTemplateTracker:
    """ROI search with global fallback."""

    def test_local_search_near_prediction(self):
        frame, template = pen_scene()
        tracker = TemplateTracker(template, TemplateConfig())
        search = tracker.locate(frame, Point(145, 95))
        assert search.match.location == Point(150, 100)
        assert not search.global_search
        assert search.roi == (125, 75, 80, 80)

    def test_low_fitness_falls_back_to_global_search(self):
        frame, template = pen_scene()
        tracker = TemplateTracker(template, TemplateConfig())
        search = tracker.locate(frame, Point(10, 10))
        assert search.global_search
        assert search.match.location == Point(150, 100)

    def test_prediction_outside_frame_uses_global_search(self):
        frame, template = pen_scene()
        tracker = TemplateTracker(template, TemplateConfig())
        search = tracker.locate(frame, Point(-200, 500))
        assert search.global_search
        assert search.match.location == Point(150, 100)

    def test_frame_smaller_than_template_is_a_configuration_error(self):
        _, template = pen_scene()
        tracker = TemplateTracker(template, TemplateConfig())
        small = np.full((30, 300), 255, dtype=np.uint8)
        with pytest.raises(TemplateSizeError):
            tracker.locate(small, Point(0, 0))
        with pytest.raises(TemplateSizeError):
            match_template_pyramid(small, template)


def test_locate_is_independent_of_earlier_calls():
    frame, template = pen_scene()
    tracker = TemplateTracker(template, TemplateConfig())
    fresh = tracker.locate(frame, Point(145, 95))
    tracker.locate(frame, Point(10, 10))
    again = tracker.locate(frame, Point(145, 95))
    assert again == fresh
    assert not again.global_search
