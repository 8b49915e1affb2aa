"""Tests for the PDF export."""
import numpy as np

from print_strokes import create_pdf, stroke_bounds
from stroke_geometry import Point
from stroke_segmenter import Stroke, SubStroke


def make_stroke(points, pen_down=True):
    return Stroke([SubStroke(a, b, pen_down) for a, b in zip(points, points[1:])])


def test_stroke_bounds():
    strokes = [
        make_stroke([Point(10, 20), Point(30, 5)]),
        make_stroke([Point(-2, 8), Point(4, 40)], pen_down=False),
    ]
    assert stroke_bounds(strokes) == (-2, 5, 30, 40)
    assert stroke_bounds([]) is None


def test_pdf_with_strokes_and_ink_trace(temp_dir):
    ink = np.full((120, 160), 255, dtype=np.uint8)
    ink[50:60, 20:140] = 0
    strokes = [
        make_stroke([Point(20, 55), Point(80, 55), Point(140, 55)]),
        make_stroke([Point(140, 55), Point(20, 90)], pen_down=False),
    ]
    path = temp_dir / "strokes.pdf"
    create_pdf(strokes, ink, output_path=path, include_pen_up=True)
    assert path.read_bytes().startswith(b"%PDF")


def test_pdf_without_strokes(temp_dir):
    path = temp_dir / "empty.pdf"
    create_pdf([], output_path=path)
    assert path.stat().st_size > 0
