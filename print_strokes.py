"""Print the reconstructed strokes to a PDF page."""
from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from stroke_segmenter import Stroke

MM_TO_PT = 2.83465
OUTPUT_PDF = Path("strokes.pdf")
PADDING_MM = 15.0
PANEL_GAP_MM = 10.0
LINE_WIDTH_PT = 1.2


def mm_to_pt(value: float) -> float:
    return value * MM_TO_PT


def mm_list(values: Iterable[float]) -> Sequence[float]:
    return [mm_to_pt(v) for v in values]


def ink_trace_image(ink: np.ndarray) -> ImageReader:
    rgb = cv2.cvtColor(ink, cv2.COLOR_GRAY2RGB) if ink.ndim == 2 else cv2.cvtColor(ink, cv2.COLOR_BGR2RGB)
    image = Image.fromarray(rgb)
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    buffer.seek(0)
    return ImageReader(buffer)


def stroke_bounds(strokes: Sequence[Stroke]) -> Optional[Tuple[int, int, int, int]]:
    points = [p for s in strokes for p in s.points]
    if not points:
        return None
    xs = [p.x for p in points]
    ys = [p.y for p in points]
    return min(xs), min(ys), max(xs), max(ys)


def draw_strokes(
    canv: canvas.Canvas,
    strokes: Sequence[Stroke],
    box: Tuple[float, float, float, float],
    bounds: Tuple[int, int, int, int],
) -> None:
    """Draw ``strokes`` scaled into ``box`` (x, y, width, height in points), image y pointing down."""
    bx, by, bw, bh = box
    min_x, min_y, max_x, max_y = bounds
    span = max(max_x - min_x, max_y - min_y, 1)
    scale = min(bw, bh) / span

    def to_page(px: int, py: int) -> Tuple[float, float]:
        return bx + (px - min_x) * scale, by + bh - (py - min_y) * scale

    canv.setLineWidth(LINE_WIDTH_PT)
    canv.setLineCap(1)
    for stroke in strokes:
        canv.setStrokeColor(colors.black if stroke.pen_down else colors.Color(0.7, 0.7, 0.9))
        if not stroke.pen_down:
            canv.setDash(2, 3)
        path = canv.beginPath()
        x, y = to_page(*stroke.points[0].as_tuple())
        path.moveTo(x, y)
        for point in stroke.points[1:]:
            path.lineTo(*to_page(*point.as_tuple()))
        canv.drawPath(path, stroke=1, fill=0)
        canv.setDash()


def create_pdf(
    strokes: Sequence[Stroke],
    ink_trace: Optional[np.ndarray] = None,
    output_path: Path = OUTPUT_PDF,
    include_pen_up: bool = False,
) -> None:
    shown: List[Stroke] = [s for s in strokes if include_pen_up or s.pen_down]
    width_pt, height_pt = A4
    padding_pt, gap_pt = mm_list([PADDING_MM, PANEL_GAP_MM])
    panel_w = width_pt - 2 * padding_pt
    panel_h = (height_pt - 2 * padding_pt - gap_pt - mm_to_pt(10)) / 2.0

    canv = canvas.Canvas(str(output_path), pagesize=A4)
    canv.setFont("Helvetica", 12)
    canv.drawString(padding_pt, height_pt - padding_pt, f"Reconstructed strokes ({len(shown)})")

    top = height_pt - padding_pt - mm_to_pt(6) - panel_h
    bounds = stroke_bounds(shown)
    if bounds is not None:
        draw_strokes(canv, shown, (padding_pt, top, panel_w, panel_h), bounds)
    else:
        canv.setFont("Helvetica", 10)
        canv.drawString(padding_pt, top + panel_h / 2, "No strokes found.")

    if ink_trace is not None and ink_trace.size:
        reader = ink_trace_image(ink_trace)
        canv.setFont("Helvetica", 10)
        canv.drawString(padding_pt, top - gap_pt / 2, "Ink trace (reference frame)")
        canv.drawImage(
            reader,
            padding_pt,
            top - gap_pt - panel_h,
            width=panel_w,
            height=panel_h,
            preserveAspectRatio=True,
            anchor="nw",
        )

    canv.showPage()
    canv.save()
