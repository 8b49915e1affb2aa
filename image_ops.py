"""OpenCV helpers used across the pipeline."""
from __future__ import annotations

from typing import Iterable, Sequence

import cv2
import numpy as np

from stroke_geometry import AffineTransform, Point
from tracker_config import InkTraceConfig


def to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def sharpen(image: np.ndarray, sigma: float, amount: float) -> np.ndarray:
    """Unsharp mask: ``image * (1 + amount) - blurred * amount``."""
    blurred = cv2.GaussianBlur(image, (0, 0), sigma)
    return cv2.addWeighted(image, 1.0 + amount, blurred, -amount, 0)


def kernel(size: int) -> np.ndarray:
    return np.ones((max(1, size), max(1, size)), np.uint8)


def extract_ink_trace(frame: np.ndarray, config: InkTraceConfig) -> np.ndarray:
    """Binary image of the visible ink: ink is 0, background 255."""
    gray = to_gray(frame)
    blurred = cv2.blur(gray, (config.blur_kernel, config.blur_kernel))
    trace = cv2.adaptiveThreshold(
        blurred,
        255,
        cv2.ADAPTIVE_THRESH_MEAN_C,
        cv2.THRESH_BINARY,
        config.block_size,
        config.offset,
    )
    trace = cv2.dilate(trace, kernel(config.dilate_kernel))
    # eroding the white background thickens the dark ink
    return cv2.erode(trace, kernel(config.erode_kernel))


def warp_affine(image: np.ndarray, transform: AffineTransform, border_value: int = 245) -> np.ndarray:
    height, width = image.shape[:2]
    border = (border_value,) * (1 if image.ndim == 2 else image.shape[2])
    return cv2.warpAffine(
        image,
        transform.matrix,
        (width, height),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=border,
    )


def polyline_array(points: Sequence[Point]) -> np.ndarray:
    return np.array([p.as_tuple() for p in points], dtype=np.int32).reshape(-1, 1, 2)


def render_polylines(
    shape: Sequence[int],
    polylines: Iterable[Sequence[Point]],
    thickness: int,
) -> np.ndarray:
    """Draw dark polylines on a white single channel canvas."""
    canvas = np.full(tuple(shape[:2]), 255, dtype=np.uint8)
    arrays = [polyline_array(points) for points in polylines if len(points) > 0]
    if arrays:
        cv2.polylines(canvas, arrays, False, 0, thickness)
    return canvas
