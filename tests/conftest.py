"""Shared fixtures for the stroke tracker tests."""
import logging
import sys
import tempfile
from pathlib import Path

import cv2
import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    handlers=[logging.StreamHandler()],
)


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def noise_image():
    """Deterministic random texture, 300 rows by 400 columns."""
    rng = np.random.default_rng(1234)
    return rng.integers(0, 256, size=(300, 400), dtype=np.uint8)


@pytest.fixture
def smooth_texture():
    """Blurred noise with enough structure for corner detection and optical flow."""
    rng = np.random.default_rng(42)
    noise = rng.integers(0, 256, size=(300, 400), dtype=np.uint8)
    return cv2.GaussianBlur(noise, (0, 0), 2.0)


@pytest.fixture
def whiteboard_frames():
    """Small sequence of a dark pen-like wedge moving down a white board."""
    frames = []
    for i in range(6):
        frame = np.full((240, 320, 3), 255, dtype=np.uint8)
        top = 60 + 4 * i
        wedge = np.array([[150, top], [170, top], [160, top + 30]], dtype=np.int32)
        cv2.fillPoly(frame, [wedge], (40, 40, 40))
        cv2.line(frame, (160, 90), (160, top + 30), (20, 20, 20), 2)
        frames.append(frame)
    return frames
