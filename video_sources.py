"""Frame sources: video files, webcams and numbered still images."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

import cv2
import numpy as np

DEFAULT_FRAME_SIZE = (1920, 1080)
DEFAULT_FPS = 30
CAMERA_BACKENDS = [cv2.CAP_DSHOW, cv2.CAP_MSMF, cv2.CAP_ANY]
IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".bmp")

log = logging.getLogger("stroke_tracker.video")


class VideoSourceError(RuntimeError):
    """A frame source could not be opened or read."""


class VideoSource(Protocol):
    def frame_available(self) -> bool: ...

    def get_frame(self) -> np.ndarray: ...

    def current_frame_number(self) -> int: ...

    def release(self) -> None: ...


class FrameReader:
    """Reads one frame ahead of a capture so availability is known before ``next``."""

    def __init__(self, capture: cv2.VideoCapture) -> None:
        self.capture = capture
        self.frame_number = 0
        self._pending: Optional[np.ndarray] = None
        self._read_ahead()

    def _read_ahead(self) -> None:
        ok, frame = self.capture.read()
        self._pending = frame if ok else None

    def frame_available(self) -> bool:
        return self._pending is not None

    def next(self) -> np.ndarray:
        if self._pending is None:
            raise VideoSourceError("no more frames")
        frame = self._pending
        self.frame_number += 1
        self._read_ahead()
        return frame

    def release(self) -> None:
        self.capture.release()
        self._pending = None


class VideoFileSource:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        capture = cv2.VideoCapture(str(self.path))
        if not capture.isOpened():
            capture.release()
            raise VideoSourceError(f"cannot open video file {self.path}")
        log.info(
            "video_open | path=%s | frames=%d",
            self.path,
            int(capture.get(cv2.CAP_PROP_FRAME_COUNT)),
        )
        self.reader = FrameReader(capture)

    def frame_available(self) -> bool:
        return self.reader.frame_available()

    def get_frame(self) -> np.ndarray:
        return self.reader.next()

    def current_frame_number(self) -> int:
        return self.reader.frame_number

    def release(self) -> None:
        self.reader.release()


def open_camera(index: int) -> Optional[cv2.VideoCapture]:
    for backend in CAMERA_BACKENDS:
        cap = cv2.VideoCapture(index, backend)
        if cap is not None and cap.isOpened():
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, DEFAULT_FRAME_SIZE[0])
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, DEFAULT_FRAME_SIZE[1])
            cap.set(cv2.CAP_PROP_FPS, DEFAULT_FPS)
            return cap
        if cap is not None:
            cap.release()
    return None


class WebcamSource:
    def __init__(self, index: int = 0) -> None:
        capture = open_camera(index)
        if capture is None:
            raise VideoSourceError(f"cannot open camera {index}")
        log.info("camera_open | index=%d", index)
        self.reader = FrameReader(capture)

    def frame_available(self) -> bool:
        return self.reader.frame_available()

    def get_frame(self) -> np.ndarray:
        return self.reader.next()

    def current_frame_number(self) -> int:
        return self.reader.frame_number

    def release(self) -> None:
        self.reader.release()


def _frame_index(path: Path) -> int:
    digits = re.findall(r"\d+", path.stem)
    return int(digits[-1]) if digits else -1


class ImageSequenceSource:
    """Still images in a directory, in the order of the number in their names."""

    def __init__(self, directory: Path, suffixes: Sequence[str] = IMAGE_SUFFIXES) -> None:
        self.directory = Path(directory)
        if not self.directory.is_dir():
            raise VideoSourceError(f"frame directory {self.directory} does not exist")
        self.paths: List[Path] = sorted(
            (p for p in self.directory.iterdir() if p.suffix.lower() in suffixes),
            key=lambda p: (_frame_index(p), p.name),
        )
        if not self.paths:
            raise VideoSourceError(f"no frames found in {self.directory}")
        self.frame_number = 0

    def frame_available(self) -> bool:
        return self.frame_number < len(self.paths)

    def get_frame(self) -> np.ndarray:
        if not self.frame_available():
            raise VideoSourceError("no more frames")
        path = self.paths[self.frame_number]
        frame = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if frame is None:
            raise VideoSourceError(f"cannot read frame {path}")
        self.frame_number += 1
        return frame

    def current_frame_number(self) -> int:
        return self.frame_number

    def release(self) -> None:
        self.frame_number = len(self.paths)
