# -*- coding: utf-8 -*-
"""Whiteboard pen stroke tracker.

Follows the tip of a handheld pen through a video of a whiteboard and
rebuilds what was written as pen-down/pen-up strokes.

Per frame the board motion is registered against the reference frame, the
Kalman filter predicts where the pen patch is, the template tracker confirms
(or relocates) it, and the ballpoint locator finds the tip inside the patch.
The tip is stored in reference frame coordinates.  Once the video ends the
tip record is cleaned and resampled, and the strokes are segmented against
the ink visible in the last frame.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import cv2
import numpy as np

from ballpoint_locator import BallpointLocator
from frame_registration import FrameRegistrar
from image_ops import extract_ink_trace, sharpen, warp_affine
from kalman_tracker import KalmanTracker
from print_strokes import create_pdf
from stroke_geometry import AffineTransform, Point
from stroke_segmenter import Stroke, StrokeSegmenter, compile_characters
from template_tracker import TemplateSearch, TemplateSizeError, TemplateTracker
from tracker_config import CONFIG_FILE, AppConfig
from trajectory import TrajectoryRefiner
from video_sources import ImageSequenceSource, VideoFileSource, VideoSource, VideoSourceError, WebcamSource

APP_NAME = "Whiteboard Stroke Tracker"
APP_VERSION = "0.1.0"
LOGGER_NAME = "stroke_tracker"
LOG_FILE = Path("stroke_tracker.log")


def setup_logger(level: int = logging.INFO, log_file: Path = LOG_FILE) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if logger.handlers:
        return logger
    handler = RotatingFileHandler(str(log_file), maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    return logger


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------


@dataclass
class FrameView:
    """What the display sink gets after every frame."""

    frame_number: int
    frame: np.ndarray
    roi: np.ndarray
    processed: np.ndarray
    tip: Optional[Point] = None
    fitness: float = 0.0


FrameSink = Callable[[FrameView], None]


class Recognizer(Protocol):
    def recognize(self, traces: Sequence[Sequence[Point]]) -> Sequence[Tuple[str, float]]: ...


@dataclass
class TrackingResult:
    frames: int
    raw_record: List[Point] = field(default_factory=list)
    refined: List[Point] = field(default_factory=list)
    strokes: List[Stroke] = field(default_factory=list)
    ink_trace: Optional[np.ndarray] = None
    full_transform: AffineTransform = field(default_factory=AffineTransform.identity)
    recognitions: List[List[Tuple[str, float]]] = field(default_factory=list)

    def to_mapping(self) -> Dict[str, object]:
        return {
            "frames": self.frames,
            "raw_record": [list(p.as_tuple()) for p in self.raw_record],
            "refined": [list(p.as_tuple()) for p in self.refined],
            "strokes": [s.to_mapping() for s in self.strokes],
            "full_transform": self.full_transform.matrix.tolist(),
            "recognitions": [[[symbol, score] for symbol, score in group] for group in self.recognitions],
        }


# ---------------------------------------------------------------------------
# Overlay
# ---------------------------------------------------------------------------


def draw_overlay(
    frame: np.ndarray,
    search: TemplateSearch,
    template_size: Tuple[int, int],
    tip: Optional[Point],
    frame_number: int,
) -> np.ndarray:
    overlay = frame.copy() if frame.ndim == 3 else cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    x, y = search.match.location.as_tuple()
    tw, th = template_size
    rx, ry, rw, rh = search.roi
    if rw > 0 and rh > 0:
        cv2.rectangle(overlay, (rx, ry), (rx + rw, ry + rh), (255, 255, 0), 1)
    colour = (0, 165, 255) if search.global_search else (0, 255, 0)
    cv2.rectangle(overlay, (x, y), (x + tw, y + th), colour, 2)
    if tip is not None:
        cv2.circle(overlay, tip.as_tuple(), 4, (0, 0, 255), -1)

    w = overlay.shape[1]
    font_scale = max(0.4, min(0.8, w / 1600.0))
    cv2.putText(
        overlay,
        f"#{frame_number}  fit:{search.match.fitness:.3f}",
        (10, int(24 * font_scale / 0.5)),
        cv2.FONT_HERSHEY_SIMPLEX,
        font_scale,
        (40, 40, 40),
        2,
    )
    return overlay


# ---------------------------------------------------------------------------
# Processing loop
# ---------------------------------------------------------------------------


class StrokeTracker:
    def __init__(
        self,
        template: np.ndarray,
        config: Optional[AppConfig] = None,
        sink: Optional[FrameSink] = None,
        recognizer: Optional[Recognizer] = None,
    ) -> None:
        self.config = config or AppConfig()
        self.sink = sink
        self.recognizer = recognizer
        self.log = logging.getLogger(LOGGER_NAME)
        cfg = self.config
        self.template_tracker = TemplateTracker(self._prepare(template), cfg.template)
        self.registrar = FrameRegistrar(cfg.registration)
        self.locator = BallpointLocator(template.shape, cfg.ballpoint)
        self.refiner = TrajectoryRefiner(cfg.trajectory)
        self.segmenter = StrokeSegmenter(cfg.segmentation)
        self.reset()

    def reset(self) -> None:
        self.registrar.reset()
        self.kalman: Optional[KalmanTracker] = None
        self.record: List[Point] = []
        self.frames = 0
        self.last_frame: Optional[np.ndarray] = None

    def _prepare(self, image: np.ndarray) -> np.ndarray:
        cfg = self.config.template
        return sharpen(image, cfg.sharpen_sigma, cfg.sharpen_amount)

    def process_frame(self, frame: np.ndarray) -> Optional[Point]:
        """Track one frame; return the tip in reference coordinates when one was found."""
        self.frames += 1
        to_reference = self.registrar.track_movement(frame)
        prepared = self._prepare(frame)
        if self.kalman is None:
            start = self.template_tracker.search_global(prepared)
            self.kalman = KalmanTracker(start.location, self.config.kalman)
            self.log.info("track_start | at=%s | fitness=%.4f", start.location.as_tuple(), start.fitness)

        predicted = self.kalman.predict()
        search = self.template_tracker.locate(prepared, predicted)
        x, y = search.match.location.as_tuple()
        tw, th = self.template_tracker.size
        patch = frame[y : y + th, x : x + tw]

        tip = self.locator.find_ballpoint(patch)
        tip_frame: Optional[Point] = None
        tip_reference: Optional[Point] = None
        if tip is not None:
            tip_frame = tip.offset(x, y)
            tip_reference = to_reference.apply(tip_frame)
            self.record.append(tip_reference)
        else:
            self.log.debug("tip_missing | frame=%d | patch=%s", self.frames, (x, y))

        self.kalman.correct(search.match.location)
        self.last_frame = frame

        if self.sink is not None:
            self.sink(
                FrameView(
                    frame_number=self.frames,
                    frame=draw_overlay(frame, search, (tw, th), tip_frame, self.frames),
                    roi=patch,
                    processed=prepared,
                    tip=tip_reference,
                    fitness=search.match.fitness,
                )
            )
        return tip_reference

    def process(self, source: VideoSource, max_frames: Optional[int] = None) -> TrackingResult:
        self.log.info("run_start | max_frames=%s", max_frames)
        try:
            while source.frame_available():
                if max_frames is not None and self.frames >= max_frames:
                    break
                self.process_frame(source.get_frame())
        finally:
            source.release()
        return self.finish()

    def finish(self) -> TrackingResult:
        full = self.registrar.get_full_transform()
        result = TrackingResult(frames=self.frames, raw_record=list(self.record), full_transform=full)
        if self.last_frame is None:
            self.log.warning("run_empty | no frames processed")
            return result

        ink_cfg = self.config.ink_trace
        ink = extract_ink_trace(self.last_frame, ink_cfg)
        result.ink_trace = warp_affine(ink, full.inverse(), ink_cfg.border_value)

        if not self.record:
            self.log.warning("run_no_tips | frames=%d", self.frames)
            return result

        result.refined = self.refiner.refine(self.record)
        result.strokes = self.segmenter.process(result.refined, result.ink_trace)
        if self.recognizer is not None:
            gap = self.config.segmentation.character_gap_px
            for traces in compile_characters(result.strokes, gap):
                candidates = list(self.recognizer.recognize(traces))
                result.recognitions.append(candidates)
                self.log.info("recognized | traces=%d | best=%s", len(traces), candidates[:1])
        self.log.info(
            "run_end | frames=%d | tips=%d | strokes=%d",
            self.frames,
            len(self.record),
            len(result.strokes),
        )
        return result


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def parse_rect(text: str) -> Tuple[int, int, int, int]:
    parts = [int(v) for v in text.split(",")]
    if len(parts) != 4 or parts[2] <= 0 or parts[3] <= 0:
        raise argparse.ArgumentTypeError("expected x,y,width,height")
    return parts[0], parts[1], parts[2], parts[3]


def open_source(args: argparse.Namespace) -> VideoSource:
    if args.video is not None:
        return VideoFileSource(args.video)
    if args.frames is not None:
        return ImageSequenceSource(args.frames)
    return WebcamSource(args.webcam)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=APP_NAME)
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--video", type=Path, help="Video file to process")
    source.add_argument("--frames", type=Path, help="Directory of numbered still frames")
    source.add_argument("--webcam", type=int, default=0, help="Camera index (default 0)")
    template = parser.add_mutually_exclusive_group()
    template.add_argument("--template", type=Path, help="Image of the pen patch to track")
    template.add_argument(
        "--template-rect",
        type=parse_rect,
        help="Cut the pen patch from the first frame (x,y,width,height)",
    )
    parser.add_argument("--config", type=Path, default=CONFIG_FILE, help="JSON configuration file")
    parser.add_argument("--output", type=Path, help="Write the strokes as JSON")
    parser.add_argument("--pdf", type=Path, help="Write the strokes as a PDF page")
    parser.add_argument("--display", action="store_true", help="Show frames while tracking")
    parser.add_argument("--max-frames", type=int, help="Stop after this many frames")
    parser.add_argument("--verbose", action="store_true", help="Log per-frame details")
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version information and exit",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    if args.version:
        print(f"{APP_NAME} v{APP_VERSION}")
        return 0
    if args.template is None and args.template_rect is None:
        print("error: --template or --template-rect is required", file=sys.stderr)
        return 2

    log = setup_logger(logging.DEBUG if args.verbose else logging.INFO)
    config = AppConfig.load(args.config)

    display = None
    if args.display:
        from tk_display import TkFrameDisplay

        display = TkFrameDisplay(f"{APP_NAME} v{APP_VERSION}")

    try:
        source = open_source(args)
        first_frame: Optional[np.ndarray] = None
        if args.template is not None:
            template = cv2.imread(str(args.template), cv2.IMREAD_COLOR)
            if template is None:
                raise VideoSourceError(f"cannot read template {args.template}")
        else:
            if not source.frame_available():
                raise VideoSourceError("source has no frames")
            first_frame = source.get_frame()
            x, y, w, h = args.template_rect
            template = first_frame[y : y + h, x : x + w].copy()
            if template.size == 0:
                raise TemplateSizeError(f"template rectangle {args.template_rect} is outside the frame")

        tracker = StrokeTracker(template, config, sink=display)
        if first_frame is not None:
            tracker.process_frame(first_frame)
        result = tracker.process(source, max_frames=args.max_frames)
    except (VideoSourceError, TemplateSizeError) as exc:
        log.error("run_failed | %s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        if display is not None:
            display.close()

    print(f"{result.frames} frames, {len(result.raw_record)} tips, {len(result.strokes)} strokes")
    if args.output is not None:
        with args.output.open("w", encoding="utf-8") as handle:
            json.dump(result.to_mapping(), handle, indent=2)
    if args.pdf is not None:
        create_pdf(result.strokes, result.ink_trace, output_path=args.pdf)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
