"""Configuration models for the stroke tracker.

Every tunable of the pipeline lives here.  The defaults are the empirically
tuned values the tracker ships with; they are not guaranteed to generalise to
other cameras or boards, which is why they are loaded from ``config.json``
when one exists.
"""
from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

CONFIG_FILE = Path("config.json")


def _as_tuple(values: Iterable[float]) -> Tuple[float, ...]:
    return tuple(float(v) for v in values)


@dataclass
class KalmanConfig:
    timestep: float = 1.0
    acceleration: float = 0.5
    accel_noise_mag: float = 1.5
    measurement_noise: Tuple[float, float] = (1.0, 1.0)

    @staticmethod
    def from_mapping(data: Dict[str, object]) -> "KalmanConfig":
        return KalmanConfig(
            timestep=float(data.get("timestep", 1.0)),
            acceleration=float(data.get("acceleration", 0.5)),
            accel_noise_mag=float(data.get("accel_noise_mag", 1.5)),
            measurement_noise=_as_tuple(data.get("measurement_noise", (1.0, 1.0))),
        )

    def to_mapping(self) -> Dict[str, object]:
        return {
            "timestep": self.timestep,
            "acceleration": self.acceleration,
            "accel_noise_mag": self.accel_noise_mag,
            "measurement_noise": list(self.measurement_noise),
        }


@dataclass
class RegistrationConfig:
    window_size: int = 100
    white_threshold: float = 252.0
    dark_pixel_level: int = 80
    dark_fraction: float = 0.20
    text_threshold: float = 1.5
    canny_low: int = 75
    canny_high: int = 150
    text_zone_min: int = 3
    feature_point_min: int = 3
    transform_error_max: float = 1.0
    translation_search_px: int = 25
    max_tracking_points: int = 100
    tracking_quality: float = 0.2
    tracking_spacing_px: int = 20
    boundary_fraction: float = 0.05
    trim_px: int = 10

    @staticmethod
    def from_mapping(data: Dict[str, object]) -> "RegistrationConfig":
        return RegistrationConfig(
            window_size=int(data.get("window_size", 100)),
            white_threshold=float(data.get("white_threshold", 252.0)),
            dark_pixel_level=int(data.get("dark_pixel_level", 80)),
            dark_fraction=float(data.get("dark_fraction", 0.20)),
            text_threshold=float(data.get("text_threshold", 1.5)),
            canny_low=int(data.get("canny_low", 75)),
            canny_high=int(data.get("canny_high", 150)),
            text_zone_min=int(data.get("text_zone_min", 3)),
            feature_point_min=int(data.get("feature_point_min", 3)),
            transform_error_max=float(data.get("transform_error_max", 1.0)),
            translation_search_px=int(data.get("translation_search_px", 25)),
            max_tracking_points=int(data.get("max_tracking_points", 100)),
            tracking_quality=float(data.get("tracking_quality", 0.2)),
            tracking_spacing_px=int(data.get("tracking_spacing_px", 20)),
            boundary_fraction=float(data.get("boundary_fraction", 0.05)),
            trim_px=int(data.get("trim_px", 10)),
        )

    def to_mapping(self) -> Dict[str, object]:
        return dataclasses.asdict(self)


@dataclass
class TemplateConfig:
    search_margin_px: int = 20
    fitness_threshold: float = 0.98
    pyramid_levels: int = 3
    pyramid_margin_px: int = 75
    sharpen_sigma: float = 2.0
    sharpen_amount: float = 0.5

    @staticmethod
    def from_mapping(data: Dict[str, object]) -> "TemplateConfig":
        return TemplateConfig(
            search_margin_px=int(data.get("search_margin_px", 20)),
            fitness_threshold=float(data.get("fitness_threshold", 0.98)),
            pyramid_levels=int(data.get("pyramid_levels", 3)),
            pyramid_margin_px=int(data.get("pyramid_margin_px", 75)),
            sharpen_sigma=float(data.get("sharpen_sigma", 2.0)),
            sharpen_amount=float(data.get("sharpen_amount", 0.5)),
        )

    def to_mapping(self) -> Dict[str, object]:
        return dataclasses.asdict(self)


@dataclass
class BallpointConfig:
    # (left, top, right, bottom) in patch coordinates; None derives it from the template size
    valid_zone: Optional[Tuple[int, int, int, int]] = None
    valid_zone_margin_px: int = 10
    sharpen_sigma: float = 5.0
    sharpen_amount: float = 0.5
    canny_low: int = 125
    canny_high: int = 250
    min_contour_length: float = 15.0
    thicken_kernel: int = 3
    hough_threshold: int = 10
    max_lines: int = 20
    snap_radius: int = 10

    def zone_for(self, template_shape: Tuple[int, ...]) -> Tuple[int, int, int, int]:
        if self.valid_zone is not None:
            return self.valid_zone
        height, width = template_shape[0], template_shape[1]
        margin = self.valid_zone_margin_px
        return (-margin, -margin, width // 2, height // 2)

    @staticmethod
    def from_mapping(data: Dict[str, object]) -> "BallpointConfig":
        zone = data.get("valid_zone")
        return BallpointConfig(
            valid_zone=tuple(int(v) for v in zone) if zone is not None else None,
            valid_zone_margin_px=int(data.get("valid_zone_margin_px", 10)),
            sharpen_sigma=float(data.get("sharpen_sigma", 5.0)),
            sharpen_amount=float(data.get("sharpen_amount", 0.5)),
            canny_low=int(data.get("canny_low", 125)),
            canny_high=int(data.get("canny_high", 250)),
            min_contour_length=float(data.get("min_contour_length", 15.0)),
            thicken_kernel=int(data.get("thicken_kernel", 3)),
            hough_threshold=int(data.get("hough_threshold", 10)),
            max_lines=int(data.get("max_lines", 20)),
            snap_radius=int(data.get("snap_radius", 10)),
        )

    def to_mapping(self) -> Dict[str, object]:
        mapping = dataclasses.asdict(self)
        mapping["valid_zone"] = list(self.valid_zone) if self.valid_zone is not None else None
        return mapping


@dataclass
class TrajectoryConfig:
    movement_threshold_px: float = 20.0
    lookahead: int = 10
    smoothing_weights: Tuple[float, float, float] = (1.0, 2.0, 1.0)
    resample_step_px: float = 2.0

    @staticmethod
    def from_mapping(data: Dict[str, object]) -> "TrajectoryConfig":
        return TrajectoryConfig(
            movement_threshold_px=float(data.get("movement_threshold_px", 20.0)),
            lookahead=int(data.get("lookahead", 10)),
            smoothing_weights=_as_tuple(data.get("smoothing_weights", (1.0, 2.0, 1.0))),
            resample_step_px=float(data.get("resample_step_px", 2.0)),
        )

    def to_mapping(self) -> Dict[str, object]:
        return {
            "movement_threshold_px": self.movement_threshold_px,
            "lookahead": self.lookahead,
            "smoothing_weights": list(self.smoothing_weights),
            "resample_step_px": self.resample_step_px,
        }


@dataclass
class InkTraceConfig:
    blur_kernel: int = 3
    block_size: int = 3
    offset: float = 2.0
    dilate_kernel: int = 1
    erode_kernel: int = 15
    border_value: int = 245

    @staticmethod
    def from_mapping(data: Dict[str, object]) -> "InkTraceConfig":
        return InkTraceConfig(
            blur_kernel=int(data.get("blur_kernel", 3)),
            block_size=int(data.get("block_size", 3)),
            offset=float(data.get("offset", 2.0)),
            dilate_kernel=int(data.get("dilate_kernel", 1)),
            erode_kernel=int(data.get("erode_kernel", 15)),
            border_value=int(data.get("border_value", 245)),
        )

    def to_mapping(self) -> Dict[str, object]:
        return dataclasses.asdict(self)


@dataclass
class SegmentationConfig:
    crop_padding_px: int = 5
    probe_thickness: int = 1
    pen_down_max_difference: float = 0.5
    min_stroke_substrokes: int = 3
    split_by_direction: bool = False
    direction_change_deg: float = 160.0
    redundancy_threshold: float = 70000.0
    render_thickness: int = 5
    redundancy_erode_kernel: int = 11
    character_gap_px: float = 5.0
    simplify_epsilon: float = 0.0

    @staticmethod
    def from_mapping(data: Dict[str, object]) -> "SegmentationConfig":
        return SegmentationConfig(
            crop_padding_px=int(data.get("crop_padding_px", 5)),
            probe_thickness=int(data.get("probe_thickness", 1)),
            pen_down_max_difference=float(data.get("pen_down_max_difference", 0.5)),
            min_stroke_substrokes=int(data.get("min_stroke_substrokes", 3)),
            split_by_direction=bool(data.get("split_by_direction", False)),
            direction_change_deg=float(data.get("direction_change_deg", 160.0)),
            redundancy_threshold=float(data.get("redundancy_threshold", 70000.0)),
            render_thickness=int(data.get("render_thickness", 5)),
            redundancy_erode_kernel=int(data.get("redundancy_erode_kernel", 11)),
            character_gap_px=float(data.get("character_gap_px", 5.0)),
            simplify_epsilon=float(data.get("simplify_epsilon", 0.0)),
        )

    def to_mapping(self) -> Dict[str, object]:
        return dataclasses.asdict(self)


@dataclass
class AppConfig:
    kalman: KalmanConfig = field(default_factory=KalmanConfig)
    registration: RegistrationConfig = field(default_factory=RegistrationConfig)
    template: TemplateConfig = field(default_factory=TemplateConfig)
    ballpoint: BallpointConfig = field(default_factory=BallpointConfig)
    trajectory: TrajectoryConfig = field(default_factory=TrajectoryConfig)
    ink_trace: InkTraceConfig = field(default_factory=InkTraceConfig)
    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)

    @staticmethod
    def from_mapping(data: Dict[str, object]) -> "AppConfig":
        return AppConfig(
            kalman=KalmanConfig.from_mapping(data.get("kalman", {})),
            registration=RegistrationConfig.from_mapping(data.get("registration", {})),
            template=TemplateConfig.from_mapping(data.get("template", {})),
            ballpoint=BallpointConfig.from_mapping(data.get("ballpoint", {})),
            trajectory=TrajectoryConfig.from_mapping(data.get("trajectory", {})),
            ink_trace=InkTraceConfig.from_mapping(data.get("ink_trace", {})),
            segmentation=SegmentationConfig.from_mapping(data.get("segmentation", {})),
        )

    def to_mapping(self) -> Dict[str, object]:
        return {
            "kalman": self.kalman.to_mapping(),
            "registration": self.registration.to_mapping(),
            "template": self.template.to_mapping(),
            "ballpoint": self.ballpoint.to_mapping(),
            "trajectory": self.trajectory.to_mapping(),
            "ink_trace": self.ink_trace.to_mapping(),
            "segmentation": self.segmentation.to_mapping(),
        }

    @staticmethod
    def load(path: Path) -> "AppConfig":
        if not path.exists():
            return AppConfig()
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        return AppConfig.from_mapping(data)

    def dump(self, path: Path) -> None:
        with path.open("w", encoding="utf-8") as handle:
            json.dump(self.to_mapping(), handle, indent=2)
