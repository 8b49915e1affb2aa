"""Tests for loading and saving the JSON configuration."""
import json

from tracker_config import (
    AppConfig,
    BallpointConfig,
    KalmanConfig,
    SegmentationConfig,
    TrajectoryConfig,
)


def test_missing_file_gives_defaults(temp_dir):
    assert AppConfig.load(temp_dir / "config.json") == AppConfig()


def test_dump_then_load_keeps_values(temp_dir):
    config = AppConfig(
        kalman=KalmanConfig(acceleration=0.0, measurement_noise=(2.0, 3.0)),
        ballpoint=BallpointConfig(valid_zone=(0, 0, 12, 14), snap_radius=6),
        trajectory=TrajectoryConfig(smoothing_weights=(1.0, 1.0, 1.0), resample_step_px=4.0),
        segmentation=SegmentationConfig(split_by_direction=True),
    )
    path = temp_dir / "config.json"
    config.dump(path)
    assert AppConfig.load(path) == config


def test_partial_file_is_filled_with_defaults(temp_dir):
    path = temp_dir / "config.json"
    path.write_text(json.dumps({"template": {"fitness_threshold": 0.9}, "kalman": {"timestep": 2}}))
    config = AppConfig.load(path)
    assert config.template.fitness_threshold == 0.9
    assert config.template.search_margin_px == 20
    assert config.kalman.timestep == 2.0
    assert config.registration == AppConfig().registration


def test_valid_zone_derived_from_template():
    assert BallpointConfig().zone_for((50, 80)) == (-10, -10, 40, 25)
    assert BallpointConfig(valid_zone=(1, 2, 3, 4)).zone_for((50, 80)) == (1, 2, 3, 4)
