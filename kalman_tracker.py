"""Constant-acceleration Kalman filter for the pen patch position."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from stroke_geometry import Point, PointLike, as_xy, inverse_2x2
from tracker_config import KalmanConfig

log = logging.getLogger("stroke_tracker.kalman")

# only x and y are observed
MEASUREMENT = np.array([[1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0]])


@dataclass(frozen=True)
class KalmanState:
    state: np.ndarray  # (x, y, vx, vy)
    covariance: np.ndarray  # 4x4

    @property
    def position(self) -> Tuple[float, float]:
        return float(self.state[0]), float(self.state[1])

    @property
    def velocity(self) -> Tuple[float, float]:
        return float(self.state[2]), float(self.state[3])


class KalmanTracker:
    """Predict/correct cycle over (x, y, vx, vy).

    ``predict`` must be called once before every ``correct``.  Each call
    replaces the cached state rather than updating it in place.
    """

    def __init__(self, initial: PointLike, config: Optional[KalmanConfig] = None) -> None:
        self.config = config or KalmanConfig()
        dt = self.config.timestep
        self.transition = np.array(
            [
                [1.0, 0.0, dt, 0.0],
                [0.0, 1.0, 0.0, dt],
                [0.0, 0.0, 1.0, 0.0],
                [0.0, 0.0, 0.0, 1.0],
            ]
        )
        self.control = np.array([dt ** 2 / 2.0, dt ** 2 / 2.0, dt, dt]) * self.config.acceleration
        self.process_noise = self.config.accel_noise_mag ** 2 * np.array(
            [
                [dt ** 4 / 4.0, 0.0, dt ** 3 / 2.0, 0.0],
                [0.0, dt ** 4 / 4.0, 0.0, dt ** 3 / 2.0],
                [dt ** 3 / 2.0, 0.0, dt ** 2, 0.0],
                [0.0, dt ** 3 / 2.0, 0.0, dt ** 2],
            ]
        )
        self.measurement_noise = np.diag(self.config.measurement_noise)
        x, y = as_xy(initial)
        self.corrected = KalmanState(np.array([x, y, 0.0, 0.0]), self.process_noise.copy())
        self.predicted: Optional[KalmanState] = None

    def predict(self) -> Point:
        q = self.transition @ self.corrected.state + self.control
        p = self.transition @ self.corrected.covariance @ self.transition.T + self.process_noise
        self.predicted = KalmanState(q, p)
        return Point.rounded(q[0], q[1])

    def correct(self, measurement: PointLike) -> KalmanState:
        if self.predicted is None:
            raise RuntimeError("predict() must be called before correct()")
        q, p = self.predicted.state, self.predicted.covariance
        innovation_cov = MEASUREMENT @ p @ MEASUREMENT.T + self.measurement_noise
        gain = p @ MEASUREMENT.T @ inverse_2x2(innovation_cov)
        z = np.array(as_xy(measurement))
        q = q + gain @ (z - MEASUREMENT @ q)
        p = (np.eye(4) - gain @ MEASUREMENT) @ p
        self.corrected = KalmanState(q, p)
        self.predicted = None
        log.debug("kalman_correct | z=%s | pos=(%.2f, %.2f)", z.tolist(), q[0], q[1])
        return self.corrected

    @property
    def position(self) -> Point:
        return Point.rounded(*self.corrected.position)
