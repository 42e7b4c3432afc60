"""Constant-velocity Kalman filter for per-eye gaze smoothing."""

from __future__ import annotations

import logging

import numpy as np

logger = logging.getLogger(__name__)

_MIN_INNOVATION_VAR = 1e-12


class AdaptiveKalmanFilter2D:
    """2-D position + velocity filter with externally tunable noise.

    State is ``[x, y, vx, vy]``.  The two axes are tracked independently:
    each owns a 2x2 (position, velocity) covariance block and no x/y
    cross-covariance is ever introduced, so the 4x4 covariance stays block
    diagonal under :meth:`predict` and :meth:`update`.

    The first :meth:`update` after construction (or :meth:`reset`) seeds the
    position from the measurement with zero velocity instead of correcting.
    """

    def __init__(self, process_noise: float = 0.03, measurement_noise: float = 0.8) -> None:
        self._q = float(process_noise)
        self._r = float(measurement_noise)
        self._x = np.zeros(4, dtype=np.float64)
        self._P = np.eye(4, dtype=np.float64)
        self._initialized = False

    # ------------------------------------------------------------------
    # Filter steps
    # ------------------------------------------------------------------

    def predict(self, dt: float = 1.0) -> None:
        """Advance the state by *dt* steps (position += velocity)."""
        if not self._initialized:
            return
        F = np.eye(4, dtype=np.float64)
        F[0, 2] = dt
        F[1, 3] = dt
        self._x = F @ self._x
        self._P = F @ self._P @ F.T + self._q * np.eye(4)

    def update(self, measurement: tuple[float, float]) -> None:
        z = np.asarray(measurement, dtype=np.float64)
        if not self._initialized:
            self._x = np.array([z[0], z[1], 0.0, 0.0], dtype=np.float64)
            self._P = np.eye(4, dtype=np.float64)
            self._initialized = True
            return

        for axis in (0, 1):
            idx = np.array([axis, axis + 2])
            block = self._P[np.ix_(idx, idx)]
            s = block[0, 0] + self._r
            if s < _MIN_INNOVATION_VAR:
                logger.debug("Kalman axis %d: degenerate innovation variance, skipped", axis)
                continue
            gain = block[:, 0] / s
            innovation = z[axis] - self._x[axis]
            self._x[idx] = self._x[idx] + gain * innovation
            self._P[np.ix_(idx, idx)] = block - np.outer(gain, block[0, :])

    def set_noise(self, process_noise: float, measurement_noise: float) -> None:
        """Retune Q (trust in the motion model) and R (trust in the input)."""
        self._q = float(process_noise)
        self._r = float(measurement_noise)

    def reset(self) -> None:
        self._x = np.zeros(4, dtype=np.float64)
        self._P = np.eye(4, dtype=np.float64)
        self._initialized = False

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_point(self) -> tuple[float, float]:
        return float(self._x[0]), float(self._x[1])

    def get_velocity(self) -> tuple[float, float]:
        return float(self._x[2]), float(self._x[3])

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def process_noise(self) -> float:
        return self._q

    @property
    def measurement_noise(self) -> float:
        return self._r

    @property
    def covariance(self) -> np.ndarray:
        return self._P.copy()
