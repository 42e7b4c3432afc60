"""Per-frame gaze estimation from face landmarks.

Turns landmark geometry into a distance-invariant eye-position pair,
a blink flag, a head-pose proxy and a confidence, smoothing each eye with
its own Kalman filter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from domain.kalman import AdaptiveKalmanFilter2D
from domain.models import Point
from vision.landmark_engine import DEFAULT_TIMEOUT_S, LandmarkEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _EyeIndices:
    iris: tuple[int, ...]
    outer: int
    inner: int
    top: int
    bottom: int


# MediaPipe FaceMesh indices (478-point model with iris refinement)
_RIGHT_EYE = _EyeIndices(iris=(469, 470, 471, 472), outer=33, inner=133, top=159, bottom=145)
_LEFT_EYE = _EyeIndices(iris=(474, 475, 476, 477), outer=263, inner=362, top=386, bottom=374)
_NOSE_TIP = 1
_FACE_LEFT_EDGE = 234
_FACE_RIGHT_EDGE = 454
_MIN_LANDMARKS = 478

GAZE_SCALE = 100.0              # iris-relative ratio -> gaze units
BLINK_GAP_RATIO = 0.018         # eyelid gap below this fraction of face width
MIN_FACE_WIDTH = 0.15           # smaller faces are geometrically unreliable
FAR_CONFIDENCE_FACTOR = 0.1
REFERENCE_FACE_WIDTH = 0.30
REFERENCE_FPS = 30.0


@dataclass(frozen=True)
class GazeEstimate:
    """Smoothed per-frame output of :class:`GazeEstimator`."""

    time_ms: float
    left: Point                 # gaze units
    right: Point
    is_blinking: bool
    confidence: float
    face_width: float           # distance proxy, normalised frame width
    nose: Point                 # head-pose proxy, normalised frame coords
    too_far: bool = False

    @property
    def gaze(self) -> tuple[float, float]:
        return (self.left.x + self.right.x) / 2.0, (self.left.y + self.right.y) / 2.0

    @property
    def head(self) -> tuple[float, float]:
        return self.nose.x, self.nose.y

    @property
    def vergence_x(self) -> float:
        return self.left.x - self.right.x


def _eye_position(pts: np.ndarray, eye: _EyeIndices) -> Optional[tuple[tuple[float, float], float]]:
    """Iris position relative to the eye corners, plus the eyelid gap."""
    iris = pts[list(eye.iris), :2].mean(axis=0)
    outer, inner = pts[eye.outer, :2], pts[eye.inner, :2]
    width = abs(outer[0] - inner[0])
    if width < 1e-6:
        return None
    x_min = min(outer[0], inner[0])
    mid_y = (outer[1] + inner[1]) / 2.0
    rel_x = (iris[0] - x_min) / width
    rel_y = (iris[1] - mid_y) / width + 0.5
    gap = abs(pts[eye.top, 1] - pts[eye.bottom, 1])
    return (float(rel_x * GAZE_SCALE), float(rel_y * GAZE_SCALE)), float(gap)


class GazeEstimator:
    """One logical tracker.

    Owns its pair of Kalman filters exclusively; the landmark engine it uses
    may be shared with other trackers.  Not thread-safe: feed it from one
    caller, one frame at a time.
    """

    def __init__(
        self,
        engine: Optional[LandmarkEngine] = None,
        *,
        detect_timeout_s: float = DEFAULT_TIMEOUT_S,
        base_process_noise: float = 0.03,
        base_measurement_noise: float = 0.8,
        blink_gap_ratio: float = BLINK_GAP_RATIO,
        min_face_width: float = MIN_FACE_WIDTH,
    ) -> None:
        self._engine = engine
        self.detect_timeout_s = detect_timeout_s
        self.base_process_noise = base_process_noise
        self.base_measurement_noise = base_measurement_noise
        self.blink_gap_ratio = blink_gap_ratio
        self.min_face_width = min_face_width

        self._left = AdaptiveKalmanFilter2D(base_process_noise, base_measurement_noise)
        self._right = AdaptiveKalmanFilter2D(base_process_noise, base_measurement_noise)
        self._last_time_ms: Optional[float] = None
        self._fps = REFERENCE_FPS

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def track(self, frame_bgr: np.ndarray, time_ms: float) -> Optional[GazeEstimate]:
        """Run detection on a camera frame; ``None`` if nothing usable came back."""
        if self._engine is None:
            raise RuntimeError("GazeEstimator.track() needs a LandmarkEngine.")
        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        landmarks = self._engine.detect(frame_rgb, self.detect_timeout_s)
        if landmarks is None:
            return None
        return self.estimate(landmarks.points, time_ms)

    def estimate(self, points: np.ndarray, time_ms: float) -> Optional[GazeEstimate]:
        """Estimate gaze from raw landmarks; ``None`` on invalid geometry."""
        pts = np.asarray(points, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[0] < _MIN_LANDMARKS or pts.shape[1] < 2:
            logger.debug("Rejected landmark array of shape %s", pts.shape)
            return None
        if not np.isfinite(pts[:, :2]).all():
            logger.debug("Rejected landmarks with non-finite coordinates")
            return None

        face_width = float(abs(pts[_FACE_RIGHT_EDGE, 0] - pts[_FACE_LEFT_EDGE, 0]))
        left = _eye_position(pts, _LEFT_EYE)
        right = _eye_position(pts, _RIGHT_EYE)
        if face_width < 1e-6 or left is None or right is None:
            return None
        (left_raw, left_gap), (right_raw, right_gap) = left, right

        self._update_frame_rate(time_ms)
        self._retune(face_width)

        is_blinking = (left_gap + right_gap) / 2.0 < self.blink_gap_ratio * face_width
        if not is_blinking:
            for kf, measurement in ((self._left, left_raw), (self._right, right_raw)):
                kf.predict()
                kf.update(measurement)

        too_far = face_width < self.min_face_width
        confidence = 0.0 if is_blinking else 1.0
        if too_far:
            confidence *= FAR_CONFIDENCE_FACTOR

        return GazeEstimate(
            time_ms=float(time_ms),
            left=self._smoothed(self._left, left_raw),
            right=self._smoothed(self._right, right_raw),
            is_blinking=is_blinking,
            confidence=confidence,
            face_width=face_width,
            nose=Point(float(pts[_NOSE_TIP, 0]), float(pts[_NOSE_TIP, 1])),
            too_far=too_far,
        )

    def reset(self) -> None:
        self._left.reset()
        self._right.reset()
        self._last_time_ms = None
        self._fps = REFERENCE_FPS

    @property
    def frame_rate(self) -> float:
        return self._fps

    @property
    def noise(self) -> tuple[float, float]:
        return self._left.process_noise, self._left.measurement_noise

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    @staticmethod
    def _smoothed(kf: AdaptiveKalmanFilter2D, raw: tuple[float, float]) -> Point:
        if not kf.is_initialized:
            return Point(*raw)
        return Point(*kf.get_point())

    def _update_frame_rate(self, time_ms: float) -> None:
        if self._last_time_ms is not None:
            dt = time_ms - self._last_time_ms
            if dt > 0:
                inst = 1000.0 / dt
                self._fps = float(np.clip(0.8 * self._fps + 0.2 * inst, 5.0, 120.0))
        self._last_time_ms = time_ms

    def _retune(self, face_width: float) -> None:
        # Closer faces and faster cameras: follow the measurement more.
        q = self.base_process_noise * (face_width / REFERENCE_FACE_WIDTH) * (self._fps / REFERENCE_FPS)
        r = self.base_measurement_noise * (REFERENCE_FACE_WIDTH / face_width)
        q = float(np.clip(q, self.base_process_noise * 0.1, self.base_process_noise * 10.0))
        r = float(np.clip(r, self.base_measurement_noise * 0.1, self.base_measurement_noise * 10.0))
        self._left.set_noise(q, r)
        self._right.set_noise(q, r)
        logger.debug("Kalman retuned: Q=%.4f R=%.4f (face=%.3f fps=%.1f)", q, r, face_width, self._fps)
