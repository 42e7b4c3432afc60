"""Tests for per-frame gaze estimation from synthetic face landmarks."""

import numpy as np
import pytest

from vision.gaze_estimator import GazeEstimator
from vision.landmark_engine import LandmarkFrame


def _landmarks(face_width=0.4, iris_dx=0.0, iris_dy=0.0, eyelid_gap=0.03, nose=(0.5, 0.5)):
    """478-point mesh with both eyes 0.1 wide and the irises centred."""
    pts = np.full((478, 3), 0.5, dtype=np.float64)
    pts[234, 0] = 0.5 - face_width / 2
    pts[454, 0] = 0.5 + face_width / 2
    pts[1, :2] = nose

    for outer, inner, top, bottom, iris, cx in (
        (33, 133, 159, 145, range(469, 473), 0.35),
        (263, 362, 386, 374, range(474, 478), 0.65),
    ):
        pts[outer, :2] = (cx - 0.05 if cx < 0.5 else cx + 0.05, 0.4)
        pts[inner, :2] = (cx + 0.05 if cx < 0.5 else cx - 0.05, 0.4)
        pts[top, 1] = 0.4 - eyelid_gap / 2
        pts[bottom, 1] = 0.4 + eyelid_gap / 2
        for i in iris:
            pts[i, :2] = (cx + iris_dx, 0.4 + iris_dy)
    return pts


class _FakeEngine:
    def __init__(self, points=None):
        self.points = points
        self.calls = 0

    def detect(self, frame_rgb, timeout_s=0.5):
        self.calls += 1
        if self.points is None:
            return None
        return LandmarkFrame(timestamp_ms=self.calls, points=self.points)


def test_centred_iris():
    est = GazeEstimator().estimate(_landmarks(), 0.0)
    assert est is not None
    assert est.gaze == pytest.approx((50.0, 50.0))
    assert est.vergence_x == pytest.approx(0.0)
    assert est.confidence == 1.0
    assert not est.is_blinking
    assert not est.too_far
    assert est.face_width == pytest.approx(0.4)
    assert est.head == (0.5, 0.5)


def test_iris_offset_moves_gaze():
    est = GazeEstimator().estimate(_landmarks(iris_dx=0.02, iris_dy=-0.01), 0.0)
    assert est.left.x == pytest.approx(70.0)
    assert est.right.x == pytest.approx(70.0)
    assert est.gaze[1] == pytest.approx(40.0)


def test_output_is_smoothed():
    estimator = GazeEstimator()
    estimator.estimate(_landmarks(), 0.0)
    est = estimator.estimate(_landmarks(iris_dx=0.02), 33.0)
    assert 50.0 < est.gaze[0] < 70.0


def test_blink_zeroes_confidence_and_freezes_filters():
    estimator = GazeEstimator()
    estimator.estimate(_landmarks(), 0.0)
    est = estimator.estimate(_landmarks(iris_dx=0.03, eyelid_gap=0.001), 33.0)
    assert est.is_blinking
    assert est.confidence == 0.0
    assert est.gaze == pytest.approx((50.0, 50.0))


def test_small_face_is_down_weighted():
    est = GazeEstimator().estimate(_landmarks(face_width=0.1), 0.0)
    assert est.too_far
    assert est.confidence == pytest.approx(0.1)


@pytest.mark.parametrize(
    "points",
    [
        np.zeros((100, 3)),
        np.zeros(478),
        np.full((478, 3), np.nan),
    ],
)
def test_invalid_landmarks_return_none(points):
    assert GazeEstimator().estimate(points, 0.0) is None


def test_degenerate_eye_returns_none():
    pts = _landmarks()
    pts[133, 0] = pts[33, 0]
    assert GazeEstimator().estimate(pts, 0.0) is None


def test_noise_follows_face_width():
    estimator = GazeEstimator(base_process_noise=0.03, base_measurement_noise=0.8)
    estimator.estimate(_landmarks(face_width=0.3), 0.0)
    assert estimator.noise == pytest.approx((0.03, 0.8))

    closer = GazeEstimator(base_process_noise=0.03, base_measurement_noise=0.8)
    closer.estimate(_landmarks(face_width=0.6), 0.0)
    q, r = closer.noise
    assert q == pytest.approx(0.06)
    assert r == pytest.approx(0.4)


def test_noise_is_clamped():
    estimator = GazeEstimator(base_process_noise=0.03, base_measurement_noise=0.8)
    estimator.estimate(_landmarks(face_width=0.01), 0.0)
    q, r = estimator.noise
    assert q == pytest.approx(0.003)
    assert r == pytest.approx(8.0)


def test_frame_rate_estimate():
    estimator = GazeEstimator()
    for i in range(60):
        estimator.estimate(_landmarks(), i * 1000.0 / 60.0)
    assert estimator.frame_rate == pytest.approx(60.0, rel=0.01)


def test_track_converts_frame_and_detects():
    engine = _FakeEngine(_landmarks())
    estimator = GazeEstimator(engine)
    frame = np.zeros((8, 8, 3), dtype=np.uint8)
    est = estimator.track(frame, 10.0)
    assert engine.calls == 1
    assert est is not None
    assert est.time_ms == 10.0


def test_track_without_face():
    estimator = GazeEstimator(_FakeEngine(None))
    assert estimator.track(np.zeros((8, 8, 3), dtype=np.uint8), 0.0) is None


def test_track_requires_engine():
    with pytest.raises(RuntimeError):
        GazeEstimator().track(np.zeros((8, 8, 3), dtype=np.uint8), 0.0)


def test_trackers_own_their_filters():
    engine = _FakeEngine(_landmarks())
    a = GazeEstimator(engine)
    b = GazeEstimator(engine)
    a.estimate(_landmarks(), 0.0)
    a.estimate(_landmarks(iris_dx=0.02), 33.0)
    est_b = b.estimate(_landmarks(iris_dx=0.02), 33.0)
    assert est_b.gaze[0] == pytest.approx(70.0)


def test_reset():
    estimator = GazeEstimator()
    estimator.estimate(_landmarks(), 0.0)
    estimator.reset()
    est = estimator.estimate(_landmarks(iris_dx=0.02), 10.0)
    assert est.gaze[0] == pytest.approx(70.0)
