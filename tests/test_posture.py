"""Tests for posture feedback."""

from domain.models import Point
from vision.gaze_estimator import GazeEstimate
from vision.posture import PostureMonitor


def _estimate(face_width=0.3, nose=(0.5, 0.5)) -> GazeEstimate:
    return GazeEstimate(
        time_ms=0.0,
        left=Point(50.0, 50.0),
        right=Point(50.0, 50.0),
        is_blinking=False,
        confidence=1.0,
        face_width=face_width,
        nose=Point(*nose),
    )


def test_first_frame_is_the_baseline():
    status = PostureMonitor().update(_estimate())
    assert status.ok
    assert status.message == ""


def test_too_far():
    status = PostureMonitor().update(_estimate(face_width=0.18))
    assert status.too_far
    assert "closer" in status.message


def test_distance_change():
    monitor = PostureMonitor()
    monitor.update(_estimate(face_width=0.30))
    status = monitor.update(_estimate(face_width=0.40))
    assert status.distance_changed
    assert not status.too_far
    assert not status.ok


def test_lateral_drift():
    monitor = PostureMonitor()
    monitor.update(_estimate())
    assert monitor.update(_estimate(nose=(0.55, 0.5))).ok
    assert monitor.update(_estimate(nose=(0.65, 0.5))).drifted


def test_reset_takes_new_baseline():
    monitor = PostureMonitor()
    monitor.update(_estimate(face_width=0.30))
    monitor.reset()
    monitor.update(_estimate(face_width=0.40))
    assert monitor.update(_estimate(face_width=0.42)).ok
