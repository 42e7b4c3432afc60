"""Tests for blink buffering and velocity derivation."""

import math

import pytest

from domain.kinematics import compute_velocities, preprocess_blinks
from domain.models import GazeSample


def _sample(t: float, x: float = 50.0, y: float = 50.0, **kw) -> GazeSample:
    return GazeSample(time=t, x=x, y=y, **kw)


def test_too_few_samples():
    assert compute_velocities([_sample(0), _sample(10)]) == []


def test_constant_motion_velocity():
    # 0.1 units per ms = 100 units/s
    samples = [_sample(t, x=0.1 * t) for t in (0.0, 10.0, 20.0, 30.0, 40.0)]
    vels = compute_velocities(samples)
    assert len(vels) == 5
    for v in vels:
        assert v.vx == pytest.approx(100.0)
        assert v.vy == pytest.approx(0.0)


def test_uses_real_elapsed_time():
    # A dropped frame doubles the interval; velocity must not double.
    samples = [_sample(t, x=0.05 * t) for t in (0.0, 10.0, 30.0, 40.0)]
    for v in compute_velocities(samples):
        assert v.vx == pytest.approx(50.0)


def test_speed_is_magnitude():
    samples = [_sample(t, x=0.03 * t, y=-0.04 * t) for t in (0.0, 10.0, 20.0)]
    for v in compute_velocities(samples):
        assert v.speed >= 0.0
        assert v.speed == pytest.approx(math.sqrt(v.vx ** 2 + v.vy ** 2))
        assert v.speed == pytest.approx(50.0)


def test_skips_non_positive_dt():
    samples = [_sample(0.0), _sample(10.0), _sample(10.0), _sample(10.0)]
    vels = compute_velocities(samples)
    assert [v.time for v in vels] == [0.0, 10.0]


def test_head_motion_is_subtracted():
    # Head drifts 0.001 frame units/ms -> 0.1 gaze units/ms, same as the eye.
    samples = [
        _sample(t, x=50.0 + 0.1 * t, head_x=0.5 + 0.001 * t, head_y=0.5)
        for t in (0.0, 10.0, 20.0, 30.0)
    ]
    for v in compute_velocities(samples):
        assert v.vx == pytest.approx(0.0, abs=1e-6)


def test_head_compensation_needs_both_endpoints():
    samples = [
        _sample(0.0, x=0.0, head_x=0.5, head_y=0.5),
        _sample(10.0, x=1.0),
        _sample(20.0, x=2.0, head_x=0.6, head_y=0.5),
    ]
    vels = compute_velocities(samples)
    # first step has no head at its far end
    assert vels[0].vx == pytest.approx(100.0)
    # the central step spans two head readings: 0.1 * 100 / 0.02 s
    assert vels[1].vx == pytest.approx(100.0 - 500.0)


def test_blink_buffer_flags_neighbours():
    samples = [_sample(float(t), is_blinking=(t == 200)) for t in range(0, 420, 20)]
    out = preprocess_blinks(samples, buffer_ms=100.0)
    flagged = [s.time for s in out if s.is_blinking]
    assert flagged == [100.0, 120.0, 140.0, 160.0, 180.0, 200.0,
                       220.0, 240.0, 260.0, 280.0, 300.0]
    assert [s.time for s in out] == [s.time for s in samples]


def test_blink_buffer_without_blinks_is_identity():
    samples = [_sample(float(t)) for t in range(0, 100, 10)]
    assert preprocess_blinks(samples) == samples
