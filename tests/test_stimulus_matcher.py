"""Tests for saccade-to-stimulus matching and target-track inference."""

import pytest

from domain.calibration import LinearCalibration
from domain.models import Direction, GazeSample, Point, Saccade, StimulusEvent
from domain.stimulus_matcher import match_saccades_to_stimuli, stimuli_from_target_track

_STEP = {
    Direction.RIGHT: (1.0, 0.0),
    Direction.LEFT: (-1.0, 0.0),
    Direction.UP: (0.0, -1.0),
    Direction.DOWN: (0.0, 1.0),
}


def _sac(onset: float, amplitude: float = 10.0, direction=Direction.RIGHT, start=(50.0, 50.0)):
    ux, uy = _STEP[direction]
    end = (start[0] + ux * amplitude, start[1] + uy * amplitude)
    return Saccade(
        onset_time=onset,
        offset_time=onset + 40.0,
        onset_idx=0,
        offset_idx=4,
        peak_velocity=300.0,
        amplitude=amplitude,
        direction=direction,
        start_pos=Point(*start),
        end_pos=Point(*end),
    )


def _stim(t: float, to_x: float = 60.0, to_y: float = 50.0) -> StimulusEvent:
    return StimulusEvent(time=t, from_x=50.0, from_y=50.0, to_x=to_x, to_y=to_y)


def test_unmatched_stimulus_has_null_fields():
    (r,) = match_saccades_to_stimuli([_sac(2000.0)], [_stim(0.0)])
    assert not r.matched
    assert r.saccade is None
    assert r.latency is None
    assert r.gain is None
    assert r.is_correct_direction is None


def test_first_saccade_inside_window():
    saccades = [_sac(1000.0), _sac(1050.0), _sac(1300.0), _sac(1500.0)]
    (r,) = match_saccades_to_stimuli(saccades, [_stim(1000.0)])
    # 0 ms and 50 ms are anticipations, below the 80 ms floor
    assert r.saccade is saccades[2]
    assert r.latency == pytest.approx(300.0)


def test_window_bounds_are_inclusive():
    (lo,) = match_saccades_to_stimuli([_sac(80.0)], [_stim(0.0)])
    (hi,) = match_saccades_to_stimuli([_sac(800.0)], [_stim(0.0)])
    assert lo.latency == pytest.approx(80.0)
    assert hi.latency == pytest.approx(800.0)


def test_gain_and_direction():
    (r,) = match_saccades_to_stimuli([_sac(200.0, amplitude=8.0)], [_stim(0.0)])
    assert r.gain == pytest.approx(0.8)
    assert r.is_correct_direction is True


def test_wrong_direction():
    (r,) = match_saccades_to_stimuli([_sac(200.0, direction=Direction.LEFT)], [_stim(0.0)])
    assert r.is_correct_direction is False


def test_vertical_stimulus_has_no_direction_verdict():
    (r,) = match_saccades_to_stimuli([_sac(200.0)], [_stim(0.0, to_x=50.0, to_y=70.0)])
    assert r.matched
    assert r.is_correct_direction is None


def test_zero_eccentricity_has_no_gain():
    (r,) = match_saccades_to_stimuli([_sac(200.0)], [_stim(0.0, to_x=50.0, to_y=50.0)])
    assert r.matched
    assert r.gain is None


def test_gain_uses_calibration():
    cal = LinearCalibration(center_x=50.0, center_y=50.0, scale_x=8.0, scale_y=8.0)
    # 1.25 gaze units * 8 = 10 screen % for a 10 % target jump
    (r,) = match_saccades_to_stimuli([_sac(200.0, amplitude=1.25)], [_stim(0.0)], calibration=cal)
    assert r.gain == pytest.approx(1.0)


def test_each_stimulus_gets_one_response():
    stimuli = [_stim(0.0), _stim(1000.0), _stim(2000.0)]
    responses = match_saccades_to_stimuli([_sac(250.0), _sac(2400.0)], stimuli)
    assert [r.matched for r in responses] == [True, False, True]
    assert [r.stimulus for r in responses] == stimuli


def test_invalid_window():
    with pytest.raises(ValueError):
        match_saccades_to_stimuli([], [_stim(0.0)], latency_window_ms=(500.0, 100.0))


# ── Target-track inference ────────────────────────────────────────────────────

def _tracked(t: float, target_x: float) -> GazeSample:
    return GazeSample(time=t, x=50.0, y=50.0, target_x=target_x, target_y=50.0)


def test_stimuli_from_target_jumps():
    samples = []
    for t in range(0, 2100, 100):
        target = 50.0 if t < 1000 else (70.0 if t < 1200 else 50.0)
        samples.append(_tracked(float(t), target))

    events = stimuli_from_target_track(samples)
    # the return jump at 1200 ms is too soon after the first
    assert [e.time for e in events] == [1000.0, 1600.0]
    assert (events[0].from_x, events[0].to_x) == (50.0, 70.0)
    assert (events[1].from_x, events[1].to_x) == (70.0, 50.0)


def test_small_target_moves_are_ignored():
    samples = [_tracked(float(t), 50.0 + (5.0 if t >= 600 else 0.0)) for t in range(0, 1500, 100)]
    assert stimuli_from_target_track(samples) == []


def test_stimuli_from_empty_track():
    assert stimuli_from_target_track([]) == []


def test_target_disappearance_is_not_inferred_as_a_cue(caplog):
    samples = [
        GazeSample(time=float(t), x=50.0, y=50.0, target_x=70.0, target_visible=t < 600)
        for t in range(0, 1500, 100)
    ]
    with caplog.at_level("WARNING", logger="domain.stimulus_matcher"):
        assert stimuli_from_target_track(samples) == []
    assert "disappeared 1 time" in caplog.text
