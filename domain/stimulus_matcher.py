"""Align detected saccades with stimulus onsets."""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

from domain.calibration import CalibrationModel, IdentityCalibration
from domain.models import GazeSample, MatchedResponse, Saccade, StimulusEvent

logger = logging.getLogger(__name__)

LATENCY_WINDOW_MS = (80.0, 800.0)
MIN_TARGET_JUMP = 10.0        # screen %
MIN_JUMP_INTERVAL_MS = 500.0


def match_saccades_to_stimuli(
    saccades: Sequence[Saccade],
    stimuli: Sequence[StimulusEvent],
    latency_window_ms: tuple[float, float] = LATENCY_WINDOW_MS,
    calibration: Optional[CalibrationModel] = None,
) -> list[MatchedResponse]:
    """For each stimulus, the first saccade starting inside the latency window.

    *saccades* must be ordered by onset.  Gain is the saccade amplitude in
    screen percent (through *calibration*) over the target eccentricity.
    """
    lo, hi = latency_window_ms
    if lo < 0 or hi < lo:
        raise ValueError(f"Invalid latency window {latency_window_ms!r}")
    cal = calibration or IdentityCalibration()

    responses: list[MatchedResponse] = []
    for stim in stimuli:
        matched: Optional[Saccade] = None
        for sac in saccades:
            latency = sac.onset_time - stim.time
            if latency > hi:
                break
            if latency >= lo:
                matched = sac
                break

        if matched is None:
            logger.debug("Stimulus at %.0f ms: no saccade in window", stim.time)
            responses.append(MatchedResponse(stimulus=stim))
            continue

        sx0, sy0 = cal.to_screen(matched.start_pos.x, matched.start_pos.y)
        sx1, sy1 = cal.to_screen(matched.end_pos.x, matched.end_pos.y)
        eccentricity = stim.eccentricity
        gain = math.hypot(sx1 - sx0, sy1 - sy0) / eccentricity if eccentricity > 0 else None

        target_dir = stim.horizontal_direction
        correct = None if target_dir is None else matched.direction == target_dir

        responses.append(
            MatchedResponse(
                stimulus=stim,
                saccade=matched,
                latency=matched.onset_time - stim.time,
                gain=gain,
                is_correct_direction=correct,
            )
        )
    return responses


def stimuli_from_target_track(
    samples: Sequence[GazeSample],
    min_jump: float = MIN_TARGET_JUMP,
    min_interval_ms: float = MIN_JUMP_INTERVAL_MS,
) -> list[StimulusEvent]:
    """Derive target-jump events from the target position carried by samples.

    Used when the protocol runner did not supply an explicit schedule.  Only
    horizontal jumps become events; a target disappearing (the go cue of a
    memory-guided trial) does not, so such runs need an explicit schedule.
    """
    events: list[StimulusEvent] = []
    if not samples:
        return events

    ref_x, ref_y = samples[0].target_x, samples[0].target_y
    last_jump = -math.inf
    hides = 0
    prev_visible = samples[0].target_visible
    for s in samples[1:]:
        if prev_visible and not s.target_visible:
            hides += 1
        prev_visible = s.target_visible
        if abs(s.target_x - ref_x) > min_jump and s.time - last_jump > min_interval_ms:
            events.append(StimulusEvent(s.time, ref_x, ref_y, s.target_x, s.target_y))
            ref_x, ref_y = s.target_x, s.target_y
            last_jump = s.time
    if hides:
        logger.warning(
            "Target disappeared %d time(s); inferred schedule ignores disappearance cues",
            hides,
        )
    logger.debug("Derived %d stimulus events from target track", len(events))
    return events
