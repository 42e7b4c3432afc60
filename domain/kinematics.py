"""Velocity derivation with head-motion compensation."""

from __future__ import annotations

import bisect
import dataclasses
import logging
from typing import Sequence

from domain.models import GazeSample, VelocitySample

logger = logging.getLogger(__name__)

# Head proxy is in normalised frame coordinates (0-1), gaze in 0-100 units.
HEAD_TO_GAZE_SCALE = 100.0
BLINK_BUFFER_MS = 100.0


def preprocess_blinks(
    samples: Sequence[GazeSample], buffer_ms: float = BLINK_BUFFER_MS
) -> list[GazeSample]:
    """Flag every sample within *buffer_ms* of a blink as blinking too.

    Eyelid closure and reopening smear the iris estimate for a few frames on
    either side of the detected blink.
    """
    blink_times = [s.time for s in samples if s.is_blinking]
    if not blink_times:
        return list(samples)

    result: list[GazeSample] = []
    for s in samples:
        if s.is_blinking:
            result.append(s)
            continue
        i = bisect.bisect_left(blink_times, s.time - buffer_ms)
        near = i < len(blink_times) and blink_times[i] <= s.time + buffer_ms
        result.append(dataclasses.replace(s, is_blinking=True) if near else s)
    return result


def compute_velocities(
    samples: Sequence[GazeSample], head_scale: float = HEAD_TO_GAZE_SCALE
) -> list[VelocitySample]:
    """Per-sample gaze velocity in units/s.

    Central differences for interior samples, one-sided at the ends, always
    divided by the real elapsed time.  Head velocity (scaled into gaze units)
    is subtracted from the apparent eye velocity.  Steps with non-positive
    elapsed time produce no output sample.

    Fewer than three samples give an empty list: with no interior sample
    both endpoints would share one difference, which says nothing about
    motion onset.
    """
    n = len(samples)
    if n < 3:
        return []

    result: list[VelocitySample] = []
    skipped = 0
    for i, s in enumerate(samples):
        if i == 0:
            a, b = samples[0], samples[1]
        elif i == n - 1:
            a, b = samples[i - 1], samples[i]
        else:
            a, b = samples[i - 1], samples[i + 1]

        dt = (b.time - a.time) / 1000.0
        if dt <= 0:
            skipped += 1
            continue

        vx = (b.x - a.x) / dt
        vy = (b.y - a.y) / dt
        if None not in (a.head_x, a.head_y, b.head_x, b.head_y):
            vx -= (b.head_x - a.head_x) / dt * head_scale  # type: ignore[operator]
            vy -= (b.head_y - a.head_y) / dt * head_scale  # type: ignore[operator]

        result.append(
            VelocitySample(
                time=s.time,
                x=s.x,
                y=s.y,
                vx=vx,
                vy=vy,
                confidence=s.confidence,
                is_blinking=s.is_blinking,
            )
        )

    if skipped:
        logger.debug("compute_velocities: skipped %d step(s) with dt <= 0", skipped)
    return result
