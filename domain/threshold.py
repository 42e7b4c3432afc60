"""Adaptive (median / MAD) saccade velocity threshold."""

from __future__ import annotations

import logging
import math
from typing import Sequence

import numpy as np

from domain.models import VelocitySample

logger = logging.getLogger(__name__)

# Looser than the canonical Engbert-Kliegl lambda of 6 to absorb webcam noise.
VELOCITY_LAMBDA = 4.5
FALLBACK_THRESHOLD = 30.0
THRESHOLD_FLOOR = 15.0
THRESHOLD_CEILING = 150.0
VELOCITY_CEILING = 500.0     # faster than any eye: blink / tracking artifact
MIN_CONFIDENCE = 0.3
MIN_VALID_SAMPLES = 10


def is_artifact(v: VelocitySample, velocity_ceiling: float = VELOCITY_CEILING) -> bool:
    speed = v.speed
    return v.is_blinking or not math.isfinite(speed) or speed > velocity_ceiling


def compute_velocity_threshold(
    velocities: Sequence[VelocitySample],
    *,
    lam: float = VELOCITY_LAMBDA,
    fallback: float = FALLBACK_THRESHOLD,
    floor: float = THRESHOLD_FLOOR,
    ceiling: float = THRESHOLD_CEILING,
    velocity_ceiling: float = VELOCITY_CEILING,
    min_confidence: float = MIN_CONFIDENCE,
) -> float:
    """Return ``lam * sqrt(median^2 + MAD^2)`` clamped to ``[floor, ceiling]``.

    Blinks, ceiling violations and samples with confidence below
    *min_confidence* are excluded; with fewer than 10 usable samples the
    fixed *fallback* is returned unchanged.
    """
    if lam <= 0:
        raise ValueError("lam must be positive")

    speeds = np.array(
        [
            v.speed
            for v in velocities
            if not is_artifact(v, velocity_ceiling)
            and v.confidence is not None
            and v.confidence >= min_confidence
        ],
        dtype=np.float64,
    )
    if speeds.size < MIN_VALID_SAMPLES:
        logger.debug("Threshold fallback: only %d valid samples", speeds.size)
        return fallback

    median = float(np.median(speeds))
    mad = float(np.median(np.abs(speeds - median)))
    threshold = lam * float(np.hypot(median, mad))
    clamped = float(np.clip(threshold, floor, ceiling))
    logger.debug(
        "Threshold: median=%.2f MAD=%.2f raw=%.2f -> %.2f", median, mad, threshold, clamped
    )
    return clamped
