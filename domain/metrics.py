"""Clinical oculomotor metrics computed from an analysed recording."""

from __future__ import annotations

import math
import statistics
from typing import Sequence

import numpy as np

from domain.models import (
    FixationMetrics,
    GazeSample,
    MatchedResponse,
    PursuitMetrics,
    ReliabilityMetrics,
    ResponseMetrics,
    Saccade,
    VelocitySample,
    VergenceMetrics,
)

MIN_CONFIDENCE = 0.3

FIXATION_SPEED = 30.0          # units/s; slower than this counts as fixation
MIN_FIXATION_SAMPLES = 20
MICROSACCADE_AMPLITUDE = 2.0
SWJ_MAX_INTERVAL_MS = 200.0
RHO_LIMIT = 0.99

MIN_PURSUIT_DT_MS = 10.0
MIN_TARGET_VELOCITY = 5.0      # screen %/s; below this is a turnaround
MAX_PURSUIT_GAIN = 4.0
MIN_GAIN_SAMPLES = 5

MIN_VERGENCE_SAMPLES = 20
VERGENCE_FLOOR = 2.0

NOISE_SPEED = 20.0
MIN_LATENCIES = 3


def _confident(confidence, min_confidence: float) -> bool:
    return confidence is not None and confidence >= min_confidence


# ── Fixation ──────────────────────────────────────────────────────────────────

def compute_fixation_metrics(
    velocities: Sequence[VelocitySample],
    saccades: Sequence[Saccade],
    *,
    min_confidence: float = MIN_CONFIDENCE,
    fixation_speed: float = FIXATION_SPEED,
) -> FixationMetrics:
    """BCEA, microsaccade rate, drift velocity and square-wave jerks."""
    fix = [
        v for v in velocities
        if not v.is_blinking
        and v.confidence is not None and v.confidence > min_confidence
        and v.speed < fixation_speed
    ]
    if len(fix) < MIN_FIXATION_SAMPLES:
        return FixationMetrics(sample_count=len(fix))

    xs = np.array([v.x for v in fix], dtype=np.float64)
    ys = np.array([v.y for v in fix], dtype=np.float64)
    sd_x = float(xs.std())
    sd_y = float(ys.std())
    cov = float(np.mean((xs - xs.mean()) * (ys - ys.mean())))
    rho = cov / (sd_x * sd_y) if sd_x > 0 and sd_y > 0 else 0.0
    rho = float(np.clip(rho, -RHO_LIMIT, RHO_LIMIT))
    bcea = 2.0 * math.pi * sd_x * sd_y * math.sqrt(1.0 - rho * rho)

    micro = [s for s in saccades if s.amplitude < MICROSACCADE_AMPLITUDE]
    duration_s = (fix[-1].time - fix[0].time) / 1000.0
    rate = len(micro) / duration_s if duration_s > 0 else None

    jerks = 0
    for first, second in zip(micro, micro[1:]):
        gap = second.onset_time - first.offset_time
        if 0 < gap < SWJ_MAX_INTERVAL_MS and second.direction == first.direction.opposite:
            jerks += 1

    return FixationMetrics(
        bcea=bcea,
        microsaccade_rate=rate,
        drift_velocity=statistics.fmean(v.speed for v in fix),
        square_wave_jerks=jerks,
        sample_count=len(fix),
    )


# ── Smooth pursuit ────────────────────────────────────────────────────────────

def compute_pursuit_metrics(
    samples: Sequence[GazeSample],
    saccades: Sequence[Saccade],
    *,
    min_confidence: float = MIN_CONFIDENCE,
) -> PursuitMetrics:
    """Median velocity gain, tracking RMSE and catch-up saccade rate.

    Eye and target live in different unit spaces, so eye motion is rescaled
    by the ratio of the observed target range to the observed eye range.
    """
    if len(samples) < 2:
        return PursuitMetrics()

    def usable(s: GazeSample) -> bool:
        return (
            not s.is_blinking
            and _confident(s.confidence, min_confidence)
            and not any(sac.contains(s.time) for sac in saccades)
        )

    eye_min = min(s.x for s in samples)
    eye_range = max(max(s.x for s in samples) - eye_min, 1.0)
    tgt_min = min(s.target_x for s in samples)
    tgt_range = max(max(s.target_x for s in samples) - tgt_min, 1.0)
    scale = tgt_range / eye_range

    gains: list[float] = []
    errors: list[float] = []
    for prev, cur in zip(samples, samples[1:]):
        if not (usable(prev) and usable(cur)):
            continue
        dt_ms = cur.time - prev.time
        if dt_ms < MIN_PURSUIT_DT_MS:
            continue
        dt = dt_ms / 1000.0
        target_vel = (cur.target_x - prev.target_x) / dt
        if abs(target_vel) < MIN_TARGET_VELOCITY:
            continue

        eye_vel = (cur.x - prev.x) / dt * scale
        gain = eye_vel / target_vel
        if 0.0 <= gain <= MAX_PURSUIT_GAIN:
            gains.append(gain)

        mapped_x = tgt_min + (cur.x - eye_min) * scale
        errors.append(mapped_x - cur.target_x)

    if len(gains) < MIN_GAIN_SAMPLES:
        return PursuitMetrics(gain_samples=len(gains))

    total_s = (samples[-1].time - samples[0].time) / 1000.0
    return PursuitMetrics(
        median_gain=float(np.median(gains)),
        rmse=float(np.sqrt(np.mean(np.square(errors)))),
        catch_up_saccade_rate=len(saccades) / total_s if total_s > 0 else None,
        gain_samples=len(gains),
    )


# ── Vergence ──────────────────────────────────────────────────────────────────

def compute_vergence_metrics(samples: Sequence[GazeSample]) -> VergenceMetrics:
    disparities = np.array(
        [
            abs(s.vergence_x) for s in samples
            if not s.is_blinking and s.vergence_x is not None and math.isfinite(s.vergence_x)
        ],
        dtype=np.float64,
    )
    if disparities.size < MIN_VERGENCE_SAMPLES:
        return VergenceMetrics()

    median = float(np.median(disparities))
    instability = float(disparities.std())
    ci = instability * 10.0
    if median < VERGENCE_FLOOR:
        # Implausibly small disparity points at a tracking/structural problem.
        ci += 20.0
    return VergenceMetrics(
        median_vergence=median,
        instability=instability,
        ci_score=int(round(min(100.0, ci))),
    )


# ── Reliability ───────────────────────────────────────────────────────────────

def compute_reliability_metrics(
    velocities: Sequence[VelocitySample],
    saccades: Sequence[Saccade],
    responses: Sequence[MatchedResponse],
) -> ReliabilityMetrics:
    noise = [v.speed for v in velocities if not v.is_blinking and v.speed < NOISE_SPEED]
    snr = None
    if noise and saccades:
        noise_level = statistics.fmean(noise) or 1.0
        snr = statistics.fmean(s.peak_velocity for s in saccades) / noise_level

    latencies = [r.latency for r in responses if r.latency is not None]
    cv = None
    if len(latencies) >= MIN_LATENCIES:
        mean_lat = statistics.fmean(latencies)
        if mean_lat > 0:
            cv = statistics.pstdev(latencies) / mean_lat

    score = 100.0
    effective_snr = snr if snr is not None else 0.0
    if effective_snr < 10:
        score -= (10 - effective_snr) * 5
    if cv is not None and cv > 0.3:
        score -= (cv - 0.3) * 100
    if len(latencies) < MIN_LATENCIES:
        score -= 40

    return ReliabilityMetrics(
        snr=snr,
        latency_cv=cv,
        reliability_score=int(round(max(0.0, score))),
    )


# ── Responses / data quality ──────────────────────────────────────────────────

def summarize_responses(responses: Sequence[MatchedResponse]) -> ResponseMetrics:
    latencies = [r.latency for r in responses if r.latency is not None]
    return ResponseMetrics(
        trials=len(responses),
        matched=sum(1 for r in responses if r.matched),
        mean_latency=statistics.fmean(latencies) if latencies else None,
        toward_target=sum(1 for r in responses if r.is_correct_direction is True),
        away_from_target=sum(1 for r in responses if r.is_correct_direction is False),
    )


def compute_data_quality(
    samples: Sequence[GazeSample], min_confidence: float = MIN_CONFIDENCE
) -> int:
    """Percentage of samples that are open-eyed and confidently tracked."""
    if not samples:
        return 0
    valid = sum(
        1 for s in samples
        if not s.is_blinking and s.confidence is not None and s.confidence > min_confidence
    )
    return int(round(valid / len(samples) * 100))
