"""End-to-end analysis of one completed recording."""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass, field
from typing import Optional, Sequence

from domain import kinematics, metrics, saccade_detector, stimulus_matcher, threshold
from domain.calibration import CalibrationModel, IdentityCalibration
from domain.kinematics import compute_velocities, preprocess_blinks
from domain.models import (
    GazeSample,
    MatchedResponse,
    MetricsBundle,
    Saccade,
    StimulusEvent,
    VelocitySample,
)
from domain.recording import sanitize_samples
from domain.saccade_detector import SaccadeDetector
from domain.stimulus_matcher import match_saccades_to_stimuli, stimuli_from_target_track
from domain.threshold import compute_velocity_threshold

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisSettings:
    velocity_lambda: float = threshold.VELOCITY_LAMBDA
    fallback_threshold: float = threshold.FALLBACK_THRESHOLD
    threshold_floor: float = threshold.THRESHOLD_FLOOR
    threshold_ceiling: float = threshold.THRESHOLD_CEILING
    velocity_ceiling: float = threshold.VELOCITY_CEILING
    min_confidence: float = threshold.MIN_CONFIDENCE
    min_saccade_duration_ms: float = saccade_detector.MIN_SACCADE_DURATION_MS
    min_saccade_amplitude: float = saccade_detector.MIN_SACCADE_AMPLITUDE
    min_intersaccade_ms: float = saccade_detector.MIN_INTERSACCADE_MS
    blink_buffer_ms: float = kinematics.BLINK_BUFFER_MS
    head_scale: float = kinematics.HEAD_TO_GAZE_SCALE
    latency_window_ms: tuple[float, float] = stimulus_matcher.LATENCY_WINDOW_MS
    infer_stimuli: bool = True

    def __post_init__(self) -> None:
        if self.threshold_floor > self.threshold_ceiling:
            raise ValueError("threshold_floor must not exceed threshold_ceiling")
        lo, hi = self.latency_window_ms
        if lo < 0 or hi < lo:
            raise ValueError(f"Invalid latency window {self.latency_window_ms!r}")


@dataclass(frozen=True)
class AnalysisResult:
    samples: tuple[GazeSample, ...]
    velocities: tuple[VelocitySample, ...]
    threshold: float
    saccades: tuple[Saccade, ...]
    responses: tuple[MatchedResponse, ...]
    metrics: MetricsBundle = field(default_factory=MetricsBundle)


def analyze_recording(
    samples: Sequence[GazeSample],
    stimuli: Optional[Sequence[StimulusEvent]] = None,
    settings: Optional[AnalysisSettings] = None,
    calibration: Optional[CalibrationModel] = None,
) -> AnalysisResult:
    """Run conditioning, event detection, matching and metrics.

    Pure and deterministic: identical input always yields identical output.
    """
    cfg = settings or AnalysisSettings()
    cal = calibration or IdentityCalibration()

    clean = sanitize_samples(samples)
    buffered = preprocess_blinks(clean, cfg.blink_buffer_ms)
    velocities = compute_velocities(buffered, head_scale=cfg.head_scale)

    vel_threshold = compute_velocity_threshold(
        velocities,
        lam=cfg.velocity_lambda,
        fallback=cfg.fallback_threshold,
        floor=cfg.threshold_floor,
        ceiling=cfg.threshold_ceiling,
        velocity_ceiling=cfg.velocity_ceiling,
        min_confidence=cfg.min_confidence,
    )
    detector = SaccadeDetector(
        vel_threshold,
        min_duration_ms=cfg.min_saccade_duration_ms,
        min_amplitude=cfg.min_saccade_amplitude,
        min_intersaccade_ms=cfg.min_intersaccade_ms,
        velocity_ceiling=cfg.velocity_ceiling,
    )
    saccades = detector.detect(velocities)

    if stimuli is None:
        logger.warning(
            "No stimulus schedule supplied; %s",
            "inferring it from the target track" if cfg.infer_stimuli else "responses not scored",
        )
        stimuli = stimuli_from_target_track(buffered) if cfg.infer_stimuli else []
    responses = match_saccades_to_stimuli(
        saccades, stimuli, cfg.latency_window_ms, calibration=cal
    )

    bundle = MetricsBundle(
        sample_count=len(buffered),
        data_quality=metrics.compute_data_quality(buffered, cfg.min_confidence),
        threshold=vel_threshold,
        saccade_count=len(saccades),
        mean_peak_velocity=(
            statistics.fmean(s.peak_velocity for s in saccades) if saccades else None
        ),
        fixation=metrics.compute_fixation_metrics(
            velocities, saccades, min_confidence=cfg.min_confidence
        ),
        pursuit=metrics.compute_pursuit_metrics(
            buffered, saccades, min_confidence=cfg.min_confidence
        ),
        vergence=metrics.compute_vergence_metrics(buffered),
        reliability=metrics.compute_reliability_metrics(velocities, saccades, responses),
        responses=metrics.summarize_responses(responses),
    )

    logger.info(
        "Analysed %d samples: threshold=%.1f  saccades=%d  matched=%d/%d  quality=%d%%",
        len(buffered), vel_threshold, len(saccades),
        bundle.responses.matched, bundle.responses.trials, bundle.data_quality,
    )
    return AnalysisResult(
        samples=tuple(buffered),
        velocities=tuple(velocities),
        threshold=vel_threshold,
        saccades=tuple(saccades),
        responses=tuple(responses),
        metrics=bundle,
    )


def build_timeline(
    samples: Sequence[GazeSample],
    calibration: Optional[CalibrationModel] = None,
    max_points: int = 100,
) -> list[dict]:
    """Downsampled screen-space gaze/target trace for charts and replay."""
    if not samples:
        return []
    cal = calibration or IdentityCalibration()
    step = max(1, len(samples) // max_points)
    t0 = samples[0].time
    timeline = []
    for s in samples[::step]:
        gx, gy = cal.to_screen(s.x, s.y)
        timeline.append(
            {
                "t_s": round((s.time - t0) / 1000.0, 3),
                "gx": round(gx, 2),
                "gy": round(gy, 2),
                "tx": round(s.target_x, 2),
                "ty": round(s.target_y, 2),
                "blink": s.is_blinking,
            }
        )
    return timeline
