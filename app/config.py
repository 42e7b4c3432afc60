"""Application-wide configuration with typed fields and sane defaults."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

from domain.analysis import AnalysisSettings
from domain.calibration import CalibrationModel, IdentityCalibration, LinearCalibration

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path("config.json")


@dataclass
class Config:
    # Tracker
    inference_timeout_s: float = 0.5
    base_process_noise: float = 0.03
    base_measurement_noise: float = 0.8
    blink_gap_ratio: float = 0.018
    min_face_width: float = 0.15
    posture_warn_face_width: float = 0.22

    # Analysis
    velocity_lambda: float = 4.5
    fallback_threshold: float = 30.0
    threshold_floor: float = 15.0
    threshold_ceiling: float = 150.0
    velocity_ceiling: float = 500.0
    min_confidence: float = 0.30   # low-confidence cutoff for threshold and metrics
    min_saccade_duration_ms: float = 12.0
    min_saccade_amplitude: float = 1.0
    min_intersaccade_ms: float = 50.0
    blink_buffer_ms: float = 100.0
    latency_window_ms: list[float] = field(default_factory=lambda: [80.0, 800.0])

    # Calibration: "identity" or "linear"
    calibration: str = "identity"
    calib_center_x: float = 50.0
    calib_center_y: float = 50.0
    calib_scale_x: float = 8.0
    calib_scale_y: float = 8.0

    # Logging
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Derived objects
    # ------------------------------------------------------------------

    def analysis_settings(self) -> AnalysisSettings:
        lo, hi = self.latency_window_ms
        return AnalysisSettings(
            velocity_lambda=self.velocity_lambda,
            fallback_threshold=self.fallback_threshold,
            threshold_floor=self.threshold_floor,
            threshold_ceiling=self.threshold_ceiling,
            velocity_ceiling=self.velocity_ceiling,
            min_confidence=self.min_confidence,
            min_saccade_duration_ms=self.min_saccade_duration_ms,
            min_saccade_amplitude=self.min_saccade_amplitude,
            min_intersaccade_ms=self.min_intersaccade_ms,
            blink_buffer_ms=self.blink_buffer_ms,
            latency_window_ms=(float(lo), float(hi)),
        )

    def calibration_model(self) -> CalibrationModel:
        if self.calibration == "identity":
            return IdentityCalibration()
        if self.calibration == "linear":
            return LinearCalibration(
                center_x=self.calib_center_x,
                center_y=self.calib_center_y,
                scale_x=self.calib_scale_x,
                scale_y=self.calib_scale_y,
            )
        raise ValueError(f"Unknown calibration model {self.calibration!r}")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Path = _CONFIG_PATH) -> None:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(asdict(self), fh, indent=2)
        logger.debug("Config saved to %s", path)

    @classmethod
    def load(cls, path: Path = _CONFIG_PATH) -> "Config":
        if not path.exists():
            return cls()
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
            cfg = cls()
            for k, v in data.items():
                if hasattr(cfg, k):
                    setattr(cfg, k, v)
            logger.debug("Config loaded from %s", path)
            return cfg
        except (OSError, json.JSONDecodeError, AttributeError) as exc:
            logger.warning("Could not load config (%s); using defaults.", exc)
            return cls()
