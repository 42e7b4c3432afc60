"""Recording lifecycle controller: tracker → recorder → analysis → scorer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import numpy as np

from app.config import Config
from domain.analysis import analyze_recording, build_timeline
from domain.calibration import CalibrationModel
from domain.models import GazeSample, MetricsBundle, ProtocolId, ProtocolScore, StimulusEvent
from domain.recording import GazeRecorder, TargetState
from domain.scoring import score_protocol
from storage.session_store import SessionMeta, SessionWriter
from vision.gaze_estimator import GazeEstimate, GazeEstimator
from vision.landmark_engine import LandmarkEngine, shared_engine
from vision.posture import PostureMonitor, PostureStatus

logger = logging.getLogger(__name__)

_RUNS_DIR = Path("runs")


def new_session_dir(protocol: Union[ProtocolId, str], runs_dir: Path = _RUNS_DIR) -> Path:
    pid = ProtocolId(protocol)
    return runs_dir / (datetime.now().strftime("%Y-%m-%d_%H-%M-%S") + f"_{pid.value}")


@dataclass(frozen=True)
class FrameResult:
    """What one processed camera frame produced."""

    estimate: Optional[GazeEstimate] = None
    posture: Optional[PostureStatus] = None
    screen_gaze: Optional[tuple[float, float]] = None
    sample: Optional[GazeSample] = None      # set only while recording

    @property
    def face_detected(self) -> bool:
        return self.estimate is not None


@dataclass
class ProtocolReport:
    protocol: ProtocolId
    score: ProtocolScore
    metrics: MetricsBundle
    timeline: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol.value,
            "score": self.score.to_dict(),
            "metrics": self.metrics.to_dict(),
            "timeline": self.timeline,
        }


class Controller:
    """Owns the gaze estimator, posture monitor and the active recording.

    Frames are pushed in by the caller (camera loop, video file, test);
    the controller never owns a capture device.
    """

    def __init__(
        self,
        config: Config,
        engine: Optional[LandmarkEngine] = None,
        calibration: Optional[CalibrationModel] = None,
    ) -> None:
        self.config = config
        self.engine = engine or shared_engine()
        self.calibration = calibration or config.calibration_model()
        self.estimator = GazeEstimator(
            self.engine,
            detect_timeout_s=config.inference_timeout_s,
            base_process_noise=config.base_process_noise,
            base_measurement_noise=config.base_measurement_noise,
            blink_gap_ratio=config.blink_gap_ratio,
            min_face_width=config.min_face_width,
        )
        self.posture = PostureMonitor(warn_face_width=config.posture_warn_face_width)

        # Recording state
        self._protocol: Optional[ProtocolId] = None
        self._recorder: Optional[GazeRecorder] = None
        self._writer: Optional[SessionWriter] = None
        self._meta: Optional[SessionMeta] = None

    # ------------------------------------------------------------------
    # Engine
    # ------------------------------------------------------------------

    def start_engine(self, timeout_s: Optional[float] = None) -> bool:
        """Initialise the shared landmark engine; False if it is not usable."""
        self.engine.initialize()
        ready = self.engine.wait_ready(timeout_s)
        if not ready:
            logger.error("Controller: landmark engine not ready.")
        return ready

    def stop_engine(self) -> None:
        self.engine.close()

    # ------------------------------------------------------------------
    # Recording lifecycle
    # ------------------------------------------------------------------

    @property
    def is_recording(self) -> bool:
        return self._recorder is not None

    def start_recording(
        self, protocol: Union[ProtocolId, str], session_dir: Optional[Path] = None
    ) -> None:
        """Begin a protocol run; with *session_dir* the raw stream is also saved."""
        if self.is_recording:
            raise RuntimeError("A recording is already in progress.")
        pid = ProtocolId(protocol)

        self.estimator.reset()
        self.posture.reset()
        self._protocol = pid
        self._recorder = GazeRecorder()

        if session_dir is not None:
            self._writer = SessionWriter(session_dir)
            self._meta = SessionMeta(
                session_id=session_dir.name,
                protocol=pid.value,
                started_at=datetime.now().isoformat(),
                calibration=repr(self.calibration),
            )
            self._writer.write_meta(self._meta)
        logger.info("Recording started: protocol=%s", pid.value)

    def process_frame(
        self, frame_bgr: np.ndarray, time_ms: float, target: Optional[TargetState] = None
    ) -> FrameResult:
        return self._handle_estimate(self.estimator.track(frame_bgr, time_ms), target)

    def process_landmarks(
        self, points: np.ndarray, time_ms: float, target: Optional[TargetState] = None
    ) -> FrameResult:
        """Same as :meth:`process_frame` for landmarks detected elsewhere."""
        return self._handle_estimate(self.estimator.estimate(points, time_ms), target)

    def mark_stimulus(self, event: StimulusEvent) -> None:
        if self._recorder is None:
            return
        self._recorder.add_stimulus(event)
        if self._writer:
            self._writer.write_stimulus(event)

    def stop_recording(self) -> ProtocolReport:
        if self._recorder is None or self._protocol is None:
            raise RuntimeError("No recording in progress.")
        recording = self._recorder.finish()
        report = self.analyze(recording.samples, recording.stimuli or None, self._protocol)

        if self._writer:
            if self._meta:
                self._meta.ended_at = datetime.now().isoformat()
                self._writer.write_meta(self._meta)
            self._writer.write_report(report.to_dict())
            self._writer.close()

        self._recorder = None
        self._writer = None
        self._meta = None
        self._protocol = None
        logger.info(
            "Recording stopped.  Duration=%.1fs  Samples=%d",
            recording.duration_ms / 1000.0,
            len(recording.samples),
        )
        return report

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(
        self,
        samples: Sequence[GazeSample],
        stimuli: Optional[Sequence[StimulusEvent]],
        protocol: Union[ProtocolId, str],
    ) -> ProtocolReport:
        pid = ProtocolId(protocol)
        result = analyze_recording(
            samples,
            stimuli,
            settings=self.config.analysis_settings(),
            calibration=self.calibration,
        )
        score = score_protocol(pid, result.metrics)
        logger.info("Protocol %s scored %d (%s)", pid.value, score.score, score.status)
        return ProtocolReport(
            protocol=pid,
            score=score,
            metrics=result.metrics,
            timeline=build_timeline(result.samples, self.calibration),
        )

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _handle_estimate(
        self, estimate: Optional[GazeEstimate], target: Optional[TargetState]
    ) -> FrameResult:
        if estimate is None:
            return FrameResult()

        posture = self.posture.update(estimate)
        screen = self.calibration.to_screen(*estimate.gaze)

        sample = None
        if self._recorder is not None:
            sample = self._recorder.add_estimate(estimate, target or TargetState())
            if sample is not None and self._writer:
                self._writer.write_sample(sample)

        return FrameResult(estimate=estimate, posture=posture, screen_gaze=screen, sample=sample)
