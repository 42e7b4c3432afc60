"""Collect per-frame gaze estimates into an immutable, time-ordered recording."""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from domain.models import GazeSample, StimulusEvent

logger = logging.getLogger(__name__)


class EyeEstimate(Protocol):
    """What the recorder needs from a per-frame gaze estimate."""

    time_ms: float
    is_blinking: bool
    confidence: float

    @property
    def gaze(self) -> tuple[float, float]: ...

    @property
    def head(self) -> tuple[float, float]: ...

    @property
    def vergence_x(self) -> float: ...


@dataclass(frozen=True)
class TargetState:
    """Where the protocol's stimulus is at the moment a frame is taken."""

    x: float = 50.0
    y: float = 50.0
    visible: bool = True


@dataclass(frozen=True)
class Recording:
    samples: tuple[GazeSample, ...]
    stimuli: tuple[StimulusEvent, ...] = ()

    @property
    def duration_ms(self) -> float:
        if len(self.samples) < 2:
            return 0.0
        return self.samples[-1].time - self.samples[0].time


def _finite(*values: float) -> bool:
    return all(math.isfinite(v) for v in values)


def sanitize_samples(samples: Iterable[GazeSample]) -> list[GazeSample]:
    """Drop samples that would corrupt downstream stages.

    Removed: non-increasing timestamps (duplicates / out of order), missing
    or non-finite confidence and non-finite gaze or target coordinates.  A
    non-finite head position or vergence is cleared to ``None`` instead, so
    the sample survives without head compensation.
    """
    kept: list[GazeSample] = []
    dropped = 0
    repaired = 0
    last_time = -math.inf
    for s in samples:
        if (
            s.confidence is None
            or not _finite(s.time, s.x, s.y, s.target_x, s.target_y, s.confidence)
            or s.time <= last_time
        ):
            dropped += 1
            continue
        head_ok = all(v is None or math.isfinite(v) for v in (s.head_x, s.head_y))
        vergence_ok = s.vergence_x is None or math.isfinite(s.vergence_x)
        if not (head_ok and vergence_ok):
            s = dataclasses.replace(
                s,
                head_x=s.head_x if head_ok else None,
                head_y=s.head_y if head_ok else None,
                vergence_x=s.vergence_x if vergence_ok else None,
            )
            repaired += 1
        kept.append(s)
        last_time = s.time
    if dropped:
        logger.warning("Dropped %d malformed sample(s) of %d", dropped, len(kept) + dropped)
    if repaired:
        logger.debug("Cleared non-finite head/vergence on %d sample(s)", repaired)
    return kept


class GazeRecorder:
    """Builds the sample stream for one protocol run.

    One recorder per recording; it is fed sequentially by the tracking loop.
    """

    def __init__(self) -> None:
        self._samples: list[GazeSample] = []
        self._stimuli: list[StimulusEvent] = []
        self._last_time: Optional[float] = None
        self._rejected = 0

    def add_estimate(self, estimate: EyeEstimate, target: TargetState) -> Optional[GazeSample]:
        """Append a sample built from *estimate*; returns None if rejected."""
        if self._last_time is not None and estimate.time_ms <= self._last_time:
            self._rejected += 1
            logger.debug("Rejected non-increasing timestamp %.1f", estimate.time_ms)
            return None
        gx, gy = estimate.gaze
        hx, hy = estimate.head
        sample = GazeSample(
            time=float(estimate.time_ms),
            x=gx,
            y=gy,
            confidence=estimate.confidence,
            is_blinking=estimate.is_blinking,
            head_x=hx,
            head_y=hy,
            target_x=target.x,
            target_y=target.y,
            target_visible=target.visible,
            vergence_x=estimate.vergence_x,
        )
        self._samples.append(sample)
        self._last_time = sample.time
        return sample

    def add_stimulus(self, event: StimulusEvent) -> None:
        if self._stimuli and event.time < self._stimuli[-1].time:
            raise ValueError("Stimulus events must be added in time order.")
        self._stimuli.append(event)

    def finish(self) -> Recording:
        logger.info(
            "Recording finished: %d samples, %d stimuli, %d rejected",
            len(self._samples), len(self._stimuli), self._rejected,
        )
        return Recording(samples=tuple(self._samples), stimuli=tuple(self._stimuli))

    @property
    def sample_count(self) -> int:
        return len(self._samples)
