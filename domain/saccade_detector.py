"""Velocity-threshold saccade detection state machine."""

from __future__ import annotations

import logging
import math
from enum import Enum
from typing import Callable, Optional, Sequence

from domain.models import Direction, Point, Saccade, VelocitySample
from domain.threshold import VELOCITY_CEILING, is_artifact

logger = logging.getLogger(__name__)

MIN_SACCADE_DURATION_MS = 12.0   # physiological minimum
MIN_SACCADE_AMPLITUDE = 1.0      # screen %
MIN_INTERSACCADE_MS = 50.0


class DetectorState(str, Enum):
    FIXATION = "FIXATION"
    SACCADE = "SACCADE"


def classify_direction(dx: float, dy: float) -> Direction:
    """Axis of the larger displacement; ties go to the horizontal axis."""
    if abs(dx) >= abs(dy):
        return Direction.RIGHT if dx > 0 else Direction.LEFT
    return Direction.DOWN if dy > 0 else Direction.UP


class SaccadeDetector:
    """Turns a velocity stream into discrete saccade events.

    ``FIXATION -> SACCADE`` when speed exceeds the threshold and at least
    *min_intersaccade_ms* has passed since the last emitted saccade ended.
    ``SACCADE -> FIXATION`` when speed drops to or below the threshold; the
    candidate is emitted only if it meets the duration and amplitude minimums.
    A blink or ceiling-violating sample resets to ``FIXATION`` and discards
    any candidate.  A candidate still open at the end of the stream is never
    emitted.
    """

    def __init__(
        self,
        threshold: float,
        *,
        min_duration_ms: float = MIN_SACCADE_DURATION_MS,
        min_amplitude: float = MIN_SACCADE_AMPLITUDE,
        min_intersaccade_ms: float = MIN_INTERSACCADE_MS,
        velocity_ceiling: float = VELOCITY_CEILING,
    ) -> None:
        self.threshold = threshold
        self.min_duration_ms = min_duration_ms
        self.min_amplitude = min_amplitude
        self.min_intersaccade_ms = min_intersaccade_ms
        self.velocity_ceiling = velocity_ceiling

        self._state = DetectorState.FIXATION
        self._onset: Optional[tuple[int, VelocitySample]] = None
        self._peak = 0.0
        self._last_offset = -math.inf
        self._saccades: list[Saccade] = []
        self._on_saccade: Optional[Callable[[Saccade], None]] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reset(self) -> None:
        self._state = DetectorState.FIXATION
        self._onset = None
        self._peak = 0.0
        self._last_offset = -math.inf
        self._saccades.clear()

    def feed(self, idx: int, v: VelocitySample) -> Optional[Saccade]:
        """Advance the machine by one sample; return a saccade if one closed."""
        if is_artifact(v, self.velocity_ceiling):
            if self._state == DetectorState.SACCADE:
                logger.debug("Saccade candidate at %.0f ms discarded by blink/artifact", v.time)
            self._abort()
            return None

        above = v.speed > self.threshold

        if self._state == DetectorState.FIXATION:
            if above and v.time - self._last_offset >= self.min_intersaccade_ms:
                self._state = DetectorState.SACCADE
                self._onset = (idx, v)
                self._peak = v.speed
            return None

        if above:
            self._peak = max(self._peak, v.speed)
            return None

        return self._close(idx, v)

    def detect(self, velocities: Sequence[VelocitySample]) -> list[Saccade]:
        """Replay *velocities* from a clean state and return every saccade."""
        self.reset()
        for i, v in enumerate(velocities):
            self.feed(i, v)
        if self._state == DetectorState.SACCADE:
            logger.debug("Stream ended mid-saccade; candidate dropped")
            self._abort()
        return self.saccades

    def set_on_saccade(self, callback: Callable[[Saccade], None]) -> None:
        self._on_saccade = callback

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def saccades(self) -> list[Saccade]:
        return list(self._saccades)

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _abort(self) -> None:
        self._state = DetectorState.FIXATION
        self._onset = None
        self._peak = 0.0

    def _close(self, idx: int, v: VelocitySample) -> Optional[Saccade]:
        assert self._onset is not None
        onset_idx, start = self._onset
        peak = self._peak
        self._abort()

        duration = v.time - start.time
        dx = v.x - start.x
        dy = v.y - start.y
        amplitude = math.hypot(dx, dy)
        if duration < self.min_duration_ms or amplitude < self.min_amplitude:
            logger.debug(
                "Saccade candidate rejected: %.0f ms, amplitude %.2f", duration, amplitude
            )
            return None

        saccade = Saccade(
            onset_time=start.time,
            offset_time=v.time,
            onset_idx=onset_idx,
            offset_idx=idx,
            peak_velocity=peak,
            amplitude=amplitude,
            direction=classify_direction(dx, dy),
            start_pos=Point(start.x, start.y),
            end_pos=Point(v.x, v.y),
        )
        self._saccades.append(saccade)
        self._last_offset = v.time
        logger.debug(
            "Saccade %s: %.0f-%.0f ms  amp=%.2f  peak=%.1f",
            saccade.direction.value, saccade.onset_time, saccade.offset_time,
            amplitude, peak,
        )
        if self._on_saccade:
            self._on_saccade(saccade)
        return saccade


def detect_saccades(
    velocities: Sequence[VelocitySample], threshold: float, **kwargs
) -> list[Saccade]:
    return SaccadeDetector(threshold, **kwargs).detect(velocities)
