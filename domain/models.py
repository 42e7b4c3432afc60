"""Core data models for the oculomotor analysis pipeline.

Times are milliseconds, gaze positions are gaze units (iris-relative ratio
x 100), target positions are screen percent.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Direction(str, Enum):
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"

    @property
    def opposite(self) -> "Direction":
        return _OPPOSITES[self]


_OPPOSITES = {
    Direction.LEFT: Direction.RIGHT,
    Direction.RIGHT: Direction.LEFT,
    Direction.UP: Direction.DOWN,
    Direction.DOWN: Direction.UP,
}


class ProtocolId(str, Enum):
    FIX = "fix"
    MGST = "mgst"
    AST = "ast"
    SPT = "spt"
    VGST = "vgst"


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class GazeSample:
    """One processed frame of a recording."""

    time: float                          # ms
    x: float                             # gaze units
    y: float
    confidence: Optional[float] = 1.0    # 0-1, None = not reported
    is_blinking: bool = False
    head_x: Optional[float] = None       # normalised frame coords (nose tip)
    head_y: Optional[float] = None
    target_x: float = 50.0               # screen %
    target_y: float = 50.0
    target_visible: bool = True
    vergence_x: Optional[float] = None   # left minus right eye, gaze units


@dataclass(frozen=True)
class VelocitySample:
    """A GazeSample enriched with head-compensated velocity (units/s)."""

    time: float
    x: float
    y: float
    vx: float
    vy: float
    confidence: Optional[float] = 1.0
    is_blinking: bool = False

    @property
    def speed(self) -> float:
        return math.hypot(self.vx, self.vy)


@dataclass(frozen=True)
class Saccade:
    onset_time: float
    offset_time: float
    onset_idx: int
    offset_idx: int
    peak_velocity: float
    amplitude: float
    direction: Direction
    start_pos: Point
    end_pos: Point

    @property
    def duration(self) -> float:
        return self.offset_time - self.onset_time

    def contains(self, t: float) -> bool:
        return self.onset_time <= t <= self.offset_time


@dataclass(frozen=True)
class StimulusEvent:
    """A target jump supplied by the protocol's stimulus schedule."""

    time: float
    from_x: float
    from_y: float
    to_x: float
    to_y: float

    @property
    def eccentricity(self) -> float:
        return math.hypot(self.to_x - self.from_x, self.to_y - self.from_y)

    @property
    def horizontal_direction(self) -> Optional[Direction]:
        dx = self.to_x - self.from_x
        if dx > 0:
            return Direction.RIGHT
        if dx < 0:
            return Direction.LEFT
        return None


@dataclass(frozen=True)
class MatchedResponse:
    stimulus: StimulusEvent
    saccade: Optional[Saccade] = None
    latency: Optional[float] = None
    gain: Optional[float] = None
    is_correct_direction: Optional[bool] = None

    @property
    def matched(self) -> bool:
        return self.saccade is not None


# ── Metrics bundle ────────────────────────────────────────────────────────────
# Every sub-metric uses None for "not computable"; a zero is always a real zero.

@dataclass(frozen=True)
class FixationMetrics:
    bcea: Optional[float] = None
    microsaccade_rate: Optional[float] = None   # per second
    drift_velocity: Optional[float] = None      # units/s
    square_wave_jerks: Optional[int] = None
    sample_count: int = 0


@dataclass(frozen=True)
class PursuitMetrics:
    median_gain: Optional[float] = None
    rmse: Optional[float] = None                # screen %
    catch_up_saccade_rate: Optional[float] = None
    gain_samples: int = 0


@dataclass(frozen=True)
class VergenceMetrics:
    median_vergence: Optional[float] = None
    instability: Optional[float] = None
    ci_score: Optional[int] = None              # 0-100, >70 significant


@dataclass(frozen=True)
class ReliabilityMetrics:
    snr: Optional[float] = None
    latency_cv: Optional[float] = None
    reliability_score: int = 0


@dataclass(frozen=True)
class ResponseMetrics:
    """Summary of the stimulus-matched responses of one recording."""

    trials: int = 0
    matched: int = 0
    mean_latency: Optional[float] = None
    toward_target: int = 0
    away_from_target: int = 0

    @property
    def missed(self) -> int:
        return self.trials - self.matched


@dataclass(frozen=True)
class MetricsBundle:
    sample_count: int = 0
    data_quality: int = 0                       # % of usable samples
    threshold: Optional[float] = None
    saccade_count: int = 0
    mean_peak_velocity: Optional[float] = None
    fixation: FixationMetrics = field(default_factory=FixationMetrics)
    pursuit: PursuitMetrics = field(default_factory=PursuitMetrics)
    vergence: VergenceMetrics = field(default_factory=VergenceMetrics)
    reliability: ReliabilityMetrics = field(default_factory=ReliabilityMetrics)
    responses: ResponseMetrics = field(default_factory=ResponseMetrics)

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class ProtocolScore:
    protocol: ProtocolId
    score: int          # 0-100
    metric: str         # human readable primary statistic
    status: str

    @property
    def inconclusive(self) -> bool:
        return self.status == "Inconclusive"

    def to_dict(self) -> dict:
        return {
            "protocol": self.protocol.value,
            "score": self.score,
            "metric": self.metric,
            "status": self.status,
        }
