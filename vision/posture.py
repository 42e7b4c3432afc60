"""Posture feedback from the estimator's distance and head proxies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from vision.gaze_estimator import GazeEstimate


@dataclass(frozen=True)
class PostureStatus:
    too_far: bool = False
    distance_changed: bool = False
    drifted: bool = False

    @property
    def ok(self) -> bool:
        return not (self.too_far or self.distance_changed or self.drifted)

    @property
    def message(self) -> str:
        if self.too_far:
            return "Move closer to the camera."
        if self.distance_changed:
            return "Keep the same distance from the screen."
        if self.drifted:
            return "Keep your head centred."
        return ""


class PostureMonitor:
    """Compares each frame with the posture captured on the first frame."""

    def __init__(
        self,
        warn_face_width: float = 0.22,
        max_width_change: float = 0.06,
        max_center_drift: float = 0.10,
    ) -> None:
        self.warn_face_width = warn_face_width
        self.max_width_change = max_width_change
        self.max_center_drift = max_center_drift
        self._baseline: Optional[GazeEstimate] = None

    def update(self, estimate: GazeEstimate) -> PostureStatus:
        if self._baseline is None:
            self._baseline = estimate
        base = self._baseline
        return PostureStatus(
            too_far=estimate.face_width < self.warn_face_width,
            distance_changed=abs(estimate.face_width - base.face_width) > self.max_width_change,
            drifted=(
                abs(estimate.nose.x - base.nose.x) > self.max_center_drift
                or abs(estimate.nose.y - base.nose.y) > self.max_center_drift
            ),
        )

    def reset(self) -> None:
        self._baseline = None
