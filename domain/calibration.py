"""Pluggable mapping from gaze units to screen percent."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class CalibrationModel(Protocol):
    def to_screen(self, x: float, y: float) -> tuple[float, float]: ...


class IdentityCalibration:
    """Treats gaze units as screen percent."""

    def to_screen(self, x: float, y: float) -> tuple[float, float]:
        return x, y

    def __repr__(self) -> str:
        return "IdentityCalibration()"


@dataclass(frozen=True)
class LinearCalibration:
    """Fixed affine model ``50 + (eye - centre) * scale`` per axis."""

    center_x: float = 50.0
    center_y: float = 50.0
    scale_x: float = 8.0
    scale_y: float = 8.0

    def __post_init__(self) -> None:
        if self.scale_x <= 0 or self.scale_y <= 0:
            raise ValueError("Calibration scales must be positive.")

    def to_screen(self, x: float, y: float) -> tuple[float, float]:
        return (
            50.0 + (x - self.center_x) * self.scale_x,
            50.0 + (y - self.center_y) * self.scale_y,
        )
