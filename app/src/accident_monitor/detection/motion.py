import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional

log = logging.getLogger("accident.motion")


@dataclass(frozen=True)
class AccelerationSample:
    x: float
    y: float
    z: float


def magnitude(sample: AccelerationSample) -> float:
    """Euclidean norm of a 3-axis acceleration reading (m/s^2)."""
    return math.sqrt(sample.x * sample.x + sample.y * sample.y + sample.z * sample.z)


class MotionSampler:
    """Turns raw acceleration samples into magnitudes for the detector."""

    def __init__(self, on_magnitude: Optional[Callable[[float], None]] = None):
        self.on_magnitude = on_magnitude

    def on_sample(self, sample: AccelerationSample) -> float:
        m = magnitude(sample)
        log.debug("Acceleration: %.3f", m)
        if self.on_magnitude is not None:
            self.on_magnitude(m)
        return m
