import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

log = logging.getLogger("accident.detector")

DEFAULT_THRESHOLD_MS2 = 20.0


class DetectionState(Enum):
    ARMED = "armed"
    TRIGGERED = "triggered"


@dataclass(frozen=True)
class AccidentEvent:
    magnitude: float
    threshold: float
    detected_at: float = field(default_factory=time.time)


class Detector:
    """
    Edge-triggered accident detector.

    Fires once when a magnitude strictly exceeds the threshold while ARMED,
    then ignores every magnitude until rearm() is called.
    """

    def __init__(self, threshold: float = DEFAULT_THRESHOLD_MS2):
        self.threshold = threshold
        self._state = DetectionState.ARMED

    @property
    def state(self) -> DetectionState:
        return self._state

    def evaluate(self, m: float) -> Optional[AccidentEvent]:
        if self._state is DetectionState.TRIGGERED:
            return None
        if m > self.threshold:
            self._state = DetectionState.TRIGGERED
            log.info("Accident detected: magnitude=%.2f threshold=%.2f", m, self.threshold)
            return AccidentEvent(m, self.threshold)
        return None

    def rearm(self) -> None:
        if self._state is DetectionState.TRIGGERED:
            log.info("Detector re-armed")
        self._state = DetectionState.ARMED
