# SPDX-License-Identifier: Apache-2.0
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

import pytest

from accident_monitor.detection.config import get_config
from accident_monitor.detection.controller import MonitoringController, Permissions
from accident_monitor.detection.errors import SendError
from accident_monitor.detection.location import GeoPosition, LocationRequest
from accident_monitor.detection.motion import AccelerationSample


# ---------- Fakes for Vehicle + DataPointReply ----------

@dataclass
class _Val:
    value: Any

class FakeDataPointReply:
    """Mimic velocitas DataPointReply.get(node).value pattern."""
    def __init__(self, value: Any):
        self._value = value

    def get(self, _node):
        return _Val(self._value)

class FakeSignalNode:
    """Holds a single async callback for subscribe(); supports get()."""
    def __init__(self, initial: Any = None):
        self._value = initial
        self._callback: Optional[Callable[[FakeDataPointReply], Awaitable[None]]] = None

    async def subscribe(self, cb):
        self._callback = cb

    def set_value(self, value: Any):
        self._value = value

    async def set_value_and_fire(self, value: Any):
        """Simulate a VDB update and invoke the subscribed callback."""
        self._value = value
        if self._callback:
            await self._callback(FakeDataPointReply(value))

    async def get(self):
        return _Val(self._value)

class _Acceleration:
    def __init__(self):
        self.Longitudinal = FakeSignalNode(0.0)
        self.Lateral = FakeSignalNode(0.0)
        self.Vertical = FakeSignalNode(9.81)

class _CurrentLocation:
    def __init__(self, latitude: Optional[float], longitude: Optional[float]):
        self.Latitude = FakeSignalNode(latitude)
        self.Longitude = FakeSignalNode(longitude)

class FakeVehicle:
    """Only the parts the app uses: Acceleration.* and CurrentLocation.*"""
    def __init__(self, latitude: Optional[float] = None, longitude: Optional[float] = None):
        self.Acceleration = _Acceleration()
        self.CurrentLocation = _CurrentLocation(latitude, longitude)


# ---------- Fakes for the core collaborators ----------

class FakeSensorFeed:
    def __init__(self):
        self.listeners: List[Callable[[AccelerationSample], None]] = []
        self.subscribe_calls = 0

    def subscribe(self, listener):
        self.subscribe_calls += 1
        self.listeners.append(listener)

    def unsubscribe(self, listener):
        self.listeners.remove(listener)

    def emit(self, x: float, y: float = 0.0, z: float = 0.0):
        for listener in list(self.listeners):
            listener(AccelerationSample(x, y, z))

class FakeLocationProvider:
    """
    last_known / fresh may be a GeoPosition, None or an Exception to raise.
    Set `gate` to an asyncio.Event to hold the active request open.
    """
    def __init__(self, last_known: Any = None, fresh: Any = None):
        self.last_known = last_known
        self.fresh = fresh
        self.gate: Optional[asyncio.Event] = None
        self.last_known_calls = 0
        self.requests: List[LocationRequest] = []

    async def last_known_position(self):
        self.last_known_calls += 1
        if isinstance(self.last_known, Exception):
            raise self.last_known
        return self.last_known

    async def request_single_update(self, request: LocationRequest):
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.fresh, Exception):
            raise self.fresh
        return self.fresh

class FakeMessenger:
    def __init__(self, fail_for=()):
        self.sent: List[tuple] = []
        self.fail_for = set(fail_for)

    async def send_text(self, destination: str, body: str):
        if destination in self.fail_for:
            raise SendError(destination, "radio off")
        self.sent.append((destination, body))

class FakeNotifier:
    def __init__(self):
        self.messages: List[str] = []

    async def notify(self, text: str):
        self.messages.append(text)


# ---------- Utilities to capture publish_event calls ----------

class PublishCapture:
    """Capture all publish_event(topic, payload) calls."""
    def __init__(self):
        self.events: List[tuple[str, Any]] = []

    async def __call__(self, topic: str, payload: str):
        # Store parsed JSON if possible, otherwise raw string
        try:
            data = json.loads(payload)
        except Exception:
            data = payload
        self.events.append((topic, data))

    def last(self, topic: Optional[str] = None):
        if topic is None:
            return self.events[-1] if self.events else None
        for t, d in reversed(self.events):
            if t == topic:
                return (t, d)
        return None

    def by_topic(self, topic: str) -> List[tuple[str, Any]]:
        return [e for e in self.events if e[0] == topic]


@pytest.fixture
def publish_capture():
    return PublishCapture()

@pytest.fixture
def sensors():
    return FakeSensorFeed()

@pytest.fixture
def location():
    return FakeLocationProvider(last_known=GeoPosition(37.422, -122.084))

@pytest.fixture
def messenger():
    return FakeMessenger()

@pytest.fixture
def notifier():
    return FakeNotifier()

@pytest.fixture
def make_controller(sensors, location, messenger, notifier):
    def factory(cfg_overrides=None, permissions: Optional[Permissions] = None, states=None):
        cfg = get_config()
        if cfg_overrides:
            cfg.update(cfg_overrides)
        return MonitoringController(
            sensors, location, messenger, notifier,
            cfg=cfg,
            permissions=permissions,
            on_state_change=states.append if states is not None else None,
        )
    return factory
