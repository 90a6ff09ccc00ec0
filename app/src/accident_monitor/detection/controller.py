import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from accident_monitor.detection.alerts import (
    MSG_ALERT_SENT,
    MSG_SEND_FAILED,
    AlertDispatcher,
    DispatchReport,
    Messenger,
)
from accident_monitor.detection.config import get_config
from accident_monitor.detection.contacts import ContactStore
from accident_monitor.detection.detector import AccidentEvent, Detector
from accident_monitor.detection.errors import AccidentMonitorError, PermissionDenied
from accident_monitor.detection.location import (
    GeoPosition,
    LocationProvider,
    LocationRequest,
    LocationResolver,
)
from accident_monitor.detection.motion import AccelerationSample, MotionSampler

log = logging.getLogger("accident.controller")

MSG_STARTED = "Accident monitoring started."
MSG_ALERT_FAILED = "Accident alert could not be sent."
MSG_NO_CONTACTS = "No emergency contacts saved; accident alert not sent."

SENSING = "sensing"
LOCATION = "location"
SMS = "sms"
CAPABILITY_LABELS = {SENSING: "Motion sensor", LOCATION: "Location", SMS: "SMS"}

SampleListener = Callable[[AccelerationSample], None]


class MonitorState(Enum):
    STOPPED = "stopped"
    ARMED = "armed"
    RESOLVING = "resolving"
    DISPATCHING = "dispatching"


class SensorFeed(Protocol):
    def subscribe(self, listener: SampleListener) -> None: ...

    def unsubscribe(self, listener: SampleListener) -> None: ...


class Notifier(Protocol):
    async def notify(self, text: str) -> None: ...


@dataclass
class Permissions:
    sensing: bool = True
    location: bool = True
    sms: bool = True

    def granted(self, capability: str) -> bool:
        return bool(getattr(self, capability))

    def set(self, capability: str, granted: bool) -> None:
        if capability not in CAPABILITY_LABELS:
            raise ValueError(f"Unknown capability {capability!r}")
        setattr(self, capability, granted)


@dataclass
class CycleOutcome:
    event: AccidentEvent
    position: Optional[GeoPosition] = None
    report: Optional[DispatchReport] = None
    error: Optional[Exception] = None


class MonitoringController:
    """
    Wires sensing -> detection -> location -> alerting and owns the lifecycle.

    Sampling is fed only while monitoring was started and the host is in the
    foreground. An accident cycle runs as one asyncio task; the detector stays
    TRIGGERED until that task has finished, so at most one cycle is in flight
    and magnitudes delivered meanwhile are dropped.
    """

    def __init__(
        self,
        sensors: SensorFeed,
        location: LocationProvider,
        messenger: Messenger,
        notifier: Notifier,
        contacts: Optional[ContactStore] = None,
        cfg: Optional[dict] = None,
        permissions: Optional[Permissions] = None,
        on_state_change: Optional[Callable[[MonitorState], None]] = None,
    ):
        self.cfg = cfg or get_config()
        self.sensors = sensors
        self.notifier = notifier
        self.contacts = contacts or ContactStore()
        self.permissions = permissions or Permissions()
        self.on_state_change = on_state_change

        self.detector = Detector(self.cfg["THRESHOLD_MS2"])
        self.sampler = MotionSampler(self._on_magnitude)
        self.resolver = LocationResolver(
            location,
            LocationRequest(
                interval_ms=self.cfg["LOCATION_INTERVAL_MS"],
                fastest_interval_ms=self.cfg["LOCATION_FASTEST_INTERVAL_MS"],
            ),
            fallback_on_provider_failure=self.cfg["FALLBACK_ON_PROVIDER_FAILURE"],
            notify=self._notify,
        )
        self.dispatcher = AlertDispatcher(messenger, self.cfg["MAPS_URL"])

        self._state = MonitorState.STOPPED
        self._started = False
        self._foreground = True
        self._registered = False
        self._cycle: Optional["asyncio.Task[CycleOutcome]"] = None
        self.last_outcome: Optional[CycleOutcome] = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def sampling(self) -> bool:
        return self._registered

    # -------------------- UI inputs --------------------
    def save_contacts(self, contact1: Optional[str], contact2: Optional[str]) -> None:
        self.contacts.save(contact1, contact2)
        log.info("Saved %d emergency contact(s)", len(self.contacts.current()))

    async def start(self) -> None:
        self._started = True
        if not self.permissions.granted(SENSING):
            await self._notify(PermissionDenied(SENSING, CAPABILITY_LABELS[SENSING]).message)
            return
        self._register()
        log.info("Accident monitoring started.")
        await self._notify(MSG_STARTED)

    def stop(self) -> None:
        self._started = False
        self._unregister()
        log.info("Accident monitoring stopped.")

    async def on_permission_result(self, capability: str, granted: bool) -> None:
        self.permissions.set(capability, granted)
        label = CAPABILITY_LABELS[capability]
        await self._notify(f"{label} Permission {'Granted' if granted else 'Denied'}")
        if capability == SENSING:
            if granted and self._started:
                self._register()
            elif not granted:
                self._unregister()

    # -------------------- lifecycle --------------------
    def pause(self) -> None:
        """Host left the foreground: stop feeding samples."""
        self._foreground = False
        self._unregister()

    def resume(self) -> None:
        self._foreground = True
        if self._started and self.permissions.granted(SENSING):
            self._register()

    # -------------------- sensing --------------------
    def on_sample(self, sample: AccelerationSample) -> None:
        if not self._registered:
            return
        self.sampler.on_sample(sample)

    def _on_magnitude(self, m: float) -> None:
        event = self.detector.evaluate(m)
        if event is None:
            return
        self._cycle = asyncio.get_running_loop().create_task(self._run_cycle(event))
        self._set_state(MonitorState.RESOLVING)

    async def wait_idle(self) -> Optional[CycleOutcome]:
        if self._cycle is not None:
            await self._cycle
        return self.last_outcome

    # -------------------- accident cycle --------------------
    async def _run_cycle(self, event: AccidentEvent) -> CycleOutcome:
        outcome = CycleOutcome(event)
        try:
            self._require(LOCATION)
            outcome.position = await self.resolver.resolve()

            self._set_state(MonitorState.DISPATCHING)
            self._require(SMS)
            contacts = self.contacts.current()
            outcome.report = await self.dispatcher.dispatch(outcome.position, contacts)
            for destination in outcome.report.failed:
                await self._notify(MSG_SEND_FAILED.format(destination=destination))
            if not contacts:
                log.warning("No emergency contacts saved; nothing to send")
                await self._notify(MSG_NO_CONTACTS)
            elif not outcome.report.succeeded:
                await self._notify(MSG_ALERT_FAILED)
            else:
                await self._notify(MSG_ALERT_SENT)
        except AccidentMonitorError as err:
            log.warning("Accident cycle ended without alert: %s", err.message)
            outcome.error = err
            await self._notify(err.message)
        except Exception as exc:
            log.exception("Accident cycle failed")
            outcome.error = exc
            await self._notify(MSG_ALERT_FAILED)
        finally:
            self.last_outcome = outcome
            self.detector.rearm()
            self._set_state(MonitorState.ARMED if self._registered else MonitorState.STOPPED)
        return outcome

    def _require(self, capability: str) -> None:
        if not self.permissions.granted(capability):
            raise PermissionDenied(capability, CAPABILITY_LABELS[capability])

    # -------------------- helpers --------------------
    def _register(self) -> None:
        if self._registered or not self._foreground:
            return
        self.sensors.subscribe(self.on_sample)
        self._registered = True
        if self._state is MonitorState.STOPPED:
            self._set_state(MonitorState.ARMED)

    def _unregister(self) -> None:
        if not self._registered:
            return
        self.sensors.unsubscribe(self.on_sample)
        self._registered = False
        if self._state is MonitorState.ARMED:
            self._set_state(MonitorState.STOPPED)

    def _set_state(self, state: MonitorState) -> None:
        if state is self._state:
            return
        log.info("Monitor %s -> %s", self._state.value, state.value)
        self._state = state
        if self.on_state_change is not None:
            try:
                self.on_state_change(state)
            except Exception:
                log.exception("State change hook failed for %s", state.value)

    async def _notify(self, text: str) -> None:
        try:
            await self.notifier.notify(text)
        except Exception as exc:
            log.warning("Failed to deliver notification %r: %s", text, exc)
