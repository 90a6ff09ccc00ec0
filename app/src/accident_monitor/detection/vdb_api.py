# app/src/accident_monitor/detection/vdb_api.py
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
import logging

from accident_monitor.detection.location import GeoPosition, LocationRequest, SingleUpdateHandler
from accident_monitor.detection.motion import AccelerationSample

log = logging.getLogger("accident.vdb")


class VdbApi:
    """
    Sensing and location feeds backed by the Vehicle Data Broker.

    Acceleration: Vehicle.Acceleration.{Longitudinal,Lateral,Vertical} (m/s^2).
    Each axis update produces one sample using the latest value of the other
    two axes.
    Location: Vehicle.CurrentLocation.{Latitude,Longitude}.
    """

    def __init__(self, vehicle: Any, fresh_timeout_s: float = 10.0):
        self.Vehicle = vehicle
        self.fresh_timeout_s = fresh_timeout_s
        self._axes = {"x": 0.0, "y": 0.0, "z": 0.0}
        self._listener: Optional[Callable[[AccelerationSample], None]] = None
        # fresh coordinates seen since each pending request started
        self._pending: List[Tuple[SingleUpdateHandler, Dict[str, float]]] = []

    async def start(self) -> None:
        accel = self.Vehicle.Acceleration
        await accel.Longitudinal.subscribe(self._axis_handler("x", accel.Longitudinal))
        await accel.Lateral.subscribe(self._axis_handler("y", accel.Lateral))
        await accel.Vertical.subscribe(self._axis_handler("z", accel.Vertical))
        loc = self.Vehicle.CurrentLocation
        await loc.Latitude.subscribe(self._coordinate_handler("lat", loc.Latitude))
        await loc.Longitude.subscribe(self._coordinate_handler("lon", loc.Longitude))
        log.info("Subscribed to Vehicle.Acceleration.* and Vehicle.CurrentLocation.*")

    # -------------------- sensing feed --------------------
    def subscribe(self, listener: Callable[[AccelerationSample], None]) -> None:
        self._listener = listener

    def unsubscribe(self, listener: Callable[[AccelerationSample], None]) -> None:
        if self._listener == listener:
            self._listener = None

    def _axis_handler(self, axis: str, node: Any) -> Callable[[Any], Awaitable[None]]:
        async def on_changed(data: Any) -> None:
            try:
                value = data.get(node).value
            except Exception:
                return
            if value is None:
                return
            self._axes[axis] = float(value)
            if self._listener is not None:
                self._listener(AccelerationSample(self._axes["x"], self._axes["y"], self._axes["z"]))
        return on_changed

    # -------------------- location provider --------------------
    async def _read_position(self) -> Optional[GeoPosition]:
        lat = (await self.Vehicle.CurrentLocation.Latitude.get()).value
        lon = (await self.Vehicle.CurrentLocation.Longitude.get()).value
        if lat is None or lon is None:
            return None
        return GeoPosition(float(lat), float(lon))

    async def last_known_position(self) -> Optional[GeoPosition]:
        return await self._read_position()

    async def request_single_update(self, request: LocationRequest) -> Optional[GeoPosition]:
        log.info(
            "Requesting fresh position (interval=%sms fastest=%sms priority=%s updates=%s)",
            request.interval_ms, request.fastest_interval_ms, request.priority.value, request.num_updates,
        )
        entry: Tuple[SingleUpdateHandler, Dict[str, float]] = (SingleUpdateHandler(), {})
        self._pending.append(entry)
        try:
            return await entry[0].result(self.fresh_timeout_s)
        finally:
            if entry in self._pending:
                self._pending.remove(entry)

    def _coordinate_handler(self, key: str, node: Any) -> Callable[[Any], Awaitable[None]]:
        async def on_changed(data: Any) -> None:
            if not self._pending:
                return
            try:
                value = data.get(node).value
            except Exception as exc:
                log.warning("Failed to read %s update: %s", key, exc)
                return
            if value is None:
                return
            # A fix is complete only once both coordinates were updated.
            for entry in list(self._pending):
                handler, fresh = entry
                fresh[key] = float(value)
                if "lat" in fresh and "lon" in fresh:
                    handler.on_complete(GeoPosition(fresh["lat"], fresh["lon"]))
                    self._pending.remove(entry)
        return on_changed
