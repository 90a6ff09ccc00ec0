import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

from accident_monitor.detection.errors import (
    LocationProviderFailure,
    LocationUnavailable,
)

log = logging.getLogger("accident.location")

MSG_RETRYING = "Failed to retrieve location. Trying again..."
MSG_PROVIDER_ERROR = "Failed to retrieve location. Error: {error}"
MSG_STILL_UNAVAILABLE = "Still unable to retrieve location."


@dataclass(frozen=True)
class GeoPosition:
    latitude: float
    longitude: float


class Priority(Enum):
    HIGH_ACCURACY = "high_accuracy"


@dataclass(frozen=True)
class LocationRequest:
    interval_ms: int = 1000
    fastest_interval_ms: int = 500
    priority: Priority = Priority.HIGH_ACCURACY
    num_updates: int = 1


class LocationProvider(Protocol):
    async def last_known_position(self) -> Optional[GeoPosition]: ...

    async def request_single_update(self, request: LocationRequest) -> Optional[GeoPosition]: ...


class SingleUpdateHandler:
    """
    Completion handler for one active location request.

    Only the first on_complete()/on_error() call counts; anything delivered
    afterwards is dropped.
    """

    def __init__(self) -> None:
        self._future: "asyncio.Future[Optional[GeoPosition]]" = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def on_complete(self, position: Optional[GeoPosition]) -> None:
        if self._future.done():
            log.debug("Ignoring extra location update %s", position)
            return
        self._future.set_result(position)

    def on_error(self, exc: Exception) -> None:
        if not self._future.done():
            self._future.set_exception(exc)

    async def result(self, timeout: Optional[float] = None) -> Optional[GeoPosition]:
        try:
            return await asyncio.wait_for(self._future, timeout)
        except asyncio.TimeoutError:
            log.warning("No location update within %.1fs", timeout)
            return None


class LocationResolver:
    """
    Two-phase position lookup: the cached last-known position first, then a
    single active high-accuracy request. There is no retry beyond that one
    fallback.
    """

    def __init__(
        self,
        provider: LocationProvider,
        request: Optional[LocationRequest] = None,
        fallback_on_provider_failure: bool = True,
        notify: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        self.provider = provider
        self.request = request or LocationRequest()
        self.fallback_on_provider_failure = fallback_on_provider_failure
        self._notify = notify
        self._active_request = False

    async def resolve(self) -> GeoPosition:
        try:
            position = await self.provider.last_known_position()
        except Exception as exc:
            log.error("Failed to get last known location", exc_info=True)
            failure = LocationProviderFailure(MSG_PROVIDER_ERROR.format(error=exc), cause=exc)
            if not self.fallback_on_provider_failure:
                raise failure
            await self._say(failure.message)
        else:
            if position is not None:
                log.info("Using last known position %s", position)
                return position
            log.info("Last known position unavailable, requesting a fresh fix")
            await self._say(MSG_RETRYING)

        return await self._request_fresh()

    async def _request_fresh(self) -> GeoPosition:
        if self._active_request:
            raise LocationProviderFailure("A location request is already in flight")
        self._active_request = True
        try:
            position = await self.provider.request_single_update(self.request)
        except Exception as exc:
            log.error("Active location request failed", exc_info=True)
            raise LocationProviderFailure(MSG_PROVIDER_ERROR.format(error=exc), cause=exc)
        finally:
            self._active_request = False

        if position is None:
            raise LocationUnavailable(MSG_STILL_UNAVAILABLE)
        log.info("Using fresh position %s", position)
        return position

    async def _say(self, text: str) -> None:
        if self._notify is not None:
            await self._notify(text)
