import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from accident_monitor.detection.location import GeoPosition

log = logging.getLogger("accident.alerts")

DEFAULT_MAPS_URL = "https://maps.google.com/?q="
MSG_ALERT_SENT = "Accident alert sent!"
MSG_SEND_FAILED = "Failed to send alert to {destination}"


class Messenger(Protocol):
    async def send_text(self, destination: str, body: str) -> None: ...


@dataclass(frozen=True)
class AlertMessage:
    body: str


@dataclass
class SendResult:
    destination: str
    ok: bool
    error: Optional[str] = None


@dataclass
class DispatchReport:
    message: AlertMessage
    results: List[SendResult] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> List[str]:
        return [r.destination for r in self.results if r.ok]

    @property
    def failed(self) -> List[str]:
        return [r.destination for r in self.results if not r.ok]


def build_message(position: GeoPosition, maps_url: str = DEFAULT_MAPS_URL) -> AlertMessage:
    return AlertMessage(
        f"Accident detected!\nLocation: {maps_url}{position.latitude}%2C{position.longitude}"
    )


class AlertDispatcher:
    """Sends one alert text to every saved contact; each send is independent."""

    def __init__(self, messenger: Messenger, maps_url: str = DEFAULT_MAPS_URL):
        self.messenger = messenger
        self.maps_url = maps_url

    async def dispatch(self, position: GeoPosition, contacts: Sequence[str]) -> DispatchReport:
        report = DispatchReport(build_message(position, self.maps_url))
        for destination in contacts:
            try:
                await self.messenger.send_text(destination, report.message.body)
            except Exception as exc:
                log.error("SMS to %s failed: %s", destination, exc)
                report.results.append(SendResult(destination, False, str(exc)))
            else:
                log.info("Sent to %s", destination)
                report.results.append(SendResult(destination, True))
        return report
