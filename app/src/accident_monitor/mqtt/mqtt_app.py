import asyncio
import json
import logging
from typing import Callable, List, Optional

import paho.mqtt.client as mqtt

from accident_monitor.detection.config import get_config
from accident_monitor.detection.controller import CAPABILITY_LABELS, MonitoringController
from accident_monitor.detection.errors import SendError
from accident_monitor.detection.inputs import parse_bool, parse_contacts
from accident_monitor.detection.location import GeoPosition, LocationRequest, SingleUpdateHandler
from accident_monitor.detection.motion import AccelerationSample

log = logging.getLogger("accident.mqtt")
logging.basicConfig(level=logging.INFO)

TOPIC_ACCEL = "accident/input/accel"
TOPIC_LOCATION = "accident/input/location"
TOPIC_CONTACTS = "accident/input/contacts"
TOPIC_START = "accident/input/start"
TOPIC_STOP = "accident/input/stop"
TOPIC_LIFECYCLE = "accident/input/lifecycle"
TOPIC_PERMISSION_PREFIX = "accident/input/permission/"


class AccidentMqttApp:
    """
    Accident monitor on a plain MQTT broker: acceleration, location and UI
    inputs arrive as messages, SMS requests and notices are published.

    paho runs its network loop in its own thread; messages are handed to the
    asyncio loop so the monitoring core only ever runs on one thread.
    """

    def __init__(self, client: Optional[mqtt.Client] = None, cfg: Optional[dict] = None):
        self.cfg = cfg or get_config()
        self.broker_host = self.cfg["MQTT_HOST"]
        self.broker_port = self.cfg["MQTT_PORT"]

        # Sensing / location state
        self._listener: Optional[Callable[[AccelerationSample], None]] = None
        self._last_known: Optional[GeoPosition] = None
        self._pending: List[SingleUpdateHandler] = []

        self.controller = MonitoringController(
            sensors=self, location=self, messenger=self, notifier=self, cfg=self.cfg
        )

        # MQTT client
        self.client = client if client is not None else mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._inbox: Optional["asyncio.Queue[tuple]"] = None

    # MQTT callbacks (paho network thread)
    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        log.info("Connected to MQTT broker rc=%s", reason_code)
        subs = [
            (TOPIC_ACCEL, 0),
            (TOPIC_LOCATION, 0),
            (TOPIC_CONTACTS, 1),
            (TOPIC_START, 1),
            (TOPIC_STOP, 1),
            (TOPIC_LIFECYCLE, 1),
            (TOPIC_PERMISSION_PREFIX + "+", 1),
        ]
        for t, q in subs:
            client.subscribe(t, q)
        log.info("Subscribed to input topics")

    def _on_message(self, client, userdata, msg):
        if self._loop is None or self._inbox is None:
            return
        try:
            payload = msg.payload.decode("utf-8")
        except UnicodeDecodeError as e:
            log.warning("Dropping non UTF-8 payload on %s: %s", msg.topic, e)
            return
        self._loop.call_soon_threadsafe(self._inbox.put_nowait, (msg.topic, payload))

    # Input handling (asyncio loop)
    async def handle_message(self, topic: str, payload: str) -> None:
        try:
            if topic == TOPIC_ACCEL:
                data = json.loads(payload)
                sample = AccelerationSample(float(data["x"]), float(data["y"]), float(data["z"]))
                if self._listener is not None:
                    self._listener(sample)
            elif topic == TOPIC_LOCATION:
                data = json.loads(payload)
                self._on_position(GeoPosition(float(data["lat"]), float(data["lon"])))
            elif topic == TOPIC_CONTACTS:
                self.controller.save_contacts(*parse_contacts(payload))
            elif topic == TOPIC_START:
                await self.controller.start()
            elif topic == TOPIC_STOP:
                self.controller.stop()
            elif topic == TOPIC_LIFECYCLE:
                event = payload.strip().lower()
                if event == "pause":
                    self.controller.pause()
                elif event == "resume":
                    self.controller.resume()
                else:
                    log.warning("Unknown lifecycle event %r", payload)
            elif topic.startswith(TOPIC_PERMISSION_PREFIX):
                capability = topic[len(TOPIC_PERMISSION_PREFIX):]
                if capability not in CAPABILITY_LABELS:
                    log.warning("Unknown capability %r", capability)
                    return
                await self.controller.on_permission_result(capability, parse_bool(payload))
            else:
                log.debug("Ignoring message on %s", topic)
        except (ValueError, KeyError, TypeError) as e:
            log.warning("Bad input '%s' on %s: %s", payload, topic, e)

    def _on_position(self, position: GeoPosition) -> None:
        self._last_known = position
        for handler in self._pending:
            handler.on_complete(position)
        self._pending.clear()

    # SensorFeed
    def subscribe(self, listener: Callable[[AccelerationSample], None]) -> None:
        self._listener = listener

    def unsubscribe(self, listener: Callable[[AccelerationSample], None]) -> None:
        if self._listener == listener:
            self._listener = None

    # LocationProvider
    async def last_known_position(self) -> Optional[GeoPosition]:
        return self._last_known

    async def request_single_update(self, request: LocationRequest) -> Optional[GeoPosition]:
        handler = SingleUpdateHandler()
        self._pending.append(handler)
        self._publish(self.cfg["TOPIC_LOCATION_REQUEST"], {
            "intervalMs": request.interval_ms,
            "fastestIntervalMs": request.fastest_interval_ms,
            "priority": request.priority.value,
            "numUpdates": request.num_updates,
        })
        try:
            return await handler.result(self.cfg["LOCATION_TIMEOUT_S"])
        finally:
            if handler in self._pending:
                self._pending.remove(handler)

    # Messenger / Notifier
    async def send_text(self, destination: str, body: str) -> None:
        info = self._publish(self.cfg["TOPIC_SMS"], {"destination": destination, "body": body}, qos=1)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise SendError(destination, f"MQTT publish failed rc={info.rc}")

    async def notify(self, text: str) -> None:
        self._publish(self.cfg["TOPIC_NOTIFY"], {"message": text})

    def _publish(self, topic: str, obj: dict, qos: int = 0):
        return self.client.publish(topic, json.dumps(obj), qos=qos, retain=False)

    def connect(self):
        self.client.connect(self.broker_host, self.broker_port, keepalive=60)

    async def run(self):
        log.info(
            "Starting AccidentMqttApp cfg={threshold_ms2=%s, host=%s:%s}",
            self.cfg["THRESHOLD_MS2"], self.broker_host, self.broker_port,
        )
        self._loop = asyncio.get_running_loop()
        self._inbox = asyncio.Queue()
        self.connect()
        self.client.loop_start()
        try:
            while True:
                topic, payload = await self._inbox.get()
                await self.handle_message(topic, payload)
        finally:
            self.client.loop_stop()
            self.client.disconnect()


if __name__ == "__main__":
    try:
        asyncio.run(AccidentMqttApp().run())
    except KeyboardInterrupt:
        log.info("Stopping...")
