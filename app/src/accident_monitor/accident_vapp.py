# Copyright (c) 2025 Contributors
# SPDX-License-Identifier: Apache-2.0

import asyncio
import json
import logging
from typing import Any, Set

from velocitas_sdk.util.log import (  # type: ignore
    get_opentelemetry_log_factory,
    get_opentelemetry_log_format,
)
from velocitas_sdk.vehicle_app import VehicleApp, subscribe_topic  # type: ignore

from accident_monitor.detection.config import get_config
from accident_monitor.detection.controller import (
    LOCATION,
    SENSING,
    SMS,
    MonitoringController,
    MonitorState,
)
from accident_monitor.detection.errors import SendError
from accident_monitor.detection.inputs import parse_bool, parse_contacts
from accident_monitor.detection.vdb_api import VdbApi

logging.setLogRecordFactory(get_opentelemetry_log_factory())
logging.basicConfig(format=get_opentelemetry_log_format())
logging.getLogger().setLevel("DEBUG")
logger = logging.getLogger(__name__)


class AccidentApp(VehicleApp):
    """
    Accident detection (Velocitas VehicleApp):
    - Samples Vehicle.Acceleration.* from the Data Broker while monitoring.
    - Resolves Vehicle.CurrentLocation.* when an accident is detected.
    - Publishes SMS requests to ext/accident/sms and user notices to
      ext/accident/notify.
    - Takes contacts, start/stop, lifecycle and permission inputs over MQTT.
    """

    def __init__(self, vehicle_client: Any):
        super().__init__()
        self.Vehicle = vehicle_client
        self.cfg = get_config()
        self.vdb = VdbApi(vehicle_client, self.cfg["LOCATION_TIMEOUT_S"])
        self.controller = MonitoringController(
            sensors=self.vdb,
            location=self.vdb,
            messenger=self,
            notifier=self,
            cfg=self.cfg,
            on_state_change=self._on_state_change,
        )
        self._background: Set[asyncio.Task] = set()

    # -------------------- lifecycle --------------------
    async def on_start(self):
        await self.vdb.start()
        logger.info(
            "AccidentApp started with threshold_ms2=%s fallback_on_failure=%s",
            self.cfg["THRESHOLD_MS2"], self.cfg["FALLBACK_ON_PROVIDER_FAILURE"],
        )
        await self.publish_event("ext/accident/config", json.dumps({
            "thresholdMs2": self.cfg["THRESHOLD_MS2"],
            "locationIntervalMs": self.cfg["LOCATION_INTERVAL_MS"],
            "locationFastestIntervalMs": self.cfg["LOCATION_FASTEST_INTERVAL_MS"],
        }))

    # -------------------- collaborators --------------------
    async def send_text(self, destination: str, body: str) -> None:
        try:
            await self.publish_event(
                self.cfg["TOPIC_SMS"], json.dumps({"destination": destination, "body": body})
            )
        except Exception as exc:
            raise SendError(destination, str(exc), exc) from exc

    async def notify(self, text: str) -> None:
        await self.publish_event(self.cfg["TOPIC_NOTIFY"], json.dumps({"message": text}))

    def _on_state_change(self, state: MonitorState) -> None:
        task = asyncio.get_running_loop().create_task(
            self.publish_event(self.cfg["TOPIC_STATE"], json.dumps({"state": state.value}))
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # -------------------- MQTT inputs --------------------
    @subscribe_topic("accident/input/contacts")
    async def _on_contacts(self, payload: str):
        try:
            contact1, contact2 = parse_contacts(payload)
        except ValueError as exc:
            logger.warning("Invalid contacts payload %r: %s", payload, exc)
            return
        self.controller.save_contacts(contact1, contact2)

    @subscribe_topic("accident/input/start")
    async def _on_start_monitoring(self, payload: str):
        await self.controller.start()

    @subscribe_topic("accident/input/stop")
    async def _on_stop_monitoring(self, payload: str):
        self.controller.stop()

    @subscribe_topic("accident/input/lifecycle")
    async def _on_lifecycle(self, payload: str):
        event = payload.strip().lower()
        if event == "pause":
            self.controller.pause()
        elif event == "resume":
            self.controller.resume()
        else:
            logger.warning("Unknown lifecycle event %r", payload)

    @subscribe_topic("accident/input/permission/sensing")
    async def _on_permission_sensing(self, payload: str):
        await self.controller.on_permission_result(SENSING, parse_bool(payload))

    @subscribe_topic("accident/input/permission/location")
    async def _on_permission_location(self, payload: str):
        await self.controller.on_permission_result(LOCATION, parse_bool(payload))

    @subscribe_topic("accident/input/permission/sms")
    async def _on_permission_sms(self, payload: str):
        await self.controller.on_permission_result(SMS, parse_bool(payload))
