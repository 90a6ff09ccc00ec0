# SPDX-License-Identifier: Apache-2.0
import asyncio
import json

import pytest

pytest.importorskip("velocitas_sdk.vehicle_app")

from accident_monitor.accident_vapp import AccidentApp  # noqa: E402
from accident_monitor.tests.conftest import FakeVehicle  # type: ignore  # noqa: E402


async def _flush():
    for _ in range(5):
        await asyncio.sleep(0)

async def _started_app(vehicle, publish_capture, contacts=("+15550000001", "+15550000002")):
    app = AccidentApp(vehicle) # type: ignore
    app.publish_event = publish_capture  # type: ignore
    await app.on_start()
    await app._on_contacts(json.dumps({"contact1": contacts[0], "contact2": contacts[1]}))
    await app._on_start_monitoring("")
    return app


@pytest.mark.asyncio
async def test_on_start_publishes_config(publish_capture):
    app = AccidentApp(FakeVehicle()) # type: ignore
    app.publish_event = publish_capture  # type: ignore
    await app.on_start()

    _, payload = publish_capture.last("ext/accident/config")
    assert payload["thresholdMs2"] == 20.0
    assert payload["locationIntervalMs"] == 1000
    assert payload["locationFastestIntervalMs"] == 500

@pytest.mark.asyncio
async def test_start_input_publishes_notice(publish_capture):
    app = await _started_app(FakeVehicle(), publish_capture)
    _, payload = publish_capture.last(app.cfg["TOPIC_NOTIFY"])
    assert payload == {"message": "Accident monitoring started."}
    await _flush()

@pytest.mark.asyncio
async def test_crash_on_longitudinal_axis_sends_sms_to_both_contacts(publish_capture):
    """
    Given the vehicle reports a position and monitoring is running,
    When longitudinal acceleration spikes above 20 m/s^2,
    Then one SMS request per contact is published with the map link.
    """
    vehicle = FakeVehicle(latitude=37.422, longitude=-122.084)
    app = await _started_app(vehicle, publish_capture)

    await vehicle.Acceleration.Longitudinal.set_value_and_fire(3.0)
    assert publish_capture.by_topic(app.cfg["TOPIC_SMS"]) == []

    await vehicle.Acceleration.Longitudinal.set_value_and_fire(-31.0)
    await app.controller.wait_idle()
    await _flush()

    sms = [p for _, p in publish_capture.by_topic(app.cfg["TOPIC_SMS"])]
    assert [p["destination"] for p in sms] == ["+15550000001", "+15550000002"]
    assert sms[0]["body"] == "Accident detected!\nLocation: https://maps.google.com/?q=37.422%2C-122.084"

    _, notice = publish_capture.last(app.cfg["TOPIC_NOTIFY"])
    assert notice["message"] == "Accident alert sent!"
    _, state = publish_capture.last(app.cfg["TOPIC_STATE"])
    assert state["state"] == "armed"

@pytest.mark.asyncio
async def test_fresh_location_update_completes_pending_request(publish_capture):
    vehicle = FakeVehicle(latitude=None, longitude=None)
    app = await _started_app(vehicle, publish_capture, contacts=("+15551234567", None))

    await vehicle.Acceleration.Vertical.set_value_and_fire(40.0)
    await _flush()

    messages = [p["message"] for _, p in publish_capture.by_topic(app.cfg["TOPIC_NOTIFY"])]
    assert "Failed to retrieve location. Trying again..." in messages

    await vehicle.CurrentLocation.Latitude.set_value_and_fire(1.0)
    await _flush()
    assert publish_capture.by_topic(app.cfg["TOPIC_SMS"]) == []

    await vehicle.CurrentLocation.Longitude.set_value_and_fire(2.0)
    await app.controller.wait_idle()
    await _flush()

    sms = [p for _, p in publish_capture.by_topic(app.cfg["TOPIC_SMS"])]
    assert len(sms) == 1
    assert sms[0]["destination"] == "+15551234567"
    assert sms[0]["body"].endswith("?q=1.0%2C2.0")

@pytest.mark.asyncio
async def test_paused_app_ignores_acceleration(publish_capture):
    vehicle = FakeVehicle(latitude=37.422, longitude=-122.084)
    app = await _started_app(vehicle, publish_capture)

    await app._on_lifecycle("pause")
    await vehicle.Acceleration.Lateral.set_value_and_fire(50.0)
    await _flush()
    assert publish_capture.by_topic(app.cfg["TOPIC_SMS"]) == []

    await app._on_lifecycle("resume")
    await vehicle.Acceleration.Lateral.set_value_and_fire(50.0)
    await app.controller.wait_idle()
    await _flush()
    assert len(publish_capture.by_topic(app.cfg["TOPIC_SMS"])) == 2

@pytest.mark.asyncio
async def test_permission_inputs_publish_outcome(publish_capture):
    app = AccidentApp(FakeVehicle()) # type: ignore
    app.publish_event = publish_capture  # type: ignore
    await app.on_start()

    await app._on_permission_sms("denied")
    _, payload = publish_capture.last(app.cfg["TOPIC_NOTIFY"])
    assert payload["message"] == "SMS Permission Denied"

    await app._on_permission_location("true")
    _, payload = publish_capture.last(app.cfg["TOPIC_NOTIFY"])
    assert payload["message"] == "Location Permission Granted"

@pytest.mark.asyncio
async def test_failed_publish_is_reported_per_contact(publish_capture):
    vehicle = FakeVehicle(latitude=37.422, longitude=-122.084)
    app = await _started_app(vehicle, publish_capture)

    async def flaky_publish(topic, payload):
        if topic == app.cfg["TOPIC_SMS"] and json.loads(payload)["destination"] == "+15550000001":
            raise ConnectionError("broker down")
        await publish_capture(topic, payload)
    app.publish_event = flaky_publish  # type: ignore

    await vehicle.Acceleration.Longitudinal.set_value_and_fire(30.0)
    outcome = await app.controller.wait_idle()
    await _flush()

    assert outcome.report.failed == ["+15550000001"]
    assert outcome.report.succeeded == ["+15550000002"]
    messages = [p["message"] for _, p in publish_capture.by_topic(app.cfg["TOPIC_NOTIFY"])]
    assert "Failed to send alert to +15550000001" in messages

@pytest.mark.asyncio
async def test_fresh_fix_waits_for_both_coordinates_not_stale_longitude(publish_capture):
    """
    Given no usable cached fix but an old longitude in the broker,
    When a fresh fix arrives latitude first, then longitude,
    Then the SMS carries both new coordinates.
    """
    vehicle = FakeVehicle(latitude=None, longitude=50.0)
    app = await _started_app(vehicle, publish_capture, contacts=("+15551234567", None))

    await vehicle.Acceleration.Longitudinal.set_value_and_fire(30.0)
    await _flush()

    await vehicle.CurrentLocation.Latitude.set_value_and_fire(1.0)
    await _flush()
    assert app.controller.last_outcome is None

    await vehicle.CurrentLocation.Longitude.set_value_and_fire(2.0)
    outcome = await app.controller.wait_idle()
    await _flush()

    assert outcome.position.latitude == 1.0
    assert outcome.position.longitude == 2.0
    sms = [p for _, p in publish_capture.by_topic(app.cfg["TOPIC_SMS"])]
    assert sms[0]["body"].endswith("?q=1.0%2C2.0")

@pytest.mark.asyncio
async def test_location_updates_without_pending_request_are_ignored(publish_capture):
    vehicle = FakeVehicle(latitude=37.422, longitude=-122.084)
    app = await _started_app(vehicle, publish_capture)

    await vehicle.CurrentLocation.Latitude.set_value_and_fire(1.0)
    await vehicle.CurrentLocation.Longitude.set_value_and_fire(2.0)

    assert app.vdb._pending == []
    assert app.controller.last_outcome is None
    await _flush()
