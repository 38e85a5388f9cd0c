import datetime
import json
import logging

import paho.mqtt.client as mqtt
import pytest

from ambudispatch.services import mqtt_bridge
from ambudispatch.services.change_feed import ChangeEvent
from ambudispatch.services.mqtt_bridge import (
    IntakeConsumer,
    MQTTChangePublisher,
    changes_topic,
    decode_change_event,
    intake_topic,
)


class _FakeInfo:
    rc = mqtt.MQTT_ERR_SUCCESS


class _FakeClient:
    def __init__(self):
        self.published = []

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, json.loads(payload), qos))
        return _FakeInfo()


def test_topics_use_configured_prefix():
    assert changes_topic("ambulances") == "ambudispatch/changes/ambulances"
    assert intake_topic() == "ambudispatch/intake/emergencies"
    assert intake_topic("city-a") == "city-a/intake/emergencies"


def test_decode_change_event_from_bridge_payload():
    event = ChangeEvent(
        table="ambulances",
        event_type="UPDATE",
        record={"id": "amb1", "status": "dispatched"},
        seq=42,
        commit_time=datetime.datetime(2026, 1, 5, 10, 30, tzinfo=datetime.timezone.utc),
    )

    decoded = decode_change_event(json.dumps(event.to_dict()).encode("utf-8"))

    assert decoded == event


@pytest.mark.parametrize(
    "payload",
    [b"not json", b"[1, 2]", b'{"table": "ambulances", "event_type": "INSERT"}'],
)
def test_decode_change_event_rejects_bad_payloads(payload):
    with pytest.raises(ValueError):
        decode_change_event(payload)


def test_publisher_forwards_committed_changes(data, feed):
    publisher = MQTTChangePublisher(feed)
    fake = _FakeClient()
    publisher.client = fake
    channel = feed.channel("mqtt-bridge").on("*", "*", publisher.publish_change).subscribe()

    data.create_ambulance(
        {"name": "Alpha", "vehicle_number": "DL-01", "driver_name": "Ravi", "driver_phone": "+91 1"}
    )
    channel.unsubscribe()

    assert len(fake.published) == 1
    topic, body, qos = fake.published[0]
    assert topic == "ambudispatch/changes/ambulances"
    assert body["event_type"] == "INSERT"
    assert body["seq"] == 1
    assert qos == 1


def test_intake_creates_pending_request(data):
    consumer = IntakeConsumer(data)
    payload = {
        "name": "Kiran",
        "phone": "+91 98 1111 2222",
        "location": {"address": "Connaught Place", "coordinates": {"latitude": 28.63, "longitude": 77.22}},
    }

    assert consumer.handle_payload(json.dumps(payload).encode("utf-8"), topic=intake_topic()) is True

    created = data.list_emergencies()
    assert len(created) == 1
    assert created[0].status == "pending"
    assert created[0].address == "Connaught Place"
    assert created[0].timestamp is not None


def test_intake_rejects_invalid_payload(data, caplog):
    consumer = IntakeConsumer(data)
    caplog.set_level(logging.WARNING)

    assert consumer.handle_payload(b'{"phone": "+91 1"}', topic="x") is False
    assert consumer.handle_payload(b"\xff\xfe", topic="x") is False
    assert data.list_emergencies() == []
    assert any("Invalid intake payload" in rec.message for rec in caplog.records)


def test_intake_ignores_status_and_ambulance_from_payload(data, dispatch):
    consumer = IntakeConsumer(data)
    payload = {"name": "X", "phone": "1", "status": "completed", "ambulance_id": "amb-ghost"}

    assert consumer.handle_payload(json.dumps(payload).encode("utf-8"), topic=intake_topic()) is True

    (created,) = data.list_emergencies()
    assert created.status == "pending"
    assert created.ambulance_id is None

    data.create_ambulance(
        {"id": "amb7", "name": "Seven", "vehicle_number": "DL-07", "driver_name": "Ravi", "driver_phone": "+91 7"}
    )
    assert dispatch.dispatch_ambulance(created.id, "amb7") is True


class _BrokenPublishClient:
    def __init__(self):
        self.calls = []

    def connect(self, host, port, keepalive=60):
        self.calls.append("connect")

    def loop_start(self):
        self.calls.append("loop_start")

    def publish(self, topic, payload, qos=0):
        raise OSError("broker went away")

    def loop_stop(self):
        self.calls.append("loop_stop")

    def disconnect(self):
        self.calls.append("disconnect")


def test_publish_intake_releases_client_on_failure(monkeypatch, caplog):
    fake = _BrokenPublishClient()
    monkeypatch.setattr(mqtt_bridge, "build_client", lambda client_id: fake)
    caplog.set_level(logging.WARNING)

    assert mqtt_bridge.publish_intake({"name": "X", "phone": "1"}) is False
    assert fake.calls == ["connect", "loop_start", "loop_stop", "disconnect"]
    assert any("Failed to publish intake request" in rec.message for rec in caplog.records)
