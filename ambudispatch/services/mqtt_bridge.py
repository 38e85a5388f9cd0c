"""
MQTT bridge: fans committed changes out to the broker and ingests new
emergency requests published by external intake systems.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

import paho.mqtt.client as mqtt

from ..core.config import settings
from ..core.errors import log_exception
from ..schemas.emergency import EmergencyRequestCreate
from .change_feed import ChangeEvent, ChangeFeed, Channel
from .data_access import DataAccess, DataAccessError


def changes_topic(table: str, prefix: Optional[str] = None) -> str:
    return f"{prefix or settings.mqtt_topic_prefix}/changes/{table}"


def intake_topic(prefix: Optional[str] = None) -> str:
    return f"{prefix or settings.mqtt_topic_prefix}/intake/emergencies"


def _protocol() -> int:
    protocol = (settings.mqtt_protocol or "v311").lower()
    if protocol == "v31":
        return mqtt.MQTTv31
    if protocol == "v5":
        return mqtt.MQTTv5
    return mqtt.MQTTv311


def build_client(client_id: str) -> mqtt.Client:
    client = mqtt.Client(client_id=client_id, clean_session=True, protocol=_protocol())
    if settings.mqtt_username:
        client.username_pw_set(settings.mqtt_username, settings.mqtt_password)
    client.reconnect_delay_set(min_delay=1, max_delay=10)
    return client


def decode_change_event(payload: bytes | str) -> ChangeEvent:
    """Rebuild a ChangeEvent from a bridged message. Raises ValueError on bad input."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("Change payload must be an object")
    try:
        commit_time = datetime.fromisoformat(str(data["commit_time"]).replace("Z", "+00:00"))
        return ChangeEvent(
            table=str(data["table"]),
            event_type=str(data["event_type"]),
            record=dict(data.get("record") or {}),
            seq=int(data["seq"]),
            commit_time=commit_time,
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Incomplete change payload: {exc}") from exc


class _BrokerClient:
    """Connection handling shared by the publisher and the intake consumer."""

    def __init__(self, client_id: str) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self.logger.info("MQTT client_id=%s protocol=%s", client_id, settings.mqtt_protocol)
        self.client = build_client(client_id)
        self.client.on_connect = self.on_connect  # type: ignore
        self.client.on_disconnect = self.on_disconnect  # type: ignore
        self._connected = threading.Event()

    def on_connect(self, client: mqtt.Client, userdata, flags, rc) -> None:  # type: ignore
        if rc == 0:
            self.logger.info(
                "Connected to MQTT broker %s:%s",
                settings.mqtt_broker_host,
                settings.mqtt_broker_port,
            )
            self._connected.set()
            self.after_connect(client)
        else:
            self.logger.error("Failed to connect to MQTT broker with code %s", rc)

    def after_connect(self, client: mqtt.Client) -> None:
        pass

    def on_disconnect(self, client: mqtt.Client, userdata, rc) -> None:  # type: ignore
        self._connected.clear()
        self.logger.warning("MQTT disconnected with return code %s", rc)

    def start(self) -> None:
        try:
            self.client.connect_async(settings.mqtt_broker_host, settings.mqtt_broker_port, keepalive=60)
            self.client.loop_start()
        except Exception as exc:
            self.logger.error(
                "MQTT connection failed for %s:%s (%s)",
                settings.mqtt_broker_host,
                settings.mqtt_broker_port,
                exc,
            )

    def stop(self) -> None:
        try:
            self.client.loop_stop()
            self.client.disconnect()
        except Exception as exc:
            log_exception(self.logger, "MQTT shutdown failed", exc=exc)

    def is_connected(self) -> bool:
        return self._connected.is_set()


class MQTTChangePublisher(_BrokerClient):
    """Publishes every change event as JSON to ``{prefix}/changes/{table}``."""

    def __init__(self, feed: ChangeFeed) -> None:
        super().__init__(f"ambudispatch-changes-{id(self)}")
        self.feed = feed
        self._channel: Optional[Channel] = None

    def start(self) -> None:
        if self._channel is None:
            self._channel = self.feed.channel("mqtt-bridge").on("*", "*", self.publish_change).subscribe()
        super().start()

    def stop(self) -> None:
        if self._channel is not None:
            self._channel.unsubscribe()
            self._channel = None
        super().stop()

    def publish_change(self, change: ChangeEvent) -> None:
        topic = changes_topic(change.table)
        try:
            info = self.client.publish(topic, json.dumps(change.to_dict()), qos=1)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                self.logger.warning("MQTT publish rc=%s topic=%s seq=%s", info.rc, topic, change.seq)
        except Exception as exc:
            log_exception(self.logger, "MQTT publish failed", extra={"topic": topic, "seq": change.seq}, exc=exc)


class IntakeConsumer(_BrokerClient):
    """Inserts emergency requests received on the intake topic."""

    def __init__(self, data: DataAccess) -> None:
        super().__init__(f"ambudispatch-intake-{id(self)}")
        self.data = data
        self.client.on_message = self.on_message  # type: ignore

    def after_connect(self, client: mqtt.Client) -> None:
        client.subscribe(intake_topic(), qos=1)

    def on_message(self, client: mqtt.Client, userdata, msg) -> None:  # type: ignore
        self.handle_payload(msg.payload, topic=getattr(msg, "topic", None))

    def handle_payload(self, payload: bytes, *, topic: Optional[str] = None) -> bool:
        try:
            request_in = EmergencyRequestCreate.model_validate(json.loads(payload.decode("utf-8")))
        except Exception as exc:
            self.logger.warning(
                "Invalid intake payload topic=%s payload_len=%s err=%s",
                topic,
                len(payload) if payload is not None else None,
                exc,
            )
            return False
        # Intake always opens a fresh pending request; assignment happens through dispatch.
        data = request_in.model_dump(exclude_none=True, exclude={"status", "ambulance_id"})
        data["status"] = "pending"
        data.setdefault("timestamp", datetime.now(timezone.utc))
        try:
            created = self.data.create_emergency(data)
        except DataAccessError as exc:
            self.logger.error("Failed to ingest emergency request: %s", exc)
            return False
        self.logger.info("Ingested emergency request id=%s from %s", created.id, topic)
        return True


def publish_intake(payload: dict, *, prefix: Optional[str] = None) -> bool:
    """One-shot publish of an emergency request to the intake topic."""
    logger = logging.getLogger("mqtt_bridge")
    client = None
    try:
        client = build_client(f"ambudispatch-intake-cli-{id(payload)}")
        client.connect(settings.mqtt_broker_host, settings.mqtt_broker_port, keepalive=30)
        client.loop_start()
        info = client.publish(intake_topic(prefix), json.dumps(payload, default=str), qos=1)
        info.wait_for_publish(timeout=5)
        return info.is_published()
    except Exception as exc:
        logger.warning("Failed to publish intake request: %s", exc)
        return False
    finally:
        if client is not None:
            try:
                client.loop_stop()
                client.disconnect()
            except Exception as exc:
                logger.debug("Intake publisher teardown failed: %s", exc)
