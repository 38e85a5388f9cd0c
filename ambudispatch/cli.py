"""
Operator console for the ambulance dispatch backend.

The console keeps the logged-in operator in a local session file and talks
to the HTTP API with the cached bearer token. ``watch`` follows the MQTT
change stream and prints an alert for every new emergency request.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Optional

import paho.mqtt.client as mqtt
import requests

from .core.config import settings
from .core.logging_config import setup_logging
from .schemas.emergency import EmergencyRequestOut
from .services.mqtt_bridge import build_client, decode_change_event, publish_intake
from .services.realtime import CallbackAlertSink, EmergencyAlert, LiveCollection
from .services.session_store import SessionStore

logger = logging.getLogger("cli")

REQUEST_TIMEOUT = (5, 20)


class CommandError(RuntimeError):
    pass


class ApiClient:
    def __init__(self, base_url: str, token: Optional[str] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = requests.request(method, url, headers=self._headers(), timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as exc:
            raise CommandError(f"Backend unreachable: {exc}") from exc
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text
            raise CommandError(f"{detail or 'Request failed'} (HTTP {response.status_code})")
        if response.status_code == 204 or not response.content:
            return None
        return response.json()


def _require_session(store: SessionStore) -> dict:
    if not store.is_authenticated:
        raise CommandError("Not logged in. Run `ambudispatch login` first.")
    return store.user or {}


def _format_emergency(item: dict) -> str:
    location = item.get("location") or {}
    return "{id}  {status:<10}  {name}  {phone}  {address}  ambulance={amb}".format(
        id=item.get("id"),
        status=item.get("status"),
        name=item.get("name"),
        phone=item.get("phone"),
        address=location.get("address") or "-",
        amb=item.get("ambulance_id") or "-",
    )


def cmd_login(args: argparse.Namespace, store: SessionStore, api: ApiClient) -> int:
    session = api.request("POST", "/api/v1/auth/login", json={"email": args.email, "password": args.password})
    if not store.save(session):
        raise CommandError(f"Could not write session file {store.path}")
    user = session["user"]
    print(f"Logged in as {user.get('name')} ({user.get('role')})")
    return 0


def cmd_logout(args: argparse.Namespace, store: SessionStore, api: ApiClient) -> int:
    store.clear()
    print("Logged out")
    return 0


def cmd_whoami(args: argparse.Namespace, store: SessionStore, api: ApiClient) -> int:
    user = _require_session(store)
    print(f"{user.get('name')} <{user.get('email')}> role={user.get('role')}")
    return 0


def cmd_emergencies(args: argparse.Namespace, store: SessionStore, api: ApiClient) -> int:
    _require_session(store)
    params = {"page_size": args.limit}
    if args.status:
        params["status"] = args.status
    if args.search:
        params["search"] = args.search
    result = api.request("GET", "/api/v1/emergencies", params=params)
    for item in result["items"]:
        print(_format_emergency(item))
    print(f"{len(result['items'])} of {result['total']} requests")
    return 0


def cmd_available(args: argparse.Namespace, store: SessionStore, api: ApiClient) -> int:
    _require_session(store)
    ambulances = api.request("GET", "/api/v1/ambulances/available")
    if not ambulances:
        print("No ambulances available")
        return 0
    for amb in ambulances:
        driver = amb.get("driver") or {}
        print(f"{amb['id']}  {amb['name']}  {amb['vehicle_number']}  driver={driver.get('name')} {driver.get('phone')}")
    return 0


def cmd_dispatch(args: argparse.Namespace, store: SessionStore, api: ApiClient) -> int:
    _require_session(store)
    result = api.request(
        "POST", f"/api/v1/emergencies/{args.emergency_id}/dispatch", json={"ambulance_id": args.ambulance_id}
    )
    print(result.get("message", "Ambulance dispatched"))
    return 0


def cmd_complete(args: argparse.Namespace, store: SessionStore, api: ApiClient) -> int:
    _require_session(store)
    result = api.request("POST", f"/api/v1/emergencies/{args.emergency_id}/complete")
    print(result.get("message", "Emergency completed"))
    return 0


def cmd_cancel(args: argparse.Namespace, store: SessionStore, api: ApiClient) -> int:
    _require_session(store)
    result = api.request("POST", f"/api/v1/emergencies/{args.emergency_id}/cancel")
    print(result.get("message", "Emergency cancelled"))
    return 0


def _print_alert(alert: EmergencyAlert) -> None:
    print("\a", end="")
    print(f"!!! NEW EMERGENCY {alert.name} {alert.phone} {alert.address or '-'}")
    print(f"    dispatch: ambudispatch dispatch {alert.emergency_id} <AMBULANCE_ID>")


def fetch_all_emergencies(api: ApiClient, page_size: int = 200) -> list[EmergencyRequestOut]:
    """Walk every page of the request list; the server may clamp ``page_size``."""
    items: list[dict] = []
    page = 1
    while True:
        result = api.request("GET", "/api/v1/emergencies", params={"page": page, "page_size": page_size})
        batch = result.get("items") or []
        items.extend(batch)
        if not batch or len(items) >= int(result.get("total") or 0):
            break
        page += 1
    return [EmergencyRequestOut.model_validate(item) for item in items]


def cmd_watch(args: argparse.Namespace, store: SessionStore, api: ApiClient) -> int:
    _require_session(store)
    alerts = CallbackAlertSink(_print_alert)

    requests_view = LiveCollection(
        "emergency_requests", lambda: fetch_all_emergencies(api), convert=EmergencyRequestOut.from_row
    )
    requests_view.open()

    def on_message(client: mqtt.Client, userdata, msg) -> None:  # type: ignore
        try:
            change = decode_change_event(msg.payload)
        except ValueError as exc:
            logger.warning("Ignoring malformed change on %s: %s", msg.topic, exc)
            return
        print(f"[{change.commit_time:%H:%M:%S}] {change.table} {change.event_type} id={change.record_id}")
        if change.table != "emergency_requests":
            return
        requests_view.apply(change)
        if change.event_type == "INSERT":
            alerts.send(
                EmergencyAlert.from_request(EmergencyRequestOut.from_row(change.record), settings.alert_sound_duration_sec)
            )

    def on_connect(client: mqtt.Client, userdata, flags, rc) -> None:  # type: ignore
        if rc == 0:
            client.subscribe(f"{settings.mqtt_topic_prefix}/changes/#", qos=1)
            print(f"Watching {settings.mqtt_broker_host}:{settings.mqtt_broker_port} (Ctrl+C to stop)")
        else:
            logger.error("Failed to connect to MQTT broker with code %s", rc)

    client = build_client(f"ambudispatch-watch-{id(store)}")
    client.on_connect = on_connect  # type: ignore
    client.on_message = on_message  # type: ignore
    stop = threading.Event()
    try:
        client.connect_async(settings.mqtt_broker_host, settings.mqtt_broker_port, keepalive=60)
        client.loop_start()
        stop.wait(args.seconds if args.seconds else None)
    except KeyboardInterrupt:
        pass
    finally:
        client.loop_stop()
        client.disconnect()
    open_count = sum(1 for r in requests_view.items() if r.status not in {"completed", "cancelled"})
    print(f"{open_count} open requests at exit")
    return 0


def cmd_intake(args: argparse.Namespace, store: SessionStore, api: ApiClient) -> int:
    payload = {
        "name": args.name,
        "phone": args.phone,
        "location": {
            "address": args.address,
            "coordinates": {"latitude": args.latitude, "longitude": args.longitude},
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if args.notes:
        payload["notes"] = args.notes
    if not publish_intake(payload):
        raise CommandError("Failed to publish intake request")
    print(json.dumps(payload, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ambudispatch", description="Ambulance dispatch operator console")
    parser.add_argument("--api-url", default=settings.api_base_url, help="Backend base URL")
    parser.add_argument("--session-file", default=settings.session_store_path, help="Cached session path")
    parser.add_argument("--log-level", default=None, help="Logging level (default from LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="Log in and cache the session")
    p.add_argument("email")
    p.add_argument("password")
    p.set_defaults(func=cmd_login)

    sub.add_parser("logout", help="Forget the cached session").set_defaults(func=cmd_logout)
    sub.add_parser("whoami", help="Show the logged-in operator").set_defaults(func=cmd_whoami)

    p = sub.add_parser("emergencies", help="List emergency requests")
    p.add_argument("--status", default=None)
    p.add_argument("--search", default=None)
    p.add_argument("--limit", type=int, default=50)
    p.set_defaults(func=cmd_emergencies)

    sub.add_parser("available", help="List available ambulances").set_defaults(func=cmd_available)

    p = sub.add_parser("dispatch", help="Dispatch an ambulance to a request")
    p.add_argument("emergency_id")
    p.add_argument("ambulance_id")
    p.set_defaults(func=cmd_dispatch)

    p = sub.add_parser("complete", help="Mark a request completed")
    p.add_argument("emergency_id")
    p.set_defaults(func=cmd_complete)

    p = sub.add_parser("cancel", help="Cancel a request")
    p.add_argument("emergency_id")
    p.set_defaults(func=cmd_cancel)

    p = sub.add_parser("watch", help="Follow live changes and new-emergency alerts")
    p.add_argument("--seconds", type=float, default=0, help="Stop after N seconds (0 runs until Ctrl+C)")
    p.set_defaults(func=cmd_watch)

    p = sub.add_parser("intake", help="Publish a sample request on the intake topic")
    p.add_argument("--name", default="Test Caller")
    p.add_argument("--phone", default="+91 9876543210")
    p.add_argument("--address", default="Connaught Place, New Delhi")
    p.add_argument("--latitude", type=float, default=28.6315)
    p.add_argument("--longitude", type=float, default=77.2167)
    p.add_argument("--notes", default=None)
    p.set_defaults(func=cmd_intake)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    store = SessionStore(args.session_file)
    store.load()
    api = ApiClient(args.api_url, store.token)
    try:
        return args.func(args, store, api)
    except CommandError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
