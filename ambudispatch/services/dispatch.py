"""
Dispatch workflow: assign an available ambulance to an emergency request
and release it again when the request completes or is cancelled.

The request update and the ambulance update are two independent writes.
The request update is authoritative; a failed ambulance update is logged
and left for an operator to correct by hand.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..core.errors import log_exception
from ..schemas.ambulance import AmbulanceOut
from ..schemas.emergency import EmergencyRequestOut
from .data_access import DataAccess, DataAccessError, TERMINAL_STATUSES

DISPATCHABLE_STATUSES = {"pending", "requested", "confirming", "dispatched"}
COMPLETABLE_STATUSES = {"dispatched", "en_route", "arrived"}
CANCELLABLE_STATUSES = {"pending", "requested", "confirming", "dispatched", "en_route", "arrived"}


class DispatchError(RuntimeError):
    """Base class for dispatch workflow failures."""


class DispatchValidationError(DispatchError):
    pass


class EmergencyNotFound(DispatchError):
    pass


class AmbulanceNotFound(DispatchError):
    pass


class InvalidTransition(DispatchError):
    pass


class DispatchService:
    def __init__(self, data: DataAccess) -> None:
        self.logger = logging.getLogger("DispatchService")
        self.data = data

    def fetch_available_ambulances(self) -> list[AmbulanceOut]:
        try:
            return self.data.list_ambulances(status="available")
        except DataAccessError as exc:
            raise DispatchError("Failed to load available ambulances") from exc

    def _load_emergency(self, emergency_id: str) -> EmergencyRequestOut:
        try:
            emergency = self.data.get_emergency(emergency_id)
        except DataAccessError as exc:
            raise DispatchError("Failed to load emergency request") from exc
        if emergency is None:
            raise EmergencyNotFound(f"Emergency request {emergency_id} not found")
        return emergency

    def _load_ambulance(self, ambulance_id: str) -> AmbulanceOut:
        try:
            ambulance = self.data.get_ambulance(ambulance_id)
        except DataAccessError as exc:
            raise DispatchError("Failed to load ambulance") from exc
        if ambulance is None:
            raise AmbulanceNotFound(f"Ambulance {ambulance_id} not found")
        return ambulance

    def _set_emergency_status(self, emergency_id: str, fields: dict, action: str) -> None:
        try:
            self.data.update_emergency(emergency_id, fields)
        except DataAccessError as exc:
            log_exception(self.logger, f"{action} failed", extra={"emergency_id": emergency_id}, exc=exc)
            raise DispatchError(f"Failed to {action.lower()}") from exc

    def _set_ambulance_status(self, ambulance_id: str, status: str, *, emergency_id: str) -> bool:
        try:
            self.data.update_ambulance(ambulance_id, {"status": status})
            return True
        except DataAccessError as exc:
            log_exception(
                self.logger,
                "Ambulance status update failed",
                extra={"ambulance_id": ambulance_id, "status": status, "emergency_id": emergency_id},
                exc=exc,
            )
            return False

    def dispatch_ambulance(self, emergency_id: Optional[str], ambulance_id: Optional[str]) -> bool:
        emergency_id = (emergency_id or "").strip()
        ambulance_id = (ambulance_id or "").strip()
        if not emergency_id:
            raise DispatchValidationError("No emergency request selected")
        if not ambulance_id:
            raise DispatchValidationError("Please select an ambulance")

        emergency = self._load_emergency(emergency_id)
        ambulance = self._load_ambulance(ambulance_id)
        if emergency.status not in DISPATCHABLE_STATUSES:
            raise InvalidTransition(f"Cannot dispatch a request that is {emergency.status}")
        if ambulance.status != "available":
            # Last writer wins; the operator chose this ambulance explicitly.
            self.logger.warning(
                "Dispatching ambulance %s with status=%s to emergency %s",
                ambulance_id,
                ambulance.status,
                emergency_id,
            )

        self._set_emergency_status(
            emergency_id,
            {"status": "dispatched", "ambulance_id": ambulance_id},
            "Dispatch ambulance",
        )
        self._set_ambulance_status(ambulance_id, "dispatched", emergency_id=emergency_id)
        self.logger.info("Dispatched ambulance %s to emergency %s", ambulance_id, emergency_id)
        return True

    def complete_emergency(self, emergency_id: Optional[str]) -> bool:
        return self._close(emergency_id, "completed", COMPLETABLE_STATUSES, "Complete emergency")

    def cancel_emergency(self, emergency_id: Optional[str]) -> bool:
        return self._close(emergency_id, "cancelled", CANCELLABLE_STATUSES, "Cancel emergency")

    def _close(self, emergency_id: Optional[str], status: str, allowed: set[str], action: str) -> bool:
        emergency_id = (emergency_id or "").strip()
        if not emergency_id:
            raise DispatchValidationError("No emergency request selected")
        emergency = self._load_emergency(emergency_id)
        if emergency.status in TERMINAL_STATUSES or emergency.status not in allowed:
            raise InvalidTransition(f"Cannot mark a {emergency.status} request as {status}")

        self._set_emergency_status(emergency_id, {"status": status}, action)
        if emergency.ambulance_id:
            self._set_ambulance_status(emergency.ambulance_id, "available", emergency_id=emergency_id)
        self.logger.info("Emergency %s marked %s", emergency_id, status)
        return True

    def active_emergency_for_ambulance(self, ambulance_id: str) -> Optional[EmergencyRequestOut]:
        """Recover the request an ambulance is serving by scanning open requests."""
        try:
            candidates = self.data.list_emergencies(ambulance_id=ambulance_id)
        except DataAccessError as exc:
            raise DispatchError("Failed to load emergency requests") from exc
        for emergency in candidates:
            if emergency.status not in TERMINAL_STATUSES:
                return emergency
        return None

    def find_mismatches(self) -> list[dict]:
        """
        List ambulances whose status disagrees with the open requests.

        A partial dispatch leaves the request dispatched while the ambulance
        still reads available; a lost release leaves an ambulance dispatched
        with nothing open. Nothing is corrected here.
        """
        try:
            ambulances = self.data.list_ambulances()
            emergencies = self.data.list_emergencies()
        except DataAccessError as exc:
            raise DispatchError("Failed to load dispatch state") from exc
        serving: dict[str, str] = {}
        for emergency in emergencies:
            if emergency.ambulance_id and emergency.status not in TERMINAL_STATUSES:
                serving.setdefault(emergency.ambulance_id, emergency.id)
        mismatches = []
        for ambulance in ambulances:
            emergency_id = serving.get(ambulance.id)
            if emergency_id and ambulance.status != "dispatched":
                mismatches.append(
                    {
                        "ambulance_id": ambulance.id,
                        "ambulance_status": ambulance.status,
                        "emergency_id": emergency_id,
                        "problem": "serving an open request but not marked dispatched",
                    }
                )
            elif not emergency_id and ambulance.status == "dispatched":
                mismatches.append(
                    {
                        "ambulance_id": ambulance.id,
                        "ambulance_status": ambulance.status,
                        "emergency_id": None,
                        "problem": "marked dispatched without an open request",
                    }
                )
        return mismatches

    def ambulance_for_emergency(self, emergency_id: str) -> Optional[AmbulanceOut]:
        emergency = self._load_emergency(emergency_id)
        if not emergency.ambulance_id:
            return None
        try:
            return self.data.get_ambulance(emergency.ambulance_id)
        except DataAccessError as exc:
            raise DispatchError("Failed to load ambulance") from exc
