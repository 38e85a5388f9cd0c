"""
Data-access facade over the dispatch store.

Every call opens its own session and commits on its own, so two calls are
never part of one transaction. Reads return detached pydantic copies; the
store stays the owner of every row. Committed writes reach subscribers
through the change feed attached to the session factory.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Type

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.errors import log_exception
from ..models import Ambulance, EmergencyRequest, Hospital, Patient, Report, utcnow
from ..schemas.ambulance import AmbulanceOut
from ..schemas.emergency import EmergencyRequestOut
from ..schemas.hospital import HospitalOut
from ..schemas.patient import PatientOut
from ..schemas.report import ReportOut
from .change_feed import ChangeCallback, ChangeFeed, Channel

TERMINAL_STATUSES = {"completed", "cancelled"}

EMERGENCY_SORT_KEYS = {
    "timestamp": EmergencyRequest.timestamp,
    "name": EmergencyRequest.name,
    "phone": EmergencyRequest.phone,
    "status": EmergencyRequest.status,
    "address": EmergencyRequest.address,
}


class DataAccessError(RuntimeError):
    """A store call failed; the message is safe to show to an operator."""


class RecordNotFound(DataAccessError):
    pass


def _search_clause(columns, search: Optional[str]):
    needle = (search or "").strip()
    if not needle:
        return None
    pattern = f"%{needle}%"
    return or_(*[col.ilike(pattern) for col in columns])


class DataAccess:
    def __init__(self, session_factory: Callable[[], Session], feed: Optional[ChangeFeed] = None) -> None:
        self.logger = logging.getLogger("DataAccess")
        self.session_factory = session_factory
        self.feed = feed

    @contextmanager
    def _session(self, operation: str, **context: Any) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            log_exception(self.logger, f"{operation} failed", extra=context, exc=exc)
            raise DataAccessError(f"{operation} failed") from exc
        finally:
            db.close()

    # Generic row helpers

    def _get(self, model: Type[Any], record_id: str, to_out: Callable[[Any], Any]):
        with self._session(f"get {model.__tablename__}", id=record_id) as db:
            row = db.get(model, record_id)
            return to_out(row) if row is not None else None

    def _create(self, model: Type[Any], data: dict, to_out: Callable[[Any], Any]):
        with self._session(f"insert {model.__tablename__}") as db:
            row = model(**{k: v for k, v in data.items() if v is not None})
            db.add(row)
            db.commit()
            db.refresh(row)
            self.logger.info("Inserted %s id=%s", model.__tablename__, row.id)
            return to_out(row)

    def _update(self, model: Type[Any], record_id: str, fields: dict, to_out: Callable[[Any], Any]):
        columns = model.__table__.columns
        unknown = set(fields) - set(columns.keys())
        if unknown:
            raise ValueError(f"Unknown {model.__tablename__} fields: {', '.join(sorted(unknown))}")
        with self._session(f"update {model.__tablename__}", id=record_id) as db:
            row = db.get(model, record_id)
            if row is None:
                raise RecordNotFound(f"{model.__tablename__} {record_id} not found")
            for key, value in fields.items():
                if value is None and not columns[key].nullable:
                    continue
                setattr(row, key, value)
            if "updated_at" in columns.keys():
                row.updated_at = utcnow()
            db.commit()
            db.refresh(row)
            return to_out(row)

    def _delete(self, model: Type[Any], record_id: str) -> None:
        with self._session(f"delete {model.__tablename__}", id=record_id) as db:
            row = db.get(model, record_id)
            if row is None:
                raise RecordNotFound(f"{model.__tablename__} {record_id} not found")
            db.delete(row)
            db.commit()
            self.logger.info("Deleted %s id=%s", model.__tablename__, record_id)

    # Emergency requests

    def list_emergencies(
        self,
        *,
        status: Optional[str] = None,
        search: Optional[str] = None,
        sort_key: str = "timestamp",
        descending: bool = True,
        ambulance_id: Optional[str] = None,
    ) -> list[EmergencyRequestOut]:
        if sort_key not in EMERGENCY_SORT_KEYS:
            raise ValueError(f"Unsupported sort key {sort_key!r}")
        with self._session("list emergency_requests") as db:
            query = db.query(EmergencyRequest)
            if status:
                query = query.filter(EmergencyRequest.status == status)
            if ambulance_id:
                query = query.filter(EmergencyRequest.ambulance_id == ambulance_id)
            clause = _search_clause(
                [EmergencyRequest.name, EmergencyRequest.phone, EmergencyRequest.address], search
            )
            if clause is not None:
                query = query.filter(clause)
            column = EMERGENCY_SORT_KEYS[sort_key]
            query = query.order_by(column.desc() if descending else column.asc(), EmergencyRequest.id.asc())
            return [EmergencyRequestOut.from_row(row) for row in query.all()]

    def get_emergency(self, emergency_id: str) -> Optional[EmergencyRequestOut]:
        return self._get(EmergencyRequest, emergency_id, EmergencyRequestOut.from_row)

    def create_emergency(self, data: dict) -> EmergencyRequestOut:
        return self._create(EmergencyRequest, data, EmergencyRequestOut.from_row)

    def update_emergency(self, emergency_id: str, fields: dict) -> EmergencyRequestOut:
        return self._update(EmergencyRequest, emergency_id, fields, EmergencyRequestOut.from_row)

    def delete_emergency(self, emergency_id: str) -> None:
        self._delete(EmergencyRequest, emergency_id)

    # Ambulances

    def list_ambulances(self, *, status: Optional[str] = None, search: Optional[str] = None) -> list[AmbulanceOut]:
        with self._session("list ambulances") as db:
            query = db.query(Ambulance)
            if status:
                query = query.filter(Ambulance.status == status)
            clause = _search_clause(
                [Ambulance.name, Ambulance.vehicle_number, Ambulance.driver_name, Ambulance.driver_phone],
                search,
            )
            if clause is not None:
                query = query.filter(clause)
            return [AmbulanceOut.from_row(row) for row in query.order_by(Ambulance.name.asc()).all()]

    def get_ambulance(self, ambulance_id: str) -> Optional[AmbulanceOut]:
        return self._get(Ambulance, ambulance_id, AmbulanceOut.from_row)

    def create_ambulance(self, data: dict) -> AmbulanceOut:
        return self._create(Ambulance, data, AmbulanceOut.from_row)

    def update_ambulance(self, ambulance_id: str, fields: dict) -> AmbulanceOut:
        return self._update(Ambulance, ambulance_id, fields, AmbulanceOut.from_row)

    def delete_ambulance(self, ambulance_id: str) -> None:
        self._delete(Ambulance, ambulance_id)

    # Patients

    def list_patients(self, *, search: Optional[str] = None) -> list[PatientOut]:
        with self._session("list patients") as db:
            query = db.query(Patient)
            clause = _search_clause(
                [Patient.name, Patient.phone, Patient.address, Patient.emergency_contact], search
            )
            if clause is not None:
                query = query.filter(clause)
            return [PatientOut.model_validate(row) for row in query.order_by(Patient.name.asc()).all()]

    def get_patient(self, patient_id: str) -> Optional[PatientOut]:
        return self._get(Patient, patient_id, PatientOut.model_validate)

    def create_patient(self, data: dict) -> PatientOut:
        return self._create(Patient, data, PatientOut.model_validate)

    def update_patient(self, patient_id: str, fields: dict) -> PatientOut:
        return self._update(Patient, patient_id, fields, PatientOut.model_validate)

    def delete_patient(self, patient_id: str) -> None:
        self._delete(Patient, patient_id)

    # Reports

    def list_reports(self, *, search: Optional[str] = None, enrich: bool = True) -> list[ReportOut]:
        with self._session("list reports") as db:
            rows = db.query(Report).order_by(Report.report_date.desc(), Report.created_at.desc()).all()
            reports = [ReportOut.model_validate(row) for row in rows]
            if enrich:
                emergency_ids = {r.emergency_id for r in reports if r.emergency_id}
                ambulance_ids = {r.ambulance_id for r in reports if r.ambulance_id}
                emergencies = {
                    row.id: EmergencyRequestOut.from_row(row)
                    for row in db.query(EmergencyRequest).filter(EmergencyRequest.id.in_(emergency_ids)).all()
                } if emergency_ids else {}
                ambulances = {
                    row.id: AmbulanceOut.from_row(row)
                    for row in db.query(Ambulance).filter(Ambulance.id.in_(ambulance_ids)).all()
                } if ambulance_ids else {}
                for report in reports:
                    report.emergency = emergencies.get(report.emergency_id)
                    report.ambulance = ambulances.get(report.ambulance_id)
        needle = (search or "").strip().lower()
        if not needle:
            return reports
        # Linked names are only known after enrichment, so reports filter locally.
        return [
            r
            for r in reports
            if needle in r.title.lower()
            or needle in (r.description or "").lower()
            or (r.emergency is not None and needle in r.emergency.name.lower())
            or (r.ambulance is not None and needle in r.ambulance.name.lower())
        ]

    def get_report(self, report_id: str) -> Optional[ReportOut]:
        return self._get(Report, report_id, ReportOut.model_validate)

    def create_report(self, data: dict) -> ReportOut:
        return self._create(Report, data, ReportOut.model_validate)

    def update_report(self, report_id: str, fields: dict) -> ReportOut:
        return self._update(Report, report_id, fields, ReportOut.model_validate)

    def delete_report(self, report_id: str) -> None:
        self._delete(Report, report_id)

    # Hospitals

    def list_hospitals(self) -> list[HospitalOut]:
        with self._session("list hospitals") as db:
            return [HospitalOut.model_validate(row) for row in db.query(Hospital).order_by(Hospital.name.asc()).all()]

    def create_hospital(self, data: dict) -> HospitalOut:
        return self._create(Hospital, data, HospitalOut.model_validate)

    # Change notifications

    def subscribe(self, table: str, event: str, callback: ChangeCallback, channel_name: Optional[str] = None) -> Channel:
        if self.feed is None:
            raise RuntimeError("DataAccess was created without a change feed")
        return self.feed.channel(channel_name).on(table, event, callback).subscribe()
