import logging

import pytest
from sqlalchemy.exc import SQLAlchemyError

from ambudispatch.models import Ambulance
from ambudispatch.services.data_access import DataAccessError, RecordNotFound


def _ambulance_fields(**overrides):
    fields = {
        "name": "Alpha",
        "vehicle_number": "DL-01",
        "driver_name": "Ravi",
        "driver_phone": "+91 9000000000",
    }
    fields.update(overrides)
    return fields


def test_insert_update_delete_are_published_after_commit(data, feed):
    seen = []
    channel = feed.channel("page").on("ambulances", "*", seen.append).subscribe()

    amb = data.create_ambulance(_ambulance_fields())
    data.update_ambulance(amb.id, {"status": "maintenance"})
    data.delete_ambulance(amb.id)
    channel.unsubscribe()

    assert [e.event_type for e in seen] == ["INSERT", "UPDATE", "DELETE"]
    assert [e.seq for e in seen] == [1, 2, 3]
    assert seen[0].record["id"] == amb.id
    assert seen[1].record["status"] == "maintenance"
    assert seen[2].record_id == amb.id
    assert feed.last_seq("ambulances") == 3


def test_event_filter_and_unsubscribe(data, feed):
    inserts = []
    channel = feed.channel().on("emergency_requests", "INSERT", inserts.append).subscribe()

    created = data.create_emergency({"name": "Asha", "phone": "+91 1"})
    data.update_emergency(created.id, {"notes": "second floor"})
    data.create_ambulance(_ambulance_fields())
    channel.unsubscribe()
    data.create_emergency({"name": "Later", "phone": "+91 2"})

    assert len(inserts) == 1
    assert inserts[0].table == "emergency_requests"
    assert feed.channel_count() == 0


def test_channel_context_manager_limits_lifetime(data, feed):
    seen = []
    with feed.channel("emergencies-page").on("*", "*", seen.append):
        data.create_emergency({"name": "Asha", "phone": "+91 1"})
        assert feed.channel_count() == 1
    data.create_emergency({"name": "Nobody listening", "phone": "+91 2"})

    assert len(seen) == 1
    assert feed.channel_count() == 0


def test_rollback_publishes_nothing(session_factory, feed):
    seen = []
    feed.channel().on("*", "*", seen.append).subscribe()

    with session_factory() as db:
        db.add(Ambulance(**_ambulance_fields()))
        db.flush()
        db.rollback()

    assert seen == []
    assert feed.last_seq("ambulances") == 0


def test_failing_subscriber_does_not_block_others(data, feed, caplog):
    seen = []

    def _boom(_change):
        raise RuntimeError("subscriber exploded")

    feed.channel("broken").on("ambulances", "INSERT", _boom).subscribe()
    feed.channel("healthy").on("ambulances", "INSERT", seen.append).subscribe()
    caplog.set_level(logging.ERROR)

    data.create_ambulance(_ambulance_fields())

    assert len(seen) == 1
    assert any("Change subscriber failed" in rec.message for rec in caplog.records)


def test_unwatched_tables_are_not_published(data, feed):
    seen = []
    feed.channel().on("*", "*", seen.append).subscribe()

    data.create_hospital({"name": "City General", "latitude": 28.62, "longitude": 77.21})

    assert seen == []


def test_facade_subscribe_returns_active_channel(data):
    seen = []
    channel = data.subscribe("patients", "INSERT", seen.append, channel_name="patients-page")

    data.create_patient({"name": "Meera", "phone": "+91 3"})

    assert channel.active
    assert seen[0].record["name"] == "Meera"


def test_update_and_delete_of_missing_rows(data):
    with pytest.raises(RecordNotFound):
        data.update_patient("missing", {"name": "x"})
    with pytest.raises(RecordNotFound):
        data.delete_report("missing")
    assert data.get_patient("missing") is None


def test_store_errors_are_wrapped(data, session_factory, monkeypatch, caplog):
    class _BrokenSession:
        def get(self, *_args, **_kwargs):
            raise SQLAlchemyError("connection lost")

        def rollback(self):
            pass

        def close(self):
            pass

    monkeypatch.setattr(data, "session_factory", _BrokenSession)
    caplog.set_level(logging.ERROR)

    with pytest.raises(DataAccessError) as info:
        data.get_ambulance("any")
    assert str(info.value) == "get ambulances failed"
    assert any("get ambulances failed" in rec.message for rec in caplog.records)


def test_search_sort_and_report_enrichment(data):
    first = data.create_emergency({"name": "Bharat", "phone": "+91 5", "address": "Saket"})
    data.create_emergency({"name": "Asha", "phone": "+91 6", "address": "Karol Bagh"})
    amb = data.create_ambulance(_ambulance_fields(name="Rescue 7"))
    data.create_report({"title": "Fall injury", "emergency_id": first.id, "ambulance_id": amb.id})
    data.create_report({"title": "Unlinked"})

    by_name = data.list_emergencies(sort_key="name", descending=False)
    assert [e.name for e in by_name] == ["Asha", "Bharat"]
    assert [e.name for e in data.list_emergencies(search="karol")] == ["Asha"]

    reports = data.list_reports(search="rescue")
    assert len(reports) == 1
    assert reports[0].emergency.name == "Bharat"
    assert reports[0].ambulance.name == "Rescue 7"


def test_update_stamps_updated_at_and_skips_none_for_required(data):
    created = data.create_emergency({"name": "Asha", "phone": "+91 1"})

    updated = data.update_emergency(created.id, {"name": None, "notes": "gate 2"})

    assert updated.name == "Asha"
    assert updated.notes == "gate 2"
    assert updated.updated_at >= created.updated_at
