import json
import logging
import os
import stat
from pathlib import Path

from ambudispatch.core import errors


def test_write_json_atomic_writes_private_file(tmp_path: Path):
    path = tmp_path / "nested" / "session.json"
    payload = {"user": {"id": "u1"}, "access_token": "abc"}
    logger = logging.getLogger("test_errors")

    assert errors.write_json_atomic(path, payload, private=True, logger=logger) is True
    assert json.loads(path.read_text(encoding="utf-8")) == payload
    assert [p.name for p in path.parent.iterdir()] == ["session.json"]
    if os.name == "posix":
        assert stat.S_IMODE(path.stat().st_mode) == errors.PRIVATE_FILE_MODE


def test_write_json_atomic_keeps_previous_file_on_failure(tmp_path: Path, monkeypatch, caplog):
    path = tmp_path / "session.json"
    path.write_text(json.dumps({"stable": True}), encoding="utf-8")
    logger = logging.getLogger("test_errors")

    def _boom(*_args, **_kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(errors.json, "dump", _boom)
    caplog.set_level(logging.ERROR)

    assert errors.write_json_atomic(path, {"new": "data"}, logger=logger) is False
    assert json.loads(path.read_text(encoding="utf-8")) == {"stable": True}
    assert [p.name for p in tmp_path.iterdir()] == ["session.json"]
    assert any("JSON atomic write failed" in rec.message for rec in caplog.records)


def test_load_json_file_returns_default(tmp_path: Path, caplog):
    logger = logging.getLogger("test_errors")
    broken = tmp_path / "broken.json"
    broken.write_text("[1, 2", encoding="utf-8")
    caplog.set_level(logging.WARNING)

    assert errors.load_json_file(tmp_path / "missing.json", {"fallback": 1}) == {"fallback": 1}
    assert errors.load_json_file(broken, None, logger=logger, context={"op": "test"}) is None
    assert any("JSON load failed" in rec.message and "op=test" in rec.message for rec in caplog.records)


def test_load_json_file_checks_type(tmp_path: Path, caplog):
    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]", encoding="utf-8")
    caplog.set_level(logging.WARNING)

    assert errors.load_json_file(listing, None, expect=dict, logger=logging.getLogger("test_errors")) is None
    assert errors.load_json_file(listing, None, expect=list) == [1, 2]
    assert any("expected dict, found list" in rec.message for rec in caplog.records)


def test_log_exception_includes_context(caplog):
    logger = logging.getLogger("test_errors")
    caplog.set_level(logging.ERROR)

    errors.log_exception(logger, "Dispatch failed", extra={"emergency_id": "er001", "skip": None}, exc=ValueError("x"))

    record = caplog.records[-1]
    assert record.getMessage() == "Dispatch failed emergency_id=er001: x"
    assert record.exc_info is not None
