"""
Error-reporting and file helpers shared by the backend and the console.

``log_exception`` is the one place failures are written to the log with
their context; the JSON helpers never raise, they log and fall back.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, TypeVar

T = TypeVar("T")

# The console session file holds a bearer token.
PRIVATE_FILE_MODE = 0o600


def _context_suffix(extra: Optional[dict]) -> str:
    parts = [f"{key}={value}" for key, value in (extra or {}).items() if value is not None]
    return " " + " ".join(parts) if parts else ""


def log_exception(
    logger: logging.Logger,
    msg: str,
    *,
    extra: Optional[dict] = None,
    exc: Optional[BaseException] = None,
) -> None:
    """Log ``msg`` with ``key=value`` context and the traceback of ``exc`` (or the active exception)."""
    suffix = _context_suffix(extra)
    if exc is None:
        logger.exception("%s%s", msg, suffix)
    else:
        logger.error("%s%s: %s", msg, suffix, exc, exc_info=exc)


def load_json_file(
    path: str | Path,
    default: T,
    *,
    expect: Optional[type] = None,
    logger: Optional[logging.Logger] = None,
    context: Optional[dict] = None,
) -> T:
    """Read JSON from ``path``; a missing, unreadable or wrongly typed file yields ``default``."""
    target = Path(path)
    if not target.exists():
        return default
    try:
        with target.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        if logger:
            log_exception(logger, "JSON load failed", extra={"path": str(target), **(context or {})}, exc=exc)
        return default
    if expect is not None and not isinstance(data, expect):
        if logger:
            logger.warning("Ignoring %s: expected %s, found %s", target, expect.__name__, type(data).__name__)
        return default
    return data


def write_json_atomic(
    path: str | Path,
    data: Any,
    *,
    private: bool = False,
    logger: Optional[logging.Logger] = None,
    context: Optional[dict] = None,
) -> bool:
    """
    Replace ``path`` with ``data`` as JSON in one rename.

    The previous file stays intact on any failure. With ``private`` the file
    is readable by the owner only.
    """
    target = Path(path)
    tmp_path: Optional[Path] = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
        tmp_path = Path(tmp_name)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
            f.flush()
            os.fsync(f.fileno())
        if private:
            os.chmod(tmp_path, PRIVATE_FILE_MODE)
        os.replace(tmp_path, target)
        tmp_path = None
        return True
    except Exception as exc:
        if logger:
            log_exception(logger, "JSON atomic write failed", extra={"path": str(target), **(context or {})}, exc=exc)
        return False
    finally:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
