"""
Single-session store for the operator console.

Holds at most one authenticated operator and persists it as JSON so a
restarted console keeps the login. There is no token refresh or expiry
check; an expired token surfaces as a 401 on the next call.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from ..core.errors import load_json_file, log_exception, write_json_atomic


class SessionStore:
    def __init__(self, path: str | Path) -> None:
        self.logger = logging.getLogger("SessionStore")
        self.path = Path(path).expanduser()
        self._session: Optional[dict] = None

    def load(self) -> Optional[dict]:
        data = load_json_file(self.path, None, expect=dict, logger=self.logger, context={"op": "session_load"})
        if data is not None and isinstance(data.get("user"), dict) and data.get("access_token"):
            self._session = data
        else:
            if data is not None:
                self.logger.warning("Ignoring malformed session file %s", self.path)
            self._session = None
        return self._session

    def save(self, session: dict[str, Any]) -> bool:
        if not isinstance(session.get("user"), dict) or not session.get("access_token"):
            raise ValueError("A session needs a user and an access_token")
        self._session = {"user": dict(session["user"]), "access_token": session["access_token"]}
        return write_json_atomic(
            self.path, self._session, private=True, logger=self.logger, context={"op": "session_save"}
        )

    def clear(self) -> None:
        self._session = None
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            log_exception(self.logger, "Failed to remove session file", extra={"path": str(self.path)}, exc=exc)

    @property
    def user(self) -> Optional[dict]:
        return self._session["user"] if self._session else None

    @property
    def token(self) -> Optional[str]:
        return self._session["access_token"] if self._session else None

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None
