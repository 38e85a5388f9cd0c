"""
Logging set-up shared by the API process and the operator console.
"""

import logging
import os
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
# Third-party loggers that drown out dispatch activity at INFO.
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "urllib3")


def resolve_level(level: Union[int, str, None]) -> int:
    """Turn ``"debug"``, ``logging.DEBUG`` or ``None`` (``LOG_LEVEL`` env) into a level number."""
    if isinstance(level, int):
        return level
    name = (level or os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: Union[int, str, None] = None, log_file: Optional[str] = None) -> None:
    """Configure the root logger once; later calls leave existing handlers alone."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    root_level = resolve_level(level)
    logging.basicConfig(level=root_level, format=LOG_FORMAT, handlers=handlers)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root_level, logging.WARNING))
