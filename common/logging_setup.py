from __future__ import annotations

import logging
import os
import sys
import json
from typing import Optional, TextIO


class JsonFormatter(logging.Formatter):
    """
    JSON-lines log formatter:
      { "t": 1700000000000, "lvl": "INFO", "name": "session.loop", "thr": "nav-consumer",
        "msg": "text", "extra": {...} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(record.created * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "thr": record.threadName,
            "msg": record.getMessage(),
        }
        # Structured fields travel as extra={"extra": {...}}
        if hasattr(record, "extra") and isinstance(record.extra, dict):  # type: ignore[attr-defined]
            payload["extra"] = record.extra  # type: ignore[attr-defined]
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None, stream: Optional[TextIO] = None, force: bool = False) -> None:
    """
    Configure the root logger once with JSON formatting.
    Level precedence:
      - explicit `level` arg
      - env LOG_LEVEL (DEBUG/INFO/WARNING/ERROR)
      - default INFO
    `force=True` reconfigures an already configured root (used when the config file
    is read after the first logger was created).
    """
    root = logging.getLogger()
    if getattr(root, "_navstate_configured", False) and not force:
        return

    lvl_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    lvl = logging.getLevelName(lvl_name)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(lvl)
    root._navstate_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Get a module logger; ensures root is configured."""
    setup_logging()
    return logging.getLogger(name)
