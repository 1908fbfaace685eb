from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Mapping


# Attributes every LogRecord carries; anything else came from `extra={...}`.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys() | {"message", "asctime", "taskName"}
)


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, message, plus extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for k, v in record.__dict__.items():
            if k in _RECORD_ATTRS or k.startswith("_"):
                continue
            payload[k] = v

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def debug_enabled(environ: Mapping[str, str] | None = None) -> bool:
    """True when the DEBUG env var is set to true/1/yes."""

    env = os.environ if environ is None else environ
    return str(env.get("DEBUG", "")).strip().lower() in {"true", "1", "yes"}


def configure_logging(*, level: str = "INFO") -> None:
    """Configure root logging with JSON output on stderr.

    Safe to call multiple times. DEBUG=1 in the environment overrides `level`.
    """

    root = logging.getLogger()
    root.setLevel("DEBUG" if debug_enabled() else level.upper())

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(JsonFormatter())

    root.handlers.clear()
    root.addHandler(handler)
