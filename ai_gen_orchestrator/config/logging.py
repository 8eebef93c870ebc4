"""
Logging setup: Rich console sink plus an optional JSONL file sink.

Modules log through logging.getLogger(__name__); this only wires handlers.
Job-scoped records may carry user_id, job_id, model_id and event extras.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from rich.logging import RichHandler

CONSOLE_HANDLER_NAME = "console_handler"
JSONL_HANDLER_NAME = "jsonl_handler"


class JsonlFormatter(logging.Formatter):
    """Structured JSONL formatter with a fixed key set."""

    KEYS = (
        "ts",
        "level",
        "name",
        "event",
        "user_id",
        "job_id",
        "model_id",
        "detail",
        "exc",
    )

    def format(self, record: logging.LogRecord) -> str:
        ts = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .astimezone()
            .strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        )

        payload: Dict[str, Any] = {
            "ts": ts,
            "level": record.levelname,
            "name": record.name,
            "event": getattr(record, "event", None),
            "user_id": getattr(record, "user_id", None),
            "job_id": getattr(record, "job_id", None),
            "model_id": getattr(record, "model_id", None),
            "detail": record.getMessage(),
            "exc": self.formatException(record.exc_info) if record.exc_info else None,
        }

        # Drop None keys; preserve order of KEYS
        obj = {k: payload[k] for k in self.KEYS if payload.get(k) is not None}
        return json.dumps(obj, ensure_ascii=False)


def configure_logging(level: str = "INFO", jsonl_path: Optional[str] = None) -> None:
    """Install the console sink and, when a path is given, the JSONL sink.

    Replaces existing root handlers so repeated calls do not duplicate output.

    Args:
        level: Root log level name
        jsonl_path: File to append structured records to
    """
    console = RichHandler(
        rich_tracebacks=True,
        show_path=False,
        show_time=True,
        log_time_format="%Y-%m-%d %H:%M:%S",
    )
    console.set_name(CONSOLE_HANDLER_NAME)
    console.setFormatter(logging.Formatter(fmt="%(message)s"))
    handlers: list = [console]

    if jsonl_path:
        path = Path(jsonl_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        jsonl = logging.FileHandler(str(path), encoding="utf-8")
        jsonl.set_name(JSONL_HANDLER_NAME)
        jsonl.setFormatter(JsonlFormatter())
        handlers.append(jsonl)

    logging.basicConfig(handlers=handlers, level=level.upper(), force=True, format="%(message)s")

    for name in ("openai", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug("Logging configured", extra={"event": "logging_configured"})
