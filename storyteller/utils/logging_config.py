"""
JSON-lines logging for the storyteller engine.

Every record under the ``storyteller`` namespace is written to ``Settings.log_file``
as one JSON object per line. WARNING and above are echoed to stderr so container
logs still show failures. Messages follow the ``"event | key=value"`` shape; any
of the ``CONTEXT_FIELDS`` passed through ``extra=`` become top-level keys.

    logger = get_logger(__name__)
    logger.info("bible extracted | characters=%d", n, extra={"session_id": sid})

    log = SessionAdapter(get_logger("storyteller.lorebook"), session_id=sid)
    log.info("lorebook loaded | entries=%d", count)
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, MutableMapping

ROOT_LOGGER = "storyteller"

CONTEXT_FIELDS = (
    "session_id",
    "socket_id",
    "agent",
    "category",
    "provider",
    "action",
    "duration_ms",
)


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        line: dict[str, Any] = {
            "time": created.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "component": record.name.removeprefix(f"{ROOT_LOGGER}.") or ROOT_LOGGER,
            "msg": record.getMessage(),
        }
        line.update(
            (field, getattr(record, field))
            for field in CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            line["exc"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str, ensure_ascii=False)


class SessionAdapter(logging.LoggerAdapter):
    """Stamps ``session_id`` onto every record; explicit ``extra`` keys win."""

    def __init__(self, logger: logging.Logger, session_id: str):
        super().__init__(logger, {"session_id": session_id})

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


_configured = False


def setup_logging(log_file: str | None = None, level: str | int | None = None) -> None:
    """Attach the file and stderr handlers to the ``storyteller`` logger once."""
    global _configured
    if _configured:
        return
    _configured = True

    from storyteller.config import get_settings

    settings = get_settings()
    path = Path(log_file or settings.log_file)
    path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level or settings.log_level.upper())
    root.propagate = False

    formatter = JsonLineFormatter()
    to_file = logging.FileHandler(path, encoding="utf-8")
    to_file.setFormatter(formatter)
    to_stderr = logging.StreamHandler(sys.stderr)
    to_stderr.setLevel(logging.WARNING)
    to_stderr.setFormatter(formatter)
    root.addHandler(to_file)
    root.addHandler(to_stderr)


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    setup_logging()
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
