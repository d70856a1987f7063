"""
JSON logging for Forge Ledger.

Every module logs one-line events in the form ``event | key=value | ...``.
The formatter splits that convention back into structured JSON so a log
shipper can filter on ``event`` and its fields without regexes::

    {"ts": "...", "level": "INFO", "logger": "forge_ledger.utils.economy",
     "event": "threshold_crossed", "fields": {"multiples": "[1, 2]", ...},
     "message": "threshold_crossed | multiples=[1, 2] | ..."}

Thread-scoped context comes from :class:`ThreadAdapter`::

    log = ThreadAdapter(get_logger("forge_ledger.service"), "thread-1")
    log.bind(turn_id=12).info("turn_processed | kind=snapshot")
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Optional, Tuple

ROOT_LOGGER = "forge_ledger"

# Record attributes copied into the JSON entry when present.
CONTEXT_FIELDS: Tuple[str, ...] = (
    "thread_id",
    "turn_id",
    "event_type",
    "action",
    "duration_ms",
    "checkpoint_id",
)


def split_event(message: str) -> Tuple[Optional[str], Dict[str, str]]:
    """Split ``"event | a=1 | b=two"`` into ``("event", {"a": "1", "b": "two"})``.

    Messages without a ``|`` separator have no event name. Segments that are
    not ``key=value`` pairs are kept under ``detail``.
    """
    parts = [p.strip() for p in message.split(" | ")]
    if len(parts) < 2 or not parts[0] or " " in parts[0]:
        return None, {}

    fields: Dict[str, str] = {}
    details = []
    for part in parts[1:]:
        key, sep, value = part.partition("=")
        if sep and key and " " not in key:
            fields[key] = value
        elif part:
            details.append(part)
    if details:
        fields["detail"] = " | ".join(details)
    return parts[0], fields


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
        }

        event, fields = split_event(message)
        if event:
            entry["event"] = event
            if fields:
                entry["fields"] = fields
        entry["message"] = message

        for key in CONTEXT_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class ThreadAdapter(logging.LoggerAdapter):
    """Injects ``thread_id`` (and any bound context) into every record."""

    def __init__(self, logger: logging.Logger, thread_id: str, **context: Any):
        super().__init__(logger, {"thread_id": thread_id, **context})

    def bind(self, **context: Any) -> "ThreadAdapter":
        """A new adapter carrying this one's context plus *context*."""
        merged = {**self.extra, **context}
        thread_id = merged.pop("thread_id")
        return ThreadAdapter(self.logger, thread_id, **merged)

    def process(
        self,
        msg: str,
        kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.setdefault("extra", {})
        for key, value in self.extra.items():
            extra.setdefault(key, value)
        return msg, kwargs


_CONFIGURED = False


def setup_logging(log_file: str | None = None, level: int | str | None = None) -> None:
    """Attach JSON handlers to the ``forge_ledger`` logger once per process.

    Falls back to ``Settings.log_file`` / ``Settings.log_level``. Stderr only
    carries WARNING and above; the optional file gets everything at *level*.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return
    _CONFIGURED = True

    from forge_ledger.config import get_settings
    settings = get_settings()
    log_file = log_file if log_file is not None else settings.log_file
    level = level if level is not None else settings.log_level

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False

    formatter = JSONFormatter()

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        root.addHandler(fh)

    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(formatter)
    sh.setLevel(logging.WARNING)
    root.addHandler(sh)


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Logger under the ``forge_ledger`` namespace; configures logging on first use."""
    setup_logging()
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
