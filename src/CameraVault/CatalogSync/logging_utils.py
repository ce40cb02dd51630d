"""Structured logging and job event stream for the catalog sync engine.

Every job reports progress through :func:`emit_event`, which writes a log
record carrying ``job``/``cycle_id``/``event`` fields and fans the same payload
out to in-process subscribers registered on an :class:`EventStream`. The
monitor subscribes to the stream instead of scraping console output.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

__all__ = [
    "JSONFormatter",
    "JobEvent",
    "EventStream",
    "emit_event",
    "generate_cycle_id",
    "get_event_stream",
    "setup_logging",
]

ROOT_LOGGER_NAME = "CameraVault"


def generate_cycle_id() -> str:
    """Create a short identifier that links the log entries of one job run."""
    return uuid.uuid4().hex[:12]


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "job": getattr(record, "job", None),
            "cycle_id": getattr(record, "cycle_id", None),
            "event": getattr(record, "event", None),
        }
        if hasattr(record, "extra_fields") and isinstance(record.extra_fields, dict):
            payload.update(record.extra_fields)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


@dataclass(frozen=True)
class JobEvent:
    """One structured event published by a job."""

    job: str
    cycle_id: str
    event: str
    fields: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Subscriber = Callable[[JobEvent], None]


class EventStream:
    """Thread-safe fan-out of :class:`JobEvent` values to subscribers."""

    def __init__(self, history: int = 200) -> None:
        self._lock = threading.Lock()
        self._subscribers: List[Subscriber] = []
        self._history: List[JobEvent] = []
        self._max_history = history

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event: JobEvent) -> None:
        with self._lock:
            self._history.append(event)
            if len(self._history) > self._max_history:
                del self._history[: len(self._history) - self._max_history]
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logging.getLogger(__name__).exception(
                    "Event subscriber failed for %s/%s", event.job, event.event
                )

    def recent(self, job: Optional[str] = None) -> List[JobEvent]:
        """Return buffered events, optionally filtered by job name."""
        with self._lock:
            events = list(self._history)
        if job is None:
            return events
        return [e for e in events if e.job == job]


_EVENT_STREAM = EventStream()


def get_event_stream() -> EventStream:
    """Return the process-wide event stream."""
    return _EVENT_STREAM


def emit_event(
    logger: logging.Logger,
    job: str,
    cycle_id: str,
    event: str,
    *,
    level: int = logging.INFO,
    stream: Optional[EventStream] = None,
    **fields: Any,
) -> JobEvent:
    """Log a structured job event and publish it on the event stream."""
    job_event = JobEvent(job=job, cycle_id=cycle_id, event=event, fields=dict(fields))
    details = " ".join(f"{k}={v}" for k, v in fields.items())
    logger.log(
        level,
        f"[{job}:{cycle_id}] {event}" + (f" {details}" if details else ""),
        extra={"job": job, "cycle_id": cycle_id, "event": event, "extra_fields": dict(fields)},
    )
    (stream or _EVENT_STREAM).publish(job_event)
    return job_event


def setup_logging(
    *,
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    max_log_size_mb: int = 50,
    backup_count: int = 5,
    propagate: bool = False,
) -> logging.Logger:
    """Configure console logging plus an optional rotating JSONL file sink."""

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_cameravault_managed", False):
            logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    console_handler._cameravault_managed = True  # type: ignore[attr-defined]
    logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "catalog-sync.jsonl",
            maxBytes=int(max_log_size_mb * 1024 * 1024),
            backupCount=backup_count,
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler._cameravault_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    logger.propagate = propagate
    return logger
