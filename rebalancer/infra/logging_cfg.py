"""
Structured logging setup for the rebalance bot.

Console output goes through rich; an optional JSON-lines file is written by
a background thread so a slow disk never stalls the event loop. Structured
events are logged with log_event(), which tags each record with its event
name so filters and the file formatter can pick it up without re-parsing.
"""

from __future__ import annotations

import atexit
import json
import logging
import queue
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Set

from rich.logging import RichHandler

DEFAULT_LOGGER_NAME = "rebalancer"

# Accepts the level names operators tend to type, including pino-style ones.
LEVELS: Dict[str, int] = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

THROTTLED_EVENTS = frozenset({"tx_retry", "alert_delivery_error", "loop_error"})


def parse_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return LEVELS.get(str(level).strip().lower(), logging.INFO)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; event records carry their fields at top level."""

    def __init__(self, service: str = "cetus-rebalancer") -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        line: Dict[str, Any] = {
            "ts": record.created,
            "ts_iso": datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "service": self._service,
            "name": record.name,
        }
        event = getattr(record, "event", None)
        if event:
            line["event"] = event
            line.update(getattr(record, "event_data", {}))
        else:
            line["msg"] = record.getMessage()
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, separators=(",", ":"), default=str)


_STOP = object()


class AsyncQueueHandler(logging.Handler):
    """
    Hands records to a writer thread through a bounded queue.

    emit() never blocks: when the queue is full the record is dropped and
    counted, and the count is reported on close.
    """

    def __init__(self, target_handler: logging.Handler, max_queue_size: int = 10000):
        super().__init__()
        self._target = target_handler
        self._records: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._dropped = 0
        self._closed = False
        self._writer = threading.Thread(target=self._drain, name="log-writer", daemon=True)
        self._writer.start()
        atexit.register(self.close)

    def emit(self, record: logging.LogRecord) -> None:
        if self._closed:
            return
        try:
            self._records.put_nowait(record)
        except queue.Full:
            self._dropped += 1

    def _drain(self) -> None:
        while True:
            item = self._records.get()
            if item is _STOP:
                return
            self._target.handle(item)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Blocking put: the sentinel must land behind every queued record.
        self._records.put(_STOP)
        self._writer.join(timeout=2.0)
        if self._dropped:
            sys.stderr.write(f"[logging] dropped {self._dropped} records, log queue was full\n")
        self._target.close()
        super().close()


class ThrottledFilter(logging.Filter):
    """
    Suppresses repeats of noisy events for cooldown_sec.

    Keyed on event name plus the record's "label" field, so retries of
    different transaction steps are throttled independently.
    """

    def __init__(self, cooldown_sec: float = 30.0, throttled_events: Optional[Set[str]] = None):
        super().__init__()
        self._cooldown = cooldown_sec
        self._events = throttled_events if throttled_events is not None else set(THROTTLED_EVENTS)
        self._last_seen: Dict[str, float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        event = getattr(record, "event", None)
        if event not in self._events:
            return True
        key = f"{event}:{getattr(record, 'event_data', {}).get('label', '')}"
        now = time.monotonic()
        last = self._last_seen.get(key)
        if last is not None and now - last < self._cooldown:
            return False
        self._last_seen[key] = now
        return True


def build_logger(
    name: str = DEFAULT_LOGGER_NAME,
    level: str | int = logging.INFO,
    file_path: Optional[str] = None,
    async_file: bool = True,
    throttle_warnings: bool = True,
) -> logging.Logger:
    """
    Configure and return the bot logger.

    Calling it again for an already configured logger only updates levels.

    Args:
        name: Logger name
        level: Minimum level, int or name ("info", "debug", ...)
        file_path: JSON-lines log file; None disables file logging
        async_file: Write the file from a background thread
        throttle_warnings: Attach ThrottledFilter to the console handler
    """
    lvl = parse_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(lvl)
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(lvl)
        return logger

    console = RichHandler(show_time=True, show_level=True, show_path=False, markup=False)
    console.setFormatter(logging.Formatter("%(message)s"))
    if throttle_warnings:
        console.addFilter(ThrottledFilter())
    handlers: list[logging.Handler] = [console]

    if file_path:
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(file_path, encoding="utf-8")
        file_handler.setFormatter(JsonFormatter())
        handlers.append(AsyncQueueHandler(file_handler) if async_file else file_handler)

    for handler in handlers:
        handler.setLevel(lvl)
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def log_event(
    logger: logging.Logger,
    event: str,
    level: int = logging.INFO,
    **data,
) -> None:
    """
    Log a structured event.

    The message text is the JSON payload, e.g.
    log_event(log, "tx_executed", label="swap", digest="0x..") logs
    {"event": "tx_executed", "label": "swap", "digest": "0x.."}
    """
    message = json.dumps({"event": event, **data}, default=str)
    logger.log(level, message, extra={"event": event, "event_data": data})
