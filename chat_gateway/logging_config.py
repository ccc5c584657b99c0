"""
Process logging for the gateway.

Lifecycle events travel on the log record as a dict (see
`request_logger`) and are rendered here: one JSON object per line in the
daily event file, a short `event key=value` line on the console.
"""

import datetime
import json
import logging
import logging.handlers
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import Settings, settings

LOGGER_NAME = "chat_gateway"
EVENT_ATTR = "gateway_event"
EVENT_FILE_NAME = "gateway.jsonl"
EVENT_FILE_BACKUPS = 7

REDACTED = "***REDACTED***"
SENSITIVE_HEADERS = frozenset({"authorization", "proxy-authorization", "cookie", "x-api-key"})

_LOGGING_CONFIGURED = False


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy of `headers` safe to log: credentials are masked."""
    return {
        name: REDACTED if name.lower() in SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }


def resolve_tzinfo(timezone_name: Optional[str]) -> datetime.tzinfo:
    if timezone_name:
        try:
            return ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return datetime.datetime.now().astimezone().tzinfo or datetime.timezone.utc


def event_of(record: logging.LogRecord) -> Optional[Dict[str, Any]]:
    event = getattr(record, EVENT_ATTR, None)
    return event if isinstance(event, dict) else None


class _ZonedFormatter(logging.Formatter):
    def __init__(self, fmt: Optional[str] = None, *, timezone_name: Optional[str] = None):
        super().__init__(fmt)
        self._tzinfo = resolve_tzinfo(timezone_name)

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        dt = datetime.datetime.fromtimestamp(record.created, tz=self._tzinfo)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="milliseconds")


class EventJsonFormatter(_ZonedFormatter):
    """
    Render every record as a single JSON object.

    Lifecycle events contribute their own fields (event, correlationId,
    latencyMs, ...); plain records carry their text under "message".
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": self.formatTime(record),
            "level": record.levelname.lower(),
            "logger": record.name,
        }
        event = event_of(record)
        if event is not None:
            payload.update(event)
        else:
            payload["message"] = record.getMessage()
        if record.exc_info:
            payload["stack"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ConsoleFormatter(_ZonedFormatter):
    def __init__(self, *, timezone_name: Optional[str] = None):
        super().__init__(
            "%(asctime)s [%(levelname)s] %(name)s - %(message)s",
            timezone_name=timezone_name,
        )

    def format(self, record: logging.LogRecord) -> str:
        event = event_of(record)
        if event is None:
            return super().format(record)
        fields = " ".join(
            f"{key}={json.dumps(value, ensure_ascii=False, default=str)}"
            for key, value in event.items()
            if key not in ("event", "timestamp")
        )
        line = (
            f"{self.formatTime(record)} [{record.levelname}] {record.name} - "
            f"{event.get('event', record.getMessage())} {fields}"
        )
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _dated_name(default_name: str) -> str:
    # "gateway.jsonl.2026-10-17" -> "gateway-2026-10-17.jsonl"
    path = Path(default_name)
    stem, ext, date_part = path.name.rsplit(".", 2)
    return str(path.with_name(f"{stem}-{date_part}.{ext}"))


def build_event_file_handler(cfg: Settings) -> logging.Handler:
    log_dir = Path(cfg.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=log_dir / EVENT_FILE_NAME,
        when="midnight",
        backupCount=EVENT_FILE_BACKUPS,
        encoding="utf-8",
        delay=True,
    )
    handler.suffix = "%Y-%m-%d"
    handler.namer = _dated_name
    handler.setFormatter(EventJsonFormatter(timezone_name=cfg.log_timezone))
    handler.addFilter(logging.Filter(LOGGER_NAME))
    return handler


def _resolve_level(level_name: object) -> int:
    if not isinstance(level_name, str):
        return logging.INFO
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(cfg: Settings = settings) -> None:
    """
    Configure process logging once.

    Gateway records go to the daily JSONL file and, through the root
    logger, to the console next to uvicorn's own lines.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    level = _resolve_level(cfg.log_level)
    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(level)
    app_logger.addHandler(build_event_file_handler(cfg))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    console = logging.StreamHandler()
    console.setFormatter(ConsoleFormatter(timezone_name=cfg.log_timezone))
    root_logger.handlers = [console]

    _LOGGING_CONFIGURED = True


logger = logging.getLogger(LOGGER_NAME)
