"""Logging setup: JSON or compact text output, plus correlation ids."""

import contextvars
import logging
import sys
import traceback
import uuid
from pathlib import Path
from types import TracebackType
from typing import Any

from pythonjsonlogger.json import JsonFormatter

# Hey future me - the correlation id is what ties log lines together. HTTP requests get one from
# the middleware (X-Correlation-ID header or a fresh uuid), worker threads use their task_id.
# ContextVar (not threading.local) because every asyncio task gets its own copy of the context,
# and a worker thread's asyncio.run() starts from a clean one.
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

# Frames from these paths are noise in a traceback
_LIBRARY_PATH_MARKERS = ("/site-packages/", "/dist-packages/", "/lib/python")


def get_correlation_id() -> str:
    """Current correlation id, "" if none is set."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation id for the current context (new uuid if None).

    Returns:
        The id that is now active
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    correlation_id_var.set(correlation_id)
    return correlation_id


class CorrelationIdFilter(logging.Filter):
    """Stamp every record with the active correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Attach correlation_id, never drops the record."""
        record.correlation_id = get_correlation_id()
        return True


ExcInfo = tuple[type[BaseException], BaseException, TracebackType | None] | tuple[None, None, None]


class CompactExceptionFormatter(logging.Formatter):
    """Human-readable formatter with short exception chains.

    Root cause first, one ``╰─►`` line per exception, and only frames from our
    own package. A scan that dies inside SQLAlchemy shows the three lines that
    matter instead of forty lines of driver internals.
    """

    def __init__(self, *args: Any, package: str = "tvcurator", **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.package = package

    def formatException(self, ei: ExcInfo) -> str:  # noqa: N802
        """Format the exception chain compactly."""
        _, exc_value, _ = ei
        if exc_value is None:
            return ""

        chain: list[BaseException] = []
        current: BaseException | None = exc_value
        while current is not None and current not in chain:
            chain.append(current)
            current = current.__cause__ or current.__context__
        chain.reverse()

        lines: list[str] = []
        for exc in chain:
            lines.append(f"╰─► {type(exc).__name__}: {exc}")
            if exc.__traceback__ is None:
                continue
            for frame in traceback.extract_tb(exc.__traceback__):
                path = frame.filename
                if any(marker in path for marker in _LIBRARY_PATH_MARKERS):
                    continue
                if self.package not in path:
                    continue
                lines.append(f'    File "{Path(path).name}", line {frame.lineno}, in {frame.name}')
                if frame.line:
                    lines.append(f"      {frame.line.strip()}")
        return "\n".join(lines)


class CustomJsonFormatter(JsonFormatter):
    """JSON lines with level, logger, source location and correlation id."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add our standard keys to each JSON record."""
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName
        log_record["line"] = record.lineno

        correlation_id = getattr(record, "correlation_id", "")
        if correlation_id:
            log_record["correlation_id"] = correlation_id
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_record["stack_info"] = self.formatStack(record.stack_info)


# Listen up, call this ONCE (lifespan startup). It replaces all root handlers, so calling it
# again in tests is safe but wipes pytest's caplog handler - use caplog.set_level there instead.
def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    app_name: str = "tvcurator",
) -> None:
    """Configure the root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: JSON lines (production) instead of compact text
        app_name: Included in the startup log line
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())

    formatter: logging.Formatter
    if json_format:
        formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = CompactExceptionFormatter(
            fmt="%(asctime)s │ %(levelname)-7s │ %(name)s:%(lineno)d │ %(message)s",
            datefmt="%H:%M:%S",
        )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # HTTP clients and SQL drivers are chatty at INFO
    for noisy in ("httpx", "httpcore", "aiosqlite", "asyncio", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"app_name": app_name, "log_level": log_level, "json_format": json_format},
    )
