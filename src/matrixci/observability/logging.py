"""Per-run JSON-lines event log.

Component loggers are ``structlog`` loggers (``structlog.get_logger(__name__)``) emitting an
event name plus key/value fields. ``open_run_log`` attaches a JSON-lines file handler for one
run to the ``matrixci`` logger at ``<log_dir>/<run_id>/matrixci.jsonl``; ``configure_structlog``
routes structlog events into it. Standard output is never a sink: it carries the status log.

Every line carries ``run_id`` plus whichever of ``toolchain``, ``variant_id`` and ``stage`` are
bound by ``correlation_scope`` (or passed as event fields). Other fields go under ``fields``.
"""

from __future__ import annotations

import contextvars
import json
import logging
import re
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog

ROOT_LOGGER_NAME: Final[str] = "matrixci"
LOG_FILENAME: Final[str] = "matrixci.jsonl"
CORRELATION_FIELDS: Final[tuple[str, ...]] = ("run_id", "toolchain", "variant_id", "stage")

_REDACTED: Final[str] = "***REDACTED***"
_SECRET_KEY: Final[re.Pattern[str]] = re.compile(
    r"(?i)(secret|token|password|api_?key|authorization|credential)"
)
_SECRET_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret)(\s*[:=]\s*)[^\s,;]+"
)
# Attributes every LogRecord has; anything else on a record came from ``extra``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    {*logging.makeLogRecord({}).__dict__, "message", "asctime"}
)

_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "matrixci_correlation", default={}
)


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for log lines emitted in scope; ``None`` unbinds a field."""

    bound = dict(_correlation.get())
    for key, value in fields.items():
        if key not in CORRELATION_FIELDS:
            raise ValueError(f"unknown correlation field {key!r}")
        if value is None:
            bound.pop(key, None)
        else:
            bound[key] = value
    token = _correlation.set(bound)
    try:
        yield
    finally:
        _correlation.reset(token)


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


def redact(value: object) -> object:
    """Mask values under secret-looking keys and ``token=...`` style assignments."""

    if isinstance(value, Mapping):
        return {
            key: _REDACTED if _SECRET_KEY.search(str(key)) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    if isinstance(value, str):
        return _SECRET_ASSIGNMENT.sub(rf"\1\2{_REDACTED}", value)
    return value


class JsonLinesFormatter(logging.Formatter):
    """One JSON object per record, keys sorted."""

    def __init__(self, *, run_id: str, redact_secrets: bool = True) -> None:
        super().__init__()
        self._run_id = run_id
        self._redact_secrets = redact_secrets

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": self._run_id,
        }
        event.update(_correlation.get())

        fields: dict[str, object] = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES or key.startswith("_"):
                continue
            if key in CORRELATION_FIELDS:
                event[key] = str(value)
            else:
                fields[key] = value
        if fields:
            event["fields"] = fields
        if record.exc_info is not None:
            event["exception"] = self.formatException(record.exc_info)

        payload = redact(event) if self._redact_secrets else event
        return json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)


@dataclass(frozen=True, slots=True)
class RunLog:
    """Handlers attached to the ``matrixci`` logger for one run."""

    run_id: str
    path: Path
    handlers: tuple[logging.Handler, ...]

    def close(self) -> None:
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in self.handlers:
            logger.removeHandler(handler)
            handler.close()


def open_run_log(
    observability: Mapping[str, object] | None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
    log_to_stderr: bool = False,
) -> RunLog:
    """Start the run log from the ``[observability]`` section.

    Replaces any handlers a previous run left on the ``matrixci`` logger. With
    ``log_to_stderr`` (``--verbose``) the same lines are mirrored to stderr.
    """

    if not run_id.strip():
        raise ValueError("run_id must not be empty")
    settings = dict(observability or {})
    level = logging.getLevelName(str(settings.get("log_level", "INFO")).upper())
    if not isinstance(level, int):
        raise ValueError(f"unsupported log level {settings.get('log_level')!r}")
    base_dir = Path(log_dir if log_dir is not None else str(settings.get("log_dir", "logs")))

    run_dir = base_dir / run_id
    run_dir.mkdir(parents=True, exist_ok=True)
    path = run_dir / LOG_FILENAME

    formatter = JsonLinesFormatter(
        run_id=run_id, redact_secrets=bool(settings.get("redact_secrets", True))
    )
    handlers: list[logging.Handler] = [logging.FileHandler(path, encoding="utf-8")]
    if log_to_stderr:
        handlers.append(logging.StreamHandler())

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    configure_structlog()
    return RunLog(run_id=run_id, path=path, handlers=tuple(handlers))


def configure_structlog() -> None:
    """Route ``structlog`` events into stdlib logging as message + extra fields."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


__all__ = [
    "CORRELATION_FIELDS",
    "JsonLinesFormatter",
    "LOG_FILENAME",
    "ROOT_LOGGER_NAME",
    "RunLog",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "open_run_log",
    "redact",
]
