"""
Structured logging setup for Project Pulse.

Call ``configure_logging(config)`` once at CLI entry (before any refresh work)
to set up the root logger with the configured level and optional file handler.

All internal modules use ``logging.getLogger(__name__)``. Never call
``configure_logging`` or ``basicConfig`` from within library code.

Pipeline stages log through ``run_logger()``, which stamps every record with
``project_id``, ``process`` and ``run_id`` so a single refresh can be traced
across stages. In text mode these appear as a ``[project/process/run]``
prefix; in JSON mode as top-level fields::

    {"ts": "2026-02-17T12:00:00Z", "level": "INFO", "logger": "project_pulse.pipeline.base",
     "msg": "Stage [forecast_refresh] completed", "project_id": "p-1",
     "process": "forecast_refresh", "run_id": "..."}
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, MutableMapping

if TYPE_CHECKING:
    from project_pulse.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(run_prefix)s%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_RUN_FIELDS = ("project_id", "process", "run_id")

# Attributes every LogRecord has; anything else came from ``extra=``.
_RESERVED_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "run_prefix"}


class _RunPrefixFilter(logging.Filter):
    """Populate ``record.run_prefix`` from run-context extras (or empty)."""

    def filter(self, record: logging.LogRecord) -> bool:
        parts = [str(getattr(record, f)) for f in _RUN_FIELDS if getattr(record, f, None)]
        record.run_prefix = f"[{'/'.join(parts)}] " if parts else ""
        return True


class _JsonFormatter(logging.Formatter):
    """Emit one JSON object per log line.

    Fields: ``ts``, ``level``, ``logger``, ``msg`` plus any ``extra=`` keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                LOG_DATE_FORMAT
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        for key, val in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = val
        return json.dumps(payload, default=str)


class RunLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that merges run context into every record's extras."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def run_logger(
    logger: logging.Logger,
    project_id: str,
    process: str,
    run_id: str,
) -> RunLoggerAdapter:
    """Wrap ``logger`` so records carry ``project_id``, ``process`` and ``run_id``."""
    return RunLoggerAdapter(
        logger, {"project_id": project_id, "process": process, "run_id": run_id}
    )


def configure_logging(config: "LoggingConfig") -> None:
    """Configure the root logger from a ``LoggingConfig`` instance.

    Sets up:
      - StreamHandler (stdout) at the configured level.
      - Optional FileHandler if ``config.log_file`` is set.
      - JSON line format if ``config.json_format`` is ``True``.

    Args:
        config: Logging configuration section from ``AppConfig``.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    formatter: logging.Formatter
    if config.json_format:
        formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    prefix_filter = _RunPrefixFilter()
    handlers: list[logging.Handler] = []

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)
    console.addFilter(prefix_filter)
    handlers.append(console)

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(prefix_filter)
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # Quieten noisy third-party loggers
    logging.getLogger("pyarrow").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
