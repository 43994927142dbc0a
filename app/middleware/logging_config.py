"""
Structured logging for the DMAIC workflow service.

Two renderings of the same records:
    readable   development console, one colored line per record
    json       one object per line for the log aggregator

Workflow code attaches context through ``extra``:

    logger.info("Project %s advanced", pid,
                extra={"project_id": pid, "phase": "MEASURE", "event_type": "phase_advanced"})

Request middleware adds method / path / status / duration_ms / request_id.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

SERVICE_NAME = "dmaic-workflow"

REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")
WORKFLOW_FIELDS = ("project_id", "phase", "event_type", "operation")


def _collect(record: logging.LogRecord, keys) -> dict:
    values = {}
    for key in keys:
        val = getattr(record, key, None)
        if val is not None:
            values[key] = val
    return values


class JSONFormatter(logging.Formatter):
    """One JSON object per record; request and workflow context nested."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        request_ctx = _collect(record, REQUEST_FIELDS)
        if request_ctx:
            entry["request"] = request_ctx
        workflow_ctx = _collect(record, WORKFLOW_FIELDS)
        if workflow_ctx:
            entry["workflow"] = workflow_ctx
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored console line: time, level, logger, workflow tag, message."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    @staticmethod
    def _workflow_tag(record: logging.LogRecord) -> str:
        project_id = getattr(record, "project_id", None)
        if not project_id:
            return ""
        phase = getattr(record, "phase", None)
        event = getattr(record, "event_type", None)
        tag = project_id[:8] + (f"@{phase}" if phase else "")
        return f" [{tag}{' ' + event if event else ''}]"

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        duration = getattr(record, "duration_ms", None)
        line = f"{ts} {level} {record.name}{self._workflow_tag(record)}: {record.getMessage()}"
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    LOG_LEVEL / LOG_FORMAT come from the app config, falling back to the
    environment; production defaults to INFO + json, everything else to
    DEBUG + readable.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = (app.config.get("LOG_LEVEL") or os.getenv("LOG_LEVEL")
                  or ("INFO" if is_prod else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = (app.config.get("LOG_FORMAT") or os.getenv("LOG_FORMAT")
           or ("json" if is_prod else "readable")).lower()

    if fmt == "json":
        formatter = JSONFormatter()
    else:
        formatter = ReadableFormatter(use_color=sys.stderr.isatty())

    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "alembic", "flask_limiter"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
