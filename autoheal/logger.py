"""
Structured Logger

One JSON line per event on the "workflow_autoheal" logger. Event families:

    heal.*         healer passes, applied fixes, AI fallback outcomes
    validate.*     deployment-test hook failures
    auto_heal.*    auto_heal job lifecycle (started, healed, failed)
    validation.*   workflow_validation job outcome
    queue.*        enqueue, lease, ack, retry, dead-letter, consumer loop
    executions.*   HTTP submissions and their failures
    sync.*         Supabase mirror write failures
    db.*           connectivity and migrations at startup
    startup.* / shutdown.*   worker wiring in the app lifespan
"""

import json
import logging
import sys
from datetime import datetime, timezone

SERVICE = "workflow_autoheal"

_logger = logging.getLogger(SERVICE)
if not _logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    _logger.addHandler(handler)
    _logger.setLevel(logging.INFO)

_LEVEL_MAP = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def log(event: str, level: str = "info", **kwargs):
    """
    Emit a structured log line as JSON.

    Args:
        event:  Dot-separated event name (e.g. "heal.fix_applied")
        level:  Log level string (debug, info, warning, error, critical)
        **kwargs: Additional key-value data to include
    """
    entry = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "service": SERVICE,
        "event": event,
        "level": level,
    }
    entry.update(kwargs)
    py_level = _LEVEL_MAP.get(level, logging.INFO)
    _logger.log(py_level, json.dumps(entry, default=str))


def set_level(level: str):
    """Change the logger threshold (e.g. "debug" while tracing a heal run)."""
    _logger.setLevel(_LEVEL_MAP.get(level, logging.INFO))
