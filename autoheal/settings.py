"""
Settings

Environment-driven configuration for the queue workers, the Supabase mirror
and the optional AI fallback. Values are read once at import; a local .env
file is honoured through python-dotenv.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Queue names
AUTO_HEAL_QUEUE = "auto_heal"
VALIDATION_QUEUE = "workflow_validation"
DEPLOYMENT_TEST_QUEUE = "deployment_test"

# Logging threshold for the JSON logger
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info").strip().lower()

# Worker behaviour
WORKERS_ENABLED = _flag("AUTOHEAL_WORKERS_ENABLED", False)
HEAL_VISIBILITY_TIMEOUT = _int("HEAL_VISIBILITY_TIMEOUT", 120)
VALIDATION_VISIBILITY_TIMEOUT = _int("VALIDATION_VISIBILITY_TIMEOUT", 30)
QUEUE_BATCH_SIZE = _int("QUEUE_BATCH_SIZE", 5)
QUEUE_POLL_INTERVAL = _float("QUEUE_POLL_INTERVAL", 1.0)
QUEUE_MAX_RETRIES = _int("QUEUE_MAX_RETRIES", 3)

# Optional AI-contextual fallback endpoint
AI_HEAL_URL = os.environ.get("AI_HEAL_URL", "").strip()
AI_HEAL_TIMEOUT = _float("AI_HEAL_TIMEOUT", 10.0)

# Comma-separated node types appended to the built-in deny-list
EXTRA_FORBIDDEN_NODE_TYPES = [
    t.strip()
    for t in os.environ.get("EXTRA_FORBIDDEN_NODE_TYPES", "").split(",")
    if t.strip()
]
