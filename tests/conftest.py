"""
Test configuration — mock database before any app code loads.
"""

import os
import sys
from unittest.mock import MagicMock, patch

import pytest

# Set dummy DATABASE_URL before any imports
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("AI_HEAL_URL", None)
os.environ.pop("SUPABASE_URL", None)

# Create mock engine and session before db.session is imported
_mock_engine = MagicMock()
_mock_session_local = MagicMock()


def _patched_create_engine(*args, **kwargs):
    return _mock_engine


# Patch create_engine before db.session imports it
with patch("sqlalchemy.create_engine", _patched_create_engine):
    if "db.session" in sys.modules:
        del sys.modules["db.session"]
    if "db" in sys.modules:
        del sys.modules["db"]

    import db.session
    db.session.engine = _mock_engine
    db.session.SessionLocal = _mock_session_local
    db.session.check_db = lambda: False

# Now import the app; it will use our mocked db.session
if "app" in sys.modules:
    del sys.modules["app"]

import app as app_module
app_module._healer = None


# ── Workflow fixtures ────────────────────────────────────────

def _node(node_id, name, node_type, position):
    return {
        "id": node_id,
        "name": name,
        "type": node_type,
        "typeVersion": 1,
        "position": position,
        "parameters": {},
    }


def _edge(target):
    return {"node": target, "type": "main", "index": 0}


@pytest.fixture
def valid_workflow():
    """Webhook -> Set -> Slack, passes every validation layer."""
    return {
        "name": "Lead Router",
        "nodes": [
            _node("n1", "Webhook", "n8n-nodes-base.webhook", [250, 300]),
            _node("n2", "Set", "n8n-nodes-base.set", [450, 300]),
            _node("n3", "Slack", "n8n-nodes-base.slack", [650, 300]),
        ],
        "connections": {
            "Webhook": {"main": [[_edge("Set")]]},
            "Set": {"main": [[_edge("Slack")]]},
        },
        "settings": {},
        "staticData": None,
    }


@pytest.fixture
def cyclic_workflow():
    """A -> B -> C -> A with A as the manual trigger."""
    return {
        "name": "Loop",
        "nodes": [
            _node("a", "A", "n8n-nodes-base.manualTrigger", [250, 300]),
            _node("b", "B", "n8n-nodes-base.set", [450, 300]),
            _node("c", "C", "n8n-nodes-base.set", [650, 300]),
        ],
        "connections": {
            "A": {"main": [[_edge("B")]]},
            "B": {"main": [[_edge("C")]]},
            "C": {"main": [[_edge("A")]]},
        },
        "settings": {},
    }
