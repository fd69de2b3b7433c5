"""
Database Session Management

SQLAlchemy engine + sessionmaker. Reads DATABASE_URL from environment.
Provides get_db() generator for FastAPI Depends injection.
"""

import os
from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from autoheal.logger import log

load_dotenv()

DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    "postgresql://localhost:5432/workflow_autoheal",
)

engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
    connect_args={"connect_timeout": 5},
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db():
    """FastAPI dependency — yields a session, closes on teardown."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db():
    """Verify database connectivity. Logs a warning on failure instead of crashing.

    Returns:
        True if the database answered and migrations ran.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        log("db.connected")
        _run_migrations()
        return True
    except Exception as e:
        log("db.unreachable", level="warning", error=str(e))
        return False


def _run_migrations():
    """Apply schema migrations (idempotent)."""
    migrations = [
        """CREATE TABLE IF NOT EXISTS workflow_executions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT,
            workflow_json JSONB NOT NULL DEFAULT '{}'::jsonb,
            validation_progress JSONB DEFAULT '{}'::jsonb,
            status TEXT NOT NULL DEFAULT 'queued',
            retry_count INTEGER DEFAULT 0,
            error_details JSONB,
            metadata JSONB DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ DEFAULT now(),
            updated_at TIMESTAMPTZ DEFAULT now(),
            completed_at TIMESTAMPTZ
        )""",
        "CREATE INDEX IF NOT EXISTS idx_executions_status ON workflow_executions(status)",
        "CREATE INDEX IF NOT EXISTS idx_executions_user ON workflow_executions(user_id)",
        "CREATE INDEX IF NOT EXISTS idx_executions_created ON workflow_executions(created_at DESC)",
        """CREATE TABLE IF NOT EXISTS healing_queue (
            id BIGSERIAL PRIMARY KEY,
            queue_name TEXT NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            read_count INTEGER DEFAULT 0,
            retry_count INTEGER DEFAULT 0,
            max_retries INTEGER DEFAULT 3,
            last_error TEXT,
            enqueued_at TIMESTAMPTZ DEFAULT now(),
            visible_at TIMESTAMPTZ DEFAULT now()
        )""",
        "CREATE INDEX IF NOT EXISTS idx_healing_queue_visible ON healing_queue(queue_name, visible_at)",
    ]
    try:
        with engine.begin() as conn:
            for sql in migrations:
                conn.execute(text(sql))
        log("db.migrations_applied", count=len(migrations))
    except Exception as e:
        log("db.migration_warning", level="warning", error=str(e))
