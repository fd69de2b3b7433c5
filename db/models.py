"""
SQLAlchemy ORM Models
Maps to the workflow_executions table created by db/session.py migrations.
All enum-like columns use plain TEXT — no PostgreSQL enum types.

Status lifecycle:
    queued -> auto_healing -> completed | failed
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, Text, DateTime
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

EXECUTION_STATUSES = ("queued", "auto_healing", "completed", "failed")


class WorkflowExecution(Base):
    __tablename__ = "workflow_executions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text)
    workflow_json = Column(JSONB, nullable=False, default=dict)
    validation_progress = Column(JSONB, default=dict)
    status = Column(Text, nullable=False, default="queued")
    retry_count = Column(Integer, default=0)
    error_details = Column(JSONB)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSONB, default=dict)
    created_at = Column(
        DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    completed_at = Column(DateTime(timezone=True))

    def to_dict(self):
        return {
            "id": str(self.id),
            "user_id": self.user_id,
            "status": self.status,
            "workflow": self.workflow_json,
            "validation_progress": self.validation_progress or {},
            "retry_count": self.retry_count or 0,
            "error_details": self.error_details,
            "metadata": self.metadata_ or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
