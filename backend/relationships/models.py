"""
Relationship Aggregates - Database Models

Client, Project and Milestone are single-table entities holding mutual
back-references as JSON id lists:

    Client.linked_projects  <->  Project.client_id
    Project.milestones      <->  Milestone.project_id

No foreign keys: symmetry is maintained by RelationshipGraph write ordering
and checked by the reconciler.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet

from sqlalchemy import Column, String, Text, Boolean, Integer, Float, DateTime, JSON

from database import Base


class ProjectStatus(str, Enum):
    ACTIVE = "Active"
    PAUSED = "Paused"
    BLOCKED = "Blocked"
    COMPLETED = "Completed"
    DELIVERED = "Delivered"


class MilestoneStatus(str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    DELAYED = "Delayed"


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityColumns:
    """Id, timestamps, pass-through fields and flat serialization."""

    id = Column(String(36), primary_key=True, default=_new_id)
    extra_data = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    SYSTEM_FIELDS = frozenset(["id", "created_at", "updated_at"])

    @classmethod
    def column_names(cls) -> FrozenSet[str]:
        return frozenset(c.key for c in cls.__table__.columns)

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for column in self.__table__.columns:
            value = getattr(self, column.key)
            if isinstance(value, datetime):
                value = value.isoformat()
            data[column.key] = value
        return data


class ClientDB(EntityColumns, Base):
    __tablename__ = "clients"

    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(50))
    company_name = Column(String(255))
    website = Column(String(500))
    address = Column(JSON, default=dict)
    linked_projects = Column(JSON, default=list)
    notes = Column(Text)
    pain_points = Column(JSON, default=list)
    contacts = Column(JSON, default=list)
    billing_info = Column(JSON, default=dict)
    # [{rating: 1..10, comment, date}]
    feedback_history = Column(JSON, default=list)
    contract_info = Column(JSON, default=dict)
    communication_preferences = Column(JSON, default=dict)


class ProjectDB(EntityColumns, Base):
    __tablename__ = "projects"

    title = Column(String(255), nullable=False)
    description = Column(Text)
    client_id = Column(String(36), index=True)
    client_name = Column(String(255))
    status = Column(String(20), default=ProjectStatus.ACTIVE.value)
    priority = Column(String(20), default=Priority.MEDIUM.value)
    start_date = Column(String(40))  # ISO date
    deadline = Column(String(40))
    tech_stack = Column(JSON, default=list)
    assigned_developers = Column(JSON, default=list)
    project_manager = Column(String(36))
    milestones = Column(JSON, default=list)
    tags = Column(JSON, default=list)
    budget = Column(Float, default=0.0)
    spent_budget = Column(Float, default=0.0)
    progress_percent = Column(Integer, default=0)
    # {overall: 1..5, communication, quality, timeliness}
    satisfaction = Column(JSON, default=dict)
    notes = Column(Text)
    is_archived = Column(Boolean, default=False)


class MilestoneDB(EntityColumns, Base):
    __tablename__ = "milestones"

    title = Column(String(255), nullable=False)
    description = Column(Text)
    project_id = Column(String(36), nullable=False, index=True)
    status = Column(String(20), default=MilestoneStatus.NOT_STARTED.value)
    priority = Column(String(20), default=Priority.MEDIUM.value)
    start_date = Column(String(40))
    due_date = Column(String(40))
    completed_date = Column(String(40))
    assigned_to = Column(JSON, default=list)
    dependencies = Column(JSON, default=list)
    progress_percentage = Column(Integer, default=0)
    notes = Column(Text)
    attachments = Column(JSON, default=list)
