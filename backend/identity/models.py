"""
Identity Partitions - Database Models

One table per role partition. A logical user lives in exactly one of them;
email is unique inside each table, and the resolver enforces uniqueness
across all five.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet
from enum import Enum

from sqlalchemy import Column, String, Boolean, Integer, Float, DateTime, JSON

from database import Base
from utils.errors import ValidationFailed


class Role(str, Enum):
    """Role tag; selects the partition an identity lives in"""
    ADMINISTRATOR = "administrator"
    DEVELOPER = "developer"
    DESIGNER = "designer"
    PROJECT_MANAGER = "project-manager"
    CLIENT = "client"


# Probe order for resolution. Must not change: it decides which copy wins
# while a migration has two copies of the same email.
PARTITION_PRIORITY = (
    Role.ADMINISTRATOR,
    Role.DEVELOPER,
    Role.DESIGNER,
    Role.PROJECT_MANAGER,
    Role.CLIENT,
)


def parse_role(value: Any) -> Role:
    """Strict role parsing for explicit requests: unknown roles are rejected."""
    if isinstance(value, Role):
        return value
    if isinstance(value, str):
        try:
            return Role(value.strip().lower())
        except ValueError:
            pass
    raise ValidationFailed(
        "role",
        f"role must be one of: {', '.join(r.value for r in Role)}",
        value,
    )


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class IdentityColumns:
    """Columns every partition carries."""

    ROLE = None

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_credential = Column(String(255), nullable=False)
    display_name = Column(String(200), nullable=False, default="")
    role_tag = Column(String(30), nullable=False)
    avatar = Column(String(500), default="")
    title = Column(String(200), default="")
    department = Column(String(200), default="")
    skills = Column(JSON, default=list)
    is_active = Column(Boolean, default=True)
    joined_at = Column(DateTime(timezone=True), default=_utcnow)
    last_login = Column(DateTime(timezone=True))
    extra_data = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Columns that survive a move into any partition
    SHARED_FIELDS = frozenset([
        "email", "hashed_credential", "display_name", "avatar", "title",
        "department", "skills", "is_active", "joined_at", "last_login",
        "extra_data",
    ])
    # Never copied or set from a payload
    SYSTEM_FIELDS = frozenset(["id", "role_tag", "created_at", "updated_at"])

    @classmethod
    def column_names(cls) -> FrozenSet[str]:
        return frozenset(c.key for c in cls.__table__.columns)

    @classmethod
    def role_fields(cls) -> FrozenSet[str]:
        """Columns specific to this partition."""
        return cls.column_names() - cls.SHARED_FIELDS - cls.SYSTEM_FIELDS

    def to_dict(self, include_credential: bool = False) -> Dict[str, Any]:
        data = {
            column.key: _serialize(getattr(self, column.key))
            for column in self.__table__.columns
        }
        if not include_credential:
            data.pop("hashed_credential", None)
        data["partition"] = self.ROLE.value
        return data


class TeamMemberColumns:
    """Fields shared by developers, designers and project managers."""

    current_projects = Column(JSON, default=list)
    # {progressScore, disciplineScore, communicationScore, overall, notes, lastEvaluated}
    effectiveness = Column(JSON, default=dict)


class AdministratorDB(IdentityColumns, Base):
    """Administrator partition; also holds the dashboard roll-up counters."""
    __tablename__ = "administrators"
    ROLE = Role.ADMINISTRATOR

    admin_level = Column(String(20), default="admin")  # admin | owner
    total_employees = Column(Integer, default=0)
    total_developers = Column(Integer, default=0)
    total_designers = Column(Integer, default=0)
    total_pms = Column(Integer, default=0)
    total_clients = Column(Integer, default=0)
    total_active_users = Column(Integer, default=0)
    total_projects = Column(Integer, default=0)
    active_projects = Column(Integer, default=0)
    blocked_projects = Column(Integer, default=0)
    avg_employee_rating = Column(Float, default=0.0)
    overall_client_satisfaction = Column(Float, default=0.0)
    counters_updated_at = Column(DateTime(timezone=True))
    integrations = Column(JSON, default=list)
    notifications_enabled = Column(Boolean, default=True)


class DeveloperDB(TeamMemberColumns, IdentityColumns, Base):
    __tablename__ = "developers"
    ROLE = Role.DEVELOPER

    tech_stack = Column(JSON, default=list)
    github_profile = Column(String(255))
    bugs_resolved = Column(Integer, default=0)
    code_quality_score = Column(Integer, default=0)
    pull_requests_completed = Column(Integer, default=0)


class DesignerDB(TeamMemberColumns, IdentityColumns, Base):
    __tablename__ = "designers"
    ROLE = Role.DESIGNER

    tools_used = Column(JSON, default=list)
    figma_profile = Column(String(255))
    client_approval_rate = Column(Integer, default=0)
    design_portfolio = Column(JSON, default=list)
    completed_designs = Column(Integer, default=0)
    design_revisions = Column(JSON, default=dict)


class ProjectManagerDB(TeamMemberColumns, IdentityColumns, Base):
    __tablename__ = "project_managers"
    ROLE = Role.PROJECT_MANAGER

    managed_projects = Column(JSON, default=list)
    on_time_delivery_rate = Column(Integer, default=0)
    blocker_resolution_time = Column(Float, default=0.0)
    client_satisfaction_score = Column(Integer, default=0)
    team_feedback_score = Column(Integer, default=0)
    resource_utilization = Column(Integer, default=0)
    project_metrics = Column(JSON, default=list)


class ClientAccountDB(IdentityColumns, Base):
    """Portal login of a client; companion of a Client entity with the same email."""
    __tablename__ = "client_accounts"
    ROLE = Role.CLIENT

    company_name = Column(String(255))
    phone = Column(String(50))


PARTITION_MODELS = {
    Role.ADMINISTRATOR: AdministratorDB,
    Role.DEVELOPER: DeveloperDB,
    Role.DESIGNER: DesignerDB,
    Role.PROJECT_MANAGER: ProjectManagerDB,
    Role.CLIENT: ClientAccountDB,
}
