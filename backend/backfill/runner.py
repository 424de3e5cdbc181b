"""
Backfill Runner

One-shot, idempotent migration of the legacy unified user table into the
role partitions, followed by an upsert of the designated privileged
identity.

Per legacy record:
- no email or no credential      -> skipped_invalid
- email already in the target    -> already_migrated
- email in another partition     -> conflicts (global uniqueness wins)
- anything else                  -> legacy id stripped, record inserted

Per-record errors are counted in ``failed`` and never abort the run.
Running it twice leaves the partitions exactly as the first run did.
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from config import get_settings
from identity.models import Role
from identity.partitions import PartitionRegistry
from identity.resolver import IdentityResolver
from services.credentials import hash_credential, looks_hashed, verify_credential
from utils.errors import IntegrityLayerError, ValidationFailed
from utils.validation import normalize_email
from .models import LegacyUserDB

logger = logging.getLogger(__name__)

# Legacy role tag -> partition. Anything else lands in developer.
LEGACY_ROLE_MAP = {
    "admin": Role.ADMINISTRATOR,
    "owner": Role.ADMINISTRATOR,
    "administrator": Role.ADMINISTRATOR,
    "developer": Role.DEVELOPER,
    "teamlead": Role.DEVELOPER,
    "designer": Role.DESIGNER,
    "projectmanager": Role.PROJECT_MANAGER,
    "project-manager": Role.PROJECT_MANAGER,
    "project_manager": Role.PROJECT_MANAGER,
    "client": Role.CLIENT,
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")
_DATETIME_FIELDS = ("joined_at", "last_login")


def map_legacy_role(role: Optional[str]) -> Role:
    if not role:
        return Role.DEVELOPER
    return LEGACY_ROLE_MAP.get(str(role).strip().lower(), Role.DEVELOPER)


def to_snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


# ==================== REPORT ====================

@dataclass
class MigrationReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    total: int = 0
    migrated: Dict[str, int] = field(default_factory=lambda: {role.value: 0 for role in Role})
    already_migrated: int = 0
    conflicts: int = 0
    skipped_invalid: int = 0
    failed: int = 0
    problems: List[Dict[str, Any]] = field(default_factory=list)
    privileged: Optional[str] = None  # created | reset | unchanged

    @property
    def total_migrated(self) -> int:
        return sum(self.migrated.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "total": self.total,
            "migrated": self.migrated,
            "total_migrated": self.total_migrated,
            "already_migrated": self.already_migrated,
            "conflicts": self.conflicts,
            "skipped_invalid": self.skipped_invalid,
            "failed": self.failed,
            "problems": self.problems,
            "privileged": self.privileged,
        }


# ==================== RUNNER ====================

class BackfillRunner:

    def __init__(self, session_factory: async_sessionmaker, registry: Optional[PartitionRegistry] = None):
        self._session_factory = session_factory
        self.registry = registry or PartitionRegistry(session_factory)
        self.resolver = IdentityResolver(self.registry)

    async def stage_legacy_records(self, records: Iterable[Dict[str, Any]]) -> int:
        """
        Load raw legacy user dicts (e.g. a JSON export) into legacy_users.
        Records whose legacy id is already staged are left alone.
        """
        staged = 0
        async with self._session_factory() as session:
            for raw in records:
                data = dict(raw)
                legacy_id = str(data.pop("_id", None) or data.pop("id", None) or "")
                if not legacy_id or await session.get(LegacyUserDB, legacy_id) is not None:
                    continue
                session.add(LegacyUserDB(
                    id=legacy_id,
                    email=data.pop("email", None),
                    password=data.pop("password", None),
                    role=data.pop("role", None),
                    name=data.pop("name", None),
                    first_name=data.pop("firstName", None) or data.pop("first_name", None),
                    last_name=data.pop("lastName", None) or data.pop("last_name", None),
                    payload=data,
                ))
                staged += 1
            await session.commit()
        logger.info(f"Staged {staged} legacy user records")
        return staged

    async def _load_legacy(self) -> List[LegacyUserDB]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(LegacyUserDB).order_by(LegacyUserDB.created_at, LegacyUserDB.id)
            )
            return list(result.scalars().all())

    def build_identity_fields(self, legacy: LegacyUserDB, email: str) -> Dict[str, Any]:
        """Partition payload for a legacy record; the legacy id is not carried."""
        fields: Dict[str, Any] = {}
        for key, value in (legacy.payload or {}).items():
            if key in ("_id", "id", "__v", "createdAt", "updatedAt"):
                continue
            fields[to_snake_case(key)] = value

        for key in _DATETIME_FIELDS:
            if key in fields:
                parsed = _parse_datetime(fields.pop(key))
                if parsed is not None:
                    fields[key] = parsed

        full_name = " ".join(p for p in (legacy.first_name, legacy.last_name) if p)
        fields["display_name"] = legacy.name or full_name or email.split("@")[0]
        fields["email"] = email
        fields["hashed_credential"] = (
            legacy.password if looks_hashed(legacy.password) else hash_credential(legacy.password)
        )
        if legacy.role:
            fields.setdefault("legacy_role", legacy.role)
        return fields

    async def run_backfill(self) -> MigrationReport:
        report = MigrationReport(started_at=datetime.now(timezone.utc))
        legacy_users = await self._load_legacy()
        report.total = len(legacy_users)
        logger.info(f"Backfill: {report.total} legacy users to examine")

        for legacy in legacy_users:
            try:
                await self._migrate_one(legacy, report)
            except (IntegrityLayerError, SQLAlchemyError) as e:
                report.failed += 1
                report.problems.append({"legacy_id": legacy.id, "outcome": "failed", "error": str(e)})
                logger.error(f"Backfill failed for legacy user {legacy.id}: {e}")

        report.privileged = await self.ensure_privileged_identity()
        report.finished_at = datetime.now(timezone.utc)
        logger.info("Backfill finished", extra={"backfill_report": report.to_dict()})
        return report

    async def _migrate_one(self, legacy: LegacyUserDB, report: MigrationReport) -> None:
        try:
            email = normalize_email(legacy.email)
        except ValidationFailed:
            report.skipped_invalid += 1
            report.problems.append({"legacy_id": legacy.id, "outcome": "skipped_invalid", "reason": "email"})
            return
        if not legacy.password:
            report.skipped_invalid += 1
            report.problems.append({"legacy_id": legacy.id, "outcome": "skipped_invalid", "reason": "credential"})
            return

        role = map_legacy_role(legacy.role)
        target = self.registry[role]

        if await target.find_by_email(email) is not None:
            report.already_migrated += 1
            return

        if not await self.resolver.resolve_by_email_for_uniqueness(email):
            report.conflicts += 1
            holders = [c.partition.value for c in await self.resolver.find_all_by_email(email)]
            report.problems.append({
                "legacy_id": legacy.id,
                "outcome": "conflict",
                "email": email,
                "target_partition": role.value,
                "found_in": holders,
            })
            return

        await target.create(self.build_identity_fields(legacy, email))
        report.migrated[role.value] += 1

    async def ensure_privileged_identity(self) -> str:
        """
        Make sure the privileged identity exists and verifies against the
        configured password. Only the credential is ever reset.
        """
        settings = get_settings()
        email = normalize_email(settings.PRIVILEGED_EMAIL)
        password = settings.PRIVILEGED_PASSWORD

        copies = await self.resolver.find_all_by_email(email)
        if not copies:
            await self.registry[Role.ADMINISTRATOR].create({
                "email": email,
                "hashed_credential": hash_credential(password),
                "display_name": settings.PRIVILEGED_DISPLAY_NAME,
                "title": "System Administrator",
                "department": "IT",
                "admin_level": "owner",
            })
            logger.info(f"Privileged identity {email} created")
            return "created"

        current = copies[0]
        if verify_credential(password, current.record.hashed_credential):
            return "unchanged"

        await self.registry[current.partition].update(
            current.id, {"hashed_credential": hash_credential(password)}
        )
        logger.warning(f"Privileged identity {email} credential reset in {current.partition.value}")
        return "reset"
