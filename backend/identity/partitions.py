"""
Credential Partition Store

One IdentityPartition per role, all exposing the same capability set
(find_by_email, find_by_id, create, update, delete, list_all, count).
Call sites pick a partition by role tag instead of branching on it.

Every method opens its own session and commits on its own: there is no
transaction spanning two calls. Multi-step callers order their writes so
an interruption leaves a detectable state.

Only the identity package (resolver, service, transition manager) and the
backfill runner may hold a PartitionRegistry.
"""

import logging
from typing import Any, Dict, Iterator, List

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from utils.errors import Conflict, NotFound
from utils.validation import split_known_fields
from .models import PARTITION_MODELS, PARTITION_PRIORITY, Role

logger = logging.getLogger(__name__)


class IdentityPartition:
    """Store for one role partition."""

    def __init__(self, role: Role, session_factory: async_sessionmaker):
        self.role = role
        self.model = PARTITION_MODELS[role]
        self._session_factory = session_factory

    def __repr__(self) -> str:
        return f"<IdentityPartition {self.role.value}>"

    async def find_by_email(self, email: str):
        async with self._session_factory() as session:
            result = await session.execute(
                select(self.model).where(self.model.email == email)
            )
            return result.scalar_one_or_none()

    async def find_by_id(self, identity_id: str):
        async with self._session_factory() as session:
            return await session.get(self.model, identity_id)

    async def list_all(self) -> List[Any]:
        async with self._session_factory() as session:
            result = await session.execute(select(self.model).order_by(self.model.created_at))
            return list(result.scalars().all())

    async def count(self, active_only: bool = False) -> int:
        async with self._session_factory() as session:
            query = select(func.count()).select_from(self.model)
            if active_only:
                query = query.where(self.model.is_active.is_(True))
            result = await session.execute(query)
            return int(result.scalar() or 0)

    async def create(self, fields: Dict[str, Any]):
        """
        Insert a record. Unknown keys go into extra_data.

        Raises:
            Conflict: the email already exists in this partition
        """
        allowed = self.model.column_names() - self.model.SYSTEM_FIELDS
        columns, extras = split_known_fields(fields, allowed)
        if extras:
            columns["extra_data"] = {**(columns.get("extra_data") or {}), **extras}

        record = self.model(**columns)
        record.role_tag = self.role.value

        async with self._session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise Conflict(
                    f"Email already exists in {self.role.value} partition",
                    {"partition": self.role.value, "email": fields.get("email")},
                ) from e

        logger.debug(f"Created identity {record.id} in {self.role.value}")
        return record

    async def update(self, identity_id: str, changes: Dict[str, Any]):
        """
        Update a record in place; unknown keys are merged into extra_data.

        Raises:
            NotFound: no record with this id in the partition
            Conflict: an email change collides inside the partition
        """
        allowed = self.model.column_names() - self.model.SYSTEM_FIELDS
        columns, extras = split_known_fields(changes, allowed)

        async with self._session_factory() as session:
            record = await session.get(self.model, identity_id)
            if record is None:
                raise NotFound(f"{self.role.value} identity", identity_id)

            for key, value in columns.items():
                if key == "extra_data":
                    continue
                setattr(record, key, value)

            merged_extra = dict(record.extra_data or {})
            if "extra_data" in columns:
                merged_extra.update(columns["extra_data"] or {})
            merged_extra.update(extras)
            if merged_extra != (record.extra_data or {}):
                record.extra_data = merged_extra

            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise Conflict(
                    f"Email already exists in {self.role.value} partition",
                    {"partition": self.role.value, "identity_id": identity_id},
                ) from e
            return record

    async def delete(self, identity_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(self.model).where(self.model.id == identity_id)
            )
            await session.commit()
            return result.rowcount > 0

    async def delete_by_email(self, email: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(self.model).where(self.model.email == email)
            )
            await session.commit()
            return result.rowcount > 0


class PartitionRegistry:
    """All five partitions, iterated in resolution priority order."""

    def __init__(self, session_factory: async_sessionmaker):
        self._partitions = {
            role: IdentityPartition(role, session_factory)
            for role in PARTITION_PRIORITY
        }

    def get(self, role: Role) -> IdentityPartition:
        return self._partitions[Role(role)]

    def __getitem__(self, role: Role) -> IdentityPartition:
        return self.get(role)

    def __iter__(self) -> Iterator[IdentityPartition]:
        for role in PARTITION_PRIORITY:
            yield self._partitions[role]
