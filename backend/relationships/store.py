"""
Single-table entity stores for Client, Project and Milestone.

Like the identity partitions, every call is its own session and commit.
Set-valued fields are read, modified and written back inside one call;
concurrent writers to the same row are last-write-wins.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from utils.errors import Conflict, NotFound
from utils.validation import split_known_fields
from .models import ClientDB, ProjectDB, MilestoneDB

logger = logging.getLogger(__name__)


class EntityStore:

    def __init__(self, model: type, session_factory: async_sessionmaker, entity_name: str):
        self.model = model
        self.entity_name = entity_name
        self._session_factory = session_factory

    def _writable(self):
        return self.model.column_names() - self.model.SYSTEM_FIELDS

    async def get(self, entity_id: Optional[str]):
        if not entity_id:
            return None
        async with self._session_factory() as session:
            return await session.get(self.model, entity_id)

    async def require(self, entity_id: str):
        record = await self.get(entity_id)
        if record is None:
            raise NotFound(self.entity_name, entity_id)
        return record

    async def list_all(self) -> List[Any]:
        async with self._session_factory() as session:
            result = await session.execute(select(self.model).order_by(self.model.created_at))
            return list(result.scalars().all())

    async def find_where(self, column: str, value: Any) -> List[Any]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(self.model).where(getattr(self.model, column) == value)
            )
            return list(result.scalars().all())

    async def find_one(self, column: str, value: Any):
        found = await self.find_where(column, value)
        return found[0] if found else None

    async def create(self, fields: Dict[str, Any]):
        columns, extras = split_known_fields(fields, self._writable())
        if extras:
            columns["extra_data"] = {**(columns.get("extra_data") or {}), **extras}

        record = self.model(**columns)
        async with self._session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise Conflict(f"{self.entity_name} violates a unique constraint", {"fields": sorted(columns)}) from e
        logger.debug(f"Created {self.entity_name} {record.id}")
        return record

    async def update(self, entity_id: str, changes: Dict[str, Any]):
        columns, extras = split_known_fields(changes, self._writable())

        async with self._session_factory() as session:
            record = await session.get(self.model, entity_id)
            if record is None:
                raise NotFound(self.entity_name, entity_id)

            for key, value in columns.items():
                if key != "extra_data":
                    setattr(record, key, value)

            merged_extra = dict(record.extra_data or {})
            merged_extra.update(columns.get("extra_data") or {})
            merged_extra.update(extras)
            if merged_extra != (record.extra_data or {}):
                record.extra_data = merged_extra

            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise Conflict(f"{self.entity_name} violates a unique constraint", {"id": entity_id}) from e
            return record

    async def add_to_set(self, entity_id: str, field: str, value: str):
        """Add value to a JSON id list. Returns the record, or None if it is gone."""
        async with self._session_factory() as session:
            record = await session.get(self.model, entity_id)
            if record is None:
                return None
            current = list(getattr(record, field) or [])
            if value not in current:
                # New list object so the JSON column is flagged dirty
                setattr(record, field, current + [value])
                await session.commit()
            return record

    async def remove_from_set(self, entity_id: str, field: str, value: str):
        """Remove value from a JSON id list. Returns the record, or None if it is gone."""
        async with self._session_factory() as session:
            record = await session.get(self.model, entity_id)
            if record is None:
                return None
            current = list(getattr(record, field) or [])
            if value in current:
                setattr(record, field, [v for v in current if v != value])
                await session.commit()
            return record

    async def delete(self, entity_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(delete(self.model).where(self.model.id == entity_id))
            await session.commit()
            return result.rowcount > 0

    async def delete_where(self, column: str, value: Any) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(self.model).where(getattr(self.model, column) == value)
            )
            await session.commit()
            return result.rowcount


class RelationshipStores:
    """The three aggregate stores, sharing one session factory."""

    def __init__(self, session_factory: async_sessionmaker):
        self.clients = EntityStore(ClientDB, session_factory, "client")
        self.projects = EntityStore(ProjectDB, session_factory, "project")
        self.milestones = EntityStore(MilestoneDB, session_factory, "milestone")
