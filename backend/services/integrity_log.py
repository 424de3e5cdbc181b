"""
Integrity Event Ledger

Records every partial failure of a multi-step operation and every failed
best-effort companion write, so the reconciler (and an operator) can find
them later. Each entry is also emitted as a structured log line.

Usage:
    from services.integrity_log import IntegrityLog

    ledger = IntegrityLog(session_factory)
    await ledger.record_failure(exc, entity_type="project", entity_id=project_id)
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, String, Boolean, DateTime, JSON, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from database import Base
from utils.errors import PartialFailure

logger = logging.getLogger(__name__)


class IntegrityEventDB(Base):
    """One ledger entry per detected partial state."""
    __tablename__ = "integrity_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    operation = Column(String(100), nullable=False)  # transition, link_project, create_client...
    step = Column(String(100), nullable=False)
    entity_type = Column(String(50))
    entity_id = Column(String(100))
    state = Column(String(50), nullable=False)  # duplicate, half_link, companion_drift...
    details = Column(JSON, default=dict)
    resolved = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation": self.operation,
            "step": self.step,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "state": self.state,
            "details": self.details or {},
            "resolved": self.resolved,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def log_integrity_event(
    operation: str,
    step: str,
    state: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    level: int = logging.ERROR,
) -> None:
    """Emit the structured log line for an integrity event."""
    logger.log(
        level,
        f"Integrity event: {operation} stopped at '{step}' leaving '{state}'",
        extra={
            "integrity_operation": operation,
            "integrity_step": step,
            "integrity_state": state,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "integrity_details": details or {},
        },
    )


class IntegrityLog:
    """Ledger store. Writing to it never raises into the caller."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def record(
        self,
        operation: str,
        step: str,
        state: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[IntegrityEventDB]:
        log_integrity_event(operation, step, state, entity_type, entity_id, details)

        event = IntegrityEventDB(
            operation=operation,
            step=step,
            state=state,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details or {},
        )
        try:
            async with self._session_factory() as session:
                session.add(event)
                await session.commit()
        except SQLAlchemyError as e:
            # The log line above is the fallback record
            logger.error(f"Could not persist integrity event for {operation}: {e}")
            return None
        return event

    async def record_failure(
        self,
        failure: PartialFailure,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> Optional[IntegrityEventDB]:
        details = dict(failure.details)
        details["completed_steps"] = failure.completed_steps
        if failure.cause is not None:
            details["cause"] = str(failure.cause)
        return await self.record(
            operation=failure.operation,
            step=failure.step,
            state=failure.state,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
        )

    async def list_events(self, unresolved_only: bool = False) -> List[IntegrityEventDB]:
        async with self._session_factory() as session:
            query = select(IntegrityEventDB).order_by(IntegrityEventDB.created_at)
            if unresolved_only:
                query = query.where(IntegrityEventDB.resolved.is_(False))
            result = await session.execute(query)
            return list(result.scalars().all())

    async def mark_resolved(self, event_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(IntegrityEventDB)
                .where(IntegrityEventDB.id == event_id)
                .values(resolved=True)
            )
            await session.commit()
            return result.rowcount > 0
