"""
Role Transition Manager

Moves an identity between partitions when its role changes. Steps, in order:

1. Resolve the record in its current partition through the resolver
2. Build the target record (shared fields plus any attribute the target
   partition has a column for; the rest is dropped)
3. Create it in the target partition
4. Delete the source record

A crash between 3 and 4 leaves two copies of the email, both resolvable.
The resolver's priority order picks one deterministically and the
reconciler reports the duplicate. A failure at 3 leaves the source as it was.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from services.integrity_log import IntegrityLog
from utils.errors import Conflict, PartialFailure
from .models import Role, parse_role
from .partitions import PartitionRegistry
from .resolver import IdentityResolver

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    record: Any
    partition: Role
    previous_partition: Role
    changed: bool
    source_id: str
    dropped_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changed": self.changed,
            "partition": self.partition.value,
            "previous_partition": self.previous_partition.value,
            "source_id": self.source_id,
            "target_id": self.record.id,
            "dropped_fields": self.dropped_fields,
            "identity": self.record.to_dict(),
        }


class TransitionManager:

    def __init__(
        self,
        registry: PartitionRegistry,
        ledger: IntegrityLog,
        resolver: Optional[IdentityResolver] = None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.resolver = resolver or IdentityResolver(registry)

    @staticmethod
    def build_target_fields(record: Any, target_model: type):
        """Return (fields for the target partition, names of dropped source fields)."""
        source_columns = record.column_names() - record.SYSTEM_FIELDS
        target_columns = target_model.column_names() - target_model.SYSTEM_FIELDS

        fields: Dict[str, Any] = {}
        dropped: List[str] = []
        for name in sorted(source_columns):
            value = getattr(record, name)
            if name not in target_columns:
                if value not in (None, "", [], {}):
                    dropped.append(name)
                continue
            if value is not None:
                fields[name] = value
        return fields, dropped

    async def transition(self, identity_id: str, current_partition: Any, target_role: Any) -> TransitionResult:
        """
        Move an identity to the partition of target_role.

        Raises:
            ValidationFailed: unknown role
            NotFound: identity absent from current_partition
            Conflict: the email exists elsewhere, or the target create collided
            PartialFailure: target created but the source could not be deleted
        """
        source_role = parse_role(current_partition)
        target = parse_role(target_role)

        source = self.registry[source_role]
        record = (await self.resolver.find_in_partition(source_role, identity_id)).record

        if target == source_role:
            logger.info(f"Identity {identity_id} already in {target.value}; nothing to move")
            return TransitionResult(
                record=record,
                partition=source_role,
                previous_partition=source_role,
                changed=False,
                source_id=identity_id,
            )

        destination = self.registry[target]
        fields, dropped = self.build_target_fields(record, destination.model)

        free = await self.resolver.resolve_by_email_for_uniqueness(
            record.email, exclude=(source_role, identity_id)
        )
        if not free:
            raise Conflict(
                "Email already registered in another partition",
                {"email": record.email, "target_partition": target.value},
            )

        # Target first: a failure here has no side effects
        created = await destination.create(fields)
        logger.info(
            f"Transition {identity_id}: created {created.id} in {target.value}",
            extra={"source_partition": source_role.value, "dropped_fields": dropped},
        )

        try:
            deleted = await source.delete(identity_id)
        except SQLAlchemyError as e:
            failure = PartialFailure(
                operation="transition",
                step="delete_source",
                state="duplicate",
                completed_steps=["create_target"],
                details={
                    "email": record.email,
                    "source_partition": source_role.value,
                    "source_id": identity_id,
                    "target_partition": target.value,
                    "target_id": created.id,
                },
                cause=e,
            )
            await self.ledger.record_failure(failure, entity_type="identity", entity_id=identity_id)
            raise failure from e

        if not deleted:
            logger.warning(f"Transition {identity_id}: source already gone from {source_role.value}")

        return TransitionResult(
            record=created,
            partition=target,
            previous_partition=source_role,
            changed=True,
            source_id=identity_id,
            dropped_fields=dropped,
        )
