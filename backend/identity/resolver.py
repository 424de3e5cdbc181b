"""
Identity Resolver

Looks an identity up across all five partitions in fixed priority order
(administrator, developer, designer, project-manager, client). The first
hit wins, which keeps authentication deterministic while a role transition
has left two copies of one email behind.

Read-only: nothing here writes to a partition.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from utils.errors import NotFound
from utils.validation import looks_like_email, normalize_email
from .models import Role
from .partitions import PartitionRegistry

logger = logging.getLogger(__name__)


@dataclass
class ResolvedIdentity:
    """An identity record together with the partition it was found in."""
    record: Any
    partition: Role

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def email(self) -> str:
        return self.record.email

    def to_dict(self) -> Dict[str, Any]:
        return {
            "partition": self.partition.value,
            "identity": self.record.to_dict(),
        }


class IdentityResolver:

    def __init__(self, registry: PartitionRegistry):
        self.registry = registry

    async def resolve(self, email_or_id: str) -> ResolvedIdentity:
        """
        Find an identity by email (any value containing '@') or by id.

        Raises:
            NotFound: only after every partition has been searched
        """
        if not email_or_id:
            raise NotFound("identity", "<empty>")

        by_email = looks_like_email(email_or_id)
        key = email_or_id.strip().lower() if by_email else email_or_id.strip()

        for partition in self.registry:
            if by_email:
                record = await partition.find_by_email(key)
            else:
                record = await partition.find_by_id(key)
            if record is not None:
                return ResolvedIdentity(record=record, partition=partition.role)

        raise NotFound("identity", key)

    async def find_in_partition(self, partition: Any, identity_id: str) -> ResolvedIdentity:
        """
        Load an identity from one named partition.

        Raises:
            NotFound: no record with this id in that partition
        """
        role = Role(partition)
        record = await self.registry[role].find_by_id(identity_id)
        if record is None:
            raise NotFound(f"{role.value} identity", identity_id)
        return ResolvedIdentity(record=record, partition=role)

    async def list_identities(self, role: Optional[Role] = None) -> List[ResolvedIdentity]:
        """Every identity, partition by partition in priority order; one partition when role is given."""
        found = []
        for partition in self.registry:
            if role is not None and partition.role != role:
                continue
            found.extend(
                ResolvedIdentity(record=record, partition=partition.role)
                for record in await partition.list_all()
            )
        return found

    async def find_all_by_email(self, email: str) -> List[ResolvedIdentity]:
        """Every copy of an email, in priority order. More than one is a duplicate."""
        key = email.strip().lower()
        found = []
        for partition in self.registry:
            record = await partition.find_by_email(key)
            if record is not None:
                found.append(ResolvedIdentity(record=record, partition=partition.role))
        return found

    async def resolve_by_email_for_uniqueness(
        self,
        email: str,
        exclude: Optional[Tuple[Role, str]] = None,
    ) -> bool:
        """
        True when no partition holds this email, i.e. creation may proceed.

        All five partitions are checked even after a hit so that the log shows
        every colliding copy. ``exclude`` is a (partition, id) pair to ignore,
        used when the record being checked is the one about to move.
        """
        key = normalize_email(email)
        collisions = []
        for copy in await self.find_all_by_email(key):
            if exclude is not None and copy.partition == Role(exclude[0]) and copy.id == exclude[1]:
                continue
            collisions.append(copy.partition.value)

        if collisions:
            logger.info(f"Email {key} already present in partitions: {collisions}")
            return False
        return True
