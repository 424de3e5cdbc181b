"""
Client Service

Client CRUD plus the companion portal login: a ``client`` identity matched
to the Client by email.

The companion write is best-effort. If it fails the Client write still
stands, the failure is reported in ClientWriteResult.companion and recorded
in the integrity ledger, and re-running the same update repairs the drift.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from identity.models import Role
from identity.service import IdentityService
from services.integrity_log import IntegrityLog
from utils.errors import Conflict, IntegrityLayerError, ValidationFailed
from utils.validation import normalize_email, require_fields
from .graph import CascadeResult, RelationshipGraph
from .store import RelationshipStores

logger = logging.getLogger(__name__)


@dataclass
class CompanionStatus:
    """Outcome of the companion identity write."""
    status: str  # created | updated | deleted | absent | skipped | failed
    identity_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "identity_id": self.identity_id, "error": self.error}


@dataclass
class ClientWriteResult:
    client: Optional[Dict[str, Any]]
    companion: CompanionStatus
    cascade: Optional[CascadeResult] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "client": self.client,
            "companion": self.companion.to_dict(),
        }
        if self.cascade is not None:
            data["cascade"] = self.cascade.to_dict()
        return data


class ClientService:

    def __init__(
        self,
        stores: RelationshipStores,
        graph: RelationshipGraph,
        identities: IdentityService,
        ledger: IntegrityLog,
    ):
        self.stores = stores
        self.graph = graph
        self.identities = identities
        self.ledger = ledger

    # ==================== COMPANION IDENTITY ====================

    async def _find_companion(self, *emails: Optional[str]):
        for email in emails:
            if not email:
                continue
            for copy in await self.identities.resolver.find_all_by_email(email):
                if copy.partition == Role.CLIENT:
                    return copy
        return None

    async def _sync_companion(
        self,
        operation: str,
        client: Any,
        password: Optional[str] = None,
        previous_email: Optional[str] = None,
    ) -> CompanionStatus:
        try:
            companion = await self._find_companion(previous_email, client.email)
            profile = {
                "display_name": client.name,
                "company_name": client.company_name,
                "phone": client.phone,
            }
            if companion is not None:
                changes = dict(profile, email=client.email)
                if password:
                    changes["password"] = password
                await self.identities.update_profile(companion.id, Role.CLIENT, changes)
                return CompanionStatus("updated", identity_id=companion.id)

            if not password:
                return CompanionStatus("skipped")

            resolved = await self.identities.register(
                client.email,
                password,
                client.name,
                Role.CLIENT,
                company_name=client.company_name,
                phone=client.phone,
            )
            return CompanionStatus("created", identity_id=resolved.id)
        except (IntegrityLayerError, SQLAlchemyError) as e:
            await self.ledger.record(
                operation=operation,
                step="sync_companion_identity",
                state="companion_drift",
                entity_type="client",
                entity_id=client.id,
                details={"email": client.email, "error": str(e)},
            )
            return CompanionStatus("failed", error=str(e))

    # ==================== CRUD ====================

    async def get_client(self, client_id: str) -> Dict[str, Any]:
        client = await self.stores.clients.require(client_id)
        return client.to_dict()

    async def list_clients(self) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in await self.stores.clients.list_all()]

    async def create_client(self, fields: Dict[str, Any], password: Optional[str] = None) -> ClientWriteResult:
        """
        Create a client; with a password, also create its portal login.

        Raises:
            ValidationFailed: missing name, bad email
            Conflict: another client already uses the email
        """
        require_fields(fields, ["name"])
        email = normalize_email(fields.get("email"))
        if await self.stores.clients.find_one("email", email) is not None:
            raise Conflict("Client with this email already exists", {"email": email})

        payload = {k: v for k, v in fields.items() if k not in ("id", "linked_projects", "password")}
        payload["email"] = email
        client = await self.stores.clients.create(payload)
        logger.info(f"Created client {client.id}")

        companion = await self._sync_companion("create_client", client, password)
        return ClientWriteResult(client=client.to_dict(), companion=companion)

    async def update_client(
        self,
        client_id: str,
        changes: Dict[str, Any],
        password: Optional[str] = None,
    ) -> ClientWriteResult:
        """
        Update a client and keep its portal login in lockstep (email,
        display name, credential).
        """
        changes = dict(changes)
        if "linked_projects" in changes:
            raise ValidationFailed("linked_projects", "Project links are managed through link/unlink")
        changes.pop("id", None)
        password = changes.pop("password", None) or password

        existing = await self.stores.clients.require(client_id)
        if "email" in changes:
            new_email = normalize_email(changes["email"])
            if new_email != existing.email:
                other = await self.stores.clients.find_one("email", new_email)
                if other is not None and other.id != client_id:
                    raise Conflict("Client with this email already exists", {"email": new_email})
            changes["email"] = new_email

        client = await self.stores.clients.update(client_id, changes)
        companion = await self._sync_companion(
            "update_client", client, password, previous_email=existing.email
        )
        return ClientWriteResult(client=client.to_dict(), companion=companion)

    async def delete_client(self, client_id: str) -> ClientWriteResult:
        """Detach and delete the client, then remove its portal login if any."""
        existing = await self.stores.clients.require(client_id)
        cascade = await self.graph.cascade_delete_client(client_id)

        try:
            deleted = await self.identities.delete_by_email(existing.email, Role.CLIENT)
            companion = CompanionStatus("deleted" if deleted else "absent")
        except (IntegrityLayerError, SQLAlchemyError) as e:
            await self.ledger.record(
                operation="delete_client",
                step="delete_companion_identity",
                state="companion_drift",
                entity_type="client",
                entity_id=client_id,
                details={"email": existing.email, "error": str(e)},
            )
            companion = CompanionStatus("failed", error=str(e))

        return ClientWriteResult(client=None, companion=companion, cascade=cascade)
