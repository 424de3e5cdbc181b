"""
Identity Service - Service Layer

Sole gate for identity writes:
- Registration (global email uniqueness checked through the resolver)
- Authentication across all partitions
- Profile lookup and in-place profile updates
- Identity deletion

Role changes are not profile updates; they go through TransitionManager.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from config import get_settings
from services.credentials import hash_credential, needs_rehash, verify_credential
from utils.errors import AuthenticationFailed, Conflict, NotFound, ValidationFailed
from utils.validation import normalize_email
from .models import Role, parse_role
from .partitions import PartitionRegistry
from .resolver import IdentityResolver, ResolvedIdentity

logger = logging.getLogger(__name__)

# Keys a payload may never set directly
_PROTECTED_KEYS = ("id", "role_tag", "hashed_credential", "created_at", "updated_at")


class IdentityService:
    """
    Identity Service - registration, authentication and profile management.

    Ensures:
    - At most one identity per email across all partitions
    - Credentials are stored hashed only
    - Unknown payload fields are kept in extra_data
    """

    def __init__(self, session_factory: async_sessionmaker, registry: Optional[PartitionRegistry] = None):
        self.registry = registry or PartitionRegistry(session_factory)
        self.resolver = IdentityResolver(self.registry)

    def _check_password(self, password: Optional[str]) -> str:
        min_length = get_settings().MIN_PASSWORD_LENGTH
        if not password or len(password) < min_length:
            raise ValidationFailed(
                "password",
                f"Password must be at least {min_length} characters",
            )
        return password

    # ==================== REGISTRATION ====================

    async def register(
        self,
        email: str,
        password: str,
        display_name: Optional[str] = None,
        role: Any = Role.DEVELOPER,
        **fields: Any,
    ) -> ResolvedIdentity:
        """
        Create an identity in the partition selected by role.

        Raises:
            ValidationFailed: bad email, unknown role, short password
            Conflict: the email exists in any partition
        """
        target = parse_role(role)
        email = normalize_email(email)
        self._check_password(password)

        if not await self.resolver.resolve_by_email_for_uniqueness(email):
            raise Conflict("Email already registered", {"email": email})

        payload = {k: v for k, v in fields.items() if k not in _PROTECTED_KEYS and k != "password"}
        payload.update({
            "email": email,
            "hashed_credential": hash_credential(password),
            "display_name": display_name or email.split("@")[0],
        })

        record = await self.registry[target].create(payload)
        logger.info(f"Registered identity {record.id} in {target.value}")
        return ResolvedIdentity(record=record, partition=target)

    # ==================== AUTHENTICATION ====================

    async def authenticate(self, email: str, password: str) -> ResolvedIdentity:
        """
        Resolve the identity by email and verify the credential.

        Unknown email, wrong password and deactivated account all raise the
        same AuthenticationFailed.
        """
        try:
            key = normalize_email(email)
            resolved = await self.resolver.resolve(key)
        except (ValidationFailed, NotFound):
            logger.info("Authentication failed: unknown email")
            raise AuthenticationFailed()

        record = resolved.record
        if not verify_credential(password, record.hashed_credential):
            logger.info(f"Authentication failed for identity {record.id}")
            raise AuthenticationFailed()
        if record.is_active is False:
            logger.info(f"Authentication refused for inactive identity {record.id}")
            raise AuthenticationFailed()

        changes: Dict[str, Any] = {"last_login": datetime.now(timezone.utc)}
        if needs_rehash(record.hashed_credential):
            changes["hashed_credential"] = hash_credential(password)
            logger.info(f"Rehashing credential of identity {record.id}")

        record = await self.registry[resolved.partition].update(record.id, changes)
        return ResolvedIdentity(record=record, partition=resolved.partition)

    # ==================== PROFILE ====================

    async def get_profile(self, email_or_id: str) -> Dict[str, Any]:
        resolved = await self.resolver.resolve(email_or_id)
        return resolved.record.to_dict()

    async def list_identities(self, role: Any = None) -> List[Dict[str, Any]]:
        """All identities, or those of one role; credentials are never included."""
        target = parse_role(role) if role is not None else None
        return [resolved.record.to_dict() for resolved in await self.resolver.list_identities(target)]

    async def update_profile(
        self,
        identity_id: str,
        partition: Any,
        changes: Dict[str, Any],
    ) -> ResolvedIdentity:
        """
        Update an identity in place.

        Raises:
            ValidationFailed: role or id change requested, bad email, short password
            NotFound: identity absent from the partition
            Conflict: new email already used in any partition
        """
        role = parse_role(partition)
        changes = dict(changes)

        for key in ("id", "role_tag"):
            if key in changes:
                raise ValidationFailed(key, f"{key} cannot be changed through a profile update")
        if "role" in changes:
            requested = parse_role(changes.pop("role"))
            if requested != role:
                raise ValidationFailed("role", "Role changes must go through a role transition")

        store = self.registry[role]
        existing = await store.find_by_id(identity_id)
        if existing is None:
            raise NotFound(f"{role.value} identity", identity_id)

        if "email" in changes:
            new_email = normalize_email(changes["email"])
            if new_email != existing.email:
                free = await self.resolver.resolve_by_email_for_uniqueness(
                    new_email, exclude=(role, identity_id)
                )
                if not free:
                    raise Conflict("Email already registered", {"email": new_email})
            changes["email"] = new_email

        if "password" in changes:
            changes["hashed_credential"] = hash_credential(self._check_password(changes.pop("password")))
        elif "hashed_credential" in changes:
            raise ValidationFailed("hashed_credential", "hashed_credential cannot be set directly")

        for key in ("created_at", "updated_at"):
            changes.pop(key, None)

        record = await store.update(identity_id, changes)
        return ResolvedIdentity(record=record, partition=role)

    async def write_dashboard_counters(self, counters: Dict[str, Any]) -> int:
        """Copy recomputed roll-up counters onto every administrator record."""
        store = self.registry[Role.ADMINISTRATOR]
        columns = store.model.role_fields()
        values = {k: v for k, v in counters.items() if k in columns}
        values["counters_updated_at"] = datetime.now(timezone.utc)

        admins = await store.list_all()
        for admin in admins:
            await store.update(admin.id, values)
        return len(admins)

    # ==================== DELETION ====================

    async def delete_identity(self, identity_id: str, partition: Any) -> None:
        role = parse_role(partition)
        deleted = await self.registry[role].delete(identity_id)
        if not deleted:
            raise NotFound(f"{role.value} identity", identity_id)
        logger.info(f"Deleted identity {identity_id} from {role.value}")

    async def delete_by_email(self, email: str, partition: Any) -> bool:
        """Delete by email; returns False when there was nothing to delete."""
        role = parse_role(partition)
        deleted = await self.registry[role].delete_by_email(normalize_email(email))
        if deleted:
            logger.info(f"Deleted {role.value} identity {email}")
        return deleted
