"""
Internal Service Authentication

API key guard for the integrity endpoints. They are called by operators
and sibling services, never by end users.

Settings:
    INTERNAL_API_KEY: comma-separated list of valid keys (for key rotation)

Usage:
    from middleware.internal_auth import require_internal_service

    @router.post("/reconcile")
    async def reconcile(caller: InternalService = Depends(require_internal_service)):
        ...

Headers:
    X-Internal-Api-Key: <api_key>
    X-Service-Name: <service_name> (optional, for logging)
"""

import secrets
import logging
from typing import Optional, Set
from dataclasses import dataclass

from fastapi import Request, HTTPException, status, Depends
from fastapi.security import APIKeyHeader

from config import get_settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-Internal-Api-Key"
SERVICE_NAME_HEADER = "X-Service-Name"


@dataclass
class InternalService:
    """An authenticated internal caller"""
    name: str
    api_key_hint: str  # last 4 chars, for logs only


def get_valid_api_keys() -> Set[str]:
    raw = get_settings().INTERNAL_API_KEY or ""
    return {key.strip() for key in raw.split(",") if key.strip()}


def validate_internal_key(api_key: Optional[str]) -> bool:
    """Constant-time check of a presented key against every configured key."""
    if not api_key:
        return False

    valid_keys = get_valid_api_keys()
    if not valid_keys:
        logger.warning("No internal API keys configured - integrity endpoints are closed")
        return False

    for valid_key in valid_keys:
        if secrets.compare_digest(api_key, valid_key):
            return True
    return False


api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def get_internal_service(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header)
) -> InternalService:
    """
    FastAPI dependency authenticating an internal caller.

    Raises:
        HTTPException: 401 when the key is missing or invalid
    """
    service_name = request.headers.get(SERVICE_NAME_HEADER, "unknown")

    if not api_key:
        logger.warning(f"Missing API key from service: {service_name}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing internal API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not validate_internal_key(api_key):
        logger.warning(f"Invalid API key from service: {service_name}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    return InternalService(name=service_name, api_key_hint=f"...{api_key[-4:]}")


require_internal_service = get_internal_service
