"""
Credential hashing

Thin wrapper around passlib. The first configured scheme hashes new
credentials; the others are still verified and flagged for rehash.
"""

import logging
from functools import lru_cache
from typing import Optional

from passlib.context import CryptContext

from config import get_settings

logger = logging.getLogger(__name__)


@lru_cache()
def get_crypt_context() -> CryptContext:
    schemes = get_settings().credential_schemes_list
    return CryptContext(schemes=schemes, deprecated="auto")


# ==================== PASSWORD UTILITIES ====================

def hash_credential(password: str) -> str:
    """Hash a password"""
    return get_crypt_context().hash(password)


def verify_credential(password: str, hashed: Optional[str]) -> bool:
    """Verify a password against its hash; unknown hash formats never verify."""
    if not password or not hashed:
        return False
    try:
        return get_crypt_context().verify(password, hashed)
    except (ValueError, TypeError) as e:
        logger.warning(f"Credential verification error: {e}")
        return False


def needs_rehash(hashed: str) -> bool:
    try:
        return get_crypt_context().needs_update(hashed)
    except (ValueError, TypeError):
        return True


def looks_hashed(value: Optional[str]) -> bool:
    """True when the value is a hash produced by one of the configured schemes."""
    if not value:
        return False
    try:
        return get_crypt_context().identify(value) is not None
    except (ValueError, TypeError):
        return False
