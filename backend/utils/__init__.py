"""
Utils Package

Provides utility modules for:
- errors: typed failures of the integrity layer
- validation: boundary checks for email, role and numeric fields
"""

from .errors import (
    IntegrityLayerError,
    NotFound,
    AuthenticationFailed,
    Conflict,
    AlreadyLinked,
    ValidationFailed,
    PartialFailure,
)
from .validation import normalize_email, split_known_fields

__all__ = [
    'IntegrityLayerError',
    'NotFound',
    'AuthenticationFailed',
    'Conflict',
    'AlreadyLinked',
    'ValidationFailed',
    'PartialFailure',
    'normalize_email',
    'split_known_fields',
]
