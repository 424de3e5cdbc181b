"""
Legacy Backfill Module

Migrates the legacy unified user table into the role partitions and
ensures the privileged identity exists. Safe to run repeatedly.
"""

from .models import LegacyUserDB
from .runner import BackfillRunner, MigrationReport, map_legacy_role

__all__ = [
    'LegacyUserDB',
    'BackfillRunner',
    'MigrationReport',
    'map_legacy_role',
]
