"""
Identity Partitions Module

One logical user lives in exactly one of five role partitions.

Features:
- Partition store with a shared capability set per role
- Cross-partition resolution in fixed priority order
- Registration, authentication and profile updates
- Role transitions (create target, then delete source)
"""

from .models import (
    Role,
    PARTITION_PRIORITY,
    PARTITION_MODELS,
    AdministratorDB,
    DeveloperDB,
    DesignerDB,
    ProjectManagerDB,
    ClientAccountDB,
    parse_role,
)
from .partitions import IdentityPartition, PartitionRegistry
from .resolver import IdentityResolver, ResolvedIdentity
from .service import IdentityService
from .transition import TransitionManager, TransitionResult

__all__ = [
    'Role',
    'PARTITION_PRIORITY',
    'PARTITION_MODELS',
    'AdministratorDB',
    'DeveloperDB',
    'DesignerDB',
    'ProjectManagerDB',
    'ClientAccountDB',
    'parse_role',
    'IdentityPartition',
    'PartitionRegistry',
    'IdentityResolver',
    'ResolvedIdentity',
    'IdentityService',
    'TransitionManager',
    'TransitionResult',
]
