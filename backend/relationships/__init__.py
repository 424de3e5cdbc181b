"""
Relationship Aggregates Module

Client, Project and Milestone with mutual back-references:
- Ordered link/unlink/reassign writes (no transactions)
- Cascade deletes (project owns milestones; client only detaches)
- Project and milestone lifecycle
- Client CRUD with a best-effort companion portal login
"""

from .models import ClientDB, ProjectDB, MilestoneDB, ProjectStatus, MilestoneStatus, Priority
from .store import EntityStore, RelationshipStores
from .graph import RelationshipGraph, LinkResult, CascadeResult
from .projects import ProjectService
from .clients import ClientService, ClientWriteResult, CompanionStatus

__all__ = [
    'ClientDB',
    'ProjectDB',
    'MilestoneDB',
    'ProjectStatus',
    'MilestoneStatus',
    'Priority',
    'EntityStore',
    'RelationshipStores',
    'RelationshipGraph',
    'LinkResult',
    'CascadeResult',
    'ProjectService',
    'ClientService',
    'ClientWriteResult',
    'CompanionStatus',
]
