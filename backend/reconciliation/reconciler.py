"""
Aggregate Counter Reconciler

Scans the source-of-truth tables, recomputes the dashboard counters and
reports every consistency irregularity it finds. Counters are derived data
and may be written back onto administrator records; irregularities are
only reported, since choosing the authoritative copy of a duplicate is an
operator decision.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from config import get_settings
from identity.models import Role
from identity.service import IdentityService
from relationships.store import RelationshipStores
from services.integrity_log import IntegrityLog

logger = logging.getLogger(__name__)


class IrregularityType(str, Enum):
    DUPLICATE_EMAIL = "duplicate_email"
    HALF_LINK = "half_link"
    DANGLING_CLIENT_REFERENCE = "dangling_client_reference"
    DANGLING_PROJECT_REFERENCE = "dangling_project_reference"
    ORPHAN_MILESTONE = "orphan_milestone"
    UNLISTED_MILESTONE = "unlisted_milestone"
    DANGLING_MILESTONE_REFERENCE = "dangling_milestone_reference"
    DANGLING_MANAGED_PROJECT = "dangling_managed_project"
    DANGLING_IDENTITY_REFERENCE = "dangling_identity_reference"
    UNRESOLVED_PARTIAL_FAILURE = "unresolved_partial_failure"


@dataclass
class Irregularity:
    category: IrregularityType
    entity_type: str
    entity_id: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "details": self.details,
        }


@dataclass
class ConsistencyReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    counters: Dict[str, Any] = field(default_factory=dict)
    irregularities: List[Irregularity] = field(default_factory=list)
    counters_written: int = 0

    @property
    def consistent(self) -> bool:
        return not self.irregularities

    def irregularity_counts(self) -> Dict[str, int]:
        counts = {category.value: 0 for category in IrregularityType}
        for item in self.irregularities:
            counts[item.category.value] += 1
        return counts

    def of_type(self, category: IrregularityType) -> List[Irregularity]:
        return [i for i in self.irregularities if i.category == category]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "consistent": self.consistent,
            "counters": self.counters,
            "counters_written": self.counters_written,
            "irregularity_counts": self.irregularity_counts(),
            "irregularities": [i.to_dict() for i in self.irregularities],
        }


def _mean(values: Iterable[Any]) -> float:
    numbers = [v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]
    if not numbers:
        return 0.0
    return round(sum(numbers) / len(numbers), 2)


class Reconciler:

    def __init__(self, identities: IdentityService, stores: RelationshipStores, ledger: IntegrityLog):
        self.identities = identities
        self.stores = stores
        self.ledger = ledger

    async def reconcile(self, write_counters: Optional[bool] = None) -> ConsistencyReport:
        if write_counters is None:
            write_counters = get_settings().RECONCILE_WRITE_COUNTERS

        report = ConsistencyReport(started_at=datetime.now(timezone.utc))

        identities = {}
        for partition in self.identities.registry:
            identities[partition.role] = await partition.list_all()
        clients = {c.id: c for c in await self.stores.clients.list_all()}
        projects = {p.id: p for p in await self.stores.projects.list_all()}
        milestones = {m.id: m for m in await self.stores.milestones.list_all()}

        report.counters = self._compute_counters(identities, clients, projects)
        report.irregularities.extend(self._duplicate_emails(identities))
        report.irregularities.extend(self._client_project_links(clients, projects))
        report.irregularities.extend(self._project_milestone_links(projects, milestones))
        report.irregularities.extend(self._managed_projects(identities[Role.PROJECT_MANAGER], projects))
        report.irregularities.extend(self._identity_references(identities, projects, milestones))

        for event in await self.ledger.list_events(unresolved_only=True):
            report.irregularities.append(Irregularity(
                IrregularityType.UNRESOLVED_PARTIAL_FAILURE,
                event.entity_type or "unknown",
                event.entity_id or event.id,
                {"event_id": event.id, "operation": event.operation, "step": event.step, "state": event.state},
            ))

        if write_counters:
            report.counters_written = await self.identities.write_dashboard_counters(report.counters)

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"Reconcile finished: {len(report.irregularities)} irregularities",
            extra={"irregularity_counts": report.irregularity_counts()},
        )
        return report

    # ==================== COUNTERS ====================

    @staticmethod
    def _compute_counters(identities, clients, projects) -> Dict[str, Any]:
        employees = (
            identities[Role.DEVELOPER]
            + identities[Role.DESIGNER]
            + identities[Role.PROJECT_MANAGER]
        )
        all_identities = [record for records in identities.values() for record in records]

        feedback = [
            entry.get("rating")
            for client in clients.values()
            for entry in (client.feedback_history or [])
            if isinstance(entry, dict)
        ]

        return {
            "partition_counts": {role.value: len(records) for role, records in identities.items()},
            "total_developers": len(identities[Role.DEVELOPER]),
            "total_designers": len(identities[Role.DESIGNER]),
            "total_pms": len(identities[Role.PROJECT_MANAGER]),
            "total_clients": len(clients),
            "total_employees": len(employees),
            "total_active_users": sum(1 for record in all_identities if record.is_active is not False),
            "total_projects": len(projects),
            "active_projects": sum(1 for p in projects.values() if p.status == "Active"),
            "blocked_projects": sum(1 for p in projects.values() if p.status == "Blocked"),
            "avg_employee_rating": _mean((e.effectiveness or {}).get("overall") for e in employees),
            "overall_client_satisfaction": _mean((p.satisfaction or {}).get("overall") for p in projects.values()),
            "client_feedback_average": _mean(feedback),
        }

    # ==================== IRREGULARITIES ====================

    @staticmethod
    def _duplicate_emails(identities) -> List[Irregularity]:
        copies = defaultdict(list)
        for role, records in identities.items():
            for record in records:
                copies[record.email].append({"partition": role.value, "id": record.id})

        return [
            Irregularity(IrregularityType.DUPLICATE_EMAIL, "identity", email, {"copies": found})
            for email, found in copies.items()
            if len(found) > 1
        ]

    @staticmethod
    def _client_project_links(clients, projects) -> List[Irregularity]:
        found = []
        for client in clients.values():
            for project_id in client.linked_projects or []:
                project = projects.get(project_id)
                if project is None:
                    found.append(Irregularity(
                        IrregularityType.DANGLING_PROJECT_REFERENCE, "client", client.id,
                        {"project_id": project_id},
                    ))
                elif project.client_id != client.id:
                    found.append(Irregularity(
                        IrregularityType.HALF_LINK, "client", client.id,
                        {"project_id": project_id, "project_client_id": project.client_id},
                    ))

        for project in projects.values():
            if not project.client_id:
                continue
            client = clients.get(project.client_id)
            if client is None:
                found.append(Irregularity(
                    IrregularityType.DANGLING_CLIENT_REFERENCE, "project", project.id,
                    {"client_id": project.client_id},
                ))
            elif project.id not in (client.linked_projects or []):
                found.append(Irregularity(
                    IrregularityType.HALF_LINK, "project", project.id,
                    {"client_id": client.id},
                ))
        return found

    @staticmethod
    def _project_milestone_links(projects, milestones) -> List[Irregularity]:
        found = []
        for project in projects.values():
            for milestone_id in project.milestones or []:
                milestone = milestones.get(milestone_id)
                if milestone is None or milestone.project_id != project.id:
                    found.append(Irregularity(
                        IrregularityType.DANGLING_MILESTONE_REFERENCE, "project", project.id,
                        {
                            "milestone_id": milestone_id,
                            "milestone_project_id": milestone.project_id if milestone else None,
                        },
                    ))

        for milestone in milestones.values():
            project = projects.get(milestone.project_id)
            if project is None:
                found.append(Irregularity(
                    IrregularityType.ORPHAN_MILESTONE, "milestone", milestone.id,
                    {"project_id": milestone.project_id},
                ))
            elif milestone.id not in (project.milestones or []):
                found.append(Irregularity(
                    IrregularityType.UNLISTED_MILESTONE, "milestone", milestone.id,
                    {"project_id": project.id},
                ))
        return found

    @staticmethod
    def _managed_projects(managers, projects) -> List[Irregularity]:
        return [
            Irregularity(
                IrregularityType.DANGLING_MANAGED_PROJECT, "identity", manager.id,
                {"project_id": project_id, "email": manager.email},
            )
            for manager in managers
            for project_id in manager.managed_projects or []
            if project_id not in projects
        ]

    @staticmethod
    def _identity_references(identities, projects, milestones) -> List[Irregularity]:
        """Team assignments naming an identity id no partition holds, e.g. after a role transition."""
        known = {record.id for records in identities.values() for record in records}
        found = []

        for project in projects.values():
            referenced = list(project.assigned_developers or [])
            if project.project_manager:
                referenced.append(project.project_manager)
            for identity_id in referenced:
                if identity_id not in known:
                    found.append(Irregularity(
                        IrregularityType.DANGLING_IDENTITY_REFERENCE, "project", project.id,
                        {"identity_id": identity_id},
                    ))

        for milestone in milestones.values():
            for identity_id in milestone.assigned_to or []:
                if identity_id not in known:
                    found.append(Irregularity(
                        IrregularityType.DANGLING_IDENTITY_REFERENCE, "milestone", milestone.id,
                        {"identity_id": identity_id},
                    ))
        return found
