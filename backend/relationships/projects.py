"""
Project & Milestone lifecycle

Create/update/delete for projects and milestones. Reference fields
(client_id, milestones, project_id) are only changed through ordered steps
here or in RelationshipGraph; plain field updates pass through untouched.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from utils.errors import ValidationFailed
from utils.validation import check_int_range, require_fields
from .graph import CascadeResult, RelationshipGraph
from .models import ProjectStatus
from .store import RelationshipStores

logger = logging.getLogger(__name__)

_FINISHED_STATUSES = (ProjectStatus.COMPLETED.value, ProjectStatus.DELIVERED.value)


class ProjectService:

    def __init__(self, stores: RelationshipStores, graph: RelationshipGraph):
        self.stores = stores
        self.graph = graph

    @staticmethod
    def _check_milestone_fields(fields: Dict[str, Any], milestone_id: Optional[str] = None) -> None:
        if "progress_percentage" in fields and fields["progress_percentage"] is not None:
            check_int_range("progress_percentage", fields["progress_percentage"], 0, 100)
        if milestone_id and milestone_id in (fields.get("dependencies") or []):
            raise ValidationFailed("dependencies", "A milestone cannot depend on itself", milestone_id)

    # ==================== PROJECTS ====================

    async def get_project(self, project_id: str) -> Dict[str, Any]:
        project = await self.stores.projects.require(project_id)
        return project.to_dict()

    async def list_projects(self) -> List[Dict[str, Any]]:
        return [p.to_dict() for p in await self.stores.projects.list_all()]

    async def create_project(
        self,
        fields: Dict[str, Any],
        client_id: Optional[str] = None,
        initial_milestones: Iterable[Dict[str, Any]] = (),
    ) -> Dict[str, Any]:
        """
        Create a project, its initial milestones, then link the client.

        Order: project -> milestones -> project milestone set -> client link.
        """
        require_fields(fields, ["title"])
        milestone_payloads = [dict(m) for m in initial_milestones]
        for payload in milestone_payloads:
            require_fields(payload, ["title"])
            self._check_milestone_fields(payload)
        if client_id:
            await self.stores.clients.require(client_id)

        payload = {k: v for k, v in fields.items() if k not in ("id", "client_id", "client_name", "milestones")}
        project = await self.stores.projects.create(payload)
        completed = ["create_project"]
        details = {"project_id": project.id}

        milestone_ids = []
        for index, milestone_fields in enumerate(milestone_payloads):
            milestone_fields.pop("id", None)
            milestone_fields["project_id"] = project.id
            milestone = await self.graph.run_step(
                "create_project", f"create_milestone:{index}", "unlisted_milestone", completed,
                self.stores.milestones.create(milestone_fields),
                "project", project.id, details,
            )
            milestone_ids.append(milestone.id)

        if milestone_ids:
            await self.graph.run_step(
                "create_project", "set_project_milestones", "unlisted_milestone", completed,
                self.stores.projects.update(project.id, {"milestones": milestone_ids}),
                "project", project.id, details,
            )

        if client_id:
            await self.graph.link_project(client_id, project.id)

        logger.info(f"Created project {project.id} with {len(milestone_ids)} milestones")
        return await self.get_project(project.id)

    async def update_project(self, project_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Loose update. A client_id change is routed through reassign_client;
        the milestone set cannot be written directly.
        """
        changes = dict(changes)
        if "milestones" in changes:
            raise ValidationFailed("milestones", "Milestones are managed through milestone operations")
        changes.pop("id", None)
        changes.pop("client_name", None)

        project = await self.stores.projects.require(project_id)

        if "client_id" in changes:
            new_client_id = changes.pop("client_id") or None
            if new_client_id != project.client_id:
                await self.graph.reassign_client(project_id, project.client_id, new_client_id)

        if changes:
            await self.stores.projects.update(project_id, changes)
        return await self.get_project(project_id)

    async def delete_project(self, project_id: str) -> CascadeResult:
        return await self.graph.cascade_delete_project(project_id)

    async def project_counts_for(self, identity_id: str, recent: int = 5) -> Dict[str, Any]:
        """
        Project counts for one team member: projects they manage or are
        assigned to. Completed includes Delivered.
        """
        projects = [
            p for p in await self.stores.projects.list_all()
            if p.project_manager == identity_id or identity_id in (p.assigned_developers or [])
        ]
        newest_first = sorted(projects, key=lambda p: p.created_at, reverse=True)
        return {
            "identity_id": identity_id,
            "total": len(projects),
            "active": sum(1 for p in projects if p.status == ProjectStatus.ACTIVE.value),
            "completed": sum(1 for p in projects if p.status in _FINISHED_STATUSES),
            "managed": sum(1 for p in projects if p.project_manager == identity_id),
            "recent_projects": [
                {"id": p.id, "title": p.title, "status": p.status} for p in newest_first[:recent]
            ],
        }

    # ==================== MILESTONES ====================

    async def list_project_milestones(self, project_id: str) -> List[Dict[str, Any]]:
        await self.stores.projects.require(project_id)
        milestones = await self.stores.milestones.find_where("project_id", project_id)
        return [m.to_dict() for m in milestones]

    async def get_milestone(self, milestone_id: str) -> Dict[str, Any]:
        milestone = await self.stores.milestones.require(milestone_id)
        return milestone.to_dict()

    async def create_milestone(self, project_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a milestone, then add it to the project's set.

        Raises:
            NotFound: project absent
            PartialFailure: milestone created but not listed (unlisted_milestone)
        """
        require_fields(fields, ["title"])
        self._check_milestone_fields(fields)
        await self.stores.projects.require(project_id)

        payload = {k: v for k, v in fields.items() if k != "id"}
        payload["project_id"] = project_id
        milestone = await self.stores.milestones.create(payload)

        await self.graph.run_step(
            "create_milestone", "add_to_project", "unlisted_milestone", ["create_milestone"],
            self.stores.projects.add_to_set(project_id, "milestones", milestone.id),
            "milestone", milestone.id, {"project_id": project_id, "milestone_id": milestone.id},
        )
        logger.info(f"Created milestone {milestone.id} in project {project_id}")
        return milestone.to_dict()

    async def update_milestone(self, milestone_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        changes = dict(changes)
        milestone = await self.stores.milestones.require(milestone_id)

        if "project_id" in changes:
            if changes["project_id"] != milestone.project_id:
                raise ValidationFailed("project_id", "A milestone cannot be moved to another project")
            changes.pop("project_id")
        changes.pop("id", None)
        self._check_milestone_fields(changes, milestone_id)

        updated = await self.stores.milestones.update(milestone_id, changes)
        return updated.to_dict()

    async def delete_milestone(self, milestone_id: str) -> None:
        """Remove the milestone from its project's set, then delete it."""
        milestone = await self.stores.milestones.require(milestone_id)
        completed: List[str] = []
        details = {"project_id": milestone.project_id, "milestone_id": milestone_id}

        await self.graph.run_step(
            "delete_milestone", "remove_from_project", "unchanged", completed,
            self.stores.projects.remove_from_set(milestone.project_id, "milestones", milestone_id),
            "milestone", milestone_id, details,
        )
        await self.graph.run_step(
            "delete_milestone", "delete_milestone", "unlisted_milestone", completed,
            self.stores.milestones.delete(milestone_id),
            "milestone", milestone_id, details,
        )
        logger.info(f"Deleted milestone {milestone_id}")
