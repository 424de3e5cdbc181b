"""
Relationship Graph Maintainer

Keeps Client <-> Project and Project <-> Milestone references symmetric
without transactions. Each operation is an ordered sequence of single-row
writes chosen so that an interruption leaves a state the reconciler can
detect:

- link:     client set first, then project.client_id   (else half_link)
- reassign: old and current client sets, new client set, project  (detach before attach)
- cascade project delete: detach client, delete milestones, delete project
- cascade client delete:  detach every project, delete client

All existence checks run before the first write. A failure after at least
one write becomes a PartialFailure, logged and recorded in the ledger.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from services.integrity_log import IntegrityLog
from utils.errors import AlreadyLinked, Conflict, PartialFailure
from .store import RelationshipStores

logger = logging.getLogger(__name__)


# ==================== RESULTS ====================

@dataclass
class LinkResult:
    client_id: Optional[str]
    project_id: str
    changed: bool = True
    already_linked: bool = False
    previous_client_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "project_id": self.project_id,
            "changed": self.changed,
            "already_linked": self.already_linked,
            "previous_client_id": self.previous_client_id,
        }


@dataclass
class CascadeResult:
    deleted_id: str
    entity_type: str
    detached: List[str] = field(default_factory=list)
    milestones_deleted: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deleted_id": self.deleted_id,
            "entity_type": self.entity_type,
            "detached": self.detached,
            "milestones_deleted": self.milestones_deleted,
        }


# ==================== MAINTAINER ====================

class RelationshipGraph:

    def __init__(self, stores: RelationshipStores, ledger: IntegrityLog):
        self.stores = stores
        self.ledger = ledger

    async def run_step(
        self,
        operation: str,
        step: str,
        state: str,
        completed: List[str],
        action: Awaitable,
        entity_type: str,
        entity_id: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Run one write of a multi-step operation.

        If nothing has been written yet the store error propagates as is;
        otherwise it becomes a PartialFailure naming this step.
        """
        try:
            result = await action
        except SQLAlchemyError as e:
            if not completed:
                raise
            failure = PartialFailure(
                operation=operation,
                step=step,
                state=state,
                completed_steps=completed,
                details=details,
                cause=e,
            )
            await self.ledger.record_failure(failure, entity_type=entity_type, entity_id=entity_id)
            raise failure from e
        completed.append(step)
        return result

    # ==================== CLIENT <-> PROJECT ====================

    async def link_project(self, client_id: str, project_id: str, strict: bool = False) -> LinkResult:
        """
        Link a project to a client. Idempotent; re-running completes a half-link.

        Raises:
            NotFound: client or project absent
            AlreadyLinked: both sides already linked and strict=True
            Conflict: project belongs to another client (use reassign_client)
            PartialFailure: client set written, project not (half_link)
        """
        client = await self.stores.clients.require(client_id)
        project = await self.stores.projects.require(project_id)

        in_set = project_id in (client.linked_projects or [])
        points_back = project.client_id == client_id

        if in_set and points_back:
            if strict:
                raise AlreadyLinked(client_id, project_id)
            return LinkResult(client_id, project_id, changed=False, already_linked=True)

        if project.client_id and not points_back:
            raise Conflict(
                "Project is linked to another client; reassign it instead",
                {"project_id": project_id, "current_client_id": project.client_id, "client_id": client_id},
            )

        completed: List[str] = []
        details = {"client_id": client_id, "project_id": project_id}
        if not in_set:
            await self.run_step(
                "link_project", "add_to_client", "unchanged", completed,
                self.stores.clients.add_to_set(client_id, "linked_projects", project_id),
                "project", project_id, details,
            )
        await self.run_step(
            "link_project", "set_project_client", "half_link", completed,
            self.stores.projects.update(project_id, {"client_id": client_id, "client_name": client.name}),
            "project", project_id, details,
        )

        logger.info(f"Linked project {project_id} to client {client_id}")
        return LinkResult(client_id, project_id)

    async def unlink_project(self, client_id: str, project_id: str) -> LinkResult:
        """
        Remove a client/project link. An already-unlinked pair, or a project
        that no longer exists, is a no-op.

        Raises:
            NotFound: client absent
            PartialFailure: client set cleared, project still points at it
        """
        client = await self.stores.clients.require(client_id)
        project = await self.stores.projects.get(project_id)

        in_set = project_id in (client.linked_projects or [])
        points_back = project is not None and project.client_id == client_id
        if not in_set and not points_back:
            return LinkResult(client_id, project_id, changed=False)

        completed: List[str] = []
        details = {"client_id": client_id, "project_id": project_id}
        if in_set:
            await self.run_step(
                "unlink_project", "remove_from_client", "unchanged", completed,
                self.stores.clients.remove_from_set(client_id, "linked_projects", project_id),
                "project", project_id, details,
            )
        if points_back:
            await self.run_step(
                "unlink_project", "clear_project_client", "half_link", completed,
                self.stores.projects.update(project_id, {"client_id": None, "client_name": None}),
                "project", project_id, details,
            )

        logger.info(f"Unlinked project {project_id} from client {client_id}")
        return LinkResult(None, project_id, previous_client_id=client_id)

    async def reassign_client(
        self,
        project_id: str,
        old_client_id: Optional[str],
        new_client_id: Optional[str],
    ) -> LinkResult:
        """
        Move a project from one client to another. Either side may be None
        (first assignment, or detach). Identical ids are a no-op.

        The project is detached from old_client_id and from the client it
        actually points at, when that differs, before it is attached to the
        new client.

        Raises:
            NotFound: project or new client absent
            PartialFailure: interrupted after the old client was detached
        """
        if old_client_id == new_client_id:
            return LinkResult(new_client_id, project_id, changed=False)

        project = await self.stores.projects.require(project_id)
        new_client = await self.stores.clients.require(new_client_id) if new_client_id else None

        current_client_id = project.client_id
        if current_client_id != old_client_id:
            logger.warning(
                f"Reassign {project_id}: project points at {current_client_id}, caller said {old_client_id}"
            )

        completed: List[str] = []
        details = {
            "project_id": project_id,
            "old_client_id": old_client_id,
            "current_client_id": current_client_id,
            "new_client_id": new_client_id,
        }

        if old_client_id:
            await self.run_step(
                "reassign_client", "remove_from_old_client", "unchanged", completed,
                self.stores.clients.remove_from_set(old_client_id, "linked_projects", project_id),
                "project", project_id, details,
            )
        if current_client_id and current_client_id not in (old_client_id, new_client_id):
            await self.run_step(
                "reassign_client", "remove_from_current_client", "half_link", completed,
                self.stores.clients.remove_from_set(current_client_id, "linked_projects", project_id),
                "project", project_id, details,
            )
        if new_client_id:
            await self.run_step(
                "reassign_client", "add_to_new_client", "half_link", completed,
                self.stores.clients.add_to_set(new_client_id, "linked_projects", project_id),
                "project", project_id, details,
            )
        await self.run_step(
            "reassign_client", "set_project_client", "half_link", completed,
            self.stores.projects.update(project_id, {
                "client_id": new_client_id,
                "client_name": new_client.name if new_client else None,
            }),
            "project", project_id, details,
        )

        previous = old_client_id or current_client_id
        logger.info(f"Reassigned project {project_id}: {previous} -> {new_client_id}")
        return LinkResult(new_client_id, project_id, previous_client_id=previous)

    # ==================== CASCADES ====================

    async def cascade_delete_project(self, project_id: str) -> CascadeResult:
        """
        Delete a project and every milestone whose project_id matches it.
        The client is detached, never deleted.

        Order: detach client -> delete milestones -> delete project.
        """
        project = await self.stores.projects.require(project_id)
        result = CascadeResult(deleted_id=project_id, entity_type="project")
        completed: List[str] = []
        details = {"project_id": project_id, "client_id": project.client_id}

        if project.client_id:
            await self.run_step(
                "cascade_delete_project", "detach_client", "unchanged", completed,
                self.stores.clients.remove_from_set(project.client_id, "linked_projects", project_id),
                "project", project_id, details,
            )
            await self.run_step(
                "cascade_delete_project", "clear_project_client", "half_link", completed,
                self.stores.projects.update(project_id, {"client_id": None, "client_name": None}),
                "project", project_id, details,
            )
            result.detached.append(project.client_id)

        result.milestones_deleted = await self.run_step(
            "cascade_delete_project", "delete_milestones", "detached_project", completed,
            self.stores.milestones.delete_where("project_id", project_id),
            "project", project_id, details,
        )
        await self.run_step(
            "cascade_delete_project", "delete_project", "dangling_milestone_reference", completed,
            self.stores.projects.delete(project_id),
            "project", project_id, details,
        )

        logger.info(
            f"Deleted project {project_id} with {result.milestones_deleted} milestones",
            extra={"detached_client": project.client_id},
        )
        return result

    async def cascade_delete_client(self, client_id: str) -> CascadeResult:
        """
        Delete a client after clearing client_id on every project that
        references it (its set plus any project pointing at it). Projects
        are never deleted.
        """
        client = await self.stores.clients.require(client_id)
        result = CascadeResult(deleted_id=client_id, entity_type="client")

        project_ids = list(client.linked_projects or [])
        for project in await self.stores.projects.find_where("client_id", client_id):
            if project.id not in project_ids:
                project_ids.append(project.id)

        completed: List[str] = []
        details = {"client_id": client_id, "project_ids": project_ids}

        for project_id in project_ids:
            project = await self.stores.projects.get(project_id)
            if project is None or project.client_id != client_id:
                continue
            await self.run_step(
                "cascade_delete_client", f"detach_project:{project_id}", "half_link", completed,
                self.stores.projects.update(project_id, {"client_id": None, "client_name": None}),
                "client", client_id, details,
            )
            result.detached.append(project_id)

        await self.run_step(
            "cascade_delete_client", "delete_client", "half_link", completed,
            self.stores.clients.delete(client_id),
            "client", client_id, details,
        )

        logger.info(f"Deleted client {client_id}; detached {len(result.detached)} projects")
        return result
