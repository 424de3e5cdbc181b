"""
Integrity API Router

Internal endpoints over the identity and referential-integrity layer:
- GET    /api/integrity/identities                     - List identities, optionally of one role
- GET    /api/integrity/identities/resolve             - Resolve an email or id across partitions
- GET    /api/integrity/identities/{id}/project-counts - Projects managed by or assigned to an identity
- POST   /api/integrity/identities/{id}/transition     - Move an identity to another role partition
- POST   /api/integrity/links                          - Link a project to a client
- DELETE /api/integrity/links/{client_id}/{project_id} - Unlink (no-op when already unlinked)
- POST   /api/integrity/projects/{id}/reassign         - Move a project to another client
- DELETE /api/integrity/projects/{id}                  - Cascade-delete a project and its milestones
- DELETE /api/integrity/clients/{id}                   - Detach projects, delete client and its login
- POST   /api/integrity/reconcile                      - Consistency sweep and counter refresh
- POST   /api/integrity/backfill                       - Legacy user backfill
- GET    /api/integrity/events                         - Integrity ledger entries
- POST   /api/integrity/events/{id}/resolve            - Mark a ledger entry handled

Security:
- All endpoints require the internal API key (X-Internal-Api-Key)

Error mapping:
- NotFound 404, Conflict 409, AlreadyLinked 400, ValidationFailed 422
- PartialFailure 500 with operation/step/state in the body
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from database import get_session_factory
from middleware.internal_auth import InternalService, require_internal_service
from services.container import IntegrityServices, build_services
from utils.errors import (
    AlreadyLinked,
    AuthenticationFailed,
    Conflict,
    IntegrityLayerError,
    NotFound,
    PartialFailure,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrity", tags=["Integrity"])


def get_services() -> IntegrityServices:
    return build_services(get_session_factory())


# ==================== ERROR MAPPING ====================

# Most specific first
_STATUS_BY_ERROR = (
    (AlreadyLinked, status.HTTP_400_BAD_REQUEST),
    (AuthenticationFailed, status.HTTP_401_UNAUTHORIZED),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Conflict, status.HTTP_409_CONFLICT),
    (ValidationFailed, 422),
    (PartialFailure, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for_error(exc: IntegrityLayerError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def integrity_error_handler(request: Request, exc: IntegrityLayerError) -> JSONResponse:
    status_code = status_for_error(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IntegrityLayerError, integrity_error_handler)


# ==================== REQUEST MODELS ====================

class TransitionRequest(BaseModel):
    current_partition: str = Field(..., description="Partition the identity lives in now")
    target_role: str = Field(..., description="administrator, developer, designer, project-manager or client")


class LinkRequest(BaseModel):
    client_id: str
    project_id: str
    strict: bool = Field(False, description="Report an existing link as 400 instead of success")


class ReassignRequest(BaseModel):
    old_client_id: Optional[str] = None
    new_client_id: Optional[str] = None


# ==================== IDENTITIES ====================

@router.get("/identities/resolve")
async def resolve_identity(
    key: str = Query(..., min_length=1, description="Email or identity id"),
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    resolved = await services.identities.resolver.resolve(key)
    return resolved.to_dict()


@router.get("/identities")
async def list_identities(
    role: Optional[str] = Query(None, description="Restrict to one role partition"),
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    identities = await services.identities.list_identities(role)
    return {"identities": identities, "count": len(identities)}


@router.get("/identities/{identity_id}/project-counts")
async def identity_project_counts(
    identity_id: str,
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    resolved = await services.identities.resolver.resolve(identity_id)
    counts = await services.projects.project_counts_for(resolved.id)
    counts["partition"] = resolved.partition.value
    return counts


@router.post("/identities/{identity_id}/transition")
async def transition_identity(
    identity_id: str,
    request: TransitionRequest,
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    logger.info(f"Transition requested by {caller.name}: {identity_id} -> {request.target_role}")
    result = await services.transitions.transition(
        identity_id, request.current_partition, request.target_role
    )
    return result.to_dict()


# ==================== RELATIONSHIPS ====================

@router.post("/links")
async def link_project(
    request: LinkRequest,
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    result = await services.graph.link_project(request.client_id, request.project_id, strict=request.strict)
    return result.to_dict()


@router.delete("/links/{client_id}/{project_id}")
async def unlink_project(
    client_id: str,
    project_id: str,
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    result = await services.graph.unlink_project(client_id, project_id)
    return result.to_dict()


@router.post("/projects/{project_id}/reassign")
async def reassign_project_client(
    project_id: str,
    request: ReassignRequest,
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    result = await services.graph.reassign_client(project_id, request.old_client_id, request.new_client_id)
    return result.to_dict()


@router.delete("/projects/{project_id}")
async def delete_project(
    project_id: str,
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    result = await services.projects.delete_project(project_id)
    return result.to_dict()


@router.delete("/clients/{client_id}")
async def delete_client(
    client_id: str,
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    result = await services.clients.delete_client(client_id)
    return result.to_dict()


# ==================== MAINTENANCE ====================

@router.post("/reconcile")
async def reconcile(
    write_counters: Optional[bool] = Query(None, description="Override RECONCILE_WRITE_COUNTERS"),
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    report = await services.reconciler.reconcile(write_counters=write_counters)
    return report.to_dict()


@router.post("/backfill")
async def backfill(
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    logger.info(f"Backfill requested by {caller.name}")
    report = await services.backfill.run_backfill()
    return report.to_dict()


@router.get("/events")
async def list_integrity_events(
    unresolved_only: bool = Query(True),
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    events = await services.ledger.list_events(unresolved_only=unresolved_only)
    return {"events": [e.to_dict() for e in events], "count": len(events)}


@router.post("/events/{event_id}/resolve")
async def resolve_integrity_event(
    event_id: str,
    services: IntegrityServices = Depends(get_services),
    caller: InternalService = Depends(require_internal_service),
):
    if not await services.ledger.mark_resolved(event_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Integrity event not found: {event_id}"
        )
    return {"event_id": event_id, "resolved": True}
