"""
Cost Control API Endpoints - Synchronization, maintenance and direct edits.

Implements:
- POST /api/v1/projects/{project_id}/cost-control/sync - Sync tree with estimate
- POST /api/v1/projects/{project_id}/cost-control/reset - Hard-delete the tree
- POST /api/v1/projects/{project_id}/cost-control/recalculate - Recompute all parents
- GET /api/v1/projects/{project_id}/cost-control/verify - Report invariant violations
- GET /api/v1/projects/{project_id}/cost-control/items - List live nodes
- POST /api/v1/projects/{project_id}/cost-control/items - Add a manual node
- PATCH /api/v1/cost-control/items/{node_id} - Edit budget or manual fields
- DELETE /api/v1/cost-control/items/{node_id} - Soft-delete a node and its subtree

Engine failures are answered with {"success": false, "error": ...} and a
status code chosen by error type (see STATUS_BY_ERROR).
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from costcontrol.models import get_db
from costcontrol.infrastructure.repositories import CostControlRepository
from costcontrol.domain.services import CostControlEditService, SyncOrchestrator
from costcontrol.domain.exceptions import (
    ConcurrentSyncInProgressError,
    DomainError,
    InvariantViolationError,
    NotFoundError,
    PartialStoreFailureError,
    SourceFetchError,
    SyncCancelledError,
    ValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# First matching class wins
STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConcurrentSyncInProgressError, status.HTTP_409_CONFLICT),
    (SyncCancelledError, status.HTTP_408_REQUEST_TIMEOUT),
    (SourceFetchError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PartialStoreFailureError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (InvariantViolationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for_error(exc: DomainError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def domain_error_response(exc: DomainError) -> JSONResponse:
    """Failure body shared by every cost-control endpoint."""
    status_code = status_for_error(exc)
    if status_code >= 500:
        logger.error("Cost control request failed: %s", exc.message)
    else:
        logger.info("Cost control request rejected (%s): %s", exc.code, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )


# =============================================================================
# Pydantic Models
# =============================================================================

class SyncRequest(BaseModel):
    """Request model for synchronization."""
    recalculate_parents: Optional[bool] = Field(
        None, alias="recalculateParents",
        description="Recompute ancestor totals of changed nodes; omitted uses sync.recalculate_parents_default",
    )

    model_config = ConfigDict(populate_by_name=True)


class SyncResponse(BaseModel):
    """Response model for synchronization."""
    success: bool
    created_count: int = Field(..., alias="createdCount")
    updated_count: int = Field(..., alias="updatedCount")
    orphaned_count: int = Field(..., alias="orphanedCount")
    warning: Optional[str] = None
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class MaintenanceResponse(BaseModel):
    """Response model for reset and recalculate."""
    success: bool
    operation: str
    affected_count: int = Field(..., alias="affectedCount")

    model_config = ConfigDict(populate_by_name=True)


class ViolationResponse(BaseModel):
    invariant: str
    node_id: str
    message: str


class VerifyResponse(BaseModel):
    """Response model for verification."""
    success: bool
    live_count: int
    violations: List[ViolationResponse]


class CostNodeResponse(BaseModel):
    """Response model for a cost-control node with computed fields."""
    id: str
    project_id: str
    parent_id: Optional[str]
    name: str
    level: int
    order_index: int
    bo_amount_cents: int
    paid_bills_cents: int
    external_bills_cents: int
    pending_bills_cents: int
    wages_cents: int
    actual_amount_cents: int
    difference_cents: int
    is_parent: bool
    source_ref: Optional[str]
    imported_from_estimate: bool
    is_deleted: bool

    model_config = ConfigDict(from_attributes=True)


class CostNodeListResponse(BaseModel):
    """Response for listing nodes."""
    items: List[CostNodeResponse]
    total: int
    total_budget_cents: int


class CostNodeCreate(BaseModel):
    """Request model for adding a manual node."""
    name: str = Field(..., min_length=1, max_length=500, description="Display label")
    parent_id: Optional[str] = Field(None, description="Parent node, omitted for a root")
    budget_amount_cents: int = Field(0, ge=0, description="Initial budget in cents")


class CostNodeUpdate(BaseModel):
    """Request model for editing a node. Omitted fields are unchanged."""
    bo_amount_cents: Optional[int] = Field(None, ge=0, description="Budget of a manual leaf")
    paid_bills_cents: Optional[int] = Field(None, ge=0)
    external_bills_cents: Optional[int] = Field(None, ge=0)
    pending_bills_cents: Optional[int] = Field(None, ge=0)
    wages_cents: Optional[int] = Field(None, ge=0)


# =============================================================================
# Synchronization and maintenance
# =============================================================================

@router.post(
    "/projects/{project_id}/cost-control/sync",
    response_model=SyncResponse,
    response_model_exclude_none=True,
    summary="Synchronize cost control with the estimate",
    description="Create, update, orphan-clean and deduplicate nodes, then recompute totals. All or nothing."
)
def sync_cost_control(
    project_id: str,
    body: Optional[SyncRequest] = None,
    db: Session = Depends(get_db)
):
    """Run one synchronization for the project."""
    request = body or SyncRequest()
    try:
        result = SyncOrchestrator(db).import_from_estimate(
            project_id, recalculate_parents=request.recalculate_parents
        )
    except DomainError as e:
        return domain_error_response(e)
    return result.to_response()


@router.post(
    "/projects/{project_id}/cost-control/reset",
    response_model=MaintenanceResponse,
    summary="Delete the project's cost control tree"
)
def reset_cost_control(project_id: str, db: Session = Depends(get_db)):
    try:
        result = SyncOrchestrator(db).reset(project_id)
    except DomainError as e:
        return domain_error_response(e)
    return {"success": True, "operation": result.operation, "affectedCount": result.affected_count}


@router.post(
    "/projects/{project_id}/cost-control/recalculate",
    response_model=MaintenanceResponse,
    summary="Recompute every parent total"
)
def recalculate_cost_control(project_id: str, db: Session = Depends(get_db)):
    try:
        result = SyncOrchestrator(db).recalculate(project_id)
    except DomainError as e:
        return domain_error_response(e)
    return {"success": True, "operation": result.operation, "affectedCount": result.affected_count}


@router.get(
    "/projects/{project_id}/cost-control/verify",
    response_model=VerifyResponse,
    summary="Check tree invariants without writing"
)
def verify_cost_control(project_id: str, db: Session = Depends(get_db)):
    try:
        result = SyncOrchestrator(db).verify(project_id)
    except DomainError as e:
        return domain_error_response(e)
    return {
        "success": result.ok,
        "live_count": result.affected_count,
        "violations": [
            {"invariant": v.invariant, "node_id": v.node_id, "message": v.message}
            for v in result.violations
        ],
    }


# =============================================================================
# Nodes
# =============================================================================

@router.get(
    "/projects/{project_id}/cost-control/items",
    response_model=CostNodeListResponse,
    summary="List live cost control items"
)
def list_cost_control_items(project_id: str, db: Session = Depends(get_db)):
    """List live nodes ordered by level and position."""
    items = CostControlRepository(db).get_by_project(project_id)
    return {
        "items": items,
        "total": len(items),
        "total_budget_cents": sum(i.bo_amount_cents for i in items if i.parent_id is None),
    }


@router.post(
    "/projects/{project_id}/cost-control/items",
    response_model=CostNodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a manual cost control item"
)
def create_cost_control_item(
    project_id: str,
    item_data: CostNodeCreate,
    db: Session = Depends(get_db)
):
    try:
        return CostControlEditService(db).add_manual_node(
            project_id,
            name=item_data.name,
            parent_id=item_data.parent_id,
            budget_amount_cents=item_data.budget_amount_cents,
        )
    except DomainError as e:
        return domain_error_response(e)


@router.patch(
    "/cost-control/items/{node_id}",
    response_model=CostNodeResponse,
    summary="Edit a cost control item",
    description="Budget edits are limited to manual leaves; manual fields can be edited on any node."
)
def update_cost_control_item(
    node_id: str,
    item_data: CostNodeUpdate,
    db: Session = Depends(get_db)
):
    service = CostControlEditService(db)
    manual = item_data.model_dump(exclude={"bo_amount_cents"}, exclude_none=True)
    try:
        node = None
        if manual:
            node = service.update_manual_fields(node_id, **manual)
        if item_data.bo_amount_cents is not None:
            node = service.set_budget_amount(node_id, item_data.bo_amount_cents)
        if node is None:
            node = CostControlRepository(db).get_required(node_id)
    except DomainError as e:
        return domain_error_response(e)
    return node


@router.delete(
    "/cost-control/items/{node_id}",
    summary="Remove a cost control item and its subtree"
)
def delete_cost_control_item(node_id: str, db: Session = Depends(get_db)):
    try:
        removed = CostControlEditService(db).remove_node(node_id)
    except DomainError as e:
        return domain_error_response(e)
    return {"success": True, "removedCount": removed}
