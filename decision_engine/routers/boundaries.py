# decision_engine/routers/boundaries.py
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from decision_engine.core.errors import DecisionEngineError
from decision_engine.dependencies import get_safety_manager, http_error
from decision_engine.schemas.boundaries import (
    BoundaryCheckRequest,
    BoundaryCheckResult,
    Violation,
    ViolationSeverity,
)
from decision_engine.services.safety.manager import SafetyBoundaryManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["boundaries"])


# ============== تعريفات الحدود ==============

@router.get("")
async def list_boundaries(
    operation_type: Optional[str] = None,
    manager: SafetyBoundaryManager = Depends(get_safety_manager),
):
    """الحدود النشطة المحملة (اختيارياً حسب نوع العملية)"""
    return [b.model_dump(mode="json") for b in manager.list_boundaries(operation_type)]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_boundary(
    data: Dict[str, Any] = Body(...),
    actor_id: str = Query(..., min_length=1),
    manager: SafetyBoundaryManager = Depends(get_safety_manager),
):
    try:
        boundary = await manager.create_boundary(data, actor_id)
    except DecisionEngineError as e:
        raise http_error(e)
    return boundary.model_dump(mode="json")


# ============== الفحص والانتهاكات ==============

@router.post("/check", response_model=BoundaryCheckResult)
async def check_boundaries(
    request: BoundaryCheckRequest,
    manager: SafetyBoundaryManager = Depends(get_safety_manager),
):
    """فحص عملية مقابل الحدود بدون تنفيذها"""
    return await manager.check_boundaries(request.operation_type, request.context)


@router.get("/violations", response_model=List[Violation])
async def get_recent_violations(
    boundary_type: Optional[str] = None,
    severity: Optional[ViolationSeverity] = None,
    operation_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    manager: SafetyBoundaryManager = Depends(get_safety_manager),
):
    try:
        return await manager.get_recent_violations(
            boundary_type=boundary_type,
            severity=severity,
            operation_type=operation_type,
            limit=limit,
        )
    except DecisionEngineError as e:
        raise http_error(e)


# ============== حد واحد ==============

@router.get("/{boundary_id}")
async def get_boundary(
    boundary_id: str,
    manager: SafetyBoundaryManager = Depends(get_safety_manager),
):
    try:
        boundary = await manager.get_boundary(boundary_id)
    except DecisionEngineError as e:
        raise http_error(e)
    return boundary.model_dump(mode="json")


@router.patch("/{boundary_id}")
async def update_boundary(
    boundary_id: str,
    updates: Dict[str, Any] = Body(...),
    actor_id: str = Query(..., min_length=1),
    manager: SafetyBoundaryManager = Depends(get_safety_manager),
):
    try:
        boundary = await manager.update_boundary(boundary_id, updates, actor_id)
    except DecisionEngineError as e:
        raise http_error(e)
    return boundary.model_dump(mode="json")


@router.delete("/{boundary_id}")
async def delete_boundary(
    boundary_id: str,
    actor_id: str = Query(..., min_length=1),
    manager: SafetyBoundaryManager = Depends(get_safety_manager),
):
    try:
        await manager.delete_boundary(boundary_id, actor_id)
    except DecisionEngineError as e:
        raise http_error(e)
    return {"success": True, "boundary_id": boundary_id}
