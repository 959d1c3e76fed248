from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from armory.database import get_db
from armory.models import User
from armory.schemas import AssignmentCreate, AssignmentResponse, AssignmentReturn, Page
from armory.services import assignments as assignment_service
from armory.services.audit import AuditTrail
from armory.services.dependency import get_audit_trail, require_commander

router = APIRouter()


@router.get("", response_model=Page[AssignmentResponse])
def list_assignments(
    base_id: Optional[int] = None,
    assigned_to_id: Optional[int] = None,
    asset_id: Optional[int] = None,
    status: str = Query("all", pattern="^(active|returned|all)$"),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort_by: Optional[str] = None,
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_commander),
):
    items, pagination = assignment_service.list_assignments(
        db, current_user,
        base_id=base_id,
        assigned_to_id=assigned_to_id,
        asset_id=asset_id,
        status=status,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return {"items": items, "pagination": pagination}


@router.get("/{assignment_id}", response_model=AssignmentResponse)
def get_assignment(
    assignment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_commander),
):
    return assignment_service.get_assignment(db, current_user, assignment_id)


@router.post("", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
def create_assignment(
    assignment_in: AssignmentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_commander),
    trail: AuditTrail = Depends(get_audit_trail),
):
    """Hand an AVAILABLE asset to a user at the same base"""
    return assignment_service.create_assignment(db, current_user, assignment_in, trail)


@router.put("/{assignment_id}/return", response_model=AssignmentResponse)
def return_assignment(
    assignment_id: int,
    return_in: Optional[AssignmentReturn] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_commander),
    trail: AuditTrail = Depends(get_audit_trail),
):
    """Close an open assignment; the return condition decides the asset's next status"""
    return assignment_service.return_assignment(
        db, current_user, assignment_id, return_in or AssignmentReturn(), trail,
    )
