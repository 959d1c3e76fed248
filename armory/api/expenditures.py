from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from armory.database import get_db
from armory.models import EquipmentType, User
from armory.schemas import ExpenditureCreate, ExpenditureResponse, Page
from armory.services import expenditures as expenditure_service
from armory.services.audit import AuditTrail
from armory.services.dependency import get_audit_trail, require_commander

router = APIRouter()


@router.get("", response_model=Page[ExpenditureResponse])
def list_expenditures(
    base_id: Optional[int] = None,
    asset_id: Optional[int] = None,
    reason: Optional[str] = None,
    equipment_type: Optional[EquipmentType] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort_by: Optional[str] = None,
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_commander),
):
    items, pagination = expenditure_service.list_expenditures(
        db, current_user,
        base_id=base_id,
        asset_id=asset_id,
        reason=reason,
        equipment_type=equipment_type,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return {"items": items, "pagination": pagination}


@router.get("/{expenditure_id}", response_model=ExpenditureResponse)
def get_expenditure(
    expenditure_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_commander),
):
    return expenditure_service.get_expenditure(db, current_user, expenditure_id)


@router.post("", response_model=ExpenditureResponse, status_code=status.HTTP_201_CREATED)
def create_expenditure(
    expenditure_in: ExpenditureCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_commander),
    trail: AuditTrail = Depends(get_audit_trail),
):
    """Expend an asset; an open assignment on it is closed automatically"""
    return expenditure_service.create_expenditure(db, current_user, expenditure_in, trail)
