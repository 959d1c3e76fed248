from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from armory.database import get_db
from armory.models import User
from armory.schemas import Page, PurchaseCreate, PurchaseResponse
from armory.services import purchases as purchase_service
from armory.services.audit import AuditTrail
from armory.services.dependency import get_audit_trail, get_current_user

router = APIRouter()


@router.get("", response_model=Page[PurchaseResponse])
def list_purchases(
    base_id: Optional[int] = None,
    vendor: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    sort_by: Optional[str] = None,
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, pagination = purchase_service.list_purchases(
        db, current_user,
        base_id=base_id,
        vendor=vendor,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return {"items": items, "pagination": pagination}


@router.get("/{purchase_id}", response_model=PurchaseResponse)
def get_purchase(
    purchase_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return purchase_service.get_purchase(db, current_user, purchase_id)


@router.post("", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
def create_purchase(
    purchase_in: PurchaseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    trail: AuditTrail = Depends(get_audit_trail),
):
    """Record a purchase together with the assets it brings in"""
    return purchase_service.create_purchase(db, current_user, purchase_in, trail)
