from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from armory.database import get_db
from armory.models import TransferStatus, User
from armory.schemas import Page, TransferApprove, TransferCancel, TransferCreate, TransferResponse
from armory.services import transfers as transfer_service
from armory.services.audit import AuditTrail
from armory.services.dependency import get_audit_trail, get_current_user, require_commander

router = APIRouter()


@router.get("", response_model=Page[TransferResponse])
def list_transfers(
    status: Optional[TransferStatus] = None,
    from_base_id: Optional[int] = None,
    to_base_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort_by: Optional[str] = None,
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, pagination = transfer_service.list_transfers(
        db, current_user,
        status=status,
        from_base_id=from_base_id,
        to_base_id=to_base_id,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return {"items": items, "pagination": pagination}


@router.get("/{transfer_id}", response_model=TransferResponse)
def get_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return transfer_service.get_transfer(db, current_user, transfer_id)


@router.post("", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
def create_transfer(
    transfer_in: TransferCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    trail: AuditTrail = Depends(get_audit_trail),
):
    """Request a transfer; the listed assets go IN_TRANSIT until it completes or is cancelled"""
    return transfer_service.create_transfer(db, current_user, transfer_in, trail)


@router.put("/{transfer_id}/approve", response_model=TransferResponse)
def approve_transfer(
    transfer_id: int,
    approval: Optional[TransferApprove] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_commander),
    trail: AuditTrail = Depends(get_audit_trail),
):
    return transfer_service.approve_transfer(db, current_user, transfer_id, approval or TransferApprove(), trail)


@router.put("/{transfer_id}/complete", response_model=TransferResponse)
def complete_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_commander),
    trail: AuditTrail = Depends(get_audit_trail),
):
    return transfer_service.complete_transfer(db, current_user, transfer_id, trail)


@router.put("/{transfer_id}/cancel", response_model=TransferResponse)
def cancel_transfer(
    transfer_id: int,
    cancellation: Optional[TransferCancel] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_commander),
    trail: AuditTrail = Depends(get_audit_trail),
):
    return transfer_service.cancel_transfer(db, current_user, transfer_id, cancellation or TransferCancel(), trail)
