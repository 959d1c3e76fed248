from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from armory.database import get_db
from armory.models import User
from armory.schemas import (
    BaseCreate, BaseDeleteResponse, BaseDetailResponse, BaseResponse, BaseUpdate, Page,
)
from armory.services import bases as base_service
from armory.services.audit import AuditTrail
from armory.services.dependency import get_audit_trail, get_current_user, require_admin

router = APIRouter()


@router.get("", response_model=Page[BaseResponse])
def list_bases(
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, pagination = base_service.list_bases(db, current_user, search, is_active, page, limit)
    return {"items": items, "pagination": pagination}


@router.get("/{base_id}", response_model=BaseDetailResponse)
def get_base(
    base_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Base with counts of the records that reference it"""
    return base_service.get_base(db, current_user, base_id)


@router.post("", response_model=BaseResponse, status_code=status.HTTP_201_CREATED)
def create_base(
    base_in: BaseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    trail: AuditTrail = Depends(get_audit_trail),
):
    return base_service.create_base(db, current_user, base_in, trail)


@router.put("/{base_id}", response_model=BaseResponse)
def update_base(
    base_id: int,
    base_in: BaseUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    trail: AuditTrail = Depends(get_audit_trail),
):
    return base_service.update_base(db, current_user, base_id, base_in, trail)


@router.delete("/{base_id}", response_model=BaseDeleteResponse)
def delete_base(
    base_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    trail: AuditTrail = Depends(get_audit_trail),
):
    """Delete a base, or deactivate it when other records still reference it"""
    return base_service.delete_base(db, current_user, base_id, trail)
