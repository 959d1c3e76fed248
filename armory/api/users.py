from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from armory.database import get_db
from armory.models import Role, User
from armory.schemas import Page, UserCreate, UserDeleteResponse, UserResponse, UserUpdate
from armory.services import users as user_service
from armory.services.audit import AuditTrail
from armory.services.dependency import get_audit_trail, require_admin

router = APIRouter()


@router.get("", response_model=Page[UserResponse])
def list_users(
    role: Optional[Role] = None,
    base_id: Optional[int] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    items, pagination = user_service.list_users(db, role, base_id, is_active, search, page, limit)
    return {"items": items, "pagination": pagination}


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    return user_service.get_user(db, user_id)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    user_in: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    trail: AuditTrail = Depends(get_audit_trail),
):
    return user_service.create_user(db, user_in, trail, actor=current_user)


@router.put("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    user_in: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    trail: AuditTrail = Depends(get_audit_trail),
):
    return user_service.update_user(db, current_user, user_id, user_in, trail)


@router.delete("/{user_id}", response_model=UserDeleteResponse)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    trail: AuditTrail = Depends(get_audit_trail),
):
    """Delete a user, or deactivate them when they own or hold records"""
    return user_service.delete_user(db, current_user, user_id, trail)
