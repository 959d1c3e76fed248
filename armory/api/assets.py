from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from armory.database import get_db
from armory.models import AssetStatus, EquipmentType, User
from armory.schemas import AssetCreate, AssetDetailResponse, AssetResponse, AssetUpdate, MessageResponse, Page
from armory.services import assets as asset_service
from armory.services.audit import AuditTrail
from armory.services.dependency import get_audit_trail, get_current_user, require_admin, require_commander

router = APIRouter()


@router.get("", response_model=Page[AssetResponse])
def list_assets(
    base_id: Optional[int] = None,
    equipment_type: Optional[EquipmentType] = None,
    status: Optional[AssetStatus] = None,
    search: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, pagination = asset_service.list_assets(
        db, current_user,
        base_id=base_id,
        equipment_type=equipment_type,
        status=status,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return {"items": items, "pagination": pagination}


@router.get("/{asset_id}", response_model=AssetDetailResponse)
def get_asset(
    asset_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Asset with its assignment, transfer and expenditure history"""
    return asset_service.get_asset(db, current_user, asset_id, detail=True)


@router.post("", response_model=AssetResponse, status_code=status.HTTP_201_CREATED)
def create_asset(
    asset_in: AssetCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_commander),
    trail: AuditTrail = Depends(get_audit_trail),
):
    return asset_service.create_asset(db, current_user, asset_in, trail)


@router.put("/{asset_id}", response_model=AssetResponse)
def update_asset(
    asset_id: int,
    asset_in: AssetUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_commander),
    trail: AuditTrail = Depends(get_audit_trail),
):
    return asset_service.update_asset(db, current_user, asset_id, asset_in, trail)


@router.delete("/{asset_id}", response_model=MessageResponse)
def delete_asset(
    asset_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    trail: AuditTrail = Depends(get_audit_trail),
):
    asset_service.delete_asset(db, current_user, asset_id, trail)
    return {"message": "Asset deleted successfully"}
