from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from armory.database import get_db
from armory.models import EquipmentType, User
from armory.schemas import AssetDistribution, AuditLogResponse, DashboardMetrics, NetMovementDetails
from armory.services import dashboard as dashboard_service
from armory.services.dependency import get_current_user

router = APIRouter()


@router.get("/metrics", response_model=DashboardMetrics)
def get_metrics(
    base_id: Optional[int] = None,
    equipment_type: Optional[EquipmentType] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return dashboard_service.get_metrics(db, current_user, base_id, equipment_type, date_from, date_to)


@router.get("/net-movement-details", response_model=NetMovementDetails)
def get_net_movement_details(
    base_id: Optional[int] = None,
    equipment_type: Optional[EquipmentType] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return dashboard_service.get_net_movement_details(
        db, current_user, base_id, equipment_type, date_from, date_to,
    )


@router.get("/recent-activities", response_model=List[AuditLogResponse])
def get_recent_activities(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return dashboard_service.get_recent_activities(db, current_user, limit)


@router.get("/asset-distribution", response_model=AssetDistribution)
def get_asset_distribution(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return dashboard_service.get_asset_distribution(db, current_user)
