import logging
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload, selectinload

from armory.database import atomic
from armory.exceptions import ConflictError, NotFoundError
from armory.models import (
    Asset, AssetStatus, Assignment, EquipmentType, Expenditure, MilitaryBase,
    TransferItem, User,
)
from armory.schemas import AssetCreate, AssetUpdate
from armory.services import lifecycle
from armory.services.audit import AuditTrail, snapshot
from armory.services.scope import ensure_base_access, ensure_visible, scoped_base_id
from armory.utils.pagination import apply_sort, paginate

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "created_at": Asset.created_at,
    "name": Asset.name,
    "serial_number": Asset.serial_number,
    "status": Asset.status,
    "equipment_type": Asset.equipment_type,
}


def _asset_query(db: Session):
    return db.query(Asset).options(
        joinedload(Asset.base),
        selectinload(Asset.assignments).joinedload(Assignment.assigned_to),
    )


def get_asset(db: Session, user: User, asset_id: int, detail: bool = False) -> Asset:
    query = _asset_query(db)
    if detail:
        query = query.options(
            selectinload(Asset.transfer_items).joinedload(TransferItem.transfer),
            selectinload(Asset.expenditures),
        )
    asset = query.filter(Asset.id == asset_id).first()
    if not asset:
        raise NotFoundError("Asset", asset_id)
    ensure_visible(user, asset.base_id, "Asset", asset_id)
    return asset


def list_assets(
    db: Session,
    user: User,
    base_id: Optional[int] = None,
    equipment_type: Optional[EquipmentType] = None,
    status: Optional[AssetStatus] = None,
    search: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_order: str = "desc",
    page: int = 1,
    limit: Optional[int] = None,
):
    query = _asset_query(db)

    scoped = scoped_base_id(user)
    if scoped is not None:
        query = query.filter(Asset.base_id == scoped)
    elif base_id:
        query = query.filter(Asset.base_id == base_id)

    if equipment_type:
        query = query.filter(Asset.equipment_type == equipment_type)
    if status:
        query = query.filter(Asset.status == status)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Asset.name.ilike(pattern),
            Asset.serial_number.ilike(pattern),
            Asset.description.ilike(pattern),
        ))

    query = apply_sort(query, SORT_COLUMNS, sort_by, sort_order, default="created_at")
    return paginate(query, page, limit)


def _ensure_serial_free(db: Session, serial_number: str, asset_id: Optional[int] = None):
    query = db.query(Asset.id).filter(Asset.serial_number == serial_number)
    if asset_id is not None:
        query = query.filter(Asset.id != asset_id)
    if query.first() is not None:
        raise ConflictError("Asset with this serial number already exists", serial_number=serial_number)


def create_asset(db: Session, user: User, data: AssetCreate, trail: AuditTrail) -> Asset:
    ensure_base_access(user, data.base_id, "Base commanders can only create assets at their base")

    with atomic(db):
        base = db.get(MilitaryBase, data.base_id)
        if not base:
            raise NotFoundError("Base", data.base_id)
        if not base.is_active:
            raise ConflictError("Base is inactive", base_id=base.id)
        _ensure_serial_free(db, data.serial_number)

        asset = Asset(**data.model_dump(), status=AssetStatus.AVAILABLE)
        db.add(asset)

    asset = get_asset(db, user, asset.id)
    trail.add("CREATE", "Asset", asset.id, after=snapshot(asset))
    logger.info(f"Asset created: {asset.serial_number} at base {asset.base_id} by user {user.id}")
    return asset


def update_asset(db: Session, user: User, asset_id: int, data: AssetUpdate, trail: AuditTrail) -> Asset:
    """
    Edit descriptive fields. Status may only move between AVAILABLE,
    MAINTENANCE and DECOMMISSIONED here; the asset's base never changes.
    """
    changes = data.model_dump(exclude_unset=True)

    with atomic(db):
        asset = db.query(Asset).filter(Asset.id == asset_id).with_for_update().first()
        if not asset:
            raise NotFoundError("Asset", asset_id)
        ensure_visible(user, asset.base_id, "Asset", asset_id)
        before = snapshot(asset)

        if changes.get("serial_number") and changes["serial_number"] != asset.serial_number:
            _ensure_serial_free(db, changes["serial_number"], asset.id)

        target = changes.pop("status", None)
        if target is not None and target != asset.status:
            lifecycle.check_manual_status_change(asset.status, target)
            updated = (
                db.query(Asset)
                .filter(Asset.id == asset.id, Asset.status == asset.status)
                .update({Asset.status: target}, synchronize_session=False)
            )
            if updated != 1:
                raise ConflictError("Asset was modified by another request", asset_id=asset.id)

        for field, value in changes.items():
            setattr(asset, field, value)

    asset = get_asset(db, user, asset_id)
    trail.add("UPDATE", "Asset", asset.id, before=before, after=snapshot(asset))
    logger.info(f"Asset updated: {asset.serial_number} by user {user.id}")
    return asset


def delete_asset(db: Session, user: User, asset_id: int, trail: AuditTrail) -> None:
    """Hard delete, only for assets with no history at all."""
    with atomic(db):
        asset = db.query(Asset).filter(Asset.id == asset_id).with_for_update().first()
        if not asset:
            raise NotFoundError("Asset", asset_id)
        ensure_visible(user, asset.base_id, "Asset", asset_id)

        lifecycle.check_asset_deletable(
            db.query(func.count(Assignment.id)).filter(Assignment.asset_id == asset.id).scalar(),
            db.query(func.count(TransferItem.id)).filter(TransferItem.asset_id == asset.id).scalar(),
            db.query(func.count(Expenditure.id)).filter(Expenditure.asset_id == asset.id).scalar(),
        )
        before = snapshot(asset)
        db.delete(asset)

    trail.add("DELETE", "Asset", asset_id, before=before)
    logger.info(f"Asset deleted: {before['serial_number']} by user {user.id}")
