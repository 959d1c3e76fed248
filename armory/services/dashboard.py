"""
Read-only dashboard aggregates.

All figures count assets, not records: a purchase of three rifles adds
three, a transfer of two radios moves two. Scoped callers are pinned to
their own base.

    net movement    = purchased + transferred in - transferred out
    closing balance = non-expended assets held now
    opening balance = closing balance - net movement + expended
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload

from armory.models import (
    Asset, AssetStatus, Assignment, AuditLog, EquipmentType, Expenditure,
    MilitaryBase, Purchase, Role, Transfer, TransferItem, TransferStatus, User,
)
from armory.services.scope import ensure_base_access, scoped_base_id

logger = logging.getLogger(__name__)


def resolve_base(user: User, base_id: Optional[int]) -> Optional[int]:
    """Base the figures are computed for; None means every base."""
    if base_id is not None:
        ensure_base_access(user, base_id, "You can only view the dashboard for your own base")
        return base_id
    return scoped_base_id(user)


def _in_range(query, column, date_from, date_to):
    if date_from:
        query = query.filter(column >= date_from)
    if date_to:
        query = query.filter(column <= date_to)
    return query


def _by_type(query, equipment_type):
    if equipment_type:
        query = query.filter(Asset.equipment_type == equipment_type)
    return query


def _transferred_assets(db, base_column, base_id, equipment_type, date_from, date_to) -> int:
    query = (
        db.query(func.count(TransferItem.id))
        .join(Transfer, TransferItem.transfer_id == Transfer.id)
        .join(Asset, TransferItem.asset_id == Asset.id)
        .filter(Transfer.status == TransferStatus.COMPLETED)
    )
    if base_id is not None:
        query = query.filter(base_column == base_id)
    query = _in_range(query, Transfer.completed_at, date_from, date_to)
    return _by_type(query, equipment_type).scalar()


def get_metrics(
    db: Session,
    user: User,
    base_id: Optional[int] = None,
    equipment_type: Optional[EquipmentType] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> dict:
    base_id = resolve_base(user, base_id)

    purchased = db.query(func.count(Asset.id)).join(Purchase, Asset.purchase_id == Purchase.id)
    if base_id is not None:
        purchased = purchased.filter(Purchase.base_id == base_id)
    purchased = _in_range(
        purchased,
        Purchase.purchase_date,
        date_from.date() if date_from else None,
        date_to.date() if date_to else None,
    )
    purchases = _by_type(purchased, equipment_type).scalar()

    transfers_in = _transferred_assets(db, Transfer.to_base_id, base_id, equipment_type, date_from, date_to)
    transfers_out = _transferred_assets(db, Transfer.from_base_id, base_id, equipment_type, date_from, date_to)

    assigned = (
        db.query(func.count(Assignment.id))
        .join(Asset, Assignment.asset_id == Asset.id)
        .filter(Assignment.returned_at.is_(None))
    )
    if base_id is not None:
        assigned = assigned.filter(Assignment.base_id == base_id)
    assigned = _in_range(assigned, Assignment.assigned_at, date_from, date_to)
    assigned = _by_type(assigned, equipment_type).scalar()

    expended = db.query(func.count(Expenditure.id)).join(Asset, Expenditure.asset_id == Asset.id)
    if base_id is not None:
        expended = expended.filter(Expenditure.base_id == base_id)
    expended = _in_range(expended, Expenditure.expended_at, date_from, date_to)
    expended = _by_type(expended, equipment_type).scalar()

    closing = db.query(func.count(Asset.id)).filter(Asset.status != AssetStatus.EXPENDED)
    if base_id is not None:
        closing = closing.filter(Asset.base_id == base_id)
    closing_balance = _by_type(closing, equipment_type).scalar()

    net_movement = purchases + transfers_in - transfers_out

    return {
        "opening_balance": closing_balance - net_movement + expended,
        "closing_balance": closing_balance,
        "net_movement": net_movement,
        "purchases": purchases,
        "transfers_in": transfers_in,
        "transfers_out": transfers_out,
        "assigned": assigned,
        "expended": expended,
        "filters": {
            "base_id": base_id,
            "equipment_type": equipment_type,
            "date_from": date_from,
            "date_to": date_to,
        },
    }


def get_net_movement_details(
    db: Session,
    user: User,
    base_id: Optional[int] = None,
    equipment_type: Optional[EquipmentType] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> dict:
    """Purchases and completed transfers behind the net movement figure"""
    base_id = resolve_base(user, base_id)

    purchases = db.query(Purchase).options(
        joinedload(Purchase.base),
        joinedload(Purchase.created_by),
        selectinload(Purchase.assets),
    )
    if base_id is not None:
        purchases = purchases.filter(Purchase.base_id == base_id)
    purchases = _in_range(
        purchases,
        Purchase.purchase_date,
        date_from.date() if date_from else None,
        date_to.date() if date_to else None,
    )
    if equipment_type:
        purchases = purchases.filter(Purchase.assets.any(Asset.equipment_type == equipment_type))
    purchases = purchases.order_by(Purchase.purchase_date.desc()).all()

    def completed(base_column):
        query = db.query(Transfer).options(
            joinedload(Transfer.from_base),
            joinedload(Transfer.to_base),
            joinedload(Transfer.created_by),
            joinedload(Transfer.approved_by),
            selectinload(Transfer.items).joinedload(TransferItem.asset),
        ).filter(Transfer.status == TransferStatus.COMPLETED)
        if base_id is not None:
            query = query.filter(base_column == base_id)
        query = _in_range(query, Transfer.completed_at, date_from, date_to)
        if equipment_type:
            query = query.filter(Transfer.items.any(TransferItem.asset.has(Asset.equipment_type == equipment_type)))
        return query.order_by(Transfer.completed_at.desc()).all()

    return {
        "purchases": purchases,
        "transfers_in": completed(Transfer.to_base_id),
        "transfers_out": completed(Transfer.from_base_id),
    }


def get_recent_activities(db: Session, user: User, limit: int = 10):
    """Latest audit entries; admins see everyone's, others their own."""
    query = db.query(AuditLog).options(joinedload(AuditLog.user))
    if user.role != Role.ADMIN:
        query = query.filter(AuditLog.user_id == user.id)
    return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()


def get_asset_distribution(db: Session, user: User) -> dict:
    base_id = scoped_base_id(user)

    by_type = (
        db.query(Asset.equipment_type, func.count(Asset.id))
        .filter(Asset.status != AssetStatus.EXPENDED)
        .group_by(Asset.equipment_type)
    )
    by_status = db.query(Asset.status, func.count(Asset.id)).group_by(Asset.status)
    if base_id is not None:
        by_type = by_type.filter(Asset.base_id == base_id)
        by_status = by_status.filter(Asset.base_id == base_id)

    by_base = []
    if user.role == Role.ADMIN:
        rows = (
            db.query(MilitaryBase.id, MilitaryBase.name, func.count(Asset.id))
            .join(Asset, Asset.base_id == MilitaryBase.id)
            .filter(Asset.status != AssetStatus.EXPENDED)
            .group_by(MilitaryBase.id, MilitaryBase.name)
            .order_by(MilitaryBase.name)
            .all()
        )
        by_base = [{"key": str(id_), "label": name, "count": count} for id_, name, count in rows]

    return {
        "by_type": [{"key": kind.value, "count": count} for kind, count in by_type.all()],
        "by_status": [{"key": status.value, "count": count} for status, count in by_status.all()],
        "by_base": by_base,
    }
