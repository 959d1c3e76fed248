import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from armory.database import atomic, utcnow
from armory.exceptions import ConflictError, NotFoundError
from armory.models import Asset, Assignment, EquipmentType, Expenditure, User
from armory.schemas import ExpenditureCreate
from armory.services import lifecycle
from armory.services.assignments import open_assignment_for
from armory.services.audit import AuditTrail, snapshot
from armory.services.scope import ensure_base_access, ensure_visible, scoped_base_id
from armory.utils.pagination import apply_sort, paginate

logger = logging.getLogger(__name__)

FORCED_RETURN_NOTE = "Asset expended - automatic return"

SORT_COLUMNS = {
    "expended_at": Expenditure.expended_at,
    "quantity": Expenditure.quantity,
}


def _expenditure_query(db: Session):
    return db.query(Expenditure).options(
        joinedload(Expenditure.asset),
        joinedload(Expenditure.base),
        joinedload(Expenditure.created_by),
    )


def get_expenditure(db: Session, user: User, expenditure_id: int) -> Expenditure:
    expenditure = _expenditure_query(db).filter(Expenditure.id == expenditure_id).first()
    if not expenditure:
        raise NotFoundError("Expenditure", expenditure_id)
    ensure_visible(user, expenditure.base_id, "Expenditure", expenditure_id)
    return expenditure


def list_expenditures(
    db: Session,
    user: User,
    base_id: Optional[int] = None,
    asset_id: Optional[int] = None,
    reason: Optional[str] = None,
    equipment_type: Optional[EquipmentType] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort_by: Optional[str] = None,
    sort_order: str = "desc",
    page: int = 1,
    limit: Optional[int] = None,
):
    query = _expenditure_query(db)

    scoped = scoped_base_id(user)
    if scoped is not None:
        query = query.filter(Expenditure.base_id == scoped)
    elif base_id:
        query = query.filter(Expenditure.base_id == base_id)

    if asset_id:
        query = query.filter(Expenditure.asset_id == asset_id)
    if reason:
        query = query.filter(Expenditure.reason.ilike(f"%{reason}%"))
    if equipment_type:
        query = query.join(Asset, Expenditure.asset_id == Asset.id).filter(Asset.equipment_type == equipment_type)
    if date_from:
        query = query.filter(Expenditure.expended_at >= date_from)
    if date_to:
        query = query.filter(Expenditure.expended_at <= date_to)

    query = apply_sort(query, SORT_COLUMNS, sort_by, sort_order, default="expended_at")
    return paginate(query, page, limit)


def create_expenditure(db: Session, user: User, data: ExpenditureCreate, trail: AuditTrail) -> Expenditure:
    """
    Expend an asset. Any open assignment on it is closed in the same
    transaction, so an expended asset never has a holder.
    """
    ensure_base_access(user, data.base_id, "Base commanders can only record expenditures at their base")

    with atomic(db):
        asset = db.query(Asset).filter(Asset.id == data.asset_id).with_for_update().first()
        if not asset:
            raise NotFoundError("Asset", data.asset_id)
        ensure_visible(user, asset.base_id, "Asset", data.asset_id)
        if asset.base_id != data.base_id:
            raise ConflictError("Asset is not at the specified base", asset_id=asset.id)

        previous_status = asset.status
        next_status = lifecycle.check_expenditure(asset)

        expenditure = Expenditure(
            asset_id=asset.id,
            base_id=data.base_id,
            quantity=data.quantity,
            reason=data.reason,
            description=data.description,
            expended_at=data.expended_at or utcnow(),
            created_by_id=user.id,
        )
        db.add(expenditure)

        open_assignment = open_assignment_for(db, asset.id)
        if open_assignment is not None:
            notes = (
                f"{open_assignment.notes}\n{FORCED_RETURN_NOTE}"
                if open_assignment.notes else FORCED_RETURN_NOTE
            )
            (
                db.query(Assignment)
                .filter(Assignment.id == open_assignment.id, Assignment.returned_at.is_(None))
                .update({
                    Assignment.returned_at: utcnow(),
                    Assignment.notes: notes,
                }, synchronize_session=False)
            )

        claimed = (
            db.query(Asset)
            .filter(Asset.id == asset.id, Asset.status == previous_status)
            .update({Asset.status: next_status}, synchronize_session=False)
        )
        if claimed != 1:
            raise ConflictError("Asset was modified by another request", asset_id=asset.id)

    expenditure = get_expenditure(db, user, expenditure.id)
    trail.add("CREATE", "Expenditure", expenditure.id, after=snapshot(expenditure))
    logger.info(
        f"Asset {expenditure.asset_id} expended at base {expenditure.base_id} by user {user.id}"
        + (f"; assignment {open_assignment.id} closed" if open_assignment is not None else "")
    )
    return expenditure
