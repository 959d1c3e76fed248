import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session, joinedload, selectinload

from armory.database import atomic
from armory.exceptions import ConflictError, NotFoundError, ValidationError
from armory.models import Asset, AssetStatus, MilitaryBase, Purchase, User
from armory.schemas import PurchaseCreate
from armory.services.audit import AuditTrail, snapshot
from armory.services.scope import ensure_base_access, ensure_visible, scoped_base_id
from armory.utils.pagination import apply_sort, paginate

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "purchase_date": Purchase.purchase_date,
    "created_at": Purchase.created_at,
    "total_amount": Purchase.total_amount,
    "vendor": Purchase.vendor,
}


def _purchase_query(db: Session):
    return db.query(Purchase).options(
        joinedload(Purchase.base),
        joinedload(Purchase.created_by),
        selectinload(Purchase.assets),
    )


def get_purchase(db: Session, user: User, purchase_id: int) -> Purchase:
    purchase = _purchase_query(db).filter(Purchase.id == purchase_id).first()
    if not purchase:
        raise NotFoundError("Purchase", purchase_id)
    ensure_visible(user, purchase.base_id, "Purchase", purchase_id)
    return purchase


def list_purchases(
    db: Session,
    user: User,
    base_id: Optional[int] = None,
    vendor: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    sort_by: Optional[str] = None,
    sort_order: str = "desc",
    page: int = 1,
    limit: Optional[int] = None,
):
    query = _purchase_query(db)

    scoped = scoped_base_id(user)
    if scoped is not None:
        query = query.filter(Purchase.base_id == scoped)
    elif base_id:
        query = query.filter(Purchase.base_id == base_id)

    if vendor:
        query = query.filter(Purchase.vendor.ilike(f"%{vendor}%"))
    if date_from:
        query = query.filter(Purchase.purchase_date >= date_from)
    if date_to:
        query = query.filter(Purchase.purchase_date <= date_to)

    query = apply_sort(query, SORT_COLUMNS, sort_by, sort_order, default="purchase_date")
    return paginate(query, page, limit)


def create_purchase(db: Session, user: User, data: PurchaseCreate, trail: AuditTrail) -> Purchase:
    """Record a purchase and create all of its assets at the purchasing base."""
    serials = [item.serial_number for item in data.assets]
    if len(set(serials)) != len(serials):
        raise ValidationError("Duplicate serial numbers in purchase")

    ensure_base_access(user, data.base_id, "Base users can only record purchases for their base")

    with atomic(db):
        base = db.get(MilitaryBase, data.base_id)
        if not base:
            raise NotFoundError("Base", data.base_id)
        if not base.is_active:
            raise ConflictError("Base is inactive", base_id=base.id)

        if db.query(Purchase.id).filter(Purchase.purchase_order == data.purchase_order).first():
            raise ConflictError(
                "Purchase with this purchase order already exists",
                purchase_order=data.purchase_order,
            )

        taken = [
            serial for (serial,) in
            db.query(Asset.serial_number).filter(Asset.serial_number.in_(serials)).all()
        ]
        if taken:
            raise ConflictError(f"Serial numbers already exist: {', '.join(sorted(taken))}", serial_numbers=taken)

        purchase = Purchase(
            purchase_order=data.purchase_order,
            vendor=data.vendor,
            total_amount=data.total_amount,
            purchase_date=data.purchase_date,
            description=data.description,
            base_id=data.base_id,
            created_by_id=user.id,
        )
        db.add(purchase)
        db.flush()

        for item in data.assets:
            fields = item.model_dump()
            fields["acquisition_date"] = fields["acquisition_date"] or data.purchase_date
            db.add(Asset(
                **fields,
                status=AssetStatus.AVAILABLE,
                base_id=data.base_id,
                purchase_id=purchase.id,
            ))

    purchase = get_purchase(db, user, purchase.id)
    trail.add(
        "CREATE", "Purchase", purchase.id,
        after=snapshot(purchase, asset_ids=[asset.id for asset in purchase.assets]),
    )
    logger.info(
        f"Purchase {purchase.purchase_order} recorded at base {purchase.base_id} "
        f"with {len(purchase.assets)} assets by user {user.id}"
    )
    return purchase
