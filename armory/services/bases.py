import logging
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from armory.database import atomic
from armory.exceptions import ConflictError, NotFoundError
from armory.models import Asset, MilitaryBase, Purchase, Transfer, User
from armory.schemas import BaseCreate, BaseUpdate
from armory.services.audit import AuditTrail, snapshot
from armory.services.scope import ensure_visible, scoped_base_id
from armory.utils.pagination import paginate

logger = logging.getLogger(__name__)


def base_counts(db: Session, base_id: int) -> dict:
    """Rows referencing a base, by kind"""
    def count(column):
        return db.query(func.count(column)).filter(column == base_id).scalar()

    return {
        "users": count(User.base_id),
        "assets": count(Asset.base_id),
        "purchases": count(Purchase.base_id),
        "transfers_from": count(Transfer.from_base_id),
        "transfers_to": count(Transfer.to_base_id),
    }


def _base_detail(db: Session, base: MilitaryBase) -> dict:
    data = snapshot(base)
    data["counts"] = base_counts(db, base.id)
    return data


def list_bases(
    db: Session,
    user: User,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = 1,
    limit: Optional[int] = None,
):
    query = db.query(MilitaryBase)

    scoped = scoped_base_id(user)
    if scoped is not None:
        query = query.filter(MilitaryBase.id == scoped)

    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            MilitaryBase.name.ilike(pattern),
            MilitaryBase.code.ilike(pattern),
            MilitaryBase.location.ilike(pattern),
        ))
    if is_active is not None:
        query = query.filter(MilitaryBase.is_active == is_active)

    return paginate(query.order_by(MilitaryBase.name.asc()), page, limit)


def get_base(db: Session, user: User, base_id: int) -> dict:
    base = db.get(MilitaryBase, base_id)
    if not base:
        raise NotFoundError("Base", base_id)
    ensure_visible(user, base.id, "Base", base_id)
    return _base_detail(db, base)


def _ensure_unique(db: Session, name: Optional[str], code: Optional[str], base_id: Optional[int] = None):
    for column, value, label in ((MilitaryBase.name, name, "name"), (MilitaryBase.code, code, "code")):
        if value is None:
            continue
        query = db.query(MilitaryBase.id).filter(column == value)
        if base_id is not None:
            query = query.filter(MilitaryBase.id != base_id)
        if query.first() is not None:
            raise ConflictError(f"Base with this {label} already exists", **{label: value})


def create_base(db: Session, user: User, data: BaseCreate, trail: AuditTrail) -> MilitaryBase:
    code = data.code.upper()
    with atomic(db):
        _ensure_unique(db, data.name, code)
        base = MilitaryBase(
            name=data.name,
            code=code,
            location=data.location,
            description=data.description,
        )
        db.add(base)

    db.refresh(base)
    trail.add("CREATE", "Base", base.id, after=snapshot(base))
    logger.info(f"Base created: {base.name} ({base.code}) by user {user.id}")
    return base


def update_base(db: Session, user: User, base_id: int, data: BaseUpdate, trail: AuditTrail) -> MilitaryBase:
    changes = data.model_dump(exclude_unset=True)
    if changes.get("code"):
        changes["code"] = changes["code"].upper()

    with atomic(db):
        base = db.query(MilitaryBase).filter(MilitaryBase.id == base_id).with_for_update().first()
        if not base:
            raise NotFoundError("Base", base_id)
        before = snapshot(base)
        _ensure_unique(db, changes.get("name"), changes.get("code"), base.id)
        for field, value in changes.items():
            setattr(base, field, value)

    db.refresh(base)
    trail.add("UPDATE", "Base", base.id, before=before, after=snapshot(base))
    logger.info(f"Base updated: {base.name} by user {user.id}")
    return base


def delete_base(db: Session, user: User, base_id: int, trail: AuditTrail) -> dict:
    """
    Remove a base. A base still referenced by users, assets, purchases or
    transfers is only deactivated.
    """
    with atomic(db):
        base = db.query(MilitaryBase).filter(MilitaryBase.id == base_id).with_for_update().first()
        if not base:
            raise NotFoundError("Base", base_id)
        before = snapshot(base)
        counts = base_counts(db, base.id)

        if any(counts.values()):
            base.is_active = False
            deactivated = True
        else:
            db.delete(base)
            deactivated = False

    if deactivated:
        db.refresh(base)
        trail.add("DELETE", "Base", base_id, before=before, after=snapshot(base))
        logger.info(f"Base deactivated: {before['name']} by user {user.id} (still referenced: {counts})")
        return {
            "message": "Base deactivated successfully (has associated data)",
            "deactivated": True,
            "base": base,
        }

    trail.add("DELETE", "Base", base_id, before=before)
    logger.info(f"Base deleted: {before['name']} by user {user.id}")
    return {"message": "Base deleted successfully", "deactivated": False, "base": None}
