import logging
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from armory.database import atomic
from armory.exceptions import ConflictError, NotFoundError, ValidationError
from armory.models import Assignment, Expenditure, MilitaryBase, Purchase, Role, Transfer, User
from armory.schemas import SCOPED_ROLES, UserCreate, UserUpdate
from armory.services.audit import AuditTrail, snapshot
from armory.utils.pagination import paginate
from armory.utils.security import get_password_hash

logger = logging.getLogger(__name__)


def user_reference_counts(db: Session, user_id: int) -> dict:
    """Rows that still point at a user"""
    def count(column):
        return db.query(func.count(column)).filter(column == user_id).scalar()

    return {
        "created_purchases": count(Purchase.created_by_id),
        "created_transfers": count(Transfer.created_by_id),
        "approved_transfers": count(Transfer.approved_by_id),
        "assignments": count(Assignment.assigned_to_id),
        "created_assignments": count(Assignment.created_by_id),
        "created_expenditures": count(Expenditure.created_by_id),
    }


def list_users(
    db: Session,
    role: Optional[Role] = None,
    base_id: Optional[int] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
):
    query = db.query(User).options(joinedload(User.base))
    if role:
        query = query.filter(User.role == role)
    if base_id:
        query = query.filter(User.base_id == base_id)
    if is_active is not None:
        query = query.filter(User.is_active == is_active)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
            User.username.ilike(pattern),
            User.email.ilike(pattern),
        ))
    return paginate(query.order_by(User.created_at.desc(), User.id.desc()), page, limit)


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).options(joinedload(User.base)).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User", user_id)
    return user


def _ensure_unique(db: Session, email: Optional[str], username: Optional[str], user_id: Optional[int] = None):
    for column, value, label in ((User.email, email, "email"), (User.username, username, "username")):
        if value is None:
            continue
        query = db.query(User.id).filter(column == value)
        if user_id is not None:
            query = query.filter(User.id != user_id)
        if query.first() is not None:
            raise ConflictError(f"User with this {label} already exists", **{label: value})


def _ensure_base(db: Session, base_id: Optional[int]):
    if base_id is not None and db.get(MilitaryBase, base_id) is None:
        raise NotFoundError("Base", base_id)


def create_user(db: Session, data: UserCreate, trail: Optional[AuditTrail] = None, actor: Optional[User] = None) -> User:
    with atomic(db):
        _ensure_unique(db, data.email, data.username)
        _ensure_base(db, data.base_id)
        user = User(
            email=data.email,
            username=data.username,
            hashed_password=get_password_hash(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
            role=data.role,
            base_id=data.base_id,
            is_active=True,
        )
        db.add(user)

    user = get_user(db, user.id)
    if trail is not None:
        trail.add("CREATE", "User", user.id, after=snapshot(user))
    logger.info(
        f"User created: {user.username} ({user.role.value}) by "
        f"{'user ' + str(actor.id) if actor else 'self-registration'}"
    )
    return user


def update_user(db: Session, actor: User, user_id: int, data: UserUpdate, trail: AuditTrail) -> User:
    changes = data.model_dump(exclude_unset=True)
    password = changes.pop("password", None)

    with atomic(db):
        user = db.query(User).filter(User.id == user_id).with_for_update().first()
        if not user:
            raise NotFoundError("User", user_id)
        before = snapshot(user)

        _ensure_unique(db, changes.get("email"), changes.get("username"), user.id)
        if "base_id" in changes:
            _ensure_base(db, changes["base_id"])

        role = changes.get("role", user.role)
        base_id = changes.get("base_id", user.base_id)
        if role in SCOPED_ROLES and base_id is None:
            raise ValidationError("base_id is required for base commanders and logistics officers")

        for field, value in changes.items():
            setattr(user, field, value)
        if password:
            user.hashed_password = get_password_hash(password)

    user = get_user(db, user_id)
    trail.add("UPDATE", "User", user.id, before=before, after=snapshot(user))
    logger.info(f"User updated: {user.username} by user {actor.id}")
    return user


def delete_user(db: Session, actor: User, user_id: int, trail: AuditTrail) -> dict:
    """
    Remove a user. Users that created or hold records are only deactivated,
    so history keeps pointing at them.
    """
    if user_id == actor.id:
        raise ConflictError("Cannot delete your own account")

    with atomic(db):
        user = db.query(User).filter(User.id == user_id).with_for_update().first()
        if not user:
            raise NotFoundError("User", user_id)
        before = snapshot(user)
        counts = user_reference_counts(db, user.id)

        if any(counts.values()):
            user.is_active = False
            deactivated = True
        else:
            db.delete(user)
            deactivated = False

    if deactivated:
        user = get_user(db, user_id)
        trail.add("DELETE", "User", user_id, before=before, after=snapshot(user))
        logger.info(f"User deactivated: {before['username']} by user {actor.id} (still referenced: {counts})")
        return {
            "message": "User deactivated successfully (has associated data)",
            "deactivated": True,
            "user": user,
        }

    trail.add("DELETE", "User", user_id, before=before)
    logger.info(f"User deleted: {before['username']} by user {actor.id}")
    return {"message": "User deleted successfully", "deactivated": False, "user": None}
