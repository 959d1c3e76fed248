import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from armory.database import atomic, utcnow
from armory.exceptions import ConflictError, NotFoundError
from armory.models import Asset, AssetStatus, Assignment, User
from armory.schemas import AssignmentCreate, AssignmentReturn
from armory.services import lifecycle
from armory.services.audit import AuditTrail, snapshot
from armory.services.scope import ensure_base_access, ensure_visible, scoped_base_id
from armory.utils.pagination import apply_sort, paginate

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "assigned_at": Assignment.assigned_at,
    "returned_at": Assignment.returned_at,
}


def _assignment_query(db: Session):
    return db.query(Assignment).options(
        joinedload(Assignment.asset),
        joinedload(Assignment.assigned_to),
        joinedload(Assignment.base),
        joinedload(Assignment.created_by),
    )


def open_assignment_for(db: Session, asset_id: int) -> Optional[Assignment]:
    return (
        db.query(Assignment)
        .filter(Assignment.asset_id == asset_id, Assignment.returned_at.is_(None))
        .with_for_update()
        .first()
    )


def get_assignment(db: Session, user: User, assignment_id: int) -> Assignment:
    assignment = _assignment_query(db).filter(Assignment.id == assignment_id).first()
    if not assignment:
        raise NotFoundError("Assignment", assignment_id)
    ensure_visible(user, assignment.base_id, "Assignment", assignment_id)
    return assignment


def list_assignments(
    db: Session,
    user: User,
    base_id: Optional[int] = None,
    assigned_to_id: Optional[int] = None,
    asset_id: Optional[int] = None,
    status: str = "all",
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort_by: Optional[str] = None,
    sort_order: str = "desc",
    page: int = 1,
    limit: Optional[int] = None,
):
    """``status`` is one of active, returned or all."""
    query = _assignment_query(db)

    scoped = scoped_base_id(user)
    if scoped is not None:
        query = query.filter(Assignment.base_id == scoped)
    elif base_id:
        query = query.filter(Assignment.base_id == base_id)

    if assigned_to_id:
        query = query.filter(Assignment.assigned_to_id == assigned_to_id)
    if asset_id:
        query = query.filter(Assignment.asset_id == asset_id)
    if status == "active":
        query = query.filter(Assignment.returned_at.is_(None))
    elif status == "returned":
        query = query.filter(Assignment.returned_at.isnot(None))
    if date_from:
        query = query.filter(Assignment.assigned_at >= date_from)
    if date_to:
        query = query.filter(Assignment.assigned_at <= date_to)

    query = apply_sort(query, SORT_COLUMNS, sort_by, sort_order, default="assigned_at")
    return paginate(query, page, limit)


def create_assignment(db: Session, user: User, data: AssignmentCreate, trail: AuditTrail) -> Assignment:
    ensure_base_access(user, data.base_id, "Base commanders can only assign assets at their base")

    with atomic(db):
        asset = db.query(Asset).filter(Asset.id == data.asset_id).with_for_update().first()
        if not asset:
            raise NotFoundError("Asset", data.asset_id)
        ensure_visible(user, asset.base_id, "Asset", data.asset_id)

        assignee = db.get(User, data.assigned_to_id)
        if not assignee:
            raise NotFoundError("User", data.assigned_to_id)

        next_status = lifecycle.check_assignment(
            asset, open_assignment_for(db, asset.id), assignee, data.base_id,
        )

        assignment = Assignment(
            asset_id=asset.id,
            assigned_to_id=assignee.id,
            base_id=data.base_id,
            purpose=data.purpose,
            notes=data.notes,
            assigned_at=utcnow(),
            created_by_id=user.id,
        )
        db.add(assignment)

        claimed = (
            db.query(Asset)
            .filter(Asset.id == asset.id, Asset.status == AssetStatus.AVAILABLE, Asset.base_id == data.base_id)
            .update({Asset.status: next_status}, synchronize_session=False)
        )
        if claimed != 1:
            raise ConflictError("Asset is not available for assignment", asset_id=asset.id)

    assignment = get_assignment(db, user, assignment.id)
    trail.add("CREATE", "Assignment", assignment.id, after=snapshot(assignment))
    logger.info(
        f"Asset {assignment.asset_id} assigned to user {assignment.assigned_to_id} "
        f"at base {assignment.base_id} by user {user.id}"
    )
    return assignment


def return_assignment(
    db: Session, user: User, assignment_id: int, data: AssignmentReturn, trail: AuditTrail
) -> Assignment:
    with atomic(db):
        assignment = (
            db.query(Assignment).filter(Assignment.id == assignment_id).with_for_update().first()
        )
        if not assignment:
            raise NotFoundError("Assignment", assignment_id)
        ensure_visible(user, assignment.base_id, "Assignment", assignment_id)

        next_status = lifecycle.check_return(assignment, data.condition)
        before = snapshot(assignment)

        values = {
            Assignment.returned_at: utcnow(),
            Assignment.return_condition: data.condition,
        }
        if data.notes:
            note = f"Return notes: {data.notes}"
            values[Assignment.notes] = f"{assignment.notes}\n{note}" if assignment.notes else note

        closed = (
            db.query(Assignment)
            .filter(Assignment.id == assignment.id, Assignment.returned_at.is_(None))
            .update(values, synchronize_session=False)
        )
        if closed != 1:
            raise ConflictError("Asset has already been returned", assignment_id=assignment.id)

        released = (
            db.query(Asset)
            .filter(Asset.id == assignment.asset_id, Asset.status == AssetStatus.ASSIGNED)
            .update({Asset.status: next_status}, synchronize_session=False)
        )
        if released != 1:
            raise ConflictError("Asset is no longer assigned", asset_id=assignment.asset_id)

    assignment = get_assignment(db, user, assignment_id)
    trail.add("RETURN", "Assignment", assignment.id, before=before, after=snapshot(assignment))
    logger.info(
        f"Assignment {assignment.id} returned ({assignment.return_condition.value}); "
        f"asset {assignment.asset_id} is now {assignment.asset.status.value}"
    )
    return assignment
