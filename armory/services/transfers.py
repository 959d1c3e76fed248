"""
Inter-base transfer workflow.

    PENDING --approve--> APPROVED --complete--> COMPLETED
       |                    |
       +------cancel--------+------------------> CANCELLED

Creating a transfer claims its assets (AVAILABLE -> IN_TRANSIT at the source
base); completing or cancelling releases them (-> AVAILABLE at the
destination or back at the source). Every step runs in one transaction and
claims rows with conditional UPDATEs, so a concurrent request that changed
any of them makes this one fail with ConflictError instead of overwriting it.
"""
import logging
import secrets
import string
import time
from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload, selectinload

from armory.database import atomic, utcnow
from armory.exceptions import ConflictError, NotFoundError, ValidationError
from armory.models import Asset, AssetStatus, MilitaryBase, Transfer, TransferItem, TransferStatus, User
from armory.schemas import TransferApprove, TransferCancel, TransferCreate
from armory.services import lifecycle
from armory.services.audit import AuditTrail, snapshot
from armory.services.scope import ensure_base_access, ensure_visible, scoped_base_id
from armory.utils.pagination import apply_sort, paginate

logger = logging.getLogger(__name__)

BASE36_ALPHABET = string.digits + string.ascii_uppercase
CODE_ATTEMPTS = 10

SORT_COLUMNS = {
    "created_at": Transfer.created_at,
    "status": Transfer.status,
    "transfer_code": Transfer.transfer_code,
    "completed_at": Transfer.completed_at,
}


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_transfer_code() -> str:
    """TRF-<base36 epoch millis>-<5 random base36 chars>"""
    timestamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(5))
    return f"TRF-{timestamp}-{suffix}".upper()


def _unique_transfer_code(db: Session) -> str:
    for _ in range(CODE_ATTEMPTS):
        code = generate_transfer_code()
        if db.query(Transfer.id).filter(Transfer.transfer_code == code).first() is None:
            return code
    raise ConflictError("Could not generate a unique transfer code")


def _transfer_query(db: Session):
    return db.query(Transfer).options(
        joinedload(Transfer.from_base),
        joinedload(Transfer.to_base),
        joinedload(Transfer.created_by),
        joinedload(Transfer.approved_by),
        selectinload(Transfer.items).joinedload(TransferItem.asset),
    )


def _transfer_snapshot(transfer: Transfer) -> dict:
    return snapshot(transfer, asset_ids=[item.asset_id for item in transfer.items])


def _in_flight_codes(db: Session, asset_ids) -> dict:
    """asset id -> code of a non-terminal transfer it belongs to"""
    rows = (
        db.query(TransferItem.asset_id, Transfer.transfer_code)
        .join(Transfer, TransferItem.transfer_id == Transfer.id)
        .filter(
            TransferItem.asset_id.in_(asset_ids),
            Transfer.status.in_(lifecycle.IN_FLIGHT_TRANSFER_STATUSES),
        )
        .all()
    )
    return {asset_id: code for asset_id, code in rows}


def _move_assets(
    db: Session,
    asset_ids,
    from_status: AssetStatus,
    to_status: AssetStatus,
    base_id: int,
    new_base_id: Optional[int] = None,
) -> int:
    """Conditional status change; returns how many rows matched."""
    values = {Asset.status: to_status}
    if new_base_id is not None:
        values[Asset.base_id] = new_base_id
    return (
        db.query(Asset)
        .filter(Asset.id.in_(asset_ids), Asset.status == from_status, Asset.base_id == base_id)
        .update(values, synchronize_session=False)
    )


def _set_transfer_status(db: Session, transfer_id: int, expected: TransferStatus, values: dict) -> None:
    updated = (
        db.query(Transfer)
        .filter(Transfer.id == transfer_id, Transfer.status == expected)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        raise ConflictError("Transfer was modified by another request", transfer_id=transfer_id)


def _load_for_update(db: Session, user: User, transfer_id: int) -> Transfer:
    transfer = (
        db.query(Transfer)
        .options(selectinload(Transfer.items))
        .filter(Transfer.id == transfer_id)
        .with_for_update()
        .first()
    )
    if not transfer:
        raise NotFoundError("Transfer", transfer_id)
    ensure_visible(user, (transfer.from_base_id, transfer.to_base_id), "Transfer", transfer_id)
    return transfer


def get_transfer(db: Session, user: User, transfer_id: int) -> Transfer:
    transfer = _transfer_query(db).filter(Transfer.id == transfer_id).first()
    if not transfer:
        raise NotFoundError("Transfer", transfer_id)
    ensure_visible(user, (transfer.from_base_id, transfer.to_base_id), "Transfer", transfer_id)
    return transfer


def list_transfers(
    db: Session,
    user: User,
    status: Optional[TransferStatus] = None,
    from_base_id: Optional[int] = None,
    to_base_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort_by: Optional[str] = None,
    sort_order: str = "desc",
    page: int = 1,
    limit: Optional[int] = None,
):
    query = _transfer_query(db)

    base_id = scoped_base_id(user)
    if base_id is not None:
        query = query.filter(or_(Transfer.from_base_id == base_id, Transfer.to_base_id == base_id))

    if status:
        query = query.filter(Transfer.status == status)
    if from_base_id:
        query = query.filter(Transfer.from_base_id == from_base_id)
    if to_base_id:
        query = query.filter(Transfer.to_base_id == to_base_id)
    if date_from:
        query = query.filter(Transfer.created_at >= date_from)
    if date_to:
        query = query.filter(Transfer.created_at <= date_to)

    query = apply_sort(query, SORT_COLUMNS, sort_by, sort_order, default="created_at")
    return paginate(query, page, limit)


def create_transfer(db: Session, user: User, data: TransferCreate, trail: AuditTrail) -> Transfer:
    if data.from_base_id == data.to_base_id:
        raise ValidationError("Source and destination bases must be different")

    asset_ids = [item.asset_id for item in data.assets]
    if len(set(asset_ids)) != len(asset_ids):
        raise ValidationError("Each asset may appear only once in a transfer")

    ensure_base_access(user, data.from_base_id, "Base users can only transfer assets from their own base")

    with atomic(db):
        from_base = db.get(MilitaryBase, data.from_base_id)
        if not from_base:
            raise NotFoundError("Source base", data.from_base_id)
        to_base = db.get(MilitaryBase, data.to_base_id)
        if not to_base:
            raise NotFoundError("Destination base", data.to_base_id)
        if not to_base.is_active:
            raise ConflictError("Destination base is inactive", base_id=to_base.id)

        assets = {
            asset.id: asset
            for asset in db.query(Asset).filter(Asset.id.in_(asset_ids)).with_for_update().all()
        }
        in_flight = _in_flight_codes(db, asset_ids)
        for asset_id in asset_ids:
            asset = assets.get(asset_id)
            if asset is None:
                raise NotFoundError("Asset", asset_id)
            ensure_visible(user, asset.base_id, "Asset", asset_id)
            lifecycle.check_transfer_member(asset, data.from_base_id, in_flight.get(asset_id))

        transfer = Transfer(
            transfer_code=_unique_transfer_code(db),
            status=TransferStatus.PENDING,
            from_base_id=data.from_base_id,
            to_base_id=data.to_base_id,
            reason=data.reason,
            notes=data.notes,
            created_by_id=user.id,
        )
        db.add(transfer)
        db.flush()

        for item in data.assets:
            db.add(TransferItem(
                transfer_id=transfer.id,
                asset_id=item.asset_id,
                quantity=item.quantity,
                notes=item.notes,
            ))

        claimed = _move_assets(
            db, asset_ids, AssetStatus.AVAILABLE, AssetStatus.IN_TRANSIT, base_id=data.from_base_id,
        )
        if claimed != len(asset_ids):
            raise ConflictError("Some assets are no longer available for transfer")

    transfer = get_transfer(db, user, transfer.id)
    trail.add("CREATE", "Transfer", transfer.id, after=_transfer_snapshot(transfer))
    logger.info(
        f"Transfer {transfer.transfer_code} created by user {user.id}: "
        f"{len(asset_ids)} assets from base {transfer.from_base_id} to base {transfer.to_base_id}"
    )
    return transfer


def approve_transfer(db: Session, user: User, transfer_id: int, data: TransferApprove, trail: AuditTrail) -> Transfer:
    with atomic(db):
        transfer = _load_for_update(db, user, transfer_id)
        ensure_base_access(user, transfer.to_base_id, "Base commanders can only approve transfers to their base")
        lifecycle.check_transfer_transition(transfer.status, TransferStatus.APPROVED)
        before = _transfer_snapshot(transfer)

        values = {
            Transfer.status: TransferStatus.APPROVED,
            Transfer.approved_by_id: user.id,
            Transfer.approved_at: utcnow(),
        }
        if data.notes:
            values[Transfer.notes] = data.notes
        _set_transfer_status(db, transfer.id, TransferStatus.PENDING, values)

    transfer = get_transfer(db, user, transfer_id)
    trail.add("APPROVE", "Transfer", transfer.id, before=before, after=_transfer_snapshot(transfer))
    logger.info(f"Transfer {transfer.transfer_code} approved by user {user.id}")
    return transfer


def complete_transfer(db: Session, user: User, transfer_id: int, trail: AuditTrail) -> Transfer:
    with atomic(db):
        transfer = _load_for_update(db, user, transfer_id)
        ensure_base_access(user, transfer.to_base_id, "Base commanders can only complete transfers to their base")
        lifecycle.check_transfer_transition(transfer.status, TransferStatus.COMPLETED)
        before = _transfer_snapshot(transfer)

        asset_ids = [item.asset_id for item in transfer.items]
        moved = _move_assets(
            db,
            asset_ids,
            AssetStatus.IN_TRANSIT,
            lifecycle.transfer_release_status(TransferStatus.COMPLETED),
            base_id=transfer.from_base_id,
            new_base_id=transfer.to_base_id,
        )
        if moved != len(asset_ids):
            raise ConflictError("Some transfer assets are no longer in transit", transfer_id=transfer.id)

        _set_transfer_status(db, transfer.id, TransferStatus.APPROVED, {
            Transfer.status: TransferStatus.COMPLETED,
            Transfer.completed_at: utcnow(),
        })

    transfer = get_transfer(db, user, transfer_id)
    trail.add("COMPLETE", "Transfer", transfer.id, before=before, after=_transfer_snapshot(transfer))
    logger.info(
        f"Transfer {transfer.transfer_code} completed by user {user.id}: "
        f"{len(asset_ids)} assets now at base {transfer.to_base_id}"
    )
    return transfer


def cancel_transfer(db: Session, user: User, transfer_id: int, data: TransferCancel, trail: AuditTrail) -> Transfer:
    with atomic(db):
        transfer = _load_for_update(db, user, transfer_id)
        ensure_base_access(user, transfer.from_base_id, "Base commanders can only cancel transfers from their base")
        lifecycle.check_transfer_transition(transfer.status, TransferStatus.CANCELLED)
        before = _transfer_snapshot(transfer)
        previous_status = transfer.status

        asset_ids = [item.asset_id for item in transfer.items]
        released = _move_assets(
            db,
            asset_ids,
            AssetStatus.IN_TRANSIT,
            lifecycle.transfer_release_status(TransferStatus.CANCELLED),
            base_id=transfer.from_base_id,
        )
        if released != len(asset_ids):
            raise ConflictError("Some transfer assets are no longer in transit", transfer_id=transfer.id)

        values = {Transfer.status: TransferStatus.CANCELLED}
        if data.reason:
            note = f"Cancellation reason: {data.reason}"
            values[Transfer.notes] = f"{transfer.notes}\n{note}" if transfer.notes else note
        _set_transfer_status(db, transfer.id, previous_status, values)

    transfer = get_transfer(db, user, transfer_id)
    trail.add("CANCEL", "Transfer", transfer.id, before=before, after=_transfer_snapshot(transfer))
    logger.info(f"Transfer {transfer.transfer_code} cancelled by user {user.id}")
    return transfer
