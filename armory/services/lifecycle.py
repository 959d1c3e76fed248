"""
Asset status rules.

Pure decision functions: each takes the current state of an asset and the
rows around it and either returns the status the asset moves to or raises
ConflictError naming the rule that was broken. Nothing here reads or writes
the database; the workflow services load the rows, call in, and apply the
result inside their own transaction.
"""
from typing import Optional

from armory.exceptions import ConflictError
from armory.models import AssetStatus, ReturnCondition, TransferStatus

TERMINAL_ASSET_STATUSES = frozenset({AssetStatus.EXPENDED, AssetStatus.DECOMMISSIONED})

# Transfers still holding their assets
IN_FLIGHT_TRANSFER_STATUSES = (
    TransferStatus.PENDING,
    TransferStatus.APPROVED,
    TransferStatus.IN_TRANSIT,
)

TRANSFER_TRANSITIONS = {
    TransferStatus.PENDING: frozenset({TransferStatus.APPROVED, TransferStatus.CANCELLED}),
    TransferStatus.APPROVED: frozenset({TransferStatus.COMPLETED, TransferStatus.CANCELLED}),
    TransferStatus.IN_TRANSIT: frozenset(),
    TransferStatus.COMPLETED: frozenset(),
    TransferStatus.CANCELLED: frozenset(),
}

TRANSITION_REJECTIONS = {
    TransferStatus.APPROVED: "Transfer is not in pending status",
    TransferStatus.COMPLETED: "Transfer must be approved before completion",
    TransferStatus.CANCELLED: "Transfer cannot be cancelled in current status",
}

RETURN_CONDITION_STATUS = {
    ReturnCondition.GOOD: AssetStatus.AVAILABLE,
    ReturnCondition.DAMAGED: AssetStatus.MAINTENANCE,
    ReturnCondition.NEEDS_MAINTENANCE: AssetStatus.MAINTENANCE,
    ReturnCondition.DECOMMISSIONED: AssetStatus.DECOMMISSIONED,
}

MANUAL_STATUS_CHANGES = {
    AssetStatus.AVAILABLE: frozenset({AssetStatus.MAINTENANCE, AssetStatus.DECOMMISSIONED}),
    AssetStatus.MAINTENANCE: frozenset({AssetStatus.AVAILABLE, AssetStatus.DECOMMISSIONED}),
}


def check_assignment(asset, open_assignment, assignee, base_id: int) -> AssetStatus:
    """Asset may be handed to ``assignee`` at ``base_id``."""
    if asset.base_id != base_id:
        raise ConflictError("Asset is not at the specified base", asset_id=asset.id)
    if asset.status != AssetStatus.AVAILABLE:
        raise ConflictError(
            "Asset is not available for assignment",
            asset_id=asset.id,
            status=asset.status.value,
        )
    if open_assignment is not None:
        raise ConflictError("Asset is already assigned to someone else", asset_id=asset.id)
    if not assignee.is_active:
        raise ConflictError("User to assign asset to is inactive", user_id=assignee.id)
    if assignee.base_id != base_id:
        raise ConflictError("User is not at the same base as the asset", user_id=assignee.id)
    return AssetStatus.ASSIGNED


def check_return(assignment, condition: Optional[ReturnCondition]) -> AssetStatus:
    if assignment.returned_at is not None:
        raise ConflictError("Asset has already been returned", assignment_id=assignment.id)
    return RETURN_CONDITION_STATUS[condition or ReturnCondition.GOOD]


def check_transfer_member(asset, from_base_id: int, in_flight_code: Optional[str]) -> AssetStatus:
    """Asset may join a new transfer leaving ``from_base_id``."""
    if asset.base_id != from_base_id:
        raise ConflictError(
            f"Asset {asset.serial_number} is not at the source base",
            asset_id=asset.id,
        )
    if in_flight_code is not None:
        raise ConflictError(
            f"Asset {asset.serial_number} is already part of transfer {in_flight_code}",
            asset_id=asset.id,
            transfer_code=in_flight_code,
        )
    if asset.status != AssetStatus.AVAILABLE:
        raise ConflictError(
            f"Asset {asset.serial_number} is not available for transfer",
            asset_id=asset.id,
            status=asset.status.value,
        )
    return AssetStatus.IN_TRANSIT


def check_transfer_transition(current: TransferStatus, target: TransferStatus) -> TransferStatus:
    if target not in TRANSFER_TRANSITIONS.get(current, frozenset()):
        message = TRANSITION_REJECTIONS.get(target, "Transfer status change not allowed")
        raise ConflictError(message, status=current.value, target=target.value)
    return target


def transfer_release_status(target: TransferStatus) -> AssetStatus:
    """Status member assets land in when a transfer completes or is cancelled."""
    if target not in (TransferStatus.COMPLETED, TransferStatus.CANCELLED):
        raise ConflictError("Transfer status change not allowed", target=target.value)
    return AssetStatus.AVAILABLE


def check_expenditure(asset) -> AssetStatus:
    """Only assets outside an open transfer that are neither expended nor decommissioned can be expended."""
    if asset.status == AssetStatus.EXPENDED:
        raise ConflictError("Asset has already been expended", asset_id=asset.id)
    if asset.status == AssetStatus.IN_TRANSIT:
        raise ConflictError("Asset is part of an open transfer", asset_id=asset.id)
    if asset.status == AssetStatus.DECOMMISSIONED:
        raise ConflictError("Asset has been decommissioned", asset_id=asset.id)
    return AssetStatus.EXPENDED


def check_manual_status_change(current: AssetStatus, target: AssetStatus) -> AssetStatus:
    """Status edits allowed through a plain asset update."""
    if current == target:
        return target
    if target not in MANUAL_STATUS_CHANGES.get(current, frozenset()):
        raise ConflictError(
            f"Cannot change asset status from {current.value} to {target.value}",
            status=current.value,
            target=target.value,
        )
    return target


def check_asset_deletable(assignment_count: int, transfer_item_count: int, expenditure_count: int) -> None:
    if assignment_count or transfer_item_count or expenditure_count:
        raise ConflictError(
            "Cannot delete asset with existing assignments, transfers, or expenditures",
            assignments=assignment_count,
            transfer_items=transfer_item_count,
            expenditures=expenditure_count,
        )
