"""
Typed errors raised by the service layer.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer answers with, so routers never translate messages by hand:

    ArmoryError
    +-- AuthenticationError   401  not_authenticated
    +-- ForbiddenError        403  forbidden
    +-- NotFoundError         404  not_found
    +-- ConflictError         409  conflict
    +-- ValidationError       422  validation_error

NotFoundError is also used for records that exist but sit outside the
caller's base, so out-of-scope ids cannot be probed.
"""

from typing import Optional

from sqlalchemy.exc import IntegrityError


class ArmoryError(Exception):
    code = "armory_error"
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class AuthenticationError(ArmoryError):
    code = "not_authenticated"
    status_code = 401


class ForbiddenError(ArmoryError):
    code = "forbidden"
    status_code = 403


class NotFoundError(ArmoryError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[int] = None):
        super().__init__(f"{entity} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(ArmoryError):
    code = "conflict"
    status_code = 409


class ValidationError(ArmoryError):
    code = "validation_error"
    status_code = 422


# Constraint name (PostgreSQL) or table.column (SQLite) -> readable cause
UNIQUE_KEY_MESSAGES = {
    "uq_assets_serial_number": "Asset with this serial number already exists",
    "assets.serial_number": "Asset with this serial number already exists",
    "uq_purchases_purchase_order": "Purchase with this purchase order already exists",
    "purchases.purchase_order": "Purchase with this purchase order already exists",
    "uq_transfers_transfer_code": "Transfer code already in use",
    "transfers.transfer_code": "Transfer code already in use",
    "uq_bases_name": "Base with this name already exists",
    "bases.name": "Base with this name already exists",
    "uq_bases_code": "Base with this code already exists",
    "bases.code": "Base with this code already exists",
    "uq_users_email": "User with this email already exists",
    "users.email": "User with this email already exists",
    "uq_users_username": "User with this username already exists",
    "users.username": "User with this username already exists",
    "uq_assignments_open_asset": "Asset is already assigned to someone else",
    "assignments.asset_id": "Asset is already assigned to someone else",
}


def conflict_from_integrity_error(exc: IntegrityError) -> ConflictError:
    text = str(exc.orig)
    for key, message in UNIQUE_KEY_MESSAGES.items():
        if key in text:
            return ConflictError(message)
    return ConflictError("Operation conflicts with existing data")
