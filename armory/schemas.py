from pydantic import BaseModel, EmailStr, Field, model_validator
from datetime import datetime, date
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar

from armory.models import AssetStatus, EquipmentType, ReturnCondition, Role, TransferStatus

T = TypeVar("T")

SCOPED_ROLES = (Role.BASE_COMMANDER, Role.LOGISTICS_OFFICER)


# ============================================================================
# Shared
# ============================================================================

class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class Page(BaseModel, Generic[T]):
    items: List[T]
    pagination: Pagination


class MessageResponse(BaseModel):
    message: str


class BaseBrief(BaseModel):
    id: int
    name: str
    code: str

    class Config:
        from_attributes = True


class UserBrief(BaseModel):
    id: int
    username: str
    first_name: str
    last_name: str
    role: Role

    class Config:
        from_attributes = True


class AssetSummary(BaseModel):
    id: int
    serial_number: str
    name: str
    equipment_type: EquipmentType
    status: AssetStatus

    class Config:
        from_attributes = True


# ============================================================================
# Bases
# ============================================================================

class BaseCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    code: str = Field(..., min_length=2, max_length=10, pattern=r"^[A-Za-z0-9]+$")
    location: str = Field(..., min_length=2, max_length=200)
    description: Optional[str] = Field(None, max_length=500)


class BaseUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    code: Optional[str] = Field(None, min_length=2, max_length=10, pattern=r"^[A-Za-z0-9]+$")
    location: Optional[str] = Field(None, min_length=2, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None


class BaseResponse(BaseModel):
    id: int
    name: str
    code: str
    location: str
    description: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BaseCounts(BaseModel):
    users: int = 0
    assets: int = 0
    purchases: int = 0
    transfers_from: int = 0
    transfers_to: int = 0


class BaseDetailResponse(BaseResponse):
    counts: BaseCounts


class BaseDeleteResponse(BaseModel):
    message: str
    deactivated: bool
    base: Optional[BaseResponse] = None


# ============================================================================
# Users & auth
# ============================================================================

class UserCreate(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[A-Za-z0-9]+$")
    password: str = Field(..., min_length=8)
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    role: Role
    base_id: Optional[int] = None

    @model_validator(mode="after")
    def base_required_for_scoped_roles(self):
        if self.role in SCOPED_ROLES and self.base_id is None:
            raise ValueError("base_id is required for base commanders and logistics officers")
        return self


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    username: Optional[str] = Field(None, min_length=3, max_length=30, pattern=r"^[A-Za-z0-9]+$")
    password: Optional[str] = Field(None, min_length=8)
    first_name: Optional[str] = Field(None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(None, min_length=2, max_length=50)
    role: Optional[Role] = None
    base_id: Optional[int] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    id: int
    email: str
    username: str
    first_name: str
    last_name: str
    role: Role
    base_id: Optional[int] = None
    base: Optional[BaseBrief] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserDeleteResponse(BaseModel):
    message: str
    deactivated: bool
    user: Optional[UserResponse] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserResponse


# ============================================================================
# Assets
# ============================================================================

class AssetCreate(BaseModel):
    serial_number: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    equipment_type: EquipmentType
    base_id: int
    value: Optional[Decimal] = Field(None, gt=0)
    acquisition_date: Optional[date] = None
    warranty_expiry: Optional[date] = None


class AssetUpdate(BaseModel):
    serial_number: Optional[str] = Field(None, min_length=1, max_length=100)
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    equipment_type: Optional[EquipmentType] = None
    status: Optional[AssetStatus] = None
    value: Optional[Decimal] = Field(None, gt=0)
    acquisition_date: Optional[date] = None
    warranty_expiry: Optional[date] = None


class AssignmentHolder(BaseModel):
    id: int
    assigned_at: datetime
    assigned_to: UserBrief

    class Config:
        from_attributes = True


class AssetResponse(BaseModel):
    id: int
    serial_number: str
    name: str
    description: Optional[str] = None
    equipment_type: EquipmentType
    status: AssetStatus
    base_id: int
    base: BaseBrief
    purchase_id: Optional[int] = None
    value: Optional[float] = None
    acquisition_date: Optional[date] = None
    warranty_expiry: Optional[date] = None
    current_assignment: Optional[AssignmentHolder] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransferBrief(BaseModel):
    id: int
    transfer_code: str
    status: TransferStatus
    from_base: BaseBrief
    to_base: BaseBrief
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AssetTransferHistory(BaseModel):
    id: int
    quantity: int
    notes: Optional[str] = None
    transfer: TransferBrief

    class Config:
        from_attributes = True


class AssetAssignmentHistory(BaseModel):
    id: int
    purpose: str
    notes: Optional[str] = None
    assigned_at: datetime
    returned_at: Optional[datetime] = None
    return_condition: Optional[ReturnCondition] = None
    assigned_to: UserBrief

    class Config:
        from_attributes = True


class AssetExpenditureHistory(BaseModel):
    id: int
    quantity: int
    reason: str
    expended_at: datetime

    class Config:
        from_attributes = True


class AssetDetailResponse(AssetResponse):
    assignments: List[AssetAssignmentHistory] = []
    transfer_items: List[AssetTransferHistory] = []
    expenditures: List[AssetExpenditureHistory] = []


# ============================================================================
# Purchases
# ============================================================================

class PurchaseAssetInput(BaseModel):
    serial_number: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    equipment_type: EquipmentType
    value: Optional[Decimal] = Field(None, gt=0)
    acquisition_date: Optional[date] = None
    warranty_expiry: Optional[date] = None


class PurchaseCreate(BaseModel):
    purchase_order: str = Field(..., min_length=1, max_length=50)
    vendor: str = Field(..., min_length=2, max_length=100)
    total_amount: Decimal = Field(..., gt=0)
    purchase_date: date
    description: Optional[str] = Field(None, max_length=500)
    base_id: int
    assets: List[PurchaseAssetInput] = Field(..., min_length=1)


class PurchaseResponse(BaseModel):
    id: int
    purchase_order: str
    vendor: str
    total_amount: float
    purchase_date: date
    description: Optional[str] = None
    base: BaseBrief
    created_by: UserBrief
    assets: List[AssetSummary] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============================================================================
# Transfers
# ============================================================================

class TransferAssetInput(BaseModel):
    asset_id: int
    quantity: int = Field(1, ge=1)
    notes: Optional[str] = Field(None, max_length=500)


class TransferCreate(BaseModel):
    from_base_id: int
    to_base_id: int
    reason: str = Field(..., min_length=5, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)
    assets: List[TransferAssetInput] = Field(..., min_length=1)

    @model_validator(mode="after")
    def bases_must_differ(self):
        if self.from_base_id == self.to_base_id:
            raise ValueError("Source and destination bases must be different")
        return self


class TransferApprove(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)


class TransferCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class TransferItemResponse(BaseModel):
    id: int
    asset_id: int
    quantity: int
    notes: Optional[str] = None
    asset: AssetSummary

    class Config:
        from_attributes = True


class TransferResponse(BaseModel):
    id: int
    transfer_code: str
    status: TransferStatus
    from_base_id: int
    to_base_id: int
    from_base: BaseBrief
    to_base: BaseBrief
    reason: str
    notes: Optional[str] = None
    created_by: UserBrief
    approved_by: Optional[UserBrief] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: List[TransferItemResponse] = []

    class Config:
        from_attributes = True


# ============================================================================
# Assignments
# ============================================================================

class AssignmentCreate(BaseModel):
    asset_id: int
    assigned_to_id: int
    base_id: int
    purpose: str = Field(..., min_length=5, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)


class AssignmentReturn(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)
    condition: ReturnCondition = ReturnCondition.GOOD


class AssignmentResponse(BaseModel):
    id: int
    asset_id: int
    asset: AssetSummary
    assigned_to: UserBrief
    base: BaseBrief
    purpose: str
    notes: Optional[str] = None
    assigned_at: datetime
    returned_at: Optional[datetime] = None
    return_condition: Optional[ReturnCondition] = None
    created_by: UserBrief

    class Config:
        from_attributes = True


# ============================================================================
# Expenditures
# ============================================================================

class ExpenditureCreate(BaseModel):
    asset_id: int
    base_id: int
    quantity: int = Field(1, ge=1)
    reason: str = Field(..., min_length=5, max_length=500)
    description: Optional[str] = Field(None, max_length=1000)
    expended_at: Optional[datetime] = None


class ExpenditureResponse(BaseModel):
    id: int
    asset_id: int
    asset: AssetSummary
    base: BaseBrief
    quantity: int
    reason: str
    description: Optional[str] = None
    expended_at: datetime
    created_by: UserBrief

    class Config:
        from_attributes = True


# ============================================================================
# Audit & dashboard
# ============================================================================

class AuditLogResponse(BaseModel):
    id: int
    user_id: Optional[int] = None
    user: Optional[UserBrief] = None
    action: str
    entity: str
    entity_id: Optional[int] = None
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None
    ip_address: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class DashboardFilters(BaseModel):
    base_id: Optional[int] = None
    equipment_type: Optional[EquipmentType] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class DashboardMetrics(BaseModel):
    opening_balance: int
    closing_balance: int
    net_movement: int
    purchases: int
    transfers_in: int
    transfers_out: int
    assigned: int
    expended: int
    filters: DashboardFilters


class NetMovementDetails(BaseModel):
    purchases: List[PurchaseResponse]
    transfers_in: List[TransferResponse]
    transfers_out: List[TransferResponse]


class CountBucket(BaseModel):
    key: str
    label: Optional[str] = None
    count: int


class AssetDistribution(BaseModel):
    by_type: List[CountBucket]
    by_status: List[CountBucket]
    by_base: List[CountBucket]
