import enum

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, Enum, ForeignKey, Index, Integer,
    Numeric, String, Text, UniqueConstraint, text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from armory.database import Base


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    BASE_COMMANDER = "BASE_COMMANDER"
    LOGISTICS_OFFICER = "LOGISTICS_OFFICER"


class EquipmentType(str, enum.Enum):
    VEHICLE = "VEHICLE"
    WEAPON = "WEAPON"
    AMMUNITION = "AMMUNITION"
    COMMUNICATION = "COMMUNICATION"
    MEDICAL = "MEDICAL"
    SUPPLY = "SUPPLY"
    OTHER = "OTHER"


class AssetStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    ASSIGNED = "ASSIGNED"
    IN_TRANSIT = "IN_TRANSIT"
    MAINTENANCE = "MAINTENANCE"
    EXPENDED = "EXPENDED"
    DECOMMISSIONED = "DECOMMISSIONED"


class TransferStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    IN_TRANSIT = "IN_TRANSIT"  # kept for wire compatibility, never entered
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ReturnCondition(str, enum.Enum):
    GOOD = "GOOD"
    DAMAGED = "DAMAGED"
    NEEDS_MAINTENANCE = "NEEDS_MAINTENANCE"
    DECOMMISSIONED = "DECOMMISSIONED"


def _enum(enum_cls, length=20):
    return Enum(enum_cls, native_enum=False, length=length, validate_strings=True)


class MilitaryBase(Base):
    """Installation that holds assets, personnel and purchases"""
    __tablename__ = "bases"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    code = Column(String(10), nullable=False, index=True)
    location = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    users = relationship("User", back_populates="base")
    assets = relationship("Asset", back_populates="base")
    purchases = relationship("Purchase", back_populates="base")
    transfers_from = relationship("Transfer", foreign_keys="Transfer.from_base_id", back_populates="from_base")
    transfers_to = relationship("Transfer", foreign_keys="Transfer.to_base_id", back_populates="to_base")

    __table_args__ = (
        UniqueConstraint("name", name="uq_bases_name"),
        UniqueConstraint("code", name="uq_bases_code"),
    )


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    username = Column(String(30), nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    role = Column(_enum(Role), nullable=False)
    base_id = Column(Integer, ForeignKey("bases.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    base = relationship("MilitaryBase", back_populates="users")
    assignments = relationship("Assignment", foreign_keys="Assignment.assigned_to_id", back_populates="assigned_to")

    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        UniqueConstraint("username", name="uq_users_username"),
    )


class Purchase(Base):
    """Procurement record; creates its assets at the purchasing base"""
    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True, index=True)
    purchase_order = Column(String(50), nullable=False, index=True)
    vendor = Column(String(100), nullable=False)
    total_amount = Column(Numeric(14, 2), nullable=False)
    purchase_date = Column(Date, nullable=False)
    description = Column(Text, nullable=True)
    base_id = Column(Integer, ForeignKey("bases.id"), nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=func.now())

    # Relationships
    base = relationship("MilitaryBase", back_populates="purchases")
    created_by = relationship("User", foreign_keys=[created_by_id])
    assets = relationship("Asset", back_populates="purchase")

    __table_args__ = (
        UniqueConstraint("purchase_order", name="uq_purchases_purchase_order"),
    )


class Asset(Base):
    """One tracked item of equipment or consumable"""
    __tablename__ = "assets"

    id = Column(Integer, primary_key=True, index=True)
    serial_number = Column(String(100), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    equipment_type = Column(_enum(EquipmentType), nullable=False)
    status = Column(_enum(AssetStatus), nullable=False, default=AssetStatus.AVAILABLE)
    base_id = Column(Integer, ForeignKey("bases.id"), nullable=False, index=True)
    purchase_id = Column(Integer, ForeignKey("purchases.id"), nullable=True)
    value = Column(Numeric(12, 2), nullable=True)
    acquisition_date = Column(Date, nullable=True)
    warranty_expiry = Column(Date, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    base = relationship("MilitaryBase", back_populates="assets")
    purchase = relationship("Purchase", back_populates="assets")
    assignments = relationship("Assignment", back_populates="asset", order_by="Assignment.assigned_at.desc()")
    transfer_items = relationship("TransferItem", back_populates="asset")
    expenditures = relationship("Expenditure", back_populates="asset", order_by="Expenditure.expended_at.desc()")

    __table_args__ = (
        UniqueConstraint("serial_number", name="uq_assets_serial_number"),
    )

    @property
    def current_assignment(self):
        """Open assignment, if the asset is held by someone"""
        for assignment in self.assignments:
            if assignment.returned_at is None:
                return assignment
        return None


class Transfer(Base):
    """
    Request to move a set of assets between bases.
    PENDING -> APPROVED -> COMPLETED, or CANCELLED from PENDING/APPROVED.
    """
    __tablename__ = "transfers"

    id = Column(Integer, primary_key=True, index=True)
    transfer_code = Column(String(50), nullable=False, index=True)
    status = Column(_enum(TransferStatus), nullable=False, default=TransferStatus.PENDING)
    from_base_id = Column(Integer, ForeignKey("bases.id"), nullable=False)
    to_base_id = Column(Integer, ForeignKey("bases.id"), nullable=False)
    reason = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    approved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    from_base = relationship("MilitaryBase", foreign_keys=[from_base_id], back_populates="transfers_from")
    to_base = relationship("MilitaryBase", foreign_keys=[to_base_id], back_populates="transfers_to")
    created_by = relationship("User", foreign_keys=[created_by_id])
    approved_by = relationship("User", foreign_keys=[approved_by_id])
    items = relationship("TransferItem", back_populates="transfer", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("transfer_code", name="uq_transfers_transfer_code"),
    )


class TransferItem(Base):
    __tablename__ = "transfer_items"

    id = Column(Integer, primary_key=True, index=True)
    transfer_id = Column(Integer, ForeignKey("transfers.id", ondelete="CASCADE"), nullable=False)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    notes = Column(Text, nullable=True)

    # Relationships
    transfer = relationship("Transfer", back_populates="items")
    asset = relationship("Asset", back_populates="transfer_items")


class Assignment(Base):
    """Asset held by one user; open until returned_at is set"""
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, index=True)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False, index=True)
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    base_id = Column(Integer, ForeignKey("bases.id"), nullable=False)
    purpose = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    assigned_at = Column(DateTime, default=func.now(), nullable=False)
    returned_at = Column(DateTime, nullable=True)
    return_condition = Column(_enum(ReturnCondition), nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Relationships
    asset = relationship("Asset", back_populates="assignments")
    assigned_to = relationship("User", foreign_keys=[assigned_to_id], back_populates="assignments")
    base = relationship("MilitaryBase")
    created_by = relationship("User", foreign_keys=[created_by_id])

    __table_args__ = (
        # At most one open assignment per asset
        Index(
            "uq_assignments_open_asset",
            "asset_id",
            unique=True,
            sqlite_where=text("returned_at IS NULL"),
            postgresql_where=text("returned_at IS NULL"),
        ),
    )


class Expenditure(Base):
    """Irreversible consumption or loss of an asset"""
    __tablename__ = "expenditures"

    id = Column(Integer, primary_key=True, index=True)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False, index=True)
    base_id = Column(Integer, ForeignKey("bases.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    reason = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    expended_at = Column(DateTime, default=func.now(), nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Relationships
    asset = relationship("Asset", back_populates="expenditures")
    base = relationship("MilitaryBase")
    created_by = relationship("User", foreign_keys=[created_by_id])


class AuditLog(Base):
    """Append-only record of every successful mutation"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(20), nullable=False)
    entity = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(255), nullable=True)
    timestamp = Column(DateTime, default=func.now(), nullable=False, index=True)

    # Relationships
    user = relationship("User")
