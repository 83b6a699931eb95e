"""
Lot-Based Stock Ledger - Data Models
====================================
Quantity-on-hand lives on Lot; every change to it is paired with an
append-only LotHistoryEntry written in the same database transaction.

Key Features:
- Lot code unique per warehouse (a transfer creates a destination twin)
- Immutable per-lot history with before/after snapshots
- Receive, issue, transfer and damage documents with generated numbers
- Warehouse-scoped counters for human-readable numbers
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, ForeignKey, Text, Boolean,
    Enum as SQLEnum, Index, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship, validates
from .db import Base


# =============================================================================
# ENUMS
# =============================================================================

class LotStatus(str, Enum):
    ACTIVE = "active"
    DAMAGED = "damaged"
    EXPIRED = "expired"
    PENDING = "pending"  # destination placeholder of an in-flight transfer


class HistoryType(str, Enum):
    """Transaction type recorded on each lot history entry"""
    RECEIVE = "Receive"
    ISSUE = "Issue"
    TRANSFER_OUT = "TransferOut"
    TRANSFER_IN = "TransferIn"
    TRANSFER_IN_PENDING = "TransferInPending"
    TRANSFER_IN_REJECTED = "TransferInRejected"
    ADJUST = "Adjust"
    CANCEL = "Cancel"
    WASTE = "Waste"
    SALE = "Sale"
    WELFARES = "Welfares"
    ACTIVITIES = "Activities"
    DAMAGE = "Damage"


class IssueType(str, Enum):
    SALE = "Sale"
    WASTE = "Waste"
    WELFARES = "Welfares"
    ACTIVITIES = "Activities"
    EXPIRED = "Expired"

    @property
    def history_type(self) -> HistoryType:
        if self is IssueType.EXPIRED:
            return HistoryType.ISSUE
        return HistoryType(self.value)


class StockTransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StockAction(str, Enum):
    RECEIVE = "receive"
    ISSUE = "issue"
    ADJUST = "adjust"


class IssueStatus(str, Enum):
    ACTIVE = "Active"
    CANCELLED = "Cancelled"


class TransferStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    REJECTED = "Rejected"


# =============================================================================
# INVENTORY - THE CORE
# =============================================================================

class Lot(Base):
    """
    A physically distinguishable batch of one product at one warehouse.

    qty_on_hand is what can be issued or transferred. damaged holds units
    marked unusable but not yet disposed. incoming_qty is what pending
    transfers will add once the destination confirms.
    """
    __tablename__ = "lots"

    id = Column(Integer, primary_key=True, index=True)
    lot_code = Column(String(50), nullable=False, index=True)

    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True)

    production_date = Column(Date, nullable=True)
    exp_date = Column(Date, nullable=False)

    # Packing metadata
    box_count = Column(Integer, nullable=True)
    qty_per_box = Column(Integer, nullable=True)

    quantity = Column(Integer, nullable=False, default=0)  # Originally received
    qty_on_hand = Column(Integer, nullable=False, default=0)
    damaged = Column(Integer, nullable=False, default=0)
    incoming_qty = Column(Integer, nullable=False, default=0)

    status = Column(SQLEnum(LotStatus), nullable=False, default=LotStatus.ACTIVE)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    product = relationship("Product")
    warehouse = relationship("Warehouse")
    supplier = relationship("Supplier")
    history = relationship(
        "LotHistoryEntry",
        back_populates="lot",
        order_by="LotHistoryEntry.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint('lot_code', 'warehouse_id', name='uq_lot_code_warehouse'),
        CheckConstraint('qty_on_hand >= 0', name='ck_lot_qty_on_hand_positive'),
        CheckConstraint('damaged >= 0', name='ck_lot_damaged_positive'),
        CheckConstraint('incoming_qty >= 0', name='ck_lot_incoming_positive'),
        Index('ix_lot_product_warehouse_exp', 'product_id', 'warehouse_id', 'exp_date'),
    )

    @validates('qty_on_hand', 'damaged', 'incoming_qty')
    def validate_non_negative(self, key, value):
        """Prevent negative stock"""
        if value is not None and value < 0:
            raise ValueError(f"{key} cannot be negative")
        return value

    @property
    def is_expired(self) -> bool:
        return self.exp_date is not None and self.exp_date < datetime.utcnow().date()


class LotHistoryEntry(Base):
    """
    Immutable record of why a lot's quantity changed.

    quantity_adjusted always equals after_qty - before_qty (qty_on_hand
    snapshots). Marker entries for pending or rejected transfers carry a
    zero delta and the in-flight amount in pending_quantity.
    """
    __tablename__ = "lot_history"

    id = Column(Integer, primary_key=True, index=True)
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=False)

    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    reason = Column(String(200), nullable=True)

    quantity_adjusted = Column(Integer, nullable=False)
    before_qty = Column(Integer, nullable=False)
    after_qty = Column(Integer, nullable=False)
    pending_quantity = Column(Integer, nullable=True)

    transaction_type = Column(SQLEnum(HistoryType), nullable=False)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=False)
    destination_warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=True)
    reference_number = Column(String(50), nullable=True)

    lot = relationship("Lot", back_populates="history")

    __table_args__ = (
        Index('ix_lot_history_lot_time', 'lot_id', 'timestamp'),
    )


# =============================================================================
# DOCUMENTS
# =============================================================================

class StockTransaction(Base):
    """One record per receive (or adjust) event"""
    __tablename__ = "stock_transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_number = Column(String(50), unique=True, nullable=False, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True)
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=False)

    quantity = Column(Integer, nullable=False)
    box_count = Column(Integer, nullable=True)
    qty_per_box = Column(Integer, nullable=True)
    production_date = Column(Date, nullable=True)
    exp_date = Column(Date, nullable=True)

    action = Column(SQLEnum(StockAction), nullable=False, default=StockAction.RECEIVE)
    status = Column(SQLEnum(StockTransactionStatus), nullable=False, default=StockTransactionStatus.COMPLETED)
    reason = Column(String(200), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    lot = relationship("Lot")
    product = relationship("Product")
    supplier = relationship("Supplier")
    warehouse = relationship("Warehouse")
    user = relationship("User")

    __table_args__ = (
        Index('ix_stock_tx_warehouse_date', 'warehouse_id', 'created_at'),
    )


class IssueTransaction(Base):
    """Outward movement of one or more lots (sale, waste, welfare, ...)"""
    __tablename__ = "issue_transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_number = Column(String(50), unique=True, nullable=False, index=True)
    type = Column(SQLEnum(IssueType), nullable=False)

    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=False)
    destination_warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    note = Column(Text, nullable=True)

    status = Column(SQLEnum(IssueStatus), nullable=False, default=IssueStatus.ACTIVE)
    cancelled_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    lines = relationship("IssueLine", back_populates="issue", order_by="IssueLine.id", cascade="all, delete-orphan")
    warehouse = relationship("Warehouse", foreign_keys=[warehouse_id])
    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        Index('ix_issue_warehouse_date', 'warehouse_id', 'created_at'),
    )

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)


class IssueLine(Base):
    __tablename__ = "issue_lines"

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(Integer, ForeignKey("issue_transactions.id"), nullable=False)
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    # Portion of quantity taken from lot.damaged (waste only)
    from_damaged_qty = Column(Integer, nullable=False, default=0)

    issue = relationship("IssueTransaction", back_populates="lines")
    lot = relationship("Lot")

    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_issue_line_qty_positive'),
    )


class TransferTransaction(Base):
    """
    Inter-warehouse move: Pending -> Confirmed | Rejected.

    Source lots are decremented at initiation; destination lots only gain
    qty_on_hand on confirmation.
    """
    __tablename__ = "transfer_transactions"

    id = Column(Integer, primary_key=True, index=True)
    transfer_number = Column(String(50), unique=True, nullable=False, index=True)
    tracking_number = Column(String(64), unique=True, nullable=False)

    source_warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=False)
    destination_warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    note = Column(Text, nullable=True)

    status = Column(SQLEnum(TransferStatus), nullable=False, default=TransferStatus.PENDING)
    completed_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    lines = relationship("TransferLine", back_populates="transfer", order_by="TransferLine.id", cascade="all, delete-orphan")
    source_warehouse = relationship("Warehouse", foreign_keys=[source_warehouse_id])
    destination_warehouse = relationship("Warehouse", foreign_keys=[destination_warehouse_id])

    __table_args__ = (
        CheckConstraint('source_warehouse_id <> destination_warehouse_id', name='ck_transfer_distinct_warehouses'),
        Index('ix_transfer_source_date', 'source_warehouse_id', 'created_at'),
        Index('ix_transfer_destination_date', 'destination_warehouse_id', 'created_at'),
    )


class TransferLine(Base):
    __tablename__ = "transfer_lines"

    id = Column(Integer, primary_key=True, index=True)
    transfer_id = Column(Integer, ForeignKey("transfer_transactions.id"), nullable=False)
    source_lot_id = Column(Integer, ForeignKey("lots.id"), nullable=False)
    # Cleared when a rejected transfer discards its placeholder lot
    destination_lot_id = Column(Integer, ForeignKey("lots.id", ondelete="SET NULL"), nullable=True)
    lot_code = Column(String(50), nullable=False)
    quantity = Column(Integer, nullable=False)
    destination_lot_created = Column(Boolean, default=False)

    transfer = relationship("TransferTransaction", back_populates="lines")
    source_lot = relationship("Lot", foreign_keys=[source_lot_id])
    destination_lot = relationship("Lot", foreign_keys=[destination_lot_id])

    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_transfer_line_qty_positive'),
    )


class DamageRecord(Base):
    """Audit trail for units moved from qty_on_hand into damaged"""
    __tablename__ = "damage_records"

    id = Column(Integer, primary_key=True, index=True)
    record_number = Column(String(50), unique=True, nullable=False)
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=False)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    reason = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# SYSTEM TABLES
# =============================================================================

class TransactionCounter(Base):
    """
    Scope-keyed sequence used to build transaction numbers.
    Only ever mutated through an atomic increment.
    """
    __tablename__ = "transaction_counters"

    id = Column(Integer, primary_key=True, index=True)
    scope_key = Column(String(100), unique=True, nullable=False)
    sequence = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AuditLog(Base):
    """
    Who did what, independent of lot history.
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=True)
    action = Column(String(30), nullable=False)
    description = Column(Text, nullable=False)

    # JSON stored as text for SQLite compatibility
    new_values = Column(Text, nullable=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    ip_address = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_audit_entity', 'entity_type', 'entity_id'),
        Index('ix_audit_user_date', 'user_id', 'created_at'),
    )
