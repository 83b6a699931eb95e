from typing import Optional, List
from datetime import date, datetime
from pydantic import BaseModel, Field

from .ledger_models import LotStatus, HistoryType, IssueType, IssueStatus, TransferStatus, StockAction


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str = "user"


class UserOut(BaseModel):
    id: int
    full_name: str
    email: str
    username: str
    role: str
    warehouse_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ChangePasswordIn(BaseModel):
    old_password: str
    new_password: str


# ---------------------------------------------------------------------------
# Lots
# ---------------------------------------------------------------------------

class LotHistoryOut(BaseModel):
    id: int
    timestamp: datetime
    user_id: int
    reason: Optional[str] = None
    quantity_adjusted: int
    before_qty: int
    after_qty: int
    pending_quantity: Optional[int] = None
    transaction_type: HistoryType
    warehouse_id: int
    destination_warehouse_id: Optional[int] = None
    reference_number: Optional[str] = None

    class Config:
        from_attributes = True


class LotOut(BaseModel):
    id: int
    lot_code: str
    product_id: int
    warehouse_id: int
    supplier_id: Optional[int] = None
    production_date: Optional[date] = None
    exp_date: date
    box_count: Optional[int] = None
    qty_per_box: Optional[int] = None
    quantity: int
    qty_on_hand: int
    damaged: int
    incoming_qty: int
    status: LotStatus
    created_at: datetime

    class Config:
        from_attributes = True


class LotDetailOut(LotOut):
    history: List[LotHistoryOut] = []


class AdjustIn(BaseModel):
    delta: int
    reason: str = Field(..., min_length=1, max_length=200)


class DamageIn(BaseModel):
    quantity: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=200)


# ---------------------------------------------------------------------------
# Receive
# ---------------------------------------------------------------------------

class ReceiveLineIn(BaseModel):
    lot_code: str = Field(..., min_length=1, max_length=50)
    product_id: int
    warehouse_id: int
    exp_date: date
    quantity: int = Field(..., gt=0)
    supplier_id: Optional[int] = None
    production_date: Optional[date] = None
    box_count: Optional[int] = None
    qty_per_box: Optional[int] = None
    reason: Optional[str] = None


class ReceiveIn(BaseModel):
    lots: List[ReceiveLineIn] = Field(..., min_length=1)


class StockTransactionOut(BaseModel):
    id: int
    transaction_number: str
    lot_id: int
    product_id: int
    warehouse_id: int
    supplier_id: Optional[int] = None
    user_id: int
    quantity: int
    exp_date: Optional[date] = None
    action: StockAction
    reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ReceiveHistoryOut(BaseModel):
    data: List[StockTransactionOut]
    total: int
    page: int
    pages: int


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------

class IssueLotIn(BaseModel):
    lot_id: int
    quantity: int = Field(..., gt=0)
    from_damaged: bool = False


class IssueIn(BaseModel):
    """Either product_id + quantity (picked oldest expiry first) or explicit lots"""
    type: IssueType
    warehouse_id: int
    product_id: Optional[int] = None
    quantity: Optional[int] = Field(None, gt=0)
    lots: Optional[List[IssueLotIn]] = None
    destination_warehouse_id: Optional[int] = None
    note: Optional[str] = None


class IssueLineOut(BaseModel):
    lot_id: int
    quantity: int
    from_damaged_qty: int

    class Config:
        from_attributes = True


class IssueOut(BaseModel):
    id: int
    transaction_number: str
    type: IssueType
    warehouse_id: int
    destination_warehouse_id: Optional[int] = None
    user_id: int
    note: Optional[str] = None
    status: IssueStatus
    cancelled_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    total_quantity: int
    lines: List[IssueLineOut] = []

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------

class TransferLineIn(BaseModel):
    lot_id: int
    quantity: int = Field(..., gt=0)


class TransferIn(BaseModel):
    source_warehouse_id: int
    destination_warehouse_id: int
    lots: List[TransferLineIn] = Field(..., min_length=1)
    note: Optional[str] = None


class TransferRejectIn(BaseModel):
    reason: Optional[str] = None


class TransferLineOut(BaseModel):
    source_lot_id: int
    destination_lot_id: Optional[int] = None
    lot_code: str
    quantity: int
    destination_lot_created: bool

    class Config:
        from_attributes = True


class TransferOut(BaseModel):
    id: int
    transfer_number: str
    tracking_number: str
    source_warehouse_id: int
    destination_warehouse_id: int
    user_id: int
    note: Optional[str] = None
    status: TransferStatus
    completed_by: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    lines: List[TransferLineOut] = []

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Reports, notifications, settings
# ---------------------------------------------------------------------------

class StockSummaryOut(BaseModel):
    product_id: int
    product_code: str
    product_name: str
    warehouse_id: int
    warehouse_code: str
    lot_count: int
    qty_on_hand: int
    damaged: int
    incoming_qty: int
    nearest_expiry: Optional[date] = None


class ExpiringLotOut(BaseModel):
    lot_id: int
    lot_code: str
    product_id: int
    warehouse_id: int
    exp_date: date
    days_left: int
    qty_on_hand: int


class LowStockOut(BaseModel):
    product_id: int
    warehouse_id: int
    qty_on_hand: int
    threshold: int


class AlertsOut(BaseModel):
    expiring: List[ExpiringLotOut]
    low_stock: List[LowStockOut]


class NotificationOut(BaseModel):
    id: int
    user_id: Optional[int]
    role: Optional[str]
    message: str
    level: str
    reference_number: Optional[str] = None
    read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class SettingsOut(BaseModel):
    expiration_warning_days: int
    low_stock_threshold: int
    issue_notification_enabled: bool
    cancel_notification_enabled: bool
    updated_at: Optional[datetime] = None
    updated_by: Optional[int] = None

    class Config:
        from_attributes = True


class SettingsIn(BaseModel):
    expiration_warning_days: Optional[int] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    issue_notification_enabled: Optional[bool] = None
    cancel_notification_enabled: Optional[bool] = None
