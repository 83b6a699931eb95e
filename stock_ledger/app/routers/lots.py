"""
Lots API Router
===============
Browse lots and their history; adjust, damage and expire.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas
from ..ledger_models import LotStatus
from ..security import (
    get_db, require_permission, Permission, scoped_warehouse, ensure_warehouse_access
)
from ..services.query_service import StockQueryService
from ..services.stock_service import StockOperationService

router = APIRouter(prefix="/lots", tags=["lots"])


@router.get("/", response_model=List[schemas.LotOut])
def list_lots(
    warehouse_id: Optional[int] = None,
    product_id: Optional[int] = None,
    status: Optional[LotStatus] = None,
    include_empty: bool = True,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.LOT_VIEW))
):
    return StockQueryService.list_lots(
        db,
        warehouse_id=scoped_warehouse(current_user, warehouse_id),
        product_id=product_id,
        status=status,
        include_empty=include_empty,
    )


@router.get("/{lot_id}", response_model=schemas.LotDetailOut)
def get_lot(
    lot_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.LOT_VIEW))
):
    """Lot with its full history, oldest entry first"""
    lot = StockQueryService.get_lot(db, lot_id)
    ensure_warehouse_access(current_user, lot.warehouse_id)
    return lot


@router.post("/{lot_id}/adjust")
def adjust_lot(
    lot_id: int,
    data: schemas.AdjustIn,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.LOT_ADJUST))
):
    transaction, lot = StockOperationService.adjust(db, current_user, lot_id, data.delta, data.reason)
    return {
        "success": True,
        "transaction_number": transaction.transaction_number,
        "qty_on_hand": lot.qty_on_hand,
    }


@router.post("/{lot_id}/damage")
def damage_lot(
    lot_id: int,
    data: schemas.DamageIn,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.LOT_DAMAGE))
):
    lot = StockQueryService.get_lot(db, lot_id)
    ensure_warehouse_access(current_user, lot.warehouse_id)

    record, lot = StockOperationService.damage(db, current_user, lot_id, data.quantity, data.reason)
    return {
        "success": True,
        "record_number": record.record_number,
        "qty_on_hand": lot.qty_on_hand,
        "damaged": lot.damaged,
        "status": lot.status,
    }


@router.post("/expire")
def expire_lots(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.LOT_EXPIRE))
):
    """Flip active lots past their expiration date to expired"""
    return {"success": True, "expired": StockOperationService.expire_lots(db)}
