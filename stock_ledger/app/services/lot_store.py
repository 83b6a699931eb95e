"""
Lot Store
=========
Owns qty_on_hand and the per-lot history. Every quantity mutation goes
through ``adjust_quantity`` so the history entry is written in the same
unit of work, with before/after snapshots bracketing the change.

Reads used for mutation lock the row (SELECT ... FOR UPDATE).
"""

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..ledger_models import Lot, LotHistoryEntry, LotStatus, HistoryType
from .exceptions import InsufficientStockError, LotNotFoundError

logger = logging.getLogger(__name__)


def lock_rows(db: Session, query):
    """
    SELECT ... FOR UPDATE that also refreshes rows already in the session.

    Pending changes are flushed first so the refresh cannot discard them.
    """
    db.flush()
    return query.with_for_update().populate_existing()


class LotStore:
    """Persistence and invariants for Lot rows"""

    @staticmethod
    def find_by_id(db: Session, lot_id: int, lock: bool = True) -> Lot:
        query = db.query(Lot).filter(Lot.id == lot_id)
        if lock:
            query = lock_rows(db, query)
        lot = query.first()
        if not lot:
            raise LotNotFoundError(f"Lot {lot_id} not found", lot_id=lot_id)
        return lot

    @staticmethod
    def find_by_code(db: Session, lot_code: str, warehouse_id: int, lock: bool = True) -> Optional[Lot]:
        query = db.query(Lot).filter(
            Lot.lot_code == lot_code,
            Lot.warehouse_id == warehouse_id
        )
        if lock:
            query = lock_rows(db, query)
        return query.first()

    @staticmethod
    def create(
        db: Session,
        lot_code: str,
        product_id: int,
        warehouse_id: int,
        exp_date: date,
        quantity: int = 0,
        qty_on_hand: int = 0,
        status: LotStatus = LotStatus.ACTIVE,
        supplier_id: Optional[int] = None,
        production_date: Optional[date] = None,
        box_count: Optional[int] = None,
        qty_per_box: Optional[int] = None,
    ) -> Lot:
        lot = Lot(
            lot_code=lot_code,
            product_id=product_id,
            warehouse_id=warehouse_id,
            supplier_id=supplier_id,
            production_date=production_date,
            exp_date=exp_date,
            box_count=box_count,
            qty_per_box=qty_per_box,
            quantity=quantity,
            qty_on_hand=qty_on_hand,
            damaged=0,
            incoming_qty=0,
            status=status,
        )
        db.add(lot)
        db.flush()  # Get the ID, and make it visible to find_by_code
        return lot

    @staticmethod
    def adjust_quantity(
        db: Session,
        lot: Lot,
        delta: int,
        user_id: int,
        transaction_type: HistoryType,
        reason: Optional[str] = None,
        warehouse_id: Optional[int] = None,
        destination_warehouse_id: Optional[int] = None,
        reference_number: Optional[str] = None,
    ) -> LotHistoryEntry:
        """
        Add a signed delta to qty_on_hand and append the paired history entry.

        Raises:
            InsufficientStockError: if the delta would drive qty_on_hand negative
        """
        before = lot.qty_on_hand
        after = before + delta
        if after < 0:
            raise InsufficientStockError(
                f"Insufficient stock in lot {lot.lot_code}. "
                f"Available: {before}, Requested: {-delta}",
                requested=-delta,
                available=before,
                lot_id=lot.id
            )

        lot.qty_on_hand = after
        lot.updated_at = datetime.utcnow()
        return LotStore.record(
            db, lot, user_id, transaction_type,
            reason=reason,
            before_qty=before,
            after_qty=after,
            warehouse_id=warehouse_id,
            destination_warehouse_id=destination_warehouse_id,
            reference_number=reference_number,
        )

    @staticmethod
    def record(
        db: Session,
        lot: Lot,
        user_id: int,
        transaction_type: HistoryType,
        reason: Optional[str] = None,
        before_qty: Optional[int] = None,
        after_qty: Optional[int] = None,
        pending_quantity: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        destination_warehouse_id: Optional[int] = None,
        reference_number: Optional[str] = None,
    ) -> LotHistoryEntry:
        """Append a history entry; without snapshots it is a zero-delta marker"""
        if before_qty is None:
            before_qty = lot.qty_on_hand
        if after_qty is None:
            after_qty = lot.qty_on_hand

        entry = LotHistoryEntry(
            lot=lot,
            timestamp=datetime.utcnow(),
            user_id=user_id,
            reason=reason,
            quantity_adjusted=after_qty - before_qty,
            before_qty=before_qty,
            after_qty=after_qty,
            pending_quantity=pending_quantity,
            transaction_type=transaction_type,
            warehouse_id=warehouse_id or lot.warehouse_id,
            destination_warehouse_id=destination_warehouse_id,
            reference_number=reference_number,
        )
        db.add(entry)
        return entry

    @staticmethod
    def save(db: Session, lot: Lot) -> Lot:
        lot.updated_at = datetime.utcnow()
        db.add(lot)
        db.flush()
        return lot

    @staticmethod
    def delete(db: Session, lot: Lot) -> None:
        """Physically remove a lot together with its history"""
        logger.info("Deleting lot %s (id=%s) at warehouse %s", lot.lot_code, lot.id, lot.warehouse_id)
        db.delete(lot)
        db.flush()

    @staticmethod
    def mark_expired(db: Session, today: Optional[date] = None) -> int:
        """Flip active lots past their expiration date to expired"""
        today = today or datetime.utcnow().date()
        result = db.execute(
            update(Lot)
            .where(Lot.status == LotStatus.ACTIVE, Lot.exp_date < today)
            .values(status=LotStatus.EXPIRED, updated_at=datetime.utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount
