"""
First-Expired-First-Out lot picking.

The allocator only reads. Callers apply the returned plan inside the same
unit of work that produced it; the candidate lots are selected FOR UPDATE
so a concurrent issue cannot allocate the same units.
"""

from datetime import date, datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..ledger_models import Lot, LotStatus
from .lot_store import lock_rows

Allocation = List[Tuple[Lot, int]]


def allocate(lots: Iterable[Lot], quantity: int) -> Optional[Allocation]:
    """
    Greedily take from each lot in the given order until quantity is met.

    Returns None when the lots together hold less than ``quantity``;
    nothing is decided until the whole amount is known to be available.
    """
    lots = [lot for lot in lots if lot.qty_on_hand > 0]
    if sum(lot.qty_on_hand for lot in lots) < quantity:
        return None

    picks = []
    remaining = quantity
    for lot in lots:
        if remaining <= 0:
            break
        take = min(remaining, lot.qty_on_hand)
        picks.append((lot, take))
        remaining -= take
    return picks


class FefoAllocator:
    """Oldest-expiry-first lot selection"""

    @staticmethod
    def candidate_lots(
        db: Session,
        product_id: int,
        warehouse_id: int,
        expired_only: bool = False,
        today: Optional[date] = None,
        lock: bool = True
    ) -> List[Lot]:
        query = db.query(Lot).filter(
            Lot.product_id == product_id,
            Lot.warehouse_id == warehouse_id,
            Lot.qty_on_hand > 0
        )

        if expired_only:
            today = today or datetime.utcnow().date()
            query = query.filter(
                Lot.exp_date < today,
                Lot.status.in_([LotStatus.ACTIVE, LotStatus.EXPIRED])
            )
        else:
            query = query.filter(Lot.status == LotStatus.ACTIVE)

        query = query.order_by(
            Lot.exp_date.asc(),     # FEFO - soonest expiry first
            Lot.created_at.asc(),
            Lot.id.asc()            # ties: first inserted wins
        )
        if lock:
            query = lock_rows(db, query)
        return query.all()

    @staticmethod
    def available(lots: Iterable[Lot]) -> int:
        return sum(lot.qty_on_hand for lot in lots)

    @staticmethod
    def pick(
        db: Session,
        product_id: int,
        warehouse_id: int,
        quantity: int,
        expired_only: bool = False,
        today: Optional[date] = None
    ) -> Optional[Allocation]:
        """
        Plan which lots to draw ``quantity`` from.

        Returns list of (lot, qty_to_take) tuples, or None if the eligible
        lots hold less than requested.
        """
        lots = FefoAllocator.candidate_lots(
            db, product_id, warehouse_id,
            expired_only=expired_only, today=today
        )
        return allocate(lots, quantity)
