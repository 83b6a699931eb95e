"""
Stock Operation Engine
======================
Receive, Issue, Cancel, Adjust and Damage.

Each operation is one unit of work: lot reads are locked, availability is
re-checked against the locked rows, lots and their history entries are
written, a number is drawn from the counter and the document is created.
Any error rolls the whole operation back. The activity sink is told only
after commit.
"""

import logging
from collections import OrderedDict
from datetime import date, datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..db import unit_of_work
from ..ledger_models import (
    Lot, LotStatus, HistoryType, IssueType, IssueStatus,
    StockTransaction, StockTransactionStatus, StockAction,
    IssueTransaction, IssueLine, DamageRecord
)
from ..models import Product, Supplier, User, Warehouse
from .activity import ActivitySink
from .exceptions import (
    InsufficientStockError, InvalidOperationError, AlreadyCancelledError,
    WarehouseNotFoundError, ProductNotFoundError, SupplierNotFoundError,
    IssueTransactionNotFoundError
)
from .fefo import FefoAllocator, allocate
from .lot_store import LotStore, lock_rows
from .sequence_service import (
    get_next_sequence, ensure_number_unused,
    receive_scope, issue_scope, adjust_scope, damage_scope,
    format_receive_number, format_issue_number, format_adjust_number,
    format_damage_number
)

logger = logging.getLogger(__name__)


def get_warehouse(db: Session, warehouse_id: int) -> Warehouse:
    warehouse = db.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise WarehouseNotFoundError(f"Warehouse {warehouse_id} not found", warehouse_id=warehouse_id)
    return warehouse


def refresh_status(lot: Lot) -> None:
    """Keep active/damaged in step with the quantities; expired and pending are left alone"""
    if lot.status not in (LotStatus.ACTIVE, LotStatus.DAMAGED):
        return
    if lot.qty_on_hand == 0 and lot.damaged > 0:
        lot.status = LotStatus.DAMAGED
    else:
        lot.status = LotStatus.ACTIVE


def _require_positive(quantity, what: str = "Quantity") -> int:
    if quantity is None or quantity <= 0:
        raise InvalidOperationError(f"{what} must be greater than zero", quantity=quantity)
    return quantity


class StockOperationService:
    """Mutating stock operations"""

    # =========================================================================
    # RECEIVE
    # =========================================================================

    @staticmethod
    def receive(db: Session, user: User, lines: Sequence[dict]) -> List[StockTransaction]:
        """
        Receive a batch of lot lines.

        Each line: lot_code, product_id, warehouse_id, exp_date, quantity and
        optionally supplier_id, production_date, box_count, qty_per_box.
        A line whose (lot_code, warehouse) already exists tops that lot up;
        otherwise a new active lot is created. Every line gets its own
        StockTransaction. The batch commits or fails as a whole.
        """
        if not lines:
            raise InvalidOperationError("No lines to receive")

        transactions = []
        with unit_of_work(db):
            for line in lines:
                quantity = _require_positive(line.get("quantity"))
                warehouse = get_warehouse(db, line["warehouse_id"])

                product = db.get(Product, line["product_id"])
                if product is None:
                    raise ProductNotFoundError(
                        f"Product {line['product_id']} not found", product_id=line["product_id"]
                    )
                supplier_id = line.get("supplier_id")
                if supplier_id is not None and db.get(Supplier, supplier_id) is None:
                    raise SupplierNotFoundError(f"Supplier {supplier_id} not found", supplier_id=supplier_id)

                number = format_receive_number(
                    warehouse.code, get_next_sequence(db, receive_scope(warehouse.code))
                )
                ensure_number_unused(db, StockTransaction.transaction_number, number)

                lot = LotStore.find_by_code(db, line["lot_code"], warehouse.id)
                if lot is None:
                    lot = LotStore.create(
                        db,
                        lot_code=line["lot_code"],
                        product_id=product.id,
                        warehouse_id=warehouse.id,
                        exp_date=line["exp_date"],
                        supplier_id=supplier_id,
                        production_date=line.get("production_date"),
                        box_count=line.get("box_count"),
                        qty_per_box=line.get("qty_per_box"),
                    )
                elif lot.product_id != product.id:
                    raise InvalidOperationError(
                        f"Lot {lot.lot_code} at {warehouse.code} belongs to another product",
                        lot_id=lot.id
                    )

                LotStore.adjust_quantity(
                    db, lot, quantity, user.id, HistoryType.RECEIVE,
                    reason=line.get("reason") or "Received",
                    reference_number=number,
                )
                lot.quantity = (lot.quantity or 0) + quantity
                if lot.status == LotStatus.PENDING:
                    lot.status = LotStatus.ACTIVE

                transaction = StockTransaction(
                    transaction_number=number,
                    user_id=user.id,
                    supplier_id=supplier_id,
                    lot_id=lot.id,
                    product_id=product.id,
                    warehouse_id=warehouse.id,
                    quantity=quantity,
                    box_count=line.get("box_count"),
                    qty_per_box=line.get("qty_per_box"),
                    production_date=line.get("production_date"),
                    exp_date=line["exp_date"],
                    action=StockAction.RECEIVE,
                    status=StockTransactionStatus.COMPLETED,
                    reason=line.get("reason"),
                )
                db.add(transaction)
                db.flush()
                transactions.append(transaction)

        numbers = [t.transaction_number for t in transactions]
        logger.info("Received %d line(s): %s", len(numbers), ", ".join(numbers))
        for t in transactions:
            ActivitySink.operation_succeeded(
                db, user, "receive", "stock_transaction", t.id,
                f"Received {t.quantity} into lot {t.lot.lot_code} ({t.transaction_number})",
                reference_number=t.transaction_number,
                details={"lot_id": t.lot_id, "quantity": t.quantity},
            )
        return transactions

    # =========================================================================
    # ISSUE
    # =========================================================================

    @staticmethod
    def issue(
        db: Session,
        user: User,
        warehouse_id: int,
        issue_type: IssueType,
        product_id: Optional[int] = None,
        quantity: Optional[int] = None,
        lots: Optional[Sequence[dict]] = None,
        destination_warehouse_id: Optional[int] = None,
        note: Optional[str] = None,
        today: Optional[date] = None,
    ) -> IssueTransaction:
        """
        Take stock out of a warehouse.

        Either ``product_id`` + ``quantity`` (lots picked FEFO) or explicit
        ``lots`` lines of {lot_id, quantity, from_damaged}. Only Waste may
        draw from damaged units.

        Raises:
            InsufficientStockError: before anything is mutated, with the
                quantity actually available
        """
        issue_type = IssueType(issue_type)
        today = today or datetime.utcnow().date()

        with unit_of_work(db):
            warehouse = get_warehouse(db, warehouse_id)
            if destination_warehouse_id is not None:
                get_warehouse(db, destination_warehouse_id)

            if lots:
                plan = StockOperationService._plan_explicit(db, warehouse, issue_type, lots, today)
            elif product_id is not None:
                plan = StockOperationService._plan_fefo(
                    db, warehouse, issue_type, product_id, _require_positive(quantity), today
                )
            else:
                raise InvalidOperationError("Either product_id and quantity or lots are required")

            number = format_issue_number(
                warehouse.code, get_next_sequence(db, issue_scope(warehouse.id))
            )
            ensure_number_unused(db, IssueTransaction.transaction_number, number)

            issue = IssueTransaction(
                transaction_number=number,
                type=issue_type,
                warehouse_id=warehouse.id,
                destination_warehouse_id=destination_warehouse_id,
                user_id=user.id,
                note=note,
                status=IssueStatus.ACTIVE,
            )
            db.add(issue)

            for lot, take, from_damaged in plan:
                if from_damaged:
                    lot.damaged -= from_damaged
                LotStore.adjust_quantity(
                    db, lot, -(take - from_damaged), user.id, issue_type.history_type,
                    reason=note or issue_type.value,
                    warehouse_id=warehouse.id,
                    destination_warehouse_id=destination_warehouse_id,
                    reference_number=number,
                )
                refresh_status(lot)
                issue.lines.append(IssueLine(lot=lot, quantity=take, from_damaged_qty=from_damaged))

            db.flush()

        logger.info("Issue %s (%s): %d unit(s) from %d lot(s)",
                    number, issue_type.value, issue.total_quantity, len(issue.lines))
        ActivitySink.operation_succeeded(
            db, user, "issue", "issue_transaction", issue.id,
            f"{issue_type.value} issue {number}: {issue.total_quantity} unit(s)",
            reference_number=number,
            details={"lines": [(line.lot_id, line.quantity) for line in issue.lines]},
        )
        return issue

    @staticmethod
    def _plan_fefo(
        db: Session, warehouse: Warehouse, issue_type: IssueType,
        product_id: int, quantity: int, today: date
    ) -> List[Tuple[Lot, int, int]]:
        if db.get(Product, product_id) is None:
            raise ProductNotFoundError(f"Product {product_id} not found", product_id=product_id)

        candidates = FefoAllocator.candidate_lots(
            db, product_id, warehouse.id,
            expired_only=issue_type is IssueType.EXPIRED, today=today
        )
        available = FefoAllocator.available(candidates)
        picks = allocate(candidates, quantity)
        if picks is None:
            logger.warning("Issue of %d x product %s at %s refused, %d available",
                           quantity, product_id, warehouse.code, available)
            raise InsufficientStockError(
                f"Insufficient stock. Available: {available}, Requested: {quantity}",
                requested=quantity,
                available=available
            )
        return [(lot, take, 0) for lot, take in picks]

    @staticmethod
    def _plan_explicit(
        db: Session, warehouse: Warehouse, issue_type: IssueType,
        lines: Sequence[dict], today: date
    ) -> List[Tuple[Lot, int, int]]:
        # Requested totals per lot, so a lot listed twice is checked once
        requested = OrderedDict()
        for line in lines:
            take = _require_positive(line.get("quantity"))
            from_damaged = bool(line.get("from_damaged"))
            if from_damaged and issue_type is not IssueType.WASTE:
                raise InvalidOperationError("Only waste issues can draw from damaged stock")
            key = (line["lot_id"], from_damaged)
            requested[key] = requested.get(key, 0) + take

        plan = []
        for (lot_id, from_damaged), take in requested.items():
            lot = LotStore.find_by_id(db, lot_id)
            if lot.warehouse_id != warehouse.id:
                raise InvalidOperationError(
                    f"Lot {lot.lot_code} is not in warehouse {warehouse.code}", lot_id=lot.id
                )

            if from_damaged:
                available = lot.damaged + lot.qty_on_hand
            elif issue_type is IssueType.EXPIRED:
                if lot.exp_date >= today or lot.status not in (LotStatus.ACTIVE, LotStatus.EXPIRED):
                    raise InvalidOperationError(f"Lot {lot.lot_code} is not expired", lot_id=lot.id)
                available = lot.qty_on_hand
            else:
                if lot.status != LotStatus.ACTIVE:
                    raise InvalidOperationError(
                        f"Lot {lot.lot_code} is {lot.status.value}", lot_id=lot.id
                    )
                available = lot.qty_on_hand

            # On-hand units already planned from this lot on another line
            available -= sum(t - d for l, t, d in plan if l is lot)
            if take > available:
                logger.warning("Issue of %d from lot %s refused, %d available", take, lot.lot_code, available)
                raise InsufficientStockError(
                    f"Insufficient stock in lot {lot.lot_code}. Available: {available}, Requested: {take}",
                    requested=take,
                    available=available,
                    lot_id=lot.id
                )

            damaged_part = min(take, lot.damaged) if from_damaged else 0
            plan.append((lot, take, damaged_part))
        return plan

    @staticmethod
    def cancel_issue(db: Session, user: User, issue_id: int) -> IssueTransaction:
        """Reverse every line of an Active issue"""
        with unit_of_work(db):
            issue = lock_rows(db, db.query(IssueTransaction).filter(
                IssueTransaction.id == issue_id
            )).first()
            if issue is None:
                raise IssueTransactionNotFoundError(f"Issue transaction {issue_id} not found", issue_id=issue_id)
            if issue.status != IssueStatus.ACTIVE:
                raise AlreadyCancelledError(
                    f"Issue {issue.transaction_number} is already {issue.status.value}",
                    issue_id=issue.id
                )

            for line in issue.lines:
                lot = LotStore.find_by_id(db, line.lot_id)
                from_damaged = line.from_damaged_qty or 0
                if from_damaged:
                    lot.damaged += from_damaged
                LotStore.adjust_quantity(
                    db, lot, line.quantity - from_damaged, user.id, HistoryType.CANCEL,
                    reason=f"Cancel {issue.transaction_number}",
                    reference_number=issue.transaction_number,
                )
                refresh_status(lot)

            issue.status = IssueStatus.CANCELLED
            issue.cancelled_by = user.id
            issue.cancelled_at = datetime.utcnow()

        logger.info("Issue %s cancelled by %s", issue.transaction_number, user.username)
        ActivitySink.operation_succeeded(
            db, user, "cancel", "issue_transaction", issue.id,
            f"Issue {issue.transaction_number} cancelled",
            reference_number=issue.transaction_number,
            level="warning",
        )
        return issue

    # =========================================================================
    # ADJUST / DAMAGE
    # =========================================================================

    @staticmethod
    def adjust(db: Session, user: User, lot_id: int, delta: int, reason: str) -> Tuple[StockTransaction, Lot]:
        """
        Add a signed delta to a lot's qty_on_hand. Administrators only; the
        caller is expected to have checked the role.
        """
        if not delta:
            raise InvalidOperationError("Adjustment must be non-zero")

        with unit_of_work(db):
            lot = LotStore.find_by_id(db, lot_id)
            warehouse = get_warehouse(db, lot.warehouse_id)

            number = format_adjust_number(
                warehouse.code, get_next_sequence(db, adjust_scope(warehouse.code))
            )
            ensure_number_unused(db, StockTransaction.transaction_number, number)

            LotStore.adjust_quantity(
                db, lot, delta, user.id, HistoryType.ADJUST,
                reason=reason,
                reference_number=number,
            )
            refresh_status(lot)

            transaction = StockTransaction(
                transaction_number=number,
                user_id=user.id,
                supplier_id=lot.supplier_id,
                lot_id=lot.id,
                product_id=lot.product_id,
                warehouse_id=warehouse.id,
                quantity=delta,
                exp_date=lot.exp_date,
                action=StockAction.ADJUST,
                status=StockTransactionStatus.COMPLETED,
                reason=reason,
            )
            db.add(transaction)
            db.flush()

        logger.info("Adjust %s: lot %s %+d -> %d", number, lot.lot_code, delta, lot.qty_on_hand)
        ActivitySink.operation_succeeded(
            db, user, "adjust", "lot", lot.id,
            f"Lot {lot.lot_code} adjusted by {delta:+d} ({number}): {reason}",
            reference_number=number,
            details={"delta": delta, "qty_on_hand": lot.qty_on_hand},
        )
        return transaction, lot

    @staticmethod
    def damage(db: Session, user: User, lot_id: int, quantity: int, reason: str) -> Tuple[DamageRecord, Lot]:
        """Move units from qty_on_hand into damaged"""
        _require_positive(quantity)

        with unit_of_work(db):
            lot = LotStore.find_by_id(db, lot_id)
            available = lot.qty_on_hand - lot.damaged
            if quantity > available:
                logger.warning("Damage of %d on lot %s refused, %d available", quantity, lot.lot_code, available)
                raise InsufficientStockError(
                    f"Cannot mark {quantity} damaged in lot {lot.lot_code}. Available: {available}",
                    requested=quantity,
                    available=available,
                    lot_id=lot.id
                )
            warehouse = get_warehouse(db, lot.warehouse_id)

            number = format_damage_number(
                warehouse.code, user.role,
                get_next_sequence(db, damage_scope(warehouse.id, user.role))
            )
            ensure_number_unused(db, DamageRecord.record_number, number)

            lot.damaged += quantity
            LotStore.adjust_quantity(
                db, lot, -quantity, user.id, HistoryType.DAMAGE,
                reason=reason,
                reference_number=number,
            )
            refresh_status(lot)

            record = DamageRecord(
                record_number=number,
                lot_id=lot.id,
                warehouse_id=warehouse.id,
                user_id=user.id,
                quantity=quantity,
                reason=reason,
            )
            db.add(record)
            db.flush()

        logger.info("Damage %s: %d unit(s) of lot %s", number, quantity, lot.lot_code)
        ActivitySink.operation_succeeded(
            db, user, "damage", "lot", lot.id,
            f"{quantity} unit(s) of lot {lot.lot_code} marked damaged ({number})",
            reference_number=number,
            details={"quantity": quantity, "reason": reason},
            level="warning",
        )
        return record, lot

    @staticmethod
    def expire_lots(db: Session, today: Optional[date] = None) -> int:
        """Mark active lots past their expiration date as expired"""
        with unit_of_work(db):
            count = LotStore.mark_expired(db, today)
        if count:
            logger.info("Marked %d lot(s) expired", count)
        return count
