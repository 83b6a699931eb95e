"""
Transfer state machine
======================
Pending -> Confirmed | Rejected, nothing else.

Initiate takes the stock out of the source lots immediately and parks the
amount on the destination lot's incoming_qty. Confirm moves incoming_qty
into qty_on_hand; Reject gives the source its units back and throws away
a destination placeholder that only existed for this transfer.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from ..db import unit_of_work
from ..ledger_models import (
    Lot, LotStatus, HistoryType, TransferTransaction, TransferLine, TransferStatus
)
from ..models import User
from .activity import ActivitySink
from .exceptions import (
    InsufficientStockError, InvalidOperationError, InvalidTransferStateError,
    TransferNotFoundError, UnauthorizedError
)
from .lot_store import LotStore, lock_rows
from .sequence_service import (
    get_next_sequence, ensure_number_unused, transfer_scope, format_transfer_number
)
from .stock_service import get_warehouse, refresh_status

logger = logging.getLogger(__name__)

# History types a placeholder lot may carry and still be discarded on reject
_MARKER_TYPES = (HistoryType.TRANSFER_IN_PENDING, HistoryType.TRANSFER_IN_REJECTED)


class TransferService:
    """Inter-warehouse moves"""

    @staticmethod
    def initiate(
        db: Session,
        user: User,
        source_warehouse_id: int,
        destination_warehouse_id: int,
        lines: Sequence[dict],
        note: Optional[str] = None,
    ) -> TransferTransaction:
        """
        Start a transfer of ``lines`` ({lot_id, quantity}) between warehouses.

        Raises:
            InvalidOperationError: same source and destination, or a lot that
                is not an active lot of the source warehouse
            InsufficientStockError: a source lot holds less than requested
        """
        if source_warehouse_id == destination_warehouse_id:
            raise InvalidOperationError("Source and destination warehouse must differ")
        if not lines:
            raise InvalidOperationError("No lines to transfer")

        with unit_of_work(db):
            source = get_warehouse(db, source_warehouse_id)
            destination = get_warehouse(db, destination_warehouse_id)

            number = format_transfer_number(
                source.code, get_next_sequence(db, transfer_scope(source.id))
            )
            ensure_number_unused(db, TransferTransaction.transfer_number, number)

            transfer = TransferTransaction(
                transfer_number=number,
                tracking_number=uuid.uuid4().hex,
                source_warehouse_id=source.id,
                destination_warehouse_id=destination.id,
                user_id=user.id,
                note=note,
                status=TransferStatus.PENDING,
            )
            db.add(transfer)

            for line in lines:
                quantity = line.get("quantity")
                if quantity is None or quantity <= 0:
                    raise InvalidOperationError("Quantity must be greater than zero", quantity=quantity)

                source_lot = LotStore.find_by_id(db, line["lot_id"])
                if source_lot.warehouse_id != source.id:
                    raise InvalidOperationError(
                        f"Lot {source_lot.lot_code} is not in warehouse {source.code}",
                        lot_id=source_lot.id
                    )
                if source_lot.status != LotStatus.ACTIVE:
                    raise InvalidOperationError(
                        f"Lot {source_lot.lot_code} is {source_lot.status.value}",
                        lot_id=source_lot.id
                    )
                if source_lot.qty_on_hand < quantity:
                    logger.warning("Transfer of %d from lot %s refused, %d available",
                                   quantity, source_lot.lot_code, source_lot.qty_on_hand)
                    raise InsufficientStockError(
                        f"Insufficient stock in lot {source_lot.lot_code}. "
                        f"Available: {source_lot.qty_on_hand}, Requested: {quantity}",
                        requested=quantity,
                        available=source_lot.qty_on_hand,
                        lot_id=source_lot.id
                    )

                LotStore.adjust_quantity(
                    db, source_lot, -quantity, user.id, HistoryType.TRANSFER_OUT,
                    reason=f"Transfer to {destination.code}",
                    warehouse_id=source.id,
                    destination_warehouse_id=destination.id,
                    reference_number=number,
                )

                destination_lot = LotStore.find_by_code(db, source_lot.lot_code, destination.id)
                created = destination_lot is None
                if created:
                    destination_lot = LotStore.create(
                        db,
                        lot_code=source_lot.lot_code,
                        product_id=source_lot.product_id,
                        warehouse_id=destination.id,
                        exp_date=source_lot.exp_date,
                        status=LotStatus.PENDING,
                        supplier_id=source_lot.supplier_id,
                        production_date=source_lot.production_date,
                        box_count=source_lot.box_count,
                        qty_per_box=source_lot.qty_per_box,
                    )
                elif destination_lot.product_id != source_lot.product_id:
                    raise InvalidOperationError(
                        f"Lot {source_lot.lot_code} at {destination.code} belongs to another product",
                        lot_id=destination_lot.id
                    )

                destination_lot.incoming_qty += quantity
                LotStore.record(
                    db, destination_lot, user.id, HistoryType.TRANSFER_IN_PENDING,
                    reason=f"Incoming from {source.code}",
                    pending_quantity=quantity,
                    warehouse_id=destination.id,
                    reference_number=number,
                )

                transfer.lines.append(TransferLine(
                    source_lot=source_lot,
                    destination_lot=destination_lot,
                    lot_code=source_lot.lot_code,
                    quantity=quantity,
                    destination_lot_created=created,
                ))

            db.flush()

        logger.info("Transfer %s initiated: %s -> %s, %d line(s)",
                    number, source.code, destination.code, len(transfer.lines))
        ActivitySink.operation_succeeded(
            db, user, "transfer_initiate", "transfer", transfer.id,
            f"Transfer {number} from {source.code} to {destination.code} is awaiting confirmation",
            reference_number=number,
            details={"lines": [(line.source_lot_id, line.quantity) for line in transfer.lines]},
            notify_user_ids=ActivitySink.warehouse_user_ids(db, destination_warehouse_id),
            level="info",
        )
        return transfer

    @staticmethod
    def _load_pending(db: Session, user: User, transfer_id: int) -> TransferTransaction:
        transfer = lock_rows(db, db.query(TransferTransaction).filter(
            TransferTransaction.id == transfer_id
        )).first()
        if transfer is None:
            raise TransferNotFoundError(f"Transfer {transfer_id} not found", transfer_id=transfer_id)

        if user.role != "admin" and user.warehouse_id != transfer.destination_warehouse_id:
            logger.warning("User %s tried to complete transfer %s for another warehouse",
                           user.username, transfer.transfer_number)
            raise UnauthorizedError(
                f"Transfer {transfer.transfer_number} can only be completed by its destination warehouse",
                transfer_id=transfer.id
            )
        if transfer.status != TransferStatus.PENDING:
            raise InvalidTransferStateError(
                f"Transfer {transfer.transfer_number} is already {transfer.status.value}",
                transfer_id=transfer.id,
                status=transfer.status.value
            )
        return transfer

    @staticmethod
    def confirm(db: Session, user: User, transfer_id: int) -> TransferTransaction:
        """Book the in-flight units into the destination lots"""
        with unit_of_work(db):
            transfer = TransferService._load_pending(db, user, transfer_id)

            for line in transfer.lines:
                lot = LotStore.find_by_id(db, line.destination_lot_id)
                lot.incoming_qty -= line.quantity
                LotStore.adjust_quantity(
                    db, lot, line.quantity, user.id, HistoryType.TRANSFER_IN,
                    reason=f"Transfer {transfer.transfer_number} confirmed",
                    warehouse_id=transfer.destination_warehouse_id,
                    reference_number=transfer.transfer_number,
                )
                if lot.status == LotStatus.PENDING:
                    lot.status = LotStatus.ACTIVE
                else:
                    refresh_status(lot)

            transfer.status = TransferStatus.CONFIRMED
            transfer.completed_by = user.id
            transfer.completed_at = datetime.utcnow()

        logger.info("Transfer %s confirmed by %s", transfer.transfer_number, user.username)
        ActivitySink.operation_succeeded(
            db, user, "transfer_confirm", "transfer", transfer.id,
            f"Transfer {transfer.transfer_number} confirmed",
            reference_number=transfer.transfer_number,
            notify_user_ids=[transfer.user_id],
        )
        return transfer

    @staticmethod
    def reject(db: Session, user: User, transfer_id: int, reason: Optional[str] = None) -> TransferTransaction:
        """Return the units to the source lots"""
        with unit_of_work(db):
            transfer = TransferService._load_pending(db, user, transfer_id)
            placeholders = {}

            for line in transfer.lines:
                source_lot = LotStore.find_by_id(db, line.source_lot_id)
                LotStore.adjust_quantity(
                    db, source_lot, line.quantity, user.id, HistoryType.TRANSFER_IN_REJECTED,
                    reason=reason or f"Transfer {transfer.transfer_number} rejected",
                    warehouse_id=transfer.source_warehouse_id,
                    destination_warehouse_id=transfer.destination_warehouse_id,
                    reference_number=transfer.transfer_number,
                )

                if line.destination_lot_id is None:
                    continue
                destination_lot = LotStore.find_by_id(db, line.destination_lot_id)
                destination_lot.incoming_qty -= line.quantity
                LotStore.record(
                    db, destination_lot, user.id, HistoryType.TRANSFER_IN_REJECTED,
                    reason=reason or f"Transfer {transfer.transfer_number} rejected",
                    pending_quantity=line.quantity,
                    warehouse_id=transfer.destination_warehouse_id,
                    reference_number=transfer.transfer_number,
                )
                if destination_lot.status == LotStatus.PENDING:
                    placeholders[destination_lot.id] = destination_lot

            for lot_id, lot in placeholders.items():
                if not TransferService._is_discardable(lot):
                    continue
                # Lines of other, already rejected transfers may point at it too
                referencing = db.query(TransferLine).filter(TransferLine.destination_lot_id == lot_id)
                for ref in referencing.all():
                    ref.destination_lot = None
                db.flush()
                LotStore.delete(db, lot)

            transfer.status = TransferStatus.REJECTED
            transfer.completed_by = user.id
            transfer.completed_at = datetime.utcnow()

        logger.info("Transfer %s rejected by %s", transfer.transfer_number, user.username)
        ActivitySink.operation_succeeded(
            db, user, "transfer_reject", "transfer", transfer.id,
            f"Transfer {transfer.transfer_number} rejected",
            reference_number=transfer.transfer_number,
            details={"reason": reason} if reason else None,
            notify_user_ids=[transfer.user_id],
            level="warning",
        )
        return transfer

    @staticmethod
    def _is_discardable(lot: Lot) -> bool:
        """A placeholder nothing but pending transfers ever touched"""
        if lot.status != LotStatus.PENDING:
            return False
        if lot.qty_on_hand or lot.damaged or lot.incoming_qty or lot.quantity:
            return False
        return all(entry.transaction_type in _MARKER_TYPES for entry in lot.history)
