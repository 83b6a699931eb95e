"""
Read-only queries behind the lot, history and report pages.
"""

import math
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..ledger_models import (
    Lot, LotStatus, StockTransaction, StockAction, IssueTransaction, IssueType,
    TransferTransaction, TransferStatus
)
from ..models import Product, Warehouse
from .exceptions import LotNotFoundError, IssueTransactionNotFoundError, TransferNotFoundError
from .settings_service import get_settings


def _day_end(value: date) -> datetime:
    return datetime.combine(value, datetime.min.time()) + timedelta(days=1)


def _day_start(value: date) -> datetime:
    return datetime.combine(value, datetime.min.time())


class StockQueryService:
    """Service for inventory queries and reports"""

    # =========================================================================
    # LOTS
    # =========================================================================

    @staticmethod
    def list_lots(
        db: Session,
        warehouse_id: Optional[int] = None,
        product_id: Optional[int] = None,
        status: Optional[LotStatus] = None,
        include_empty: bool = True
    ) -> List[Lot]:
        query = db.query(Lot)
        if warehouse_id:
            query = query.filter(Lot.warehouse_id == warehouse_id)
        if product_id:
            query = query.filter(Lot.product_id == product_id)
        if status:
            query = query.filter(Lot.status == status)
        if not include_empty:
            query = query.filter(
                or_(Lot.qty_on_hand > 0, Lot.damaged > 0, Lot.incoming_qty > 0)
            )
        return query.order_by(Lot.exp_date.asc(), Lot.id.asc()).all()

    @staticmethod
    def get_lot(db: Session, lot_id: int) -> Lot:
        lot = db.get(Lot, lot_id)
        if lot is None:
            raise LotNotFoundError(f"Lot {lot_id} not found", lot_id=lot_id)
        return lot

    # =========================================================================
    # HISTORY
    # =========================================================================

    @staticmethod
    def receive_history(
        db: Session,
        warehouse_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> dict:
        """
        Paginated receive transactions, newest first.

        ``search`` matches transaction number, lot code, product code or
        product name.
        """
        page = max(page, 1)
        limit = max(min(limit, 200), 1)

        query = db.query(StockTransaction).join(
            Lot, StockTransaction.lot_id == Lot.id
        ).join(
            Product, StockTransaction.product_id == Product.id
        ).filter(StockTransaction.action == StockAction.RECEIVE)

        if warehouse_id:
            query = query.filter(StockTransaction.warehouse_id == warehouse_id)
        if start_date:
            query = query.filter(StockTransaction.created_at >= _day_start(start_date))
        if end_date:
            query = query.filter(StockTransaction.created_at < _day_end(end_date))
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                StockTransaction.transaction_number.ilike(pattern),
                Lot.lot_code.ilike(pattern),
                Product.product_code.ilike(pattern),
                Product.name.ilike(pattern),
            ))

        total = query.count()
        rows = query.order_by(
            StockTransaction.created_at.desc(), StockTransaction.id.desc()
        ).offset((page - 1) * limit).limit(limit).all()

        return {
            'data': rows,
            'total': total,
            'page': page,
            'pages': math.ceil(total / limit) if total else 0,
        }

    @staticmethod
    def issue_history(
        db: Session,
        warehouse_id: Optional[int] = None,
        issue_type: Optional[IssueType] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> List[IssueTransaction]:
        query = db.query(IssueTransaction)
        if warehouse_id:
            query = query.filter(IssueTransaction.warehouse_id == warehouse_id)
        if issue_type:
            query = query.filter(IssueTransaction.type == issue_type)
        if start_date:
            query = query.filter(IssueTransaction.created_at >= _day_start(start_date))
        if end_date:
            query = query.filter(IssueTransaction.created_at < _day_end(end_date))
        return query.order_by(IssueTransaction.created_at.desc(), IssueTransaction.id.desc()).all()

    @staticmethod
    def get_issue(db: Session, issue_id: int) -> IssueTransaction:
        issue = db.get(IssueTransaction, issue_id)
        if issue is None:
            raise IssueTransactionNotFoundError(f"Issue transaction {issue_id} not found", issue_id=issue_id)
        return issue

    @staticmethod
    def list_transfers(
        db: Session,
        warehouse_id: Optional[int] = None,
        status: Optional[TransferStatus] = None
    ) -> List[TransferTransaction]:
        """Transfers where the warehouse is either the source or the destination"""
        query = db.query(TransferTransaction)
        if warehouse_id:
            query = query.filter(or_(
                TransferTransaction.source_warehouse_id == warehouse_id,
                TransferTransaction.destination_warehouse_id == warehouse_id
            ))
        if status:
            query = query.filter(TransferTransaction.status == status)
        return query.order_by(TransferTransaction.created_at.desc(), TransferTransaction.id.desc()).all()

    @staticmethod
    def get_transfer(db: Session, transfer_id: int) -> TransferTransaction:
        transfer = db.get(TransferTransaction, transfer_id)
        if transfer is None:
            raise TransferNotFoundError(f"Transfer {transfer_id} not found", transfer_id=transfer_id)
        return transfer

    # =========================================================================
    # REPORTS
    # =========================================================================

    @staticmethod
    def stock_summary(
        db: Session,
        product_code: Optional[str] = None,
        warehouse_id: Optional[int] = None
    ) -> List[dict]:
        """
        Per product and warehouse totals.

        nearest_expiry only looks at lots that still hold usable stock.
        """
        query = db.query(
            Product.id.label('product_id'),
            Product.product_code,
            Product.name,
            Warehouse.id.label('warehouse_id'),
            Warehouse.code.label('warehouse_code'),
            func.count(Lot.id).label('lot_count'),
            func.sum(Lot.qty_on_hand).label('qty_on_hand'),
            func.sum(Lot.damaged).label('damaged'),
            func.sum(Lot.incoming_qty).label('incoming_qty'),
        ).join(
            Product, Lot.product_id == Product.id
        ).join(
            Warehouse, Lot.warehouse_id == Warehouse.id
        )

        if product_code:
            query = query.filter(Product.product_code == product_code)
        if warehouse_id:
            query = query.filter(Lot.warehouse_id == warehouse_id)

        query = query.group_by(
            Product.id, Product.product_code, Product.name, Warehouse.id, Warehouse.code
        ).order_by(Product.product_code, Warehouse.code)

        nearest = dict(
            ((row.product_id, row.warehouse_id), row.nearest_expiry)
            for row in db.query(
                Lot.product_id,
                Lot.warehouse_id,
                func.min(Lot.exp_date).label('nearest_expiry')
            ).filter(Lot.qty_on_hand > 0).group_by(Lot.product_id, Lot.warehouse_id)
        )

        results = []
        for row in query.all():
            results.append({
                'product_id': row.product_id,
                'product_code': row.product_code,
                'product_name': row.name,
                'warehouse_id': row.warehouse_id,
                'warehouse_code': row.warehouse_code,
                'lot_count': row.lot_count,
                'qty_on_hand': int(row.qty_on_hand or 0),
                'damaged': int(row.damaged or 0),
                'incoming_qty': int(row.incoming_qty or 0),
                'nearest_expiry': nearest.get((row.product_id, row.warehouse_id)),
            })
        return results

    @staticmethod
    def alerts(
        db: Session,
        warehouse_id: Optional[int] = None,
        today: Optional[date] = None
    ) -> dict:
        """
        Lots expiring within the configured warning window, and products
        whose active stock at a warehouse is below the low stock threshold.
        """
        settings = get_settings(db)
        today = today or datetime.utcnow().date()
        horizon = today + timedelta(days=settings.expiration_warning_days)

        expiring_query = db.query(Lot).filter(
            Lot.status == LotStatus.ACTIVE,
            Lot.qty_on_hand > 0,
            Lot.exp_date <= horizon
        )
        if warehouse_id:
            expiring_query = expiring_query.filter(Lot.warehouse_id == warehouse_id)

        expiring = []
        for lot in expiring_query.order_by(Lot.exp_date.asc(), Lot.id.asc()).all():
            expiring.append({
                'lot_id': lot.id,
                'lot_code': lot.lot_code,
                'product_id': lot.product_id,
                'warehouse_id': lot.warehouse_id,
                'exp_date': lot.exp_date,
                'days_left': (lot.exp_date - today).days,
                'qty_on_hand': lot.qty_on_hand,
            })

        stock_query = db.query(
            Lot.product_id,
            Lot.warehouse_id,
            func.sum(Lot.qty_on_hand).label('qty_on_hand')
        ).filter(Lot.status == LotStatus.ACTIVE)
        if warehouse_id:
            stock_query = stock_query.filter(Lot.warehouse_id == warehouse_id)
        stock_query = stock_query.group_by(Lot.product_id, Lot.warehouse_id).having(
            func.sum(Lot.qty_on_hand) < settings.low_stock_threshold
        )

        low_stock = [
            {
                'product_id': row.product_id,
                'warehouse_id': row.warehouse_id,
                'qty_on_hand': int(row.qty_on_hand or 0),
                'threshold': settings.low_stock_threshold,
            }
            for row in stock_query.all()
        ]

        return {'expiring': expiring, 'low_stock': low_stock}
