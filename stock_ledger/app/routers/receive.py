from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..security import (
    get_db, require_permission, Permission, scoped_warehouse, ensure_warehouse_access
)
from ..services.query_service import StockQueryService
from ..services.stock_service import StockOperationService

router = APIRouter(prefix="/receive", tags=["receive"])


@router.post("/", status_code=status.HTTP_201_CREATED)
def receive_lots(
    data: schemas.ReceiveIn,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.RECEIVE_CREATE))
):
    """
    Receive one or more lot lines. Existing (lot code, warehouse) pairs are
    topped up, new ones created. All lines commit together.
    """
    for line in data.lots:
        ensure_warehouse_access(current_user, line.warehouse_id)

    transactions = StockOperationService.receive(
        db, current_user, [line.model_dump() for line in data.lots]
    )
    return {
        "success": True,
        "transactions": [schemas.StockTransactionOut.model_validate(t) for t in transactions],
    }


@router.get("/history", response_model=schemas.ReceiveHistoryOut)
def receive_history(
    warehouse_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.RECEIVE_VIEW))
):
    return StockQueryService.receive_history(
        db,
        warehouse_id=scoped_warehouse(current_user, warehouse_id),
        start_date=start_date,
        end_date=end_date,
        search=search,
        page=page,
        limit=limit,
    )
