from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas
from ..security import get_db, require_permission, Permission, scoped_warehouse
from ..services.query_service import StockQueryService

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/summary", response_model=List[schemas.StockSummaryOut])
def stock_summary(
    product_code: Optional[str] = None,
    warehouse_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.REPORT_VIEW))
):
    """Per product and warehouse totals of on-hand, damaged and incoming stock"""
    return StockQueryService.stock_summary(
        db,
        product_code=product_code,
        warehouse_id=scoped_warehouse(current_user, warehouse_id),
    )


@router.get("/alerts", response_model=schemas.AlertsOut)
def alerts(
    warehouse_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.REPORT_VIEW))
):
    return StockQueryService.alerts(db, warehouse_id=scoped_warehouse(current_user, warehouse_id))
