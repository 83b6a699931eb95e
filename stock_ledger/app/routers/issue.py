from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..ledger_models import IssueType
from ..security import (
    get_db, require_permission, Permission, scoped_warehouse, ensure_warehouse_access
)
from ..services.query_service import StockQueryService
from ..services.stock_service import StockOperationService

router = APIRouter(prefix="/issue", tags=["issue"])


@router.post("/", status_code=status.HTTP_201_CREATED)
def issue_stock(
    data: schemas.IssueIn,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.ISSUE_CREATE))
):
    ensure_warehouse_access(current_user, data.warehouse_id)

    issue = StockOperationService.issue(
        db, current_user,
        warehouse_id=data.warehouse_id,
        issue_type=data.type,
        product_id=data.product_id,
        quantity=data.quantity,
        lots=[line.model_dump() for line in data.lots] if data.lots else None,
        destination_warehouse_id=data.destination_warehouse_id,
        note=data.note,
    )
    return {
        "success": True,
        "transaction_number": issue.transaction_number,
        "issue": schemas.IssueOut.model_validate(issue),
        "remaining_stock": {line.lot_id: line.lot.qty_on_hand for line in issue.lines},
    }


@router.get("/history", response_model=List[schemas.IssueOut])
def issue_history(
    warehouse_id: Optional[int] = None,
    type: Optional[IssueType] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.ISSUE_VIEW))
):
    return StockQueryService.issue_history(
        db,
        warehouse_id=scoped_warehouse(current_user, warehouse_id),
        issue_type=type,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/{issue_id}", response_model=schemas.IssueOut)
def get_issue(
    issue_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.ISSUE_VIEW))
):
    issue = StockQueryService.get_issue(db, issue_id)
    ensure_warehouse_access(current_user, issue.warehouse_id)
    return issue


@router.post("/{issue_id}/cancel")
def cancel_issue(
    issue_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.ISSUE_CANCEL))
):
    issue = StockOperationService.cancel_issue(db, current_user, issue_id)
    return {
        "success": True,
        "transaction_number": issue.transaction_number,
        "status": issue.status,
    }
