"""
Transfers API Router
====================
Initiate a transfer from the source warehouse; the destination warehouse
confirms or rejects it.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..ledger_models import TransferStatus
from ..security import (
    get_db, require_permission, Permission, scoped_warehouse, ensure_warehouse_access, is_admin
)
from ..services.exceptions import UnauthorizedError
from ..services.query_service import StockQueryService
from ..services.transfer_service import TransferService

router = APIRouter(prefix="/transfers", tags=["transfers"])


@router.post("/", response_model=schemas.TransferOut, status_code=status.HTTP_201_CREATED)
def initiate_transfer(
    data: schemas.TransferIn,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.TRANSFER_CREATE))
):
    ensure_warehouse_access(current_user, data.source_warehouse_id)
    return TransferService.initiate(
        db, current_user,
        source_warehouse_id=data.source_warehouse_id,
        destination_warehouse_id=data.destination_warehouse_id,
        lines=[line.model_dump() for line in data.lots],
        note=data.note,
    )


@router.get("/", response_model=List[schemas.TransferOut])
def list_transfers(
    warehouse_id: Optional[int] = None,
    status: Optional[TransferStatus] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.TRANSFER_VIEW))
):
    return StockQueryService.list_transfers(
        db,
        warehouse_id=scoped_warehouse(current_user, warehouse_id),
        status=status,
    )


@router.get("/{transfer_id}", response_model=schemas.TransferOut)
def get_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.TRANSFER_VIEW))
):
    transfer = StockQueryService.get_transfer(db, transfer_id)
    if not is_admin(current_user) and current_user.warehouse_id not in (
        transfer.source_warehouse_id, transfer.destination_warehouse_id
    ):
        raise UnauthorizedError("Transfer belongs to other warehouses", transfer_id=transfer_id)
    return transfer


@router.post("/{transfer_id}/confirm", response_model=schemas.TransferOut)
def confirm_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.TRANSFER_RESPOND))
):
    return TransferService.confirm(db, current_user, transfer_id)


@router.post("/{transfer_id}/reject", response_model=schemas.TransferOut)
def reject_transfer(
    transfer_id: int,
    data: Optional[schemas.TransferRejectIn] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.TRANSFER_RESPOND))
):
    return TransferService.reject(db, current_user, transfer_id, reason=data.reason if data else None)
