"""
Warehouse-scoped sequence numbers.

The counter row is incremented inside the caller's unit of work, so a
rolled-back operation also gives its number back. Two callers can never
read the same value: the UPDATE takes the row (or, on SQLite, database)
write lock before the new value is read.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..ledger_models import TransactionCounter
from .exceptions import DuplicateTransactionNumberError

logger = logging.getLogger(__name__)

RECEIVE_PREFIX = "RCV"
ISSUE_PREFIX = "ISS"
TRANSFER_PREFIX = "TRF"
ADJUST_PREFIX = "ADJ"
DAMAGE_PREFIX = "DMG"


def _increment(db: Session, scope_key: str) -> int:
    result = db.execute(
        update(TransactionCounter)
        .where(TransactionCounter.scope_key == scope_key)
        .values(sequence=TransactionCounter.sequence + 1, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def get_next_sequence(db: Session, scope_key: str) -> int:
    """
    Atomically increment and return the counter for ``scope_key``.

    A missing counter is created at 1. If a concurrent caller creates it
    first, the insert fails inside a savepoint and the increment is retried.
    """
    if not _increment(db, scope_key):
        try:
            with db.begin_nested():
                db.add(TransactionCounter(scope_key=scope_key, sequence=1))
            return 1
        except IntegrityError:
            logger.debug("Counter %s created concurrently, retrying increment", scope_key)
            _increment(db, scope_key)

    return db.execute(
        select(TransactionCounter.sequence).where(TransactionCounter.scope_key == scope_key)
    ).scalar_one()


def ensure_number_unused(db: Session, column, number: str) -> None:
    """
    Refuse a generated number that already exists on ``column``.

    The counter makes this unreachable; a hit means the counter table was
    reset or edited by hand.
    """
    if db.query(column).filter(column == number).first() is not None:
        logger.critical("Generated number %s already exists on %s", number, column)
        raise DuplicateTransactionNumberError(
            f"Transaction number {number} already exists", number=number
        )


# =============================================================================
# SCOPE KEYS & NUMBER FORMATS
# =============================================================================

def receive_scope(warehouse_code: str) -> str:
    return f"receive:{warehouse_code}"


def issue_scope(warehouse_id: int) -> str:
    return f"issue:{warehouse_id}"


def transfer_scope(warehouse_id: int) -> str:
    return f"transfer:{warehouse_id}"


def adjust_scope(warehouse_code: str) -> str:
    return f"adjust:{warehouse_code}"


def damage_scope(warehouse_id: int, role: str) -> str:
    return f"damage:{warehouse_id}:{role}"


def format_receive_number(warehouse_code: str, sequence: int, on: Optional[datetime] = None) -> str:
    on = on or datetime.utcnow()
    return f"{RECEIVE_PREFIX}-{warehouse_code}-{on:%Y%m%d}-{sequence:03d}"


def format_issue_number(warehouse_code: str, sequence: int) -> str:
    return f"{ISSUE_PREFIX}-{warehouse_code}-{sequence:05d}"


def format_transfer_number(warehouse_code: str, sequence: int) -> str:
    return f"{TRANSFER_PREFIX}-{warehouse_code}-{sequence:05d}"


def format_adjust_number(warehouse_code: str, sequence: int) -> str:
    return f"{ADJUST_PREFIX}-{warehouse_code}-{sequence:05d}"


def format_damage_number(warehouse_code: str, role: str, sequence: int) -> str:
    return f"{DAMAGE_PREFIX}-{warehouse_code}-{role.upper()}-{sequence:05d}"
