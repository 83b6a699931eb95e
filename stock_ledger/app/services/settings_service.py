import logging
from datetime import datetime

from sqlalchemy.orm import Session

from ..db import unit_of_work
from ..models import SystemSetting, User
from .exceptions import InvalidOperationError

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "expiration_warning_days",
    "low_stock_threshold",
    "issue_notification_enabled",
    "cancel_notification_enabled",
)


def get_settings(db: Session) -> SystemSetting:
    """Return the settings row, creating it with defaults on first read"""
    settings = db.query(SystemSetting).order_by(SystemSetting.id).first()
    if settings is None:
        settings = SystemSetting(
            expiration_warning_days=15,
            low_stock_threshold=10,
            issue_notification_enabled=True,
            cancel_notification_enabled=True,
        )
        db.add(settings)
        db.flush()
    return settings


def update_settings(db: Session, user: User, **fields) -> SystemSetting:
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise InvalidOperationError(f"Unknown settings: {', '.join(sorted(unknown))}")

    for key in ("expiration_warning_days", "low_stock_threshold"):
        if fields.get(key) is not None and fields[key] < 0:
            raise InvalidOperationError(f"{key} cannot be negative")

    with unit_of_work(db):
        settings = get_settings(db)
        for key, value in fields.items():
            if value is not None:
                setattr(settings, key, value)
        settings.updated_at = datetime.utcnow()
        settings.updated_by = user.id

    logger.info("Settings updated by %s: %s", user.username, fields)
    return settings
