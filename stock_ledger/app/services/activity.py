"""
Audit / Notification Sink
=========================
Informed after a stock operation has committed. Writes the "who did what"
AuditLog row and user-facing notifications in its own short transaction.

Nothing here feeds back into the ledger: a failure is logged and dropped,
the committed operation stands.
"""

import json
import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..ledger_models import AuditLog
from ..models import Notification, User
from .settings_service import get_settings

logger = logging.getLogger(__name__)

# Actions whose notification can be switched off in system settings
NOTIFICATION_TOGGLES = {
    "issue": "issue_notification_enabled",
    "cancel": "cancel_notification_enabled",
}


class ActivitySink:
    """Best-effort audit and notification writer"""

    @staticmethod
    def operation_succeeded(
        db: Session,
        user: User,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        description: str,
        reference_number: Optional[str] = None,
        details: Optional[dict] = None,
        notify_user_ids: Iterable[int] = (),
        level: str = "success",
        ip_address: Optional[str] = None,
    ) -> bool:
        """
        Record a committed operation.

        The actor always gets a notification (unless the action's toggle is
        off); ``notify_user_ids`` adds other recipients, e.g. the users of a
        transfer's destination warehouse.

        Returns False when the write failed.
        """
        try:
            db.add(AuditLog(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                description=description,
                new_values=json.dumps(details, default=str) if details else None,
                user_id=user.id,
                ip_address=ip_address,
            ))

            toggle = NOTIFICATION_TOGGLES.get(action)
            if toggle is None or getattr(get_settings(db), toggle):
                recipients = [user.id] + [uid for uid in notify_user_ids if uid != user.id]
                for user_id in recipients:
                    db.add(Notification(
                        user_id=user_id,
                        message=description,
                        level=level,
                        reference_number=reference_number,
                    ))

            db.commit()
            return True
        except Exception:
            db.rollback()
            logger.exception("Failed to record %s %s for %s", action, reference_number or entity_id, entity_type)
            return False

    @staticmethod
    def warehouse_user_ids(db: Session, warehouse_id: int) -> list:
        rows = db.query(User.id).filter(
            User.warehouse_id == warehouse_id,
            User.is_active == True  # noqa: E712
        ).all()
        return [row.id for row in rows]
