from fastapi import APIRouter, Depends
from typing import List
from sqlalchemy.orm import Session

from . import models, schemas
from .security import get_db, get_current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _visible_to(user):
    # addressed to the user, to their role, or global
    return (
        (models.Notification.user_id == user.id)
        | (models.Notification.role == user.role)
        | ((models.Notification.user_id == None) & (models.Notification.role == None))  # noqa: E711
    )


@router.get("/", response_model=List[schemas.NotificationOut])
def list_notifications(unread_only: bool = False, db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    q = db.query(models.Notification).filter(_visible_to(current_user))
    if unread_only:
        q = q.filter(models.Notification.read == False)  # noqa: E712
    return q.order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).all()


@router.post("/mark-read")
def mark_read(ids: List[int], db: Session = Depends(get_db), current_user: models.User = Depends(get_current_user)):
    if not ids:
        return {"updated": 0}
    q = db.query(models.Notification).filter(
        models.Notification.id.in_(ids),
        _visible_to(current_user)
    )
    updated = 0
    for n in q.all():
        n.read = True
        updated += 1
    db.commit()
    return {"updated": updated}
