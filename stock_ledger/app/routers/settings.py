from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas
from ..security import get_db, require_permission, Permission
from ..services.settings_service import get_settings, update_settings

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/", response_model=schemas.SettingsOut)
def read_settings(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.SETTINGS_VIEW))
):
    settings = get_settings(db)
    db.commit()
    return settings


@router.put("/", response_model=schemas.SettingsOut)
def write_settings(
    data: schemas.SettingsIn,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.SETTINGS_UPDATE))
):
    return update_settings(db, current_user, **data.model_dump(exclude_unset=True))
