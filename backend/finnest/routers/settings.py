from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from finnest.database import atomic, get_db
from finnest.routers.auth import get_current_user_id
from finnest.schemas import SettingsIn, SettingsOut
from finnest.services.user_locks import user_lock
from finnest.services.user_service import get_user, update_settings, user_settings

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("", response_model=SettingsOut)
def get_settings(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Daily new-card cap and target retention."""
    return user_settings(get_user(db, user_id))


@router.put("", response_model=SettingsOut)
def put_settings(
    req: SettingsIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    with user_lock(user_id), atomic(db):
        user = get_user(db, user_id)
        return update_settings(
            db, user, new_per_day=req.new_per_day, retention=req.retention, theme=req.theme,
        )
