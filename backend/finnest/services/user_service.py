from typing import Optional

from sqlalchemy.orm import Session

from finnest.config import settings
from finnest.errors import NotFound
from finnest.models import User


def default_user_settings() -> dict:
    return {
        "new_per_day": settings.default_new_per_day,
        "retention": settings.default_retention,
        "theme": "system",
    }


def get_or_create_user(db: Session, email: str) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user:
        return user
    user = User(email=email, email_verified=True, settings_json=default_user_settings())
    db.add(user)
    db.flush()
    return user


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound(f"User {user_id} not found")
    return user


def user_settings(user: Optional[User]) -> dict:
    merged = default_user_settings()
    if user is not None and isinstance(user.settings_json, dict):
        merged.update(user.settings_json)
    return merged


def new_per_day(user: Optional[User]) -> int:
    value = user_settings(user).get("new_per_day")
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return settings.default_new_per_day


def retention(user: Optional[User]) -> float:
    value = user_settings(user).get("retention")
    try:
        value = float(value)
    except (TypeError, ValueError):
        return settings.default_retention
    if not 0.0 < value < 1.0:
        return settings.default_retention
    return value


def update_settings(db: Session, user: User, **changes) -> dict:
    """Merge non-None changes into the user's settings. Validation happens
    at the HTTP edge."""
    current = user_settings(user)
    current.update({k: v for k, v in changes.items() if v is not None})
    # reassign so SQLAlchemy sees the JSON column change
    user.settings_json = current
    db.flush()
    return current
