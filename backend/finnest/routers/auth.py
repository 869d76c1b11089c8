from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from finnest.database import atomic, get_db
from finnest.schemas import LoginIn, LoginOut
from finnest.services.interaction_logger import log_interaction
from finnest.services.user_service import get_or_create_user

router = APIRouter(prefix="/api/auth", tags=["auth"])

SESSION_COOKIE = "user_id"
SESSION_MAX_AGE = 86400 * 7


def get_current_user_id(user_id: Optional[str] = Cookie(default=None)) -> int:
    """Resolve the caller from the session cookie. Login is a mock: any
    email gets an account, no password check."""
    try:
        value = int(user_id) if user_id is not None else 0
    except ValueError:
        value = 0
    if value <= 0:
        raise HTTPException(status_code=401, detail="Not logged in")
    return value


@router.post("/login", response_model=LoginOut)
def login(body: LoginIn, response: Response, db: Session = Depends(get_db)):
    email = body.email.strip().lower()
    with atomic(db):
        user = get_or_create_user(db, email)
        user_id = user.id

    response.set_cookie(
        key=SESSION_COOKIE,
        value=str(user_id),
        path="/",
        httponly=True,
        samesite="strict",
        max_age=SESSION_MAX_AGE,
    )
    log_interaction(event="login", user_id=user_id)
    return {"user_id": user_id, "email": email}
