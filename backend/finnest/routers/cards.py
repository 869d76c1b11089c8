from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from finnest.database import get_db
from finnest.routers.auth import get_current_user_id
from finnest.schemas import CardActionIn, CardActionOut, KnownImportIn, KnownImportOut, UnmarkOut
from finnest.services.interaction_logger import log_interaction
from finnest.services.review_service import (
    import_known_lemmas,
    mark_ignored,
    mark_known,
    reset_progress,
    unmark_lemma,
)

router = APIRouter(prefix="/api", tags=["cards"])


@router.post("/card/ignore", response_model=CardActionOut)
def ignore_card(
    body: CardActionIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    result = mark_ignored(db, user_id, body.card_id)
    log_interaction(event="card_ignored", user_id=user_id, card_id=body.card_id, lemma=result["lemma"])
    return result


@router.post("/card/known", response_model=CardActionOut)
def know_card(
    body: CardActionIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    result = mark_known(db, user_id, body.card_id)
    log_interaction(event="card_known", user_id=user_id, card_id=body.card_id, lemma=result["lemma"])
    return result


@router.post("/known/import", response_model=KnownImportOut)
def import_known(
    body: KnownImportIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Bulk-mark a word list as known (e.g. vocabulary from another app)."""
    result = import_known_lemmas(db, user_id, [(item.lemma, item.pos) for item in body.lemmas])
    log_interaction(event="known_imported", user_id=user_id, **result)
    return result


@router.delete("/known", response_model=UnmarkOut)
def unmark(
    lemma: str = Query(..., min_length=1),
    pos: str = Query(..., min_length=1),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    result = unmark_lemma(db, user_id, lemma, pos)
    log_interaction(event="lemma_unmarked", user_id=user_id, lemma=lemma, pos=pos)
    return result


@router.post("/progress/reset")
def reset(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    result = reset_progress(db, user_id)
    log_interaction(event="progress_reset", user_id=user_id, **result)
    return result
