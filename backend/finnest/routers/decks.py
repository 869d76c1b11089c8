from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from finnest.database import get_db
from finnest.routers.auth import get_current_user_id
from finnest.schemas import CreateDeckIn, CreateDeckOut, DashboardOut, DeckSummaryOut, DeleteDeckOut
from finnest.services.deck_service import create_deck, dashboard, deck_summaries, delete_deck
from finnest.services.interaction_logger import log_interaction

router = APIRouter(prefix="/api", tags=["decks"])


@router.get("/me", response_model=DashboardOut)
def me(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return dashboard(db, user_id)


@router.get("/decks", response_model=list[DeckSummaryOut])
def list_decks(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return deck_summaries(db, user_id)


@router.post("/decks", response_model=CreateDeckOut)
def import_deck(
    body: CreateDeckIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        result = create_deck(db, user_id, body.title, body.lang, body.text)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    log_interaction(
        event="deck_imported",
        user_id=user_id,
        deck_id=result["deck_id"],
        lang=body.lang.upper(),
        sentences=result["sentences"],
        occurrences=result["occurrences"],
        cards_created=result["cards_created"],
    )
    return result


@router.delete("/decks/{deck_id}", response_model=DeleteDeckOut)
def remove_deck(
    deck_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    result = delete_deck(db, user_id, deck_id)
    log_interaction(event="deck_deleted", user_id=user_id, deck_id=deck_id)
    return result
