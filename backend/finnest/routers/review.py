import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from finnest.database import get_db
from finnest.models import Lemma
from finnest.routers.auth import get_current_user_id
from finnest.schemas import AnswerIn, AnswerOut, NextCardOut
from finnest.services.card_selector import Selection
from finnest.services.interaction_logger import log_interaction
from finnest.services.review_service import fetch_next, submit_answer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/review", tags=["review"])


def _card_payload(db: Session, selection: Selection) -> dict:
    card = selection.card
    example = selection.example
    gloss = (
        db.query(Lemma.gloss)
        .filter(Lemma.lemma == card.lemma, Lemma.pos == card.pos, Lemma.gloss.isnot(None))
        .limit(1)
        .scalar()
    )

    highlight = None
    grammar = None
    if example:
        highlighted = [t for t in example.tokens if t["position"] in example.highlight_positions]
        if highlighted:
            highlight = " ".join(t["form"] for t in highlighted)
            grammar = highlighted[0]["grammar"]

    memory = selection.memory
    return {
        "card_id": card.id,
        "mode": selection.mode,
        "deck_counts": selection.deck_counts,
        "front": {
            "type": "sentence" if example else "word",
            "text": example.text if example else card.lemma,
            "highlight": highlight,
            "highlight_positions": example.highlight_positions if example else [],
        },
        "back": {
            "lemma": card.lemma,
            "pos": card.pos,
            "meaning": gloss,
            "grammar": grammar,
            "examples": [
                {"sentence_id": ex.sentence_id, "text": ex.text, "source_deck": ex.deck_title}
                for ex in selection.examples
            ],
        },
        "tokens": example.tokens if example else [],
        "scheduling": {
            "stage": memory.stage,
            "due": memory.due.isoformat() if memory.due else None,
            "stability": memory.stability,
            "difficulty": memory.difficulty,
            "reps": memory.reps,
            "lapses": memory.lapses,
        },
        "new_lemmas_in_example": selection.new_lemmas_in_example,
    }


@router.get("/next", response_model=NextCardOut)
def next_card(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    selection = fetch_next(db, user_id)
    if selection is None:
        return {"card": None}

    payload = _card_payload(db, selection)
    log_interaction(
        event="card_shown",
        user_id=user_id,
        card_id=payload["card_id"],
        mode=payload["mode"],
        sentence_id=selection.example.sentence_id if selection.example else None,
    )
    return {"card": payload}


@router.post("/answer", response_model=AnswerOut)
def answer(
    body: AnswerIn,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    result = submit_answer(
        db,
        user_id,
        card_id=body.card_id,
        grade=body.grade,
        client_review_id=body.client_review_id,
    )
    if not result.get("duplicate"):
        log_interaction(
            event="review",
            user_id=user_id,
            card_id=body.card_id,
            grade=body.grade,
            previous_stage=result["previous_stage"],
            new_stage=result["new_stage"],
            next_due=result["next_due"],
        )
    return result
