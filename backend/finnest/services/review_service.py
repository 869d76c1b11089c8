"""One review turn: fetch the next card, grade it, or dispose of it.

Every operation here runs under the user's lock and inside a single
transaction, so a failure anywhere leaves no trace and the caller can
simply retry.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from finnest.database import atomic
from finnest.errors import InvalidState, NotFound
from finnest.models import Card, ReviewLog, SchedulerState
from finnest.services.card_catalog import ensure_user_cards, get_card, retire_cards_for_lemma
from finnest.services.card_selector import Selection, next_card
from finnest.services.fsrs_service import STAGE_NEW, as_utc, parse_grade, review_state
from finnest.services.knowledge_tracker import (
    IGNORED,
    KNOWN,
    bulk_mark_known,
    clear_mark,
    mark_ignored as tracker_mark_ignored,
    mark_known as tracker_mark_known,
)
from finnest.services.user_locks import user_lock
from finnest.services.user_service import get_user, new_per_day, retention

logger = logging.getLogger(__name__)


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now else datetime.now(timezone.utc)


def _owned_card(db: Session, user_id: int, card_id: int) -> Card:
    card = get_card(db, card_id)
    # someone else's card is reported exactly like a missing one
    if not card or card.user_id != user_id:
        raise NotFound(f"Card {card_id} not found")
    return card


def _review_result(card: Card, log: ReviewLog, duplicate: bool = False) -> dict:
    result = {
        "card_id": card.id,
        "lemma": card.lemma,
        "pos": card.pos,
        "previous_stage": log.stage_before,
        "new_stage": log.stage_after,
        "next_due": as_utc(log.due).isoformat() if log.due else None,
        "stability": log.stability,
        "difficulty": log.difficulty,
        "reps": card.state.reps if card.state else 0,
        "lapses": card.state.lapses if card.state else 0,
    }
    if duplicate:
        result["duplicate"] = True
    return result


def fetch_next(db: Session, user_id: int, now: Optional[datetime] = None) -> Optional[Selection]:
    now = _now(now)
    with user_lock(user_id), atomic(db):
        user = get_user(db, user_id)
        return next_card(db, user_id, now, new_per_day(user))


def submit_answer(
    db: Session,
    user_id: int,
    card_id: int,
    grade,
    now: Optional[datetime] = None,
    client_review_id: Optional[str] = None,
) -> dict:
    rating = parse_grade(grade)
    now = _now(now)

    with user_lock(user_id), atomic(db):
        if client_review_id:
            existing = (
                db.query(ReviewLog)
                .filter(ReviewLog.user_id == user_id, ReviewLog.client_review_id == client_review_id)
                .first()
            )
            if existing:
                if existing.card_id != card_id:
                    raise InvalidState(
                        f"Review id {client_review_id!r} was already used for card {existing.card_id}"
                    )
                return _review_result(_owned_card(db, user_id, card_id), existing, duplicate=True)

        card = _owned_card(db, user_id, card_id)
        if card.is_retired:
            raise InvalidState(f"Card {card_id} is retired ({card.retired_reason})")
        if card.state is None:
            raise InvalidState(f"Card {card_id} has no scheduler state")

        user = get_user(db, user_id)
        before, after = review_state(card.state, rating, now, retention=retention(user))
        if before.stage == STAGE_NEW and card.introduced_at is None:
            card.introduced_at = now

        log = ReviewLog(
            card_id=card.id,
            user_id=user_id,
            rating=rating,
            reviewed_at=now,
            stage_before=before.stage,
            stage_after=after.stage,
            stability=after.stability,
            difficulty=after.difficulty,
            due=after.due,
            client_review_id=client_review_id,
        )
        db.add(log)
        db.flush()
        return _review_result(card, log)


def _dispose(db: Session, user_id: int, card_id: int, mark: str, now: Optional[datetime]) -> dict:
    now = _now(now)
    with user_lock(user_id), atomic(db):
        card = _owned_card(db, user_id, card_id)
        if mark == KNOWN:
            tracker_mark_known(db, user_id, card.lemma, card.pos)
        else:
            tracker_mark_ignored(db, user_id, card.lemma, card.pos)

        retired = retire_cards_for_lemma(db, user_id, card.lemma, card.pos, reason=mark, now=now)
        if card.is_retired and card.retired_reason != mark:
            # already retired under the other mark
            card.retired_reason = mark
        db.flush()
        return {
            "card_id": card.id,
            "lemma": card.lemma,
            "pos": card.pos,
            "mark": mark,
            "retired_card_ids": [c.id for c in retired],
        }


def mark_known(db: Session, user_id: int, card_id: int, now: Optional[datetime] = None) -> dict:
    return _dispose(db, user_id, card_id, KNOWN, now)


def mark_ignored(db: Session, user_id: int, card_id: int, now: Optional[datetime] = None) -> dict:
    return _dispose(db, user_id, card_id, IGNORED, now)


def import_known_lemmas(
    db: Session,
    user_id: int,
    pairs: Iterable[tuple[str, str]],
    now: Optional[datetime] = None,
) -> dict:
    """Bulk-mark (lemma, pos) pairs known and retire any cards they had."""
    now = _now(now)
    pairs = list(dict.fromkeys((lemma.strip(), pos.strip()) for lemma, pos in pairs if lemma.strip()))
    with user_lock(user_id), atomic(db):
        get_user(db, user_id)
        marked = bulk_mark_known(db, user_id, pairs)
        retired = 0
        for lemma, pos in pairs:
            retired += len(retire_cards_for_lemma(db, user_id, lemma, pos, reason=KNOWN, now=now))
        return {"marked": marked, "retired": retired}


def unmark_lemma(db: Session, user_id: int, lemma: str, pos: str) -> dict:
    """Drop a known/ignored mark; cards for the lemma come back."""
    with user_lock(user_id), atomic(db):
        get_user(db, user_id)
        cleared = clear_mark(db, user_id, lemma, pos)
        restored = ensure_user_cards(db, user_id) if cleared else []
        return {"cleared": cleared, "restored_card_ids": [c.id for c in restored]}


def reset_progress(db: Session, user_id: int) -> dict:
    """Delete all of the user's cards, scheduler states and review history."""
    with user_lock(user_id), atomic(db):
        get_user(db, user_id)
        card_ids = [cid for (cid,) in db.query(Card.id).filter(Card.user_id == user_id).all()]
        if card_ids:
            db.query(ReviewLog).filter(ReviewLog.card_id.in_(card_ids)).delete(synchronize_session=False)
            db.query(SchedulerState).filter(SchedulerState.card_id.in_(card_ids)).delete(synchronize_session=False)
            db.query(Card).filter(Card.id.in_(card_ids)).delete(synchronize_session=False)
        logger.info("User %s: progress reset, %d cards deleted", user_id, len(card_ids))
        return {"deleted_cards": len(card_ids)}
