"""Per-user card catalog.

One card per (user, lemma, pos, mwe_id) seen in the user's decks, as long
as the lemma is neither known nor ignored. Cards are created lazily and
never duplicated; a known/ignored disposition retires a card in place so
its review history survives.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from finnest.models import Card, Deck, Occurrence, SchedulerState
from finnest.services.fsrs_service import STAGE_NEW, as_utc, new_scheduler_state
from finnest.services.knowledge_tracker import marks_for
from finnest.services.lexicon_indexer import CardKey, occurrence_key

logger = logging.getLogger(__name__)


def card_key(card: Card) -> CardKey:
    return CardKey(card.lemma, card.pos, card.mwe_id)


def day_start(as_of: datetime) -> datetime:
    as_of = as_utc(as_of)
    return as_of.replace(hour=0, minute=0, second=0, microsecond=0)


def _active_cards(db: Session, user_id: int):
    return (
        db.query(Card)
        .join(SchedulerState, SchedulerState.card_id == Card.id)
        .filter(Card.user_id == user_id, Card.retired_at.is_(None))
    )


def ensure_cards(
    db: Session,
    user_id: int,
    occurrences: Iterable[Occurrence | CardKey],
) -> list[Card]:
    """Create missing cards for the distinct keys in ``occurrences``.

    Keys whose (lemma, pos) is marked known/ignored are skipped; marks are
    read now, not from any earlier snapshot. A retired card whose mark has
    since been cleared is reactivated rather than duplicated. Idempotent.
    Returns the cards created or reactivated by this call.
    """
    keys: dict[CardKey, None] = {}
    for item in occurrences:
        key = item if isinstance(item, CardKey) else occurrence_key(item)
        keys.setdefault(key)
    if not keys:
        return []

    lemmas = {k.lemma for k in keys}
    marks = marks_for(db, user_id, lemmas)
    existing = {
        card_key(c): c
        for c in db.query(Card).filter(Card.user_id == user_id, Card.lemma.in_(lemmas)).all()
    }

    touched: list[Card] = []
    for key in keys:
        if (key.lemma, key.pos) in marks:
            continue
        card = existing.get(key)
        if card is None:
            card = Card(user_id=user_id, lemma=key.lemma, pos=key.pos, mwe_id=key.mwe_id)
            card.state = new_scheduler_state()
            db.add(card)
            existing[key] = card
            touched.append(card)
        elif card.retired_at is not None:
            card.retired_at = None
            card.retired_reason = None
            touched.append(card)

    if touched:
        db.flush()
        logger.info("User %s: %d cards created or reactivated", user_id, len(touched))
    return touched


def ensure_user_cards(db: Session, user_id: int) -> list[Card]:
    """Materialize cards for every occurrence in the user's decks."""
    occurrences = (
        db.query(Occurrence.lemma, Occurrence.pos, Occurrence.mwe_id)
        .join(Deck, Deck.id == Occurrence.deck_id)
        .filter(Deck.user_id == user_id)
        .distinct()
        .all()
    )
    return ensure_cards(db, user_id, [CardKey(*row) for row in occurrences])


def get_card(db: Session, card_id: int) -> Optional[Card]:
    return (
        db.query(Card)
        .options(joinedload(Card.state))
        .filter(Card.id == card_id)
        .first()
    )


def list_due(db: Session, user_id: int, as_of: datetime, limit: Optional[int] = None) -> list[Card]:
    """Due cards, earliest due first, card id breaking ties."""
    q = (
        _active_cards(db, user_id)
        .options(joinedload(Card.state))
        .filter(
            SchedulerState.stage != STAGE_NEW,
            SchedulerState.due.isnot(None),
            SchedulerState.due <= as_utc(as_of),
        )
        .order_by(SchedulerState.due.asc(), Card.id.asc())
    )
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def count_due(db: Session, user_id: int, as_of: datetime) -> int:
    return (
        _active_cards(db, user_id)
        .filter(
            SchedulerState.stage != STAGE_NEW,
            SchedulerState.due.isnot(None),
            SchedulerState.due <= as_utc(as_of),
        )
        .count()
    )


def list_new(db: Session, user_id: int) -> list[Card]:
    """Active cards never answered, id ascending."""
    return (
        _active_cards(db, user_id)
        .options(joinedload(Card.state))
        .filter(SchedulerState.stage == STAGE_NEW)
        .order_by(Card.id.asc())
        .all()
    )


def count_new_introduced_today(db: Session, user_id: int, as_of: datetime) -> int:
    """Cards first presented as new since the start of as_of's UTC day.

    Counts introductions, not answers, so a card introduced and reviewed
    today still uses up one slot of the daily cap.
    """
    start = day_start(as_of)
    end = start + timedelta(days=1)
    return (
        db.query(func.count(Card.id))
        .filter(
            Card.user_id == user_id,
            Card.introduced_at.isnot(None),
            Card.introduced_at >= start,
            Card.introduced_at < end,
        )
        .scalar() or 0
    )


def count_active(db: Session, user_id: int) -> int:
    return _active_cards(db, user_id).count()


def occurrences_for_card(db: Session, card: Card) -> list[Occurrence]:
    """Every occurrence evidencing this card in its owner's decks."""
    q = (
        db.query(Occurrence)
        .join(Deck, Deck.id == Occurrence.deck_id)
        .filter(
            Deck.user_id == card.user_id,
            Occurrence.lemma == card.lemma,
            Occurrence.pos == card.pos,
        )
    )
    if card.mwe_id is None:
        q = q.filter(Occurrence.mwe_id.is_(None))
    else:
        q = q.filter(Occurrence.mwe_id == card.mwe_id)
    return q.order_by(Occurrence.deck_id, Occurrence.sentence_id, Occurrence.token_index).all()


def retire_cards_for_lemma(
    db: Session,
    user_id: int,
    lemma: str,
    pos: str,
    reason: str,
    now: Optional[datetime] = None,
) -> list[Card]:
    """Soft-retire every active card of this (lemma, pos), any mwe group."""
    now = as_utc(now) if now else datetime.now(timezone.utc)
    cards = (
        db.query(Card)
        .filter(
            Card.user_id == user_id,
            Card.lemma == lemma,
            Card.pos == pos,
            Card.retired_at.is_(None),
        )
        .all()
    )
    for card in cards:
        card.retired_at = now
        card.retired_reason = reason
    if cards:
        db.flush()
    return cards
