"""Deck import, listing and deletion.

Importing runs the parser first, so a ParseFailure leaves nothing behind.
Occurrences are indexed and the owner's cards materialized in the same
transaction.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from finnest.config import settings
from finnest.database import atomic
from finnest.errors import NotFound
from finnest.models import Card, Deck, Occurrence, SchedulerState
from finnest.services.card_catalog import (
    card_key,
    count_due,
    count_new_introduced_today,
    ensure_cards,
)
from finnest.services.fsrs_service import STAGE_NEW, as_utc
from finnest.services.knowledge_tracker import KNOWN, count_marks, marks_for
from finnest.services.lexicon_indexer import CardKey, index_deck
from finnest.services.parser import Parser, get_parser
from finnest.services.user_locks import user_lock
from finnest.services.user_service import get_user, new_per_day

logger = logging.getLogger(__name__)


def create_deck(
    db: Session,
    user_id: int,
    title: str,
    lang: str,
    text: str,
    parser: Optional[Parser] = None,
) -> dict:
    title = (title or "").strip()
    if not title:
        raise ValueError("Title is required")
    lang = (lang or "").upper()
    if lang not in settings.supported_languages:
        raise ValueError(f"Language must be one of {', '.join(settings.supported_languages)}")

    parser = parser or get_parser()
    analyzed = parser.analyze(lang, text)

    with user_lock(user_id), atomic(db):
        get_user(db, user_id)
        deck = Deck(user_id=user_id, title=title, lang=lang, created_at=datetime.now(timezone.utc))
        db.add(deck)
        db.flush()

        indexed = index_deck(db, deck.id, analyzed)
        created = ensure_cards(db, user_id, indexed.occurrences)
        return {
            "deck_id": deck.id,
            "sentences": indexed.sentence_count,
            "skipped_sentences": indexed.skipped_empty,
            "occurrences": indexed.occurrence_count,
            "cards_created": len(created),
        }


def _owned_deck(db: Session, user_id: int, deck_id: int) -> Deck:
    deck = db.query(Deck).filter(Deck.id == deck_id).first()
    if not deck or deck.user_id != user_id:
        raise NotFound(f"Deck {deck_id} not found")
    return deck


def delete_deck(db: Session, user_id: int, deck_id: int) -> dict:
    """Remove a deck with its sentences and occurrences. Cards stay: they
    belong to the user, and other decks may evidence them."""
    with user_lock(user_id), atomic(db):
        deck = _owned_deck(db, user_id, deck_id)
        sentences = len(deck.sentences)
        db.delete(deck)
        db.flush()
        logger.info("Deleted deck %s (%d sentences) for user %s", deck_id, sentences, user_id)
        return {"deck_id": deck_id, "deleted_sentences": sentences}


def deck_summaries(db: Session, user_id: int, now: Optional[datetime] = None) -> list[dict]:
    """Per deck: distinct lemma keys, how many are known, how many are due."""
    now = as_utc(now) if now else datetime.now(timezone.utc)
    decks = (
        db.query(Deck)
        .filter(Deck.user_id == user_id)
        .order_by(Deck.created_at.desc(), Deck.id.desc())
        .all()
    )
    if not decks:
        return []

    keys_by_deck: dict[int, set[CardKey]] = defaultdict(set)
    rows = (
        db.query(Occurrence.deck_id, Occurrence.lemma, Occurrence.pos, Occurrence.mwe_id)
        .filter(Occurrence.deck_id.in_([d.id for d in decks]))
        .distinct()
        .all()
    )
    for deck_id, lemma, pos, mwe_id in rows:
        keys_by_deck[deck_id].add(CardKey(lemma, pos, mwe_id))

    all_lemmas = {k.lemma for keys in keys_by_deck.values() for k in keys}
    marks = marks_for(db, user_id, all_lemmas)
    due_keys = {
        card_key(c)
        for c in db.query(Card)
        .join(SchedulerState, SchedulerState.card_id == Card.id)
        .filter(
            Card.user_id == user_id,
            Card.retired_at.is_(None),
            SchedulerState.stage != STAGE_NEW,
            SchedulerState.due <= now,
        )
        .all()
    }

    summaries = []
    for deck in decks:
        keys = keys_by_deck.get(deck.id, set())
        summaries.append({
            "id": deck.id,
            "title": deck.title,
            "lang": deck.lang,
            "created_at": as_utc(deck.created_at).isoformat() if deck.created_at else None,
            "unique": len(keys),
            "known": sum(1 for k in keys if marks.get((k.lemma, k.pos)) == KNOWN),
            "due": len(keys & due_keys),
        })
    return summaries


def dashboard(db: Session, user_id: int, now: Optional[datetime] = None) -> dict:
    now = as_utc(now) if now else datetime.now(timezone.utc)
    user = get_user(db, user_id)
    cap = new_per_day(user)
    introduced = count_new_introduced_today(db, user_id, now)
    return {
        "known_count": count_marks(db, user_id, KNOWN),
        "due_count": count_due(db, user_id, now),
        "new_capacity_today": max(0, cap - introduced),
        "decks": deck_summaries(db, user_id, now),
    }
