"""Pick the next card to show a learner.

Policy:
1. Due cards first, earliest due, card id breaking ties.
2. A new card already introduced but not yet answered is shown again
   (it has already used its slot of the daily cap).
3. Otherwise, under the daily new-card cap, the new card whose example
   sentence brings along the fewest other unfamiliar lemmas.
4. Nothing.

The example sentence for any card is its shortest evidencing sentence,
ties going to the lowest (deck id, sentence id).
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from finnest.models import Card, Deck, Occurrence, Sentence
from finnest.services.card_catalog import (
    card_key,
    count_new_introduced_today,
    ensure_user_cards,
    list_due,
    list_new,
)
from finnest.services.fsrs_service import STAGE_NEW, MemoryState, as_utc
from finnest.services.knowledge_tracker import marks_for
from finnest.services.lexicon_indexer import CardKey

logger = logging.getLogger(__name__)

MAX_EXAMPLES = 3


@dataclass
class ExampleSentence:
    sentence_id: int
    deck_id: int
    deck_title: str
    text: str
    token_count: int
    highlight_positions: list[int] = field(default_factory=list)
    tokens: list[dict] = field(default_factory=list)


@dataclass
class Selection:
    card: Card
    memory: MemoryState
    mode: str  # review/new
    example: Optional[ExampleSentence] = None
    examples: list[ExampleSentence] = field(default_factory=list)
    deck_counts: list[tuple[str, int]] = field(default_factory=list)
    new_lemmas_in_example: int = 0


@dataclass
class _SentenceInfo:
    sentence_id: int
    deck_id: int
    token_count: int
    keys: set[CardKey] = field(default_factory=set)
    positions: dict[CardKey, list[int]] = field(default_factory=lambda: defaultdict(list))

    @property
    def sort_key(self) -> tuple[int, int, int]:
        return (self.token_count, self.deck_id, self.sentence_id)


class _Evidence:
    """Occurrence index for one user: card key -> sentences, sentence -> keys."""

    def __init__(self, db: Session, user_id: int, keys: Optional[set[CardKey]] = None):
        q = (
            db.query(
                Occurrence.lemma, Occurrence.pos, Occurrence.mwe_id,
                Occurrence.sentence_id, Occurrence.deck_id, Occurrence.token_index,
                Sentence.token_count,
            )
            .join(Deck, Deck.id == Occurrence.deck_id)
            .join(Sentence, Sentence.id == Occurrence.sentence_id)
            .filter(Deck.user_id == user_id)
        )
        if keys is not None:
            sentence_ids = (
                select(Occurrence.sentence_id)
                .join(Deck, Deck.id == Occurrence.deck_id)
                .where(Deck.user_id == user_id, Occurrence.lemma.in_({k.lemma for k in keys}))
            )
            q = q.filter(Occurrence.sentence_id.in_(sentence_ids))

        self.sentences: dict[int, _SentenceInfo] = {}
        self.by_key: dict[CardKey, set[int]] = defaultdict(set)
        for lemma, pos, mwe_id, sentence_id, deck_id, token_index, token_count in q.all():
            key = CardKey(lemma, pos, mwe_id)
            info = self.sentences.get(sentence_id)
            if info is None:
                info = _SentenceInfo(sentence_id, deck_id, token_count or 0)
                self.sentences[sentence_id] = info
            info.keys.add(key)
            info.positions[key].append(token_index)
            self.by_key[key].add(sentence_id)

    def ranked_sentences(self, key: CardKey) -> list[_SentenceInfo]:
        infos = [self.sentences[sid] for sid in self.by_key.get(key, ())]
        return sorted(infos, key=lambda i: i.sort_key)

    def best_sentence(self, key: CardKey) -> Optional[_SentenceInfo]:
        ranked = self.ranked_sentences(key)
        return ranked[0] if ranked else None


def _unfamiliar_keys(db: Session, user_id: int, keys: set[CardKey]) -> set[CardKey]:
    """Keys that would be new vocabulary for the user right now.

    Familiar means marked known/ignored, or backed by a card that has
    already been introduced or answered.
    """
    if not keys:
        return set()
    marks = marks_for(db, user_id, {k.lemma for k in keys})
    started = {
        card_key(c)
        for c in db.query(Card)
        .options(joinedload(Card.state))
        .filter(Card.user_id == user_id, Card.lemma.in_({k.lemma for k in keys}))
        .all()
        if c.introduced_at is not None or (c.state is not None and c.state.stage != STAGE_NEW)
    }
    return {k for k in keys if (k.lemma, k.pos) not in marks and k not in started}


def _build_example(
    db: Session,
    info: _SentenceInfo,
    key: CardKey,
    deck_titles: dict[int, str],
) -> ExampleSentence:
    sentence = (
        db.query(Sentence)
        .options(joinedload(Sentence.tokens))
        .filter(Sentence.id == info.sentence_id)
        .first()
    )
    return ExampleSentence(
        sentence_id=sentence.id,
        deck_id=sentence.deck_id,
        deck_title=deck_titles.get(sentence.deck_id, ""),
        text=sentence.text,
        token_count=sentence.token_count,
        highlight_positions=sorted(info.positions.get(key, [])),
        tokens=[
            {
                "position": t.position,
                "form": t.surface_form,
                "lemma": t.lemma,
                "pos": t.pos,
                "grammar": t.grammar_label,
                "mwe_id": t.mwe_id,
            }
            for t in sentence.tokens
        ],
    )


def build_selection(
    db: Session,
    card: Card,
    mode: str,
    evidence: Optional[_Evidence] = None,
    new_lemmas: int = 0,
) -> Selection:
    key = card_key(card)
    if evidence is None:
        evidence = _Evidence(db, card.user_id, {key})
    ranked = evidence.ranked_sentences(key)

    deck_titles = {
        d.id: d.title
        for d in db.query(Deck).filter(Deck.user_id == card.user_id).all()
    }
    per_deck: dict[int, int] = defaultdict(int)
    for info in ranked:
        per_deck[info.deck_id] += len(info.positions.get(key, [])) or 1

    examples = [_build_example(db, info, key, deck_titles) for info in ranked[:MAX_EXAMPLES]]
    return Selection(
        card=card,
        memory=MemoryState.from_model(card.state),
        mode=mode,
        example=examples[0] if examples else None,
        examples=examples,
        deck_counts=[(deck_titles.get(deck_id, ""), n) for deck_id, n in sorted(per_deck.items())],
        new_lemmas_in_example=new_lemmas,
    )


def pick_new_card(db: Session, user_id: int, candidates: list[Card]) -> tuple[Optional[Card], int, Optional[_Evidence]]:
    """Among new cards, the one whose best sentence carries the fewest
    other unfamiliar lemmas. Returns (card, that count, evidence index)."""
    if not candidates:
        return None, 0, None

    evidence = _Evidence(db, user_id)
    all_keys: set[CardKey] = set()
    for info in evidence.sentences.values():
        all_keys |= info.keys
    unfamiliar = _unfamiliar_keys(db, user_id, all_keys)

    best: Optional[tuple[int, int]] = None
    best_card: Optional[Card] = None
    for card in candidates:
        key = card_key(card)
        info = evidence.best_sentence(key)
        if info is None:
            # no surviving evidence (its deck was deleted)
            continue
        others = len((info.keys - {key}) & unfamiliar)
        rank = (others, card.id)
        if best is None or rank < best:
            best = rank
            best_card = card

    if best_card is None:
        return None, 0, evidence
    return best_card, best[0], evidence


def next_card(db: Session, user_id: int, now: datetime, new_per_day: int) -> Optional[Selection]:
    """Choose the next card. Marks a freshly chosen new card as introduced
    (flushes, does not commit)."""
    now = as_utc(now)
    ensure_user_cards(db, user_id)

    due = list_due(db, user_id, now, limit=1)
    if due:
        return build_selection(db, due[0], "review")

    new_cards = list_new(db, user_id)
    pending = [c for c in new_cards if c.introduced_at is not None]
    if pending:
        return build_selection(db, pending[0], "new")

    introduced = count_new_introduced_today(db, user_id, now)
    if introduced >= new_per_day:
        logger.debug("User %s: daily new-card cap reached (%d/%d)", user_id, introduced, new_per_day)
        return None

    card, others, evidence = pick_new_card(db, user_id, new_cards)
    if card is None:
        return None
    card.introduced_at = now
    db.flush()
    return build_selection(db, card, "new", evidence=evidence, new_lemmas=others)
