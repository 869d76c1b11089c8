"""Turn analyzed sentences of a deck into stored sentences and occurrences.

Multi-word expressions are resolved here, once: every token of a group is
recorded under the group's shared (lemma, pos, mwe_id) so the whole group
maps to a single card later on. Cards themselves are not created here.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, NamedTuple, Optional

from sqlalchemy.orm import Session

from finnest.errors import NotFound
from finnest.models import Deck, Lemma, Occurrence, Sentence, SentenceToken
from finnest.services.parser import AnalyzedSentence, Token

logger = logging.getLogger(__name__)


class CardKey(NamedTuple):
    lemma: str
    pos: str
    mwe_id: Optional[int] = None


@dataclass
class IndexResult:
    deck_id: int
    sentence_count: int = 0
    skipped_empty: int = 0
    occurrences: list[Occurrence] = field(default_factory=list)

    @property
    def occurrence_count(self) -> int:
        return len(self.occurrences)


def _group_key(members: list[Token], mwe_id: int) -> CardKey:
    lemmas = [t.lemma for t in members]
    if len(set(lemmas)) == 1:
        lemma = lemmas[0]
    else:
        lemma = " ".join(lemmas)
    return CardKey(lemma, members[0].pos, mwe_id)


def card_keys_for_sentence(tokens: list[Token]) -> list[CardKey]:
    """Card identity of each token position.

    A token either stands alone (its own lemma/pos) or belongs to a
    multi-word group, in which case it takes the group key: the members'
    lemmas joined in sentence order and the first member's pos.
    """
    groups: dict[int, list[Token]] = {}
    for tok in tokens:
        if tok.mwe_id is not None:
            groups.setdefault(tok.mwe_id, []).append(tok)

    group_keys = {mwe_id: _group_key(members, mwe_id) for mwe_id, members in groups.items()}
    return [
        group_keys[tok.mwe_id] if tok.mwe_id is not None else CardKey(tok.lemma, tok.pos)
        for tok in tokens
    ]


def _upsert_lemmas(db: Session, keys: set[tuple[str, str]], lang: str) -> int:
    if not keys:
        return 0
    existing = {
        (row.lemma, row.pos)
        for row in db.query(Lemma.lemma, Lemma.pos)
        .filter(Lemma.lang == lang, Lemma.lemma.in_({k[0] for k in keys}))
        .all()
    }
    missing = keys - existing
    for lemma, pos in sorted(missing):
        db.add(Lemma(lemma=lemma, pos=pos, lang=lang))
    return len(missing)


def index_deck(
    db: Session,
    deck_id: int,
    sentences: list[AnalyzedSentence],
) -> IndexResult:
    """Store the deck's sentences and emit one occurrence per token position.

    Empty sentences are skipped. Flushes but does not commit; the caller owns
    the transaction.
    """
    deck = db.query(Deck).filter(Deck.id == deck_id).first()
    if not deck:
        raise NotFound(f"Deck {deck_id} not found")

    result = IndexResult(deck_id=deck_id)
    lemma_keys: set[tuple[str, str]] = set()

    for analyzed in sentences:
        if not analyzed.tokens:
            result.skipped_empty += 1
            continue

        sentence = Sentence(
            deck_id=deck_id,
            text=analyzed.text,
            lang=deck.lang,
            token_count=len(analyzed.tokens),
        )
        db.add(sentence)
        db.flush()

        keys = card_keys_for_sentence(analyzed.tokens)
        for position, (tok, key) in enumerate(zip(analyzed.tokens, keys)):
            db.add(SentenceToken(
                sentence_id=sentence.id,
                position=position,
                surface_form=tok.form,
                lemma=tok.lemma,
                pos=tok.pos,
                feats_json=tok.feats or None,
                grammar_label=tok.grammar_label or None,
                mwe_id=tok.mwe_id,
            ))
            occ = Occurrence(
                deck_id=deck_id,
                sentence_id=sentence.id,
                token_index=position,
                lemma=key.lemma,
                pos=key.pos,
                mwe_id=key.mwe_id,
            )
            db.add(occ)
            result.occurrences.append(occ)
            lemma_keys.add((key.lemma, key.pos))

        result.sentence_count += 1

    new_lemmas = _upsert_lemmas(db, lemma_keys, deck.lang)
    db.flush()

    if result.skipped_empty:
        logger.info("Deck %s: skipped %d empty sentences", deck_id, result.skipped_empty)
    logger.info(
        "Indexed deck %s: %d sentences, %d occurrences, %d new lemmas",
        deck_id, result.sentence_count, result.occurrence_count, new_lemmas,
    )
    return result


def set_glosses(db: Session, lang: str, entries: Iterable[tuple[str, str, str]]) -> int:
    """Attach glosses to dictionary lemmas, creating entries that are missing.

    Entries are (lemma, pos, gloss); blank glosses are skipped. Flushes but
    does not commit. Returns the number of lemmas written.
    """
    written = 0
    for lemma, pos, gloss in entries:
        gloss = (gloss or "").strip()
        if not lemma or not gloss:
            continue
        row = db.get(Lemma, (lemma, pos, lang))
        if row is None:
            row = Lemma(lemma=lemma, pos=pos, lang=lang)
            db.add(row)
        row.gloss = gloss
        written += 1
    db.flush()
    return written


def occurrence_key(occ: Occurrence) -> CardKey:
    return CardKey(occ.lemma, occ.pos, occ.mwe_id)
