"""Per-user known/ignored lemma marks.

At most one mark per (user, lemma, pos): setting one kind replaces the
other. Marks are always read from the store; nothing here caches them.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from finnest.models import KnowledgeMark

KNOWN = "known"
IGNORED = "ignored"
MARKS = (KNOWN, IGNORED)


def get_mark(db: Session, user_id: int, lemma: str, pos: str) -> Optional[str]:
    row = (
        db.query(KnowledgeMark.mark)
        .filter(
            KnowledgeMark.user_id == user_id,
            KnowledgeMark.lemma == lemma,
            KnowledgeMark.pos == pos,
        )
        .first()
    )
    return row[0] if row else None


def is_known(db: Session, user_id: int, lemma: str, pos: str) -> bool:
    return get_mark(db, user_id, lemma, pos) == KNOWN


def is_ignored(db: Session, user_id: int, lemma: str, pos: str) -> bool:
    return get_mark(db, user_id, lemma, pos) == IGNORED


def _set_mark(
    db: Session,
    user_id: int,
    lemma: str,
    pos: str,
    mark: str,
    source: str = "review",
) -> KnowledgeMark:
    if mark not in MARKS:
        raise ValueError(f"Unknown mark: {mark}")
    existing = (
        db.query(KnowledgeMark)
        .filter(
            KnowledgeMark.user_id == user_id,
            KnowledgeMark.lemma == lemma,
            KnowledgeMark.pos == pos,
        )
        .first()
    )
    now = datetime.now(timezone.utc)
    if existing:
        existing.mark = mark
        existing.source = source
        existing.marked_at = now
        db.flush()
        return existing

    entry = KnowledgeMark(
        user_id=user_id, lemma=lemma, pos=pos, mark=mark, source=source, marked_at=now,
    )
    db.add(entry)
    db.flush()
    return entry


def mark_known(db: Session, user_id: int, lemma: str, pos: str, source: str = "review") -> KnowledgeMark:
    return _set_mark(db, user_id, lemma, pos, KNOWN, source)


def mark_ignored(db: Session, user_id: int, lemma: str, pos: str, source: str = "review") -> KnowledgeMark:
    return _set_mark(db, user_id, lemma, pos, IGNORED, source)


def clear_mark(db: Session, user_id: int, lemma: str, pos: str) -> bool:
    """Remove any mark. Returns True if one existed."""
    deleted = (
        db.query(KnowledgeMark)
        .filter(
            KnowledgeMark.user_id == user_id,
            KnowledgeMark.lemma == lemma,
            KnowledgeMark.pos == pos,
        )
        .delete(synchronize_session=False)
    )
    db.flush()
    return bool(deleted)


def marks_for(db: Session, user_id: int, lemmas: Iterable[str]) -> dict[tuple[str, str], str]:
    """(lemma, pos) -> mark for every marked pair among the given lemmas."""
    lemma_set = set(lemmas)
    if not lemma_set:
        return {}
    rows = (
        db.query(KnowledgeMark.lemma, KnowledgeMark.pos, KnowledgeMark.mark)
        .filter(KnowledgeMark.user_id == user_id, KnowledgeMark.lemma.in_(lemma_set))
        .all()
    )
    return {(lemma, pos): mark for lemma, pos, mark in rows}


def bulk_mark_known(
    db: Session,
    user_id: int,
    pairs: Iterable[tuple[str, str]],
    source: str = "import",
) -> int:
    """Mark many (lemma, pos) pairs known, e.g. from a word-list import."""
    count = 0
    for lemma, pos in dict.fromkeys(pairs):
        mark_known(db, user_id, lemma, pos, source=source)
        count += 1
    return count


def count_marks(db: Session, user_id: int, mark: str) -> int:
    return (
        db.query(KnowledgeMark)
        .filter(KnowledgeMark.user_id == user_id, KnowledgeMark.mark == mark)
        .count()
    )
