from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Text, Float, DateTime, ForeignKey, JSON, Boolean,
    Index, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship

from finnest.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(Text, unique=True, nullable=False)
    email_verified = Column(Boolean, default=False, server_default="0")
    settings_json = Column(JSON, nullable=True)  # {"new_per_day": 20, "retention": 0.9, "theme": "system"}
    created_at = Column(DateTime, default=_utcnow)

    decks = relationship("Deck", back_populates="user")


class Deck(Base):
    __tablename__ = "decks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(Text, nullable=False)
    lang = Column(String(2), nullable=False)  # FI/ET
    created_at = Column(DateTime, default=_utcnow)

    user = relationship("User", back_populates="decks")
    sentences = relationship(
        "Sentence", back_populates="deck", cascade="all, delete-orphan", order_by="Sentence.id",
    )
    occurrences = relationship("Occurrence", back_populates="deck", cascade="all, delete-orphan")


class Sentence(Base):
    __tablename__ = "sentences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    deck_id = Column(Integer, ForeignKey("decks.id"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    lang = Column(String(2), nullable=False)
    token_count = Column(Integer, nullable=False, default=0)

    deck = relationship("Deck", back_populates="sentences")
    tokens = relationship(
        "SentenceToken", back_populates="sentence", cascade="all, delete-orphan",
        order_by="SentenceToken.position",
    )


class SentenceToken(Base):
    __tablename__ = "sentence_tokens"
    __table_args__ = (UniqueConstraint("sentence_id", "position"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    sentence_id = Column(Integer, ForeignKey("sentences.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    surface_form = Column(Text, nullable=False)
    lemma = Column(Text, nullable=False)
    pos = Column(String(20), nullable=False)
    feats_json = Column(JSON, nullable=True)
    grammar_label = Column(Text, nullable=True)
    mwe_id = Column(Integer, nullable=True)

    sentence = relationship("Sentence", back_populates="tokens")


class Lemma(Base):
    __tablename__ = "lemmas"

    lemma = Column(Text, primary_key=True)
    pos = Column(String(20), primary_key=True)
    lang = Column(String(2), primary_key=True)
    gloss = Column(Text, nullable=True)


class Occurrence(Base):
    __tablename__ = "occurrences"
    __table_args__ = (
        UniqueConstraint("sentence_id", "token_index"),
        Index("ix_occurrences_lemma_pos", "lemma", "pos"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    deck_id = Column(Integer, ForeignKey("decks.id"), nullable=False, index=True)
    sentence_id = Column(Integer, ForeignKey("sentences.id"), nullable=False, index=True)
    token_index = Column(Integer, nullable=False)
    lemma = Column(Text, nullable=False)
    pos = Column(String(20), nullable=False)
    mwe_id = Column(Integer, nullable=True)

    deck = relationship("Deck", back_populates="occurrences")
    sentence = relationship("Sentence")


class KnowledgeMark(Base):
    __tablename__ = "knowledge_marks"
    __table_args__ = (UniqueConstraint("user_id", "lemma", "pos"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    lemma = Column(Text, nullable=False)
    pos = Column(String(20), nullable=False)
    mark = Column(String(10), nullable=False)  # known/ignored
    source = Column(String(20), default="review")  # review/import
    marked_at = Column(DateTime, default=_utcnow)


class Card(Base):
    __tablename__ = "cards"
    # ids are never reused, so a stale client id cannot hit a newer card
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    lemma = Column(Text, nullable=False)
    pos = Column(String(20), nullable=False)
    mwe_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    introduced_at = Column(DateTime, nullable=True, index=True)
    retired_at = Column(DateTime, nullable=True)
    retired_reason = Column(String(10), nullable=True)  # known/ignored

    state = relationship(
        "SchedulerState", back_populates="card", uselist=False, cascade="all, delete-orphan",
    )
    reviews = relationship("ReviewLog", back_populates="card")

    @property
    def is_retired(self) -> bool:
        return self.retired_at is not None


# NULL mwe_id must collide with NULL for the per-user identity rule
Index(
    "uq_cards_identity",
    Card.user_id, Card.lemma, Card.pos, func.coalesce(Card.mwe_id, -1),
    unique=True,
)


class SchedulerState(Base):
    __tablename__ = "scheduler_states"

    card_id = Column(Integer, ForeignKey("cards.id"), primary_key=True)
    stage = Column(String(20), nullable=False, default="new", index=True)  # new/learning/review/relearning
    step = Column(Integer, nullable=True)
    stability = Column(Float, nullable=True)
    difficulty = Column(Float, nullable=True)
    due = Column(DateTime, nullable=True, index=True)
    last_reviewed = Column(DateTime, nullable=True)
    reps = Column(Integer, nullable=False, default=0)
    lapses = Column(Integer, nullable=False, default=0)

    card = relationship("Card", back_populates="state")


class ReviewLog(Base):
    __tablename__ = "review_log"
    # client ids are scoped to the submitting user
    __table_args__ = (UniqueConstraint("user_id", "client_review_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    card_id = Column(Integer, ForeignKey("cards.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)  # 1-4
    reviewed_at = Column(DateTime, default=_utcnow, index=True)
    stage_before = Column(String(20), nullable=False)
    stage_after = Column(String(20), nullable=False)
    stability = Column(Float, nullable=True)
    difficulty = Column(Float, nullable=True)
    due = Column(DateTime, nullable=True)
    client_review_id = Column(String(50), nullable=True)

    card = relationship("Card", back_populates="reviews")
