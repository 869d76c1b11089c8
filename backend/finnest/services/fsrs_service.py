"""Memory-decay scheduling on top of the ``fsrs`` library.

A card's scheduler state is kept entirely in columns (stage, step,
stability, difficulty, due, last_reviewed, reps, lapses). Each review
rebuilds an ``fsrs.Card`` from those columns, runs one FSRS step and
writes the result back, so a state reloaded from the store replays
exactly like one that never left memory.

Stages: new -> learning -> review <-> relearning. FSRS itself has no
"new" state; a card is new until its first graded answer. Lapses and
repetition counts are tracked here because recent fsrs releases dropped
them from ``Card``.
"""

import logging
from dataclasses import dataclass, asdict, replace
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

from fsrs import Card, Rating, Scheduler, State

from finnest.config import settings
from finnest.errors import InvalidGrade
from finnest.models import SchedulerState

logger = logging.getLogger(__name__)

STAGE_NEW = "new"
STAGE_LEARNING = "learning"
STAGE_REVIEW = "review"
STAGE_RELEARNING = "relearning"
STAGES = (STAGE_NEW, STAGE_LEARNING, STAGE_REVIEW, STAGE_RELEARNING)

STATE_MAP = {
    State.Learning: STAGE_LEARNING,
    State.Review: STAGE_REVIEW,
    State.Relearning: STAGE_RELEARNING,
}
STAGE_TO_STATE = {stage: state for state, stage in STATE_MAP.items()}

RATING_MAP = {
    1: Rating.Again,
    2: Rating.Hard,
    3: Rating.Good,
    4: Rating.Easy,
}
GRADE_NAMES = {"again": 1, "hard": 2, "good": 3, "easy": 4}


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; everything stored is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_grade(grade) -> int:
    """Accept 1-4 or again/hard/good/easy; anything else is InvalidGrade."""
    if isinstance(grade, bool):
        raise InvalidGrade(f"Invalid grade: {grade!r}")
    if isinstance(grade, int):
        if grade in RATING_MAP:
            return grade
    elif isinstance(grade, str):
        key = grade.strip().lower()
        if key in GRADE_NAMES:
            return GRADE_NAMES[key]
        if key.isdigit() and int(key) in RATING_MAP:
            return int(key)
    raise InvalidGrade(f"Invalid grade: {grade!r} (expected Again/Hard/Good/Easy or 1-4)")


@lru_cache(maxsize=16)
def _cached_scheduler(
    retention: float,
    learning_steps: tuple[float, ...],
    relearning_steps: tuple[float, ...],
    maximum_interval: int,
    enable_fuzzing: bool,
) -> Scheduler:
    return Scheduler(
        desired_retention=retention,
        learning_steps=tuple(timedelta(minutes=m) for m in learning_steps),
        relearning_steps=tuple(timedelta(minutes=m) for m in relearning_steps),
        maximum_interval=maximum_interval,
        enable_fuzzing=enable_fuzzing,
    )


def get_scheduler(retention: Optional[float] = None) -> Scheduler:
    return _cached_scheduler(
        float(retention if retention is not None else settings.default_retention),
        tuple(settings.learning_steps_minutes),
        tuple(settings.relearning_steps_minutes),
        int(settings.maximum_interval_days),
        bool(settings.enable_fuzzing),
    )


@dataclass(frozen=True)
class MemoryState:
    """Everything the scheduler needs to continue a card's history."""

    stage: str = STAGE_NEW
    step: Optional[int] = None
    stability: Optional[float] = None
    difficulty: Optional[float] = None
    due: Optional[datetime] = None
    last_reviewed: Optional[datetime] = None
    reps: int = 0
    lapses: int = 0

    @classmethod
    def from_model(cls, state: SchedulerState) -> "MemoryState":
        return cls(
            stage=state.stage or STAGE_NEW,
            step=state.step,
            stability=state.stability,
            difficulty=state.difficulty,
            due=as_utc(state.due),
            last_reviewed=as_utc(state.last_reviewed),
            reps=state.reps or 0,
            lapses=state.lapses or 0,
        )

    def apply_to(self, state: SchedulerState) -> None:
        state.stage = self.stage
        state.step = self.step
        state.stability = self.stability
        state.difficulty = self.difficulty
        state.due = self.due
        state.last_reviewed = self.last_reviewed
        state.reps = self.reps
        state.lapses = self.lapses

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("due", "last_reviewed"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryState":
        values = dict(data)
        for key in ("due", "last_reviewed"):
            if values.get(key):
                values[key] = as_utc(datetime.fromisoformat(values[key]))
        return cls(**values)

    def to_fsrs_card(self, card_id: int = 0) -> Card:
        if self.stage == STAGE_NEW:
            return Card(card_id=card_id)
        return Card(
            card_id=card_id,
            state=STAGE_TO_STATE[self.stage],
            step=self.step,
            stability=self.stability,
            difficulty=self.difficulty,
            due=self.due,
            last_review=self.last_reviewed,
        )

    def is_due(self, as_of: datetime) -> bool:
        return self.stage != STAGE_NEW and self.due is not None and self.due <= as_utc(as_of)


def review_memory(
    memory: MemoryState,
    rating_int: int,
    now: datetime,
    retention: Optional[float] = None,
    card_id: int = 0,
) -> MemoryState:
    """Apply one graded answer. Pure: the input state is left untouched."""
    rating = RATING_MAP.get(parse_grade(rating_int))
    now = as_utc(now)
    scheduler = get_scheduler(retention)

    card = memory.to_fsrs_card(card_id)
    new_card, _ = scheduler.review_card(card, rating, now)

    new_stage = STATE_MAP.get(new_card.state, STAGE_LEARNING)
    lapses = memory.lapses
    if memory.stage == STAGE_REVIEW and rating == Rating.Again:
        lapses += 1

    return replace(
        memory,
        stage=new_stage,
        step=new_card.step,
        stability=new_card.stability,
        difficulty=new_card.difficulty,
        due=as_utc(new_card.due),
        last_reviewed=now,
        reps=memory.reps + 1,
        lapses=lapses,
    )


def new_scheduler_state(card_id: Optional[int] = None) -> SchedulerState:
    return SchedulerState(card_id=card_id, stage=STAGE_NEW, reps=0, lapses=0)


def review_state(
    state: SchedulerState,
    rating_int: int,
    now: datetime,
    retention: Optional[float] = None,
) -> tuple[MemoryState, MemoryState]:
    """Review a stored state in place. Returns (before, after)."""
    before = MemoryState.from_model(state)
    after = review_memory(before, rating_int, now, retention=retention, card_id=state.card_id or 0)
    after.apply_to(state)
    logger.debug(
        "card %s: %s -> %s (rating=%s, S=%.2f, due=%s)",
        state.card_id, before.stage, after.stage, rating_int,
        after.stability or 0.0, after.due,
    )
    return before, after


def retrievability(state: SchedulerState, now: datetime, retention: Optional[float] = None) -> float:
    """Current recall probability; 0.0 for cards never reviewed."""
    memory = MemoryState.from_model(state)
    if memory.stage == STAGE_NEW:
        return 0.0
    return get_scheduler(retention).get_card_retrievability(memory.to_fsrs_card(state.card_id or 0), as_utc(now))
