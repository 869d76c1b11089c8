from typing import Optional, Union
from pydantic import BaseModel, Field


class LoginIn(BaseModel):
    email: str = Field(min_length=3)
    password: str = ""


class LoginOut(BaseModel):
    user_id: int
    email: str


class DeckSummaryOut(BaseModel):
    id: int
    title: str
    lang: str
    known: int
    unique: int
    due: int
    created_at: Optional[str] = None


class DashboardOut(BaseModel):
    known_count: int
    due_count: int
    new_capacity_today: int
    decks: list[DeckSummaryOut]


class CreateDeckIn(BaseModel):
    title: str
    lang: str
    text: str


class CreateDeckOut(BaseModel):
    deck_id: int
    sentences: int
    skipped_sentences: int = 0
    occurrences: int
    cards_created: int


class DeleteDeckOut(BaseModel):
    deck_id: int
    deleted_sentences: int


class CardFrontOut(BaseModel):
    type: str = "sentence"
    text: str
    highlight: Optional[str] = None
    highlight_positions: list[int] = []


class CardExampleOut(BaseModel):
    sentence_id: int
    text: str
    source_deck: str


class CardBackOut(BaseModel):
    lemma: str
    pos: str
    # lemma dictionary gloss (scripts/import_glosses.py); null until one is loaded
    meaning: Optional[str] = None
    grammar: Optional[str] = None
    examples: list[CardExampleOut] = []


class SchedulingOut(BaseModel):
    stage: str
    due: Optional[str] = None
    stability: Optional[float] = None
    difficulty: Optional[float] = None
    reps: int = 0
    lapses: int = 0


class CardOut(BaseModel):
    card_id: int
    mode: str  # review/new
    deck_counts: list[tuple[str, int]] = []
    front: CardFrontOut
    back: CardBackOut
    tokens: list[dict] = []
    scheduling: SchedulingOut
    new_lemmas_in_example: int = 0


class NextCardOut(BaseModel):
    card: Optional[CardOut] = None


class AnswerIn(BaseModel):
    card_id: int
    grade: Union[int, str]  # 1-4 or again/hard/good/easy
    client_review_id: Optional[str] = Field(default=None, max_length=50)


class AnswerOut(BaseModel):
    card_id: int
    lemma: str
    pos: str
    previous_stage: str
    new_stage: str
    next_due: Optional[str] = None
    stability: Optional[float] = None
    difficulty: Optional[float] = None
    reps: int
    lapses: int
    duplicate: bool = False


class CardActionIn(BaseModel):
    card_id: int


class CardActionOut(BaseModel):
    card_id: int
    lemma: str
    pos: str
    mark: str
    retired_card_ids: list[int]


class LemmaPosIn(BaseModel):
    lemma: str = Field(min_length=1)
    pos: str = Field(min_length=1)


class KnownImportIn(BaseModel):
    lemmas: list[LemmaPosIn]


class KnownImportOut(BaseModel):
    marked: int
    retired: int


class UnmarkOut(BaseModel):
    cleared: bool
    restored_card_ids: list[int]


class SettingsOut(BaseModel):
    new_per_day: int
    retention: float
    theme: str = "system"


class SettingsIn(BaseModel):
    new_per_day: Optional[int] = Field(default=None, ge=0, le=1000)
    retention: Optional[float] = Field(default=None, ge=0.7, le=0.99)
    theme: Optional[str] = None
