"""Parser contract and the built-in stub analyzer.

The engine never analyzes text itself. Anything that turns (language, raw
text) into analyzed sentences can be plugged in as long as it satisfies
``Parser``. ``StubParser`` is a whitespace tokenizer with suffix-based POS
guessing: good enough to drive imports end to end, useless as morphology.
"""

import re
import string
import unicodedata
from dataclasses import dataclass, field
from typing import Optional, Protocol

from finnest.config import settings
from finnest.errors import ParseFailure


@dataclass(frozen=True)
class Token:
    form: str
    lemma: str
    pos: str
    feats: dict = field(default_factory=dict)
    grammar_label: str = ""
    mwe_id: Optional[int] = None


@dataclass
class AnalyzedSentence:
    tokens: list[Token] = field(default_factory=list)
    raw: str = ""  # source sentence as written; empty when the analyzer has none

    @property
    def text(self) -> str:
        if self.raw:
            return self.raw
        return " ".join(t.form for t in self.tokens)


class Parser(Protocol):
    def analyze(self, lang: str, text: str) -> list[AnalyzedSentence]:
        ...


_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")
_PUNCT = string.punctuation + "«»“”„–—…"

# Checked in order; the first matching suffix wins.
_POS_SUFFIXES = (
    ("ADJ", ("inen",)),
    ("NOUN", ("nen", "ssa", "ssä", "lla", "llä", "iin")),
    ("VERB", ("aa", "ää", "oi", "ui", "in", "en")),
)


def normalize_text(text: str) -> str:
    return unicodedata.normalize("NFC", text)


def split_sentences(text: str) -> list[str]:
    """Split on . ! ? followed by whitespace. Trailing text without a
    terminator still counts as a sentence."""
    return [s.strip() for s in _SENTENCE_END_RE.split(text) if s.strip()]


def tokenize(sentence: str) -> list[str]:
    return [w for w in sentence.split() if w.strip(_PUNCT)]


def guess_pos(form: str) -> str:
    lower = form.lower().strip(_PUNCT)
    for pos, suffixes in _POS_SUFFIXES:
        if lower.endswith(suffixes):
            return pos
    return "NOUN"


def _stub_token(form: str) -> Token:
    pos = guess_pos(form)
    return Token(
        form=form,
        lemma=form.lower().strip(_PUNCT),
        pos=pos,
        feats={},
        grammar_label=f"{pos} (stub)",
    )


class StubParser:
    def __init__(self, languages: tuple[str, ...] | None = None):
        self.languages = tuple(languages or settings.supported_languages)

    def analyze(self, lang: str, text: str) -> list[AnalyzedSentence]:
        if lang not in self.languages:
            raise ParseFailure(f"Unsupported language: {lang!r}")
        if not isinstance(text, str):
            raise ParseFailure("Text must be a string")

        sentences = []
        for raw in split_sentences(normalize_text(text)):
            sentences.append(AnalyzedSentence(tokens=[_stub_token(w) for w in tokenize(raw)], raw=raw))
        return sentences


def get_parser() -> Parser:
    return StubParser()
