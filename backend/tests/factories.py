"""Small builders shared by the service tests."""

from datetime import datetime, timezone

from finnest.models import Deck
from finnest.services.lexicon_indexer import index_deck
from finnest.services.parser import AnalyzedSentence, Token

NOW = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def tok(lemma: str, pos: str = "NOUN", form: str | None = None, mwe_id: int | None = None) -> Token:
    return Token(form=form or lemma, lemma=lemma, pos=pos, grammar_label=f"{pos} (test)", mwe_id=mwe_id)


def sent(*words) -> AnalyzedSentence:
    """Words are lemmas (NOUN) or ready-made Tokens."""
    return AnalyzedSentence(tokens=[w if isinstance(w, Token) else tok(w) for w in words])


def add_deck(db, user, sentences, title="Deck", lang="FI", commit=True):
    """Create a deck and index its sentences. Does not create cards."""
    deck = Deck(user_id=user.id, title=title, lang=lang)
    db.add(deck)
    db.flush()
    result = index_deck(db, deck.id, sentences)
    if commit:
        db.commit()
    return deck, result
