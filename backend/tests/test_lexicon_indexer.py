import pytest

from finnest.errors import NotFound
from finnest.models import Card, Lemma, Occurrence, Sentence, SentenceToken
from finnest.services.lexicon_indexer import CardKey, card_keys_for_sentence, index_deck, set_glosses
from finnest.services.parser import StubParser

from factories import add_deck, sent, tok


class TestCardKeys:
    def test_standalone_tokens_use_own_lemma(self):
        keys = card_keys_for_sentence([tok("talo"), tok("olla", "VERB")])
        assert keys == [CardKey("talo", "NOUN"), CardKey("olla", "VERB")]

    def test_mwe_group_collapses_to_one_key(self):
        tokens = [
            tok("pitää", "VERB", form="pidä", mwe_id=7),
            tok("huoli", "NOUN", form="huolta", mwe_id=7),
            tok("itse", "PRON"),
        ]
        keys = card_keys_for_sentence(tokens)
        assert keys[0] == keys[1] == CardKey("pitää huoli", "VERB", 7)
        assert keys[2] == CardKey("itse", "PRON")

    def test_mwe_members_sharing_lemma_keep_it(self):
        tokens = [
            tok("pitää huolta", "VERB", form="pidä", mwe_id=3),
            tok("pitää huolta", "VERB", form="huolta", mwe_id=3),
        ]
        assert set(card_keys_for_sentence(tokens)) == {CardKey("pitää huolta", "VERB", 3)}


class TestIndexDeck:
    def test_emits_one_occurrence_per_token(self, db_session, user):
        deck, result = add_deck(db_session, user, [
            sent("talo", "olla", "iso"),
            sent("kissa", "nukkua"),
        ])
        assert result.sentence_count == 2
        assert result.occurrence_count == 5

        occs = db_session.query(Occurrence).filter(Occurrence.deck_id == deck.id).all()
        assert len(occs) == 5
        assert {(o.token_index, o.lemma) for o in occs if o.lemma in ("talo", "olla", "iso")} == {
            (0, "talo"), (1, "olla"), (2, "iso"),
        }

    def test_sentences_and_tokens_stored(self, db_session, user):
        deck, _ = add_deck(db_session, user, [sent(tok("talo", form="Talossa"), "olla")])
        sentence = db_session.query(Sentence).filter(Sentence.deck_id == deck.id).one()
        assert sentence.token_count == 2
        assert sentence.text == "Talossa olla"
        assert sentence.lang == "FI"
        tokens = db_session.query(SentenceToken).filter(SentenceToken.sentence_id == sentence.id).all()
        assert [t.surface_form for t in sorted(tokens, key=lambda t: t.position)] == ["Talossa", "olla"]

    def test_repeated_lemma_in_one_sentence(self, db_session, user):
        _, result = add_deck(db_session, user, [sent("talo", "ja", "talo")])
        assert [o.token_index for o in result.occurrences if o.lemma == "talo"] == [0, 2]

    def test_empty_sentences_skipped(self, db_session, user):
        _, result = add_deck(db_session, user, [sent(), sent("talo"), sent()])
        assert result.sentence_count == 1
        assert result.skipped_empty == 2
        assert db_session.query(Sentence).count() == 1

    def test_mwe_tokens_share_card_identity(self, db_session, user):
        _, result = add_deck(db_session, user, [sent(
            tok("pitää", "VERB", mwe_id=1),
            tok("huoli", "NOUN", mwe_id=1),
        )])
        keys = {(o.lemma, o.pos, o.mwe_id) for o in result.occurrences}
        assert keys == {("pitää huoli", "VERB", 1)}
        assert len(result.occurrences) == 2

    def test_unknown_deck(self, db_session):
        with pytest.raises(NotFound):
            index_deck(db_session, 999, [sent("talo")])

    def test_does_not_create_cards(self, db_session, user):
        add_deck(db_session, user, [sent("talo", "olla")])
        assert db_session.query(Card).count() == 0

    def test_lemma_dictionary_upserted_once(self, db_session, user):
        add_deck(db_session, user, [sent("talo")])
        add_deck(db_session, user, [sent("talo", "koira")], title="Second")
        lemmas = db_session.query(Lemma).filter(Lemma.lang == "FI").all()
        assert sorted(l.lemma for l in lemmas) == ["koira", "talo"]

    def test_sentence_stored_as_written(self, db_session, user):
        sentences = StubParser().analyze("FI", "Talo on  iso , ja punainen. Kissa nukkuu.")
        deck, result = add_deck(db_session, user, sentences)
        texts = [s.text for s in db_session.query(Sentence).filter(Sentence.deck_id == deck.id).order_by(Sentence.id)]
        assert texts == ["Talo on  iso , ja punainen.", "Kissa nukkuu."]
        assert result.occurrence_count == 7


class TestGlosses:
    def test_sets_gloss_on_indexed_lemma(self, db_session, user):
        add_deck(db_session, user, [sent("talo")])
        written = set_glosses(db_session, "FI", [("talo", "NOUN", "house"), ("koira", "NOUN", " "), ("", "NOUN", "x")])
        db_session.commit()
        assert written == 1
        assert db_session.get(Lemma, ("talo", "NOUN", "FI")).gloss == "house"
        assert db_session.get(Lemma, ("koira", "NOUN", "FI")) is None

    def test_creates_missing_entries_per_language(self, db_session):
        set_glosses(db_session, "ET", [("maja", "NOUN", "house"), ("maja", "NOUN", "hut")])
        db_session.commit()
        assert db_session.get(Lemma, ("maja", "NOUN", "ET")).gloss == "hut"
        assert db_session.get(Lemma, ("maja", "NOUN", "FI")) is None
