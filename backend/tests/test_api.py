from finnest.models import Card, User
from finnest.services.lexicon_indexer import set_glosses


DECK_TEXT = "Talo on iso. Koira on pieni."


def _import_deck(client, title="Uutiset", lang="FI", text=DECK_TEXT):
    resp = client.post("/api/decks", json={"title": title, "lang": lang, "text": text})
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_root(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json()["app"] == "finnest"


def test_requires_login(client):
    assert client.get("/api/me").status_code == 401
    assert client.get("/api/review/next").status_code == 401
    assert client.post("/api/review/answer", json={"card_id": 1, "grade": 3}).status_code == 401


def test_login_reuses_account(client, db_session):
    first = client.post("/api/auth/login", json={"email": "Learner@Example.com"}).json()
    second = client.post("/api/auth/login", json={"email": "learner@example.com"}).json()
    assert first["user_id"] == second["user_id"]
    assert db_session.query(User).count() == 1


class TestDecks:
    def test_import_and_list(self, client, logged_in):
        created = _import_deck(client)
        assert created["sentences"] == 2
        assert created["cards_created"] == 5

        decks = client.get("/api/decks").json()
        assert len(decks) == 1
        assert decks[0]["title"] == "Uutiset"
        assert decks[0]["unique"] == 5

    def test_bad_language(self, client, logged_in):
        resp = client.post("/api/decks", json={"title": "T", "lang": "SV", "text": "Hej."})
        assert resp.status_code == 400

    def test_delete(self, client, logged_in):
        deck_id = _import_deck(client)["deck_id"]
        assert client.delete(f"/api/decks/{deck_id}").status_code == 200
        assert client.get("/api/decks").json() == []
        resp = client.delete(f"/api/decks/{deck_id}")
        assert resp.status_code == 404
        assert resp.json()["type"] == "NotFound"

    def test_me(self, client, logged_in):
        _import_deck(client)
        data = client.get("/api/me").json()
        assert data["known_count"] == 0
        assert data["new_capacity_today"] == 20
        assert len(data["decks"]) == 1


class TestReview:
    def test_next_then_answer(self, client, logged_in, db_session):
        _import_deck(client)
        card = client.get("/api/review/next").json()["card"]
        assert card["mode"] == "new"
        assert card["front"]["type"] == "sentence"
        assert card["front"]["highlight"]
        assert card["scheduling"]["stage"] == "new"
        assert card["back"]["examples"][0]["source_deck"] == "Uutiset"

        resp = client.post("/api/review/answer", json={"card_id": card["card_id"], "grade": "good"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["previous_stage"] == "new"
        assert data["new_stage"] == "learning"
        assert data["next_due"]

    def test_meaning_from_lemma_dictionary(self, client, logged_in, db_session):
        _import_deck(client, text="Talo.")
        set_glosses(db_session, "FI", [("talo", "NOUN", "house")])
        db_session.commit()
        card = client.get("/api/review/next").json()["card"]
        assert card["back"]["meaning"] == "house"

    def test_nothing_to_review(self, client, logged_in):
        resp = client.get("/api/review/next")
        assert resp.status_code == 200
        assert resp.json() == {"card": None}

    def test_invalid_grade(self, client, logged_in):
        _import_deck(client)
        card = client.get("/api/review/next").json()["card"]
        resp = client.post("/api/review/answer", json={"card_id": card["card_id"], "grade": "meh"})
        assert resp.status_code == 422
        assert resp.json()["type"] == "InvalidGrade"

    def test_unknown_card(self, client, logged_in):
        resp = client.post("/api/review/answer", json={"card_id": 999, "grade": 3})
        assert resp.status_code == 404

    def test_other_users_card(self, client, logged_in, db_session):
        _import_deck(client)
        card_id = db_session.query(Card.id).first()[0]
        client.post("/api/auth/login", json={"email": "someone@example.com"})
        resp = client.post("/api/review/answer", json={"card_id": card_id, "grade": 3})
        assert resp.status_code == 404

    def test_retired_card_conflict(self, client, logged_in):
        _import_deck(client)
        card = client.get("/api/review/next").json()["card"]
        assert client.post("/api/card/ignore", json={"card_id": card["card_id"]}).status_code == 200
        resp = client.post("/api/review/answer", json={"card_id": card["card_id"], "grade": 3})
        assert resp.status_code == 409
        assert resp.json()["type"] == "InvalidState"

    def test_duplicate_submission(self, client, logged_in):
        _import_deck(client)
        card = client.get("/api/review/next").json()["card"]
        body = {"card_id": card["card_id"], "grade": 3, "client_review_id": "abc"}
        first = client.post("/api/review/answer", json=body).json()
        second = client.post("/api/review/answer", json=body).json()
        assert first["duplicate"] is False
        assert second["duplicate"] is True
        assert second["reps"] == 1

    def test_review_id_reused_on_other_card_conflicts(self, client, logged_in):
        _import_deck(client)
        first = client.get("/api/review/next").json()["card"]
        client.post("/api/review/answer", json={"card_id": first["card_id"], "grade": 4, "client_review_id": "r1"})
        second = client.get("/api/review/next").json()["card"]
        assert second["card_id"] != first["card_id"]
        resp = client.post("/api/review/answer", json={"card_id": second["card_id"], "grade": 3, "client_review_id": "r1"})
        assert resp.status_code == 409
        assert resp.json()["type"] == "InvalidState"


class TestDispositions:
    def test_known_card_is_not_shown_again(self, client, logged_in):
        _import_deck(client, text="Talo.")
        card = client.get("/api/review/next").json()["card"]
        resp = client.post("/api/card/known", json={"card_id": card["card_id"]})
        assert resp.status_code == 200
        assert resp.json()["mark"] == "known"
        assert client.get("/api/review/next").json() == {"card": None}
        assert client.get("/api/me").json()["known_count"] == 1

    def test_unmark_restores(self, client, logged_in):
        _import_deck(client, text="Talo.")
        card = client.get("/api/review/next").json()["card"]
        client.post("/api/card/known", json={"card_id": card["card_id"]})
        resp = client.delete("/api/known", params={"lemma": "talo", "pos": "NOUN"})
        assert resp.json() == {"cleared": True, "restored_card_ids": [card["card_id"]]}
        assert client.get("/api/review/next").json()["card"]["card_id"] == card["card_id"]

    def test_import_known(self, client, logged_in):
        _import_deck(client)
        resp = client.post("/api/known/import", json={"lemmas": [
            {"lemma": "talo", "pos": "NOUN"}, {"lemma": "koira", "pos": "NOUN"},
        ]})
        assert resp.json() == {"marked": 2, "retired": 2}

    def test_reset_progress(self, client, logged_in):
        _import_deck(client)
        resp = client.post("/api/progress/reset")
        assert resp.json() == {"deleted_cards": 5}


class TestSettings:
    def test_get_defaults(self, client, logged_in):
        data = client.get("/api/settings").json()
        assert data == {"new_per_day": 20, "retention": 0.9, "theme": "system"}

    def test_update(self, client, logged_in):
        resp = client.put("/api/settings", json={"new_per_day": 5})
        assert resp.status_code == 200
        assert resp.json()["new_per_day"] == 5
        assert resp.json()["retention"] == 0.9
        assert client.get("/api/me").json()["new_capacity_today"] == 5

    def test_rejects_out_of_range(self, client, logged_in):
        assert client.put("/api/settings", json={"retention": 0.5}).status_code == 422
        assert client.put("/api/settings", json={"new_per_day": -1}).status_code == 422

    def test_cap_zero_stops_new_cards(self, client, logged_in):
        _import_deck(client)
        client.put("/api/settings", json={"new_per_day": 0})
        assert client.get("/api/review/next").json() == {"card": None}
