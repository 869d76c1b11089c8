#!/usr/bin/env python3
"""Import a plain-text file as a deck for a user.

The text goes through the configured parser, occurrences are indexed and the
user's cards are materialized, exactly as POST /api/decks does.

Usage:
    python scripts/import_text.py --email me@example.com --lang FI --title "Uutiset" news.txt
    python scripts/import_text.py --email me@example.com --lang ET --dry-run tekst.txt
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from finnest.database import SessionLocal, atomic, init_db
from finnest.errors import EngineError
from finnest.services.deck_service import create_deck
from finnest.services.parser import get_parser
from finnest.services.user_service import get_or_create_user

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger("import_text")


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("path", type=Path)
    parser.add_argument("--email", required=True)
    parser.add_argument("--lang", default="FI")
    parser.add_argument("--title", default=None, help="Deck title (defaults to the file name)")
    parser.add_argument("--dry-run", action="store_true", help="Parse and report, write nothing")
    args = parser.parse_args()

    text = args.path.read_text(encoding="utf-8")
    title = args.title or args.path.stem

    if args.dry_run:
        sentences = get_parser().analyze(args.lang.upper(), text)
        tokens = sum(len(s.tokens) for s in sentences)
        lemmas = {(t.lemma, t.pos) for s in sentences for t in s.tokens}
        logger.info("%s: %d sentences, %d tokens, %d distinct lemmas", args.path, len(sentences), tokens, len(lemmas))
        return 0

    init_db()
    db = SessionLocal()
    try:
        with atomic(db):
            user_id = get_or_create_user(db, args.email.strip().lower()).id
        result = create_deck(db, user_id, title, args.lang, text)
    except (EngineError, ValueError) as e:
        logger.error("Import failed: %s", e)
        return 1
    finally:
        db.close()

    logger.info(
        "Deck %s '%s': %d sentences, %d occurrences, %d new cards",
        result["deck_id"], title, result["sentences"], result["occurrences"], result["cards_created"],
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
