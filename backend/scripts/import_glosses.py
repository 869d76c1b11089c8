#!/usr/bin/env python3
"""Load English glosses into the lemma dictionary.

Input is a tab-separated file with one entry per line: lemma, POS, gloss.
Lines starting with # and lines with fewer than three columns are skipped.
Glosses show up as the card meaning on the back of review cards.

Usage:
    python scripts/import_glosses.py --lang FI sanasto.tsv
    python scripts/import_glosses.py --lang ET --dry-run sonastik.tsv
"""

import argparse
import csv
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from finnest.config import settings
from finnest.database import SessionLocal, atomic, init_db
from finnest.services.lexicon_indexer import set_glosses

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger("import_glosses")


def read_entries(path: Path) -> list[tuple[str, str, str]]:
    entries = []
    with open(path, encoding="utf-8", newline="") as f:
        for row in csv.reader(f, delimiter="\t"):
            if not row or row[0].startswith("#") or len(row) < 3:
                continue
            lemma, pos, gloss = (c.strip() for c in row[:3])
            entries.append((lemma.lower(), pos.upper(), gloss))
    return entries


def main() -> int:
    parser = argparse.ArgumentParser(description="Load lemma glosses from a TSV file")
    parser.add_argument("path", type=Path)
    parser.add_argument("--lang", default="FI")
    parser.add_argument("--dry-run", action="store_true", help="Read and report, write nothing")
    args = parser.parse_args()

    lang = args.lang.upper()
    if lang not in settings.supported_languages:
        logger.error("Unsupported language %s", lang)
        return 1

    entries = read_entries(args.path)
    if args.dry_run:
        logger.info("%s: %d gloss entries for %s", args.path, len(entries), lang)
        return 0

    init_db()
    db = SessionLocal()
    try:
        with atomic(db):
            written = set_glosses(db, lang, entries)
    finally:
        db.close()

    logger.info("Wrote %d glosses for %s", written, lang)
    return 0


if __name__ == "__main__":
    sys.exit(main())
