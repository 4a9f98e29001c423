"""CLI to load question rows from a JSON file into the session store.

Usage: testprep-seed questions.json [--grant-admin USERNAME]

The file holds a list of question objects with the same keys the
`/admin/questions` endpoint accepts. Invalid items are reported and
skipped; valid ones are inserted in one batch.
"""

import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import ValidationError
from sqlmodel import Session

from . import repositories
from .config import settings
from .database import create_db_and_tables, engine
from .schemas import QuestionIn
from .services import QuestionService

logger = logging.getLogger("testprep.seed")


def load_questions(session: Session, path: Path) -> Tuple[int, List[str]]:
    """Insert every valid question in `path`; returns (created, errors)."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError("question file must contain a JSON list")
    items = []
    errors = []
    for idx, item in enumerate(raw):
        try:
            items.append(QuestionIn.model_validate(item))
        except ValidationError as e:
            errors.append(f"item {idx}: {e.errors()[0]['msg']}")
    created = QuestionService(session).add_questions(items) if items else []
    return len(created), errors


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Load practice questions into the database")
    parser.add_argument("path", type=Path, help="JSON file with a list of questions")
    parser.add_argument("--grant-admin", metavar="USERNAME", help="also grant the admin role to this user")
    args = parser.parse_args(argv)
    logging.basicConfig(level=settings.LOG_LEVEL)

    create_db_and_tables()
    with Session(engine) as session:
        created, errors = load_questions(session, args.path)
        for err in errors:
            logger.warning("skipped %s", err)
        print(f"Created {created} questions, skipped {len(errors)}")
        if args.grant_admin:
            user = repositories.UserRepository(session).get_by_username(args.grant_admin)
            if user is None:
                print(f"User not found: {args.grant_admin}")
                return 1
            repositories.RoleRepository(session).grant(user.id, "admin")
            print(f"Granted admin to {user.username}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
