"""Load levels and vocabulary items from a CSV export.

Expected columns: ``level_code``, ``level_title``, ``training_type``, ``text``,
``part_of_speech``, ``meanings``, ``synonyms``, ``notes``. List columns use
``|`` as separator.
"""
from __future__ import annotations

import csv
import sys
from pathlib import Path

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

sys.path.append(str(Path(__file__).resolve().parent.parent))

from flashbox.core.srs.leitner import TrainingType
from flashbox.db.models.vocabulary import Level, VocabularyItem
from flashbox.db.session import SessionLocal


def split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split("|") if part.strip()]


def get_or_create_level(db: Session, code: str, title: str, training_type: TrainingType) -> Level:
    level = db.scalars(
        select(Level).where(Level.code == code, Level.training_type == training_type)
    ).first()
    if level is None:
        level = Level(code=code, title=title or code, training_type=training_type)
        db.add(level)
        db.flush([level])
    return level


def load_vocabulary_from_csv(csv_path: str) -> int:
    """Insert items that are not present yet; returns how many were added."""

    db: Session = SessionLocal()
    loaded = 0
    try:
        with open(csv_path, "r", encoding="utf-8") as file:
            for row in csv.DictReader(file):
                training_type = TrainingType(int(row.get("training_type") or TrainingType.VOCABULARY))
                level = get_or_create_level(db, row["level_code"], row.get("level_title", ""), training_type)
                exists = db.scalars(
                    select(VocabularyItem.id).where(
                        VocabularyItem.text == row["text"], VocabularyItem.level_id == level.id
                    )
                ).first()
                if exists:
                    continue
                db.add(
                    VocabularyItem(
                        text=row["text"],
                        part_of_speech=row.get("part_of_speech") or None,
                        meanings=split_list(row.get("meanings")),
                        synonyms=split_list(row.get("synonyms")),
                        examples=[],
                        notes=row.get("notes") or None,
                        level_id=level.id,
                    )
                )
                loaded += 1
                if loaded % 500 == 0:
                    db.commit()
                    logger.info("Seeding progress", loaded=loaded)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    return loaded


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python scripts/seed_vocabulary.py <path/to/vocabulary.csv>")
        sys.exit(1)
    count = load_vocabulary_from_csv(sys.argv[1])
    print(f"Loaded {count} vocabulary items")
