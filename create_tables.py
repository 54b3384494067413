from flashbox.db.base import Base
from flashbox.db.session import engine
from flashbox.db.models import (  # noqa: F401  registers every table on Base.metadata
    LevelProgressSnapshot,
    Level,
    StudyHistoryEntry,
    StudyStatus,
    User,
    VocabularyItem,
)

if __name__ == "__main__":
    print("Creating tables...")
    Base.metadata.create_all(bind=engine)
    print("Tables created.")
