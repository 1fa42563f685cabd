"""FastAPI dependencies for database access."""
from typing import Iterator

from sqlalchemy.orm import Session

from workplan.db.session import SessionLocal


def get_db() -> Iterator[Session]:
    """Yield a session per request and always close it."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
