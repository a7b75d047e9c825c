"""PostgreSQL engine and session factory for scan records."""

from collections.abc import Callable, Generator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings

# Anything that returns a new Session (sessionmaker, or a mock in tests).
SessionFactory = Callable[[], Session]

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=1800,
    echo=settings.DEBUG,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Dependency that yields a DB session and closes it when done."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_connected(db: Session) -> bool:
    """Run a trivial query to verify the scan database is reachable."""
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
