from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from sqlalchemy.orm import Session, sessionmaker

from app.studio.db import make_engine


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    """Commit/rollback session for one-off scripts; disposes its own engine."""
    engine = make_engine(db_url)
    s: Session = sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
