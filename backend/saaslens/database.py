from typing import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import DATABASE_URL

Base = declarative_base()

_engines: dict[str, Engine] = {}


def get_or_create_engine(url: str = DATABASE_URL) -> Engine:
    if url not in _engines:
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engines[url] = create_engine(url, connect_args=connect_args)
    return _engines[url]


def init_db(url: str = DATABASE_URL) -> Engine:
    """Create all tables for the given database URL. Safe to call repeatedly."""
    from . import models  # noqa: F401  (registers tables on Base.metadata)

    engine = get_or_create_engine(url)
    Base.metadata.create_all(bind=engine)
    return engine


def get_db() -> Generator[Session, None, None]:
    engine = get_or_create_engine()
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = _SessionLocal()
    try:
        yield db
    finally:
        db.close()
