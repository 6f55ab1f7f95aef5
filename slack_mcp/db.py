from __future__ import annotations
from contextlib import contextmanager
from typing import Dict, Iterator, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool


_engines: Dict[str, Tuple[Engine, sessionmaker]] = {}


def get_engine(db_url: str, *, echo: bool = False) -> Engine:
    if not db_url:
        raise RuntimeError("DB_URL not configured")
    if db_url not in _engines:
        kwargs = {}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # a single shared connection, otherwise every session sees an empty database
            kwargs = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
        engine = create_engine(db_url, echo=echo, future=True, **kwargs)
        _engines[db_url] = (engine, sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True))
    return _engines[db_url][0]


@contextmanager
def get_session(db_url: str, *, echo: bool = False) -> Iterator[Session]:
    get_engine(db_url, echo=echo)
    session: Session = _engines[db_url][1]()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ensure_schema(Base, db_url: str, *, echo: bool = False) -> None:
    Base.metadata.create_all(get_engine(db_url, echo=echo))


def dispose_engine(db_url: str) -> None:
    entry = _engines.pop(db_url, None)
    if entry is not None:
        entry[0].dispose()
