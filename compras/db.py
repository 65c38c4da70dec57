from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from compras.models import Base


def create_engine_from_url(database_url: str) -> Engine:
    # sqlite pragmas: WAL improves concurrency; foreign_keys for integrity
    if database_url.startswith("sqlite:"):
        engine = create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
        )

        # foreign_keys is per connection, so set it on every new one.
        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_conn, _record) -> None:
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.close()

        with engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL;")
        return engine

    return create_engine(database_url, future=True)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
