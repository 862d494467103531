from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings


def build_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections are shared with the event loop thread."""

    connect_args: dict[str, object] = {}
    options: dict[str, object] = {"echo": echo, "future": True, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    else:
        options.update(pool_size=10, max_overflow=20)
    return create_engine(database_url, connect_args=connect_args, **options)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, future=True)


def default_session_factory() -> sessionmaker[Session]:
    settings = get_settings()
    return build_session_factory(build_engine(settings.database_url, echo=settings.debug))


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Short-lived session that commits on success and rolls back on error."""

    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
