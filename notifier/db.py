"""
Database engine and session factory.

JSON columns (records, messages, meta) are written with a serializer that
stores datetimes as ISO-8601 strings; ``notifier.timeutil.to_datetime`` turns
them back into aware datetimes when records are loaded.
"""

import json
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from notifier.config import DATABASE_URL
from notifier.models import Base

_engine = None
_session_factory = None


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps_json(value: Any) -> str:
    return json.dumps(value, default=_json_default, ensure_ascii=False)


def create_db_engine(url: str) -> Engine:
    return create_engine(url, json_serializer=dumps_json, pool_pre_ping=True)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_db_engine(DATABASE_URL)
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            class_=Session,
        )
    return _session_factory


def init_db(engine: Optional[Engine] = None) -> None:
    """Create any missing tables."""
    Base.metadata.create_all(bind=engine or get_engine())


@contextmanager
def session_scope() -> Iterator[Session]:
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
