from datetime import datetime

import pytest
from sqlalchemy.orm import sessionmaker

from notifier.db import create_db_engine
from notifier.models import Base
from notifier.timeutil import LOCAL_TZ


@pytest.fixture()
def db_session():
    engine = create_db_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    with Session() as session:
        yield session
    engine.dispose()


@pytest.fixture()
def fixed_now() -> datetime:
    return datetime(2026, 10, 19, 9, 0, tzinfo=LOCAL_TZ)
