import os
from datetime import datetime, timezone

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite://")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from cazuela import models  # noqa: E402,F401
from cazuela.db import Base  # noqa: E402
from cazuela.demo_data import seed_demo_data  # noqa: E402

NOW = datetime(2024, 5, 15, 14, 30, tzinfo=timezone.utc)


def make_sessionmaker() -> sessionmaker:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db():
    session = make_sessionmaker()()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ids(db):
    return seed_demo_data(db, now=NOW)
