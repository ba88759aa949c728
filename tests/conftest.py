import os

os.environ.setdefault("LEDGER_DATABASE_URL", "sqlite:///:memory:")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from database import Base, configure_engine  # noqa: E402
from ratelimit import limiter  # noqa: E402
from services import UserService  # noqa: E402


def make_engine(url: str = "sqlite+pysqlite:///:memory:"):
    kwargs: dict[str, object] = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url:
        kwargs["poolclass"] = StaticPool
    engine = configure_engine(create_engine(url, **kwargs))
    Base.metadata.create_all(engine)
    return engine


def make_sessionmaker(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def engine():
    eng = make_engine()
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    db = make_sessionmaker(engine)()
    yield db
    db.close()


@pytest.fixture()
def owner(session):
    return UserService(session).register("owner@example.com", "not-a-hash").id


@pytest.fixture()
def intruder(session):
    return UserService(session).register("intruder@example.com", "not-a-hash").id


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    limiter.clear()
    yield
    limiter.clear()


@pytest.fixture()
def file_engine(tmp_path):
    eng = make_engine(f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}")
    yield eng
    eng.dispose()
