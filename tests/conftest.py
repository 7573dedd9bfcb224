import os

# Must be set before referral_rewards.db.session builds the module-level engine
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REFERRAL_LOCK_BACKEND", "memory")

from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from referral_rewards.db.base import Base
import referral_rewards.models  # noqa: F401  (register tables on Base.metadata)
from referral_rewards.models.setting import Setting
from referral_rewards.models.subscription_group import SubscriptionGroup
from referral_rewards.models.user import User


@pytest.fixture
def engine(tmp_path):
    # File database: every session gets its own connection, like a real server
    engine = create_engine(f"sqlite:///{tmp_path / 'referral.db'}", connect_args={"check_same_thread": False})

    # pysqlite handles BEGIN itself and breaks SAVEPOINT; take over transaction control
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        # Readers must not block writers on other connections
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def make_user(db):
    def _make(email: str, balance: Decimal = Decimal("0"), referral_code: str | None = None) -> int:
        user = User(email=email, balance=balance, referral_code=referral_code)
        db.add(user)
        db.commit()
        return user.id

    return _make


@pytest.fixture
def make_group(db):
    def _make(name: str, subscription_type: str = "subscription", status: str = "active") -> int:
        group = SubscriptionGroup(name=name, subscription_type=subscription_type, status=status)
        db.add(group)
        db.commit()
        return group.id

    return _make


@pytest.fixture
def put_settings(db):
    def _put(values: dict[str, str]) -> None:
        for key, value in values.items():
            db.merge(Setting(key=key, value=value))
        db.commit()

    return _put
