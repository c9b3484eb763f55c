import os
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


DB_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "cognitia.db")
DATABASE_URL = os.getenv("COGNITIA_DATABASE_URL", f"sqlite:///{DB_PATH}")

Base = declarative_base()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | str) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_time(value: datetime) -> datetime:
    # columns hold naive UTC
    return as_utc(value).replace(tzinfo=None)


def db_now() -> datetime:
    return to_db_time(utc_now())


def build_engine(url: str) -> Engine:
    # Countdown threads and the request threadpool share SQLite connections.
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, future=True, **kwargs)
    return create_engine(url, future=True, pool_pre_ping=True)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


def get_db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
