import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def build_engine(db_url: str) -> Engine:
    if db_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" in db_url or db_url in {"sqlite://", "sqlite+pysqlite://"}:
            # Every session must see the same in-memory database.
            return create_engine(db_url, connect_args=connect_args, poolclass=StaticPool, future=True)
        connect_args["timeout"] = 30
        return create_engine(db_url, connect_args=connect_args, future=True)

    return create_engine(
        db_url,
        pool_pre_ping=True,
        future=True,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def build_session_factory_from_env() -> sessionmaker:
    return build_session_factory(build_engine(_require_env("GEAR_RENTAL_DB_URL")))
