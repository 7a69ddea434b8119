"""SQLAlchemy engine, session factory, and declarative Base."""

from __future__ import annotations

import os
import sqlite3
from typing import Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./firstclaim.db")

# SQLite needs check_same_thread=False: store calls run in worker threads (asyncio.to_thread)
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class Base(DeclarativeBase):
    pass


def init_db(bind: Optional[Engine] = None) -> None:
    """Create all tables. Called once at application startup."""
    from db import models  # noqa: F401  registers the models on Base
    Base.metadata.create_all(bind=bind or engine)


if __name__ == "__main__":
    print("Creating database tables...")
    init_db()
    print("Database tables created successfully")
    print(f"   Database: {DATABASE_URL}")

    from sqlalchemy import inspect
    inspector = inspect(engine)
    for table in inspector.get_table_names():
        print(f"   Table: {table}")
