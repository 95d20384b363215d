# laundry_api/db.py

import os
from sqlalchemy import Numeric, cast, func
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session
from laundry_api import settings


URL = settings.TEST_DATABASE_URL if os.getenv("TESTING") == "1" else settings.DATABASE_URL
connection_string = str(URL)

if connection_string.startswith("sqlite"):
    # one shared connection so in-memory databases survive across sessions
    engine = create_engine(
        connection_string,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    # only needed for psycopg 3 - replace postgresql
    # with postgresql+psycopg in settings.DATABASE_URL
    connection_string = connection_string.replace("postgresql://", "postgresql+psycopg://")

    # recycle connections after 5 minutes
    # to correspond with the compute scale down
    engine = create_engine(
        connection_string, connect_args={}, pool_recycle=300
    )


def create_db_and_tables() -> None:
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session


def conditional_update(session: Session, statement) -> int:
    """
    Executes a guarded UPDATE inside the session's transaction.

    Returns the number of rows the WHERE clause matched. Callers put the guard
    (status, NULL partner, unset marker, sufficient balance) in the WHERE
    clause, so of two concurrent callers only one sees a matched row.
    """
    session.flush()
    result = session.connection().execute(statement)
    session.expire_all()
    return result.rowcount


def money(expression):
    """Rounds an SQL arithmetic expression on a money column to whole paise."""
    return func.round(cast(expression, Numeric(12, 2)), 2)
