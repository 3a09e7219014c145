"""
Schema inspection helpers.

The registry and the pull engine need to know what the live database
actually contains, which can lag behind the model definitions (a model may
be shipped before its table is provisioned). These helpers ask the database
directly through SQLAlchemy's inspector, so they work on any dialect.
"""
from typing import Set

from sqlalchemy import inspect, text

TIMESTAMP_COLUMNS = ("created_at", "updated_at")


def ping(engine) -> None:
    """Open a connection and run a trivial query. Raises if storage is unreachable."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def table_exists(engine, table: str) -> bool:
    return inspect(engine).has_table(table)


def table_columns(engine, table: str) -> Set[str]:
    """Column names of a table as the database reports them."""
    return {col["name"] for col in inspect(engine).get_columns(table)}


def has_timestamp_columns(engine, table: str) -> bool:
    """True when the table carries both created_at and updated_at."""
    columns = table_columns(engine, table)
    return all(c in columns for c in TIMESTAMP_COLUMNS)
