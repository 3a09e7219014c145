"""Application models kept in sync with master."""
from typing import Optional

from pydantic import NaiveDatetime
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from replisync.timeutil import utc_now


class Customer(SQLModel, table=True):
    __tablename__ = "customers"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: Optional[str] = Field(default=None, index=True)
    phone: Optional[str] = None
    balance: float = 0.0

    created_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)
    updated_at: NaiveDatetime = Field(
        default_factory=utc_now, sa_type=DateTime, sa_column_kwargs={"onupdate": utc_now}
    )


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: Optional[int] = Field(default=None, primary_key=True)
    sku: str = Field(index=True)
    name: str
    unit_price: float = 0.0
    stock_quantity: int = 0

    created_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)
    updated_at: NaiveDatetime = Field(
        default_factory=utc_now, sa_type=DateTime, sa_column_kwargs={"onupdate": utc_now}
    )


class Setting(SQLModel, table=True):
    """Key/value settings. No timestamps, so every pulled row is applied."""

    __tablename__ = "settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(index=True)
    value: Optional[str] = None


def default_registry(excluded=()):
    """Build an EntityRegistry with every catalog model registered."""
    from replisync.sync.registry import EntityRegistry

    registry = EntityRegistry(excluded=excluded)
    registry.register(Customer)
    registry.register(Product)
    registry.register(Setting)
    return registry
