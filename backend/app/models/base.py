"""Shared declarative base for all ORM models.

Having a single ``Base`` class keeps the SQLAlchemy metadata in one place
so that metadata operations (such as creating tables for tests) work
consistently across the application.
"""

from typing import Any, Iterable

from sqlalchemy import BigInteger, Integer, inspect
from sqlalchemy.orm import DeclarativeBase

# BIGINT surrogate keys on MySQL; SQLite only autoincrements INTEGER PRIMARY KEY.
BigIntId = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    def to_dict(self, exclude: Iterable[str] = ()) -> dict[str, Any]:
        """Column values keyed by attribute name, for JSON responses."""

        skip = set(exclude)
        return {
            attr.key: getattr(self, attr.key)
            for attr in inspect(self).mapper.column_attrs
            if attr.key not in skip
        }
