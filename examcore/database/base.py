"""
SQLAlchemy Base Configuration

Declarative base for the records database. Every model gets dictionary
conversion so rows can be turned into the pydantic records the session
engine works with, and a ``created_at`` audit column.
"""

import datetime
from typing import Any, Collection, Dict

from sqlalchemy import Column, DateTime, MetaData
from sqlalchemy.orm import declarative_base

# Constraint naming convention
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}

metadata = MetaData(naming_convention=convention)

Base = declarative_base(metadata=metadata)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ModelBase(Base):
    """Base class for all records models."""

    __abstract__ = True

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def to_dict(self, exclude: Collection[str] = ("id", "created_at")) -> Dict[str, Any]:
        """Column values of this row, minus bookkeeping columns."""
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
            if column.name not in exclude
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Any:
        """Create a row from a dictionary, ignoring keys that are not columns."""
        return cls(**{
            k: v for k, v in data.items()
            if k in cls.__table__.columns
        })
