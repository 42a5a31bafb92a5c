"""
Records Database

SQLAlchemy models and the SQL implementation of the records capability.
"""

from examcore.database.base import Base, ModelBase, metadata
from examcore.database.records import SqlRecordsService
from examcore.database.session import create_db_engine, create_session_factory, init_schema, session_scope

__all__ = [
    "Base",
    "ModelBase",
    "metadata",
    "SqlRecordsService",
    "create_db_engine",
    "create_session_factory",
    "init_schema",
    "session_scope",
]
