"""
Session Store

Registry of live sessions, its XML persistence format, and the background
sweeper that purges expired sessions.
"""

from examcore.assessments.store.store import SessionStore
from examcore.assessments.store.sweeper import StoreSweeper

__all__ = ["SessionStore", "StoreSweeper"]
