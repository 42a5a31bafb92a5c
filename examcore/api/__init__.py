"""
HTTP API for driving assessment sessions.
"""

from examcore.api.router import router

__all__ = ["router"]
