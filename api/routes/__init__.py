"""
API Routes Package

This package contains route handlers organized by feature:
- session.py: REST endpoints driving enrollment/verification, and the
  WebSocket event stream
"""

from api.routes.session import router as session_router

__all__ = [
    "session_router",
]
