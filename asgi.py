"""
asgi.py -- ASGI entry point for Tourbook.

Run with:  uvicorn asgi:app --reload

Resource routes (tours, reviews) and server-rendered pages mount here next to
the API app; the auth core in auth/ knows nothing about them.
"""

from api.main import app

__all__ = ["app"]
