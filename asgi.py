"""
asgi.py -- ASGI entry point for gatehouse.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so process managers point at one stable
module path while api/main.py stays importable by the test-suite.
"""

from api.main import app

__all__ = ["app"]
