"""
asgi.py -- ASGI entry point for CarFleet.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Kept separate from api/main.py so process managers point at a stable module
path while the app assembly stays inside the api/ package.
"""

from api.main import app

__all__ = ["app"]
