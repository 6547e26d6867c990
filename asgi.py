"""
asgi.py -- Application assembly for LevelGate.

The ASGI entry point for servers. api/main.py builds the app; this module
only re-exports it so deployment config never has to know the package
layout.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
