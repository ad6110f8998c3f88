"""
asgi.py -- ASGI entry point for the admin auth API.

Run with:  uvicorn asgi:app --reload

The waitlist/CRUD surface of the wider deployment mounts its own routers on
this app and protects them with auth.dependencies.require_admin.
"""

from api.main import app

__all__ = ["app"]
