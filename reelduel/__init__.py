"""Installable entry package that re-exports the ReelDuel FastAPI app."""

from __future__ import annotations

from app.main import app, create_app

__all__ = ["app", "create_app"]
