"""FastAPI dependency injection.

Provides access to shared resources via app.state.
"""

from typing import TYPE_CHECKING

from fastapi import Depends, Request

from threadtracker.store import Store

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from threadtracker.config import Config


def get_config(request: Request) -> "Config":
    """Get config from app state."""
    return request.app.state.config


def get_db(request: Request) -> "Engine":
    """Get database engine from app state."""
    return request.app.state.db


def get_store(db: "Engine" = Depends(get_db)) -> Store:
    """Store gateway over the app's engine."""
    return Store(db)
