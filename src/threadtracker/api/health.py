"""Health check endpoint."""

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from threadtracker import __version__
from threadtracker.api.deps import get_db
from threadtracker.migrations import get_current_version

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    timestamp: datetime
    database: str
    schema_version: int | None = None


@router.get("/health", response_model=HealthResponse)
async def health_check(db: "Engine" = Depends(get_db)) -> HealthResponse:
    """Report database reachability and schema version.

    Overall status is 'ok' when the database answers, 'degraded' otherwise.
    """
    schema = None
    try:
        with db.connect() as conn:
            conn.execute(text("SELECT 1"))
        schema = get_current_version(db)
        db_status = "ok"
    except SQLAlchemyError:
        db_status = "error"

    return HealthResponse(
        status="ok" if db_status == "ok" else "degraded",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        schema_version=schema,
    )
