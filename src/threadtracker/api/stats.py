"""Usage statistics endpoint."""

from fastapi import APIRouter, Depends

from threadtracker.api.deps import get_store
from threadtracker.models import Statistics
from threadtracker.store import Store

router = APIRouter(tags=["stats"])


@router.get("/stats", response_model=Statistics)
async def get_stats(store: Store = Depends(get_store)) -> Statistics:
    """Counts of users, servers and tracked entities."""
    return store.statistics()
