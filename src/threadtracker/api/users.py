"""Per-user endpoints: scheduled messages and watchers."""

from fastapi import APIRouter, Depends, Query

from threadtracker.api.deps import get_config, get_store
from threadtracker.config import Config
from threadtracker.models import ScheduledMessageListing, Watcher
from threadtracker.scheduling import ScheduleService
from threadtracker.settings import Settings
from threadtracker.store import Store

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}/scheduled", response_model=list[ScheduledMessageListing])
async def list_scheduled(
    user_id: str,
    include_archived: bool = Query(False, description="Include sent, removed and failed messages"),
    store: Store = Depends(get_store),
    config: Config = Depends(get_config),
) -> list[ScheduledMessageListing]:
    """Scheduled messages with their next due time in the user's timezone."""
    service = ScheduleService(store, Settings(store), config.scheduling)
    return service.list_scheduled_messages(user_id, include_archived=include_archived)


@router.get("/{user_id}/watchers", response_model=list[Watcher])
async def list_watchers(
    user_id: str,
    guild_id: str | None = Query(None, description="Only watchers in this server"),
    store: Store = Depends(get_store),
) -> list[Watcher]:
    """Watchers owned by the user."""
    return store.list_user_watchers(user_id, guild_id)
