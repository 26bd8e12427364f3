"""Discord bot runtime.

Connects to Discord, loads the slash commands, starts the background
engines and keeps the bot's presence fresh. Shutdown lets any in-flight
refresh or dispatch finish its current entity before disconnecting.
"""

from __future__ import annotations

import asyncio
import signal

import discord
from discord.ext import commands, tasks
from sqlalchemy.engine import Engine

from threadtracker.config import Config
from threadtracker.logging import get_logger
from threadtracker.messaging import DiscordMessenger
from threadtracker.service import ThreadTracker

log = get_logger("bot")


class ThreadTrackerBot(commands.Bot):
    """Discord bot hosting the thread tracker.

    Attributes:
        config: Application configuration.
        engine: SQLAlchemy database engine.
        tracker: Application facade used by commands and engines.
    """

    def __init__(self, config: Config, engine: Engine) -> None:
        intents = discord.Intents.default()
        intents.message_content = False  # Only authors and timestamps are read

        # commands.Bot requires a prefix even though only slash commands exist
        super().__init__(command_prefix="!", intents=intents)
        self.config = config
        self.engine = engine
        self.tracker = ThreadTracker(
            config,
            engine,
            DiscordMessenger(self, calls_per_minute=config.messaging.calls_per_minute),
        )
        self._shutdown_requested = False

    async def setup_hook(self) -> None:
        """Load commands and start background work once the client is ready."""
        from threadtracker.commands import TrackerCommands

        await self.add_cog(TrackerCommands(self))
        await self.tree.sync()
        log.info("commands_synced")

        self.tracker.scheduler.start()

        interval = self.config.discord.presence_interval_seconds
        self.heartbeat.change_interval(seconds=interval)
        self.heartbeat.start()
        log.info("background_task_started", task="heartbeat", interval_seconds=interval)

    async def on_ready(self) -> None:
        log.info("discord_ready", user=str(self.user), guilds=len(self.guilds))

    async def on_disconnect(self) -> None:
        log.warning("discord_disconnected")

    async def on_resumed(self) -> None:
        log.info("discord_resumed")

    @tasks.loop(seconds=255)  # Overridden in setup_hook
    async def heartbeat(self) -> None:
        """Re-assert the bot's presence; Discord drops it after reconnects."""
        if self._shutdown_requested:
            return
        activity = discord.Activity(
            type=discord.ActivityType.watching,
            name=self.config.discord.presence_text,
        )
        try:
            await self.change_presence(activity=activity)
        except (discord.HTTPException, ConnectionError) as e:
            log.warning("presence_update_failed", error=str(e))

    @heartbeat.before_loop
    async def before_heartbeat(self) -> None:
        await self.wait_until_ready()

    async def graceful_shutdown(self) -> None:
        """Stop background work, then disconnect."""
        if self._shutdown_requested:
            return
        log.info("shutdown_initiated")
        self._shutdown_requested = True

        if self.heartbeat.is_running():
            self.heartbeat.cancel()

        await self.tracker.scheduler.stop()

        await self.close()
        await asyncio.sleep(0)  # Allow pending aiohttp callbacks to finalize
        log.info("shutdown_complete")


def setup_signal_handlers(bot: ThreadTrackerBot, loop: asyncio.AbstractEventLoop) -> None:
    """Route SIGINT and SIGTERM to a graceful shutdown."""

    def handle_signal(sig: signal.Signals) -> None:
        log.info("signal_received", signal=sig.name)
        loop.create_task(bot.graceful_shutdown())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    log.debug("signal_handlers_registered", signals=["SIGINT", "SIGTERM"])


async def run_bot(config: Config, engine: Engine) -> None:
    """Run the bot until it is shut down.

    Args:
        config: Application configuration; the token comes from DISCORD_TOKEN.
        engine: SQLAlchemy database engine.
    """
    bot = ThreadTrackerBot(config, engine)
    setup_signal_handlers(bot, asyncio.get_running_loop())

    try:
        log.info("bot_starting")
        await bot.start(config.discord_token)  # type: ignore[arg-type]
    except asyncio.CancelledError:
        log.debug("bot_cancelled")
    finally:
        if not bot.is_closed():
            await bot.close()
