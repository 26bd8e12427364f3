"""Discord slash commands.

Thin handlers over the ThreadTracker facade. Every command answers
ephemerally; expected failures (unknown ids, foreign entities, malformed
schedules) are reported to the caller instead of raised.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from threadtracker.categories import parse_categories
from threadtracker.errors import PermissionDenied, ThreadTrackerError
from threadtracker.logging import get_logger
from threadtracker.settings import NOTIFY, SORT, TIMESTAMPS, TIMEZONE

if TYPE_CHECKING:
    from threadtracker.bot import ThreadTrackerBot

log = get_logger("commands")

TrackableChannel = discord.TextChannel | discord.Thread


def _owner(interaction: discord.Interaction) -> tuple[str, str]:
    """(user id, guild id) of the caller."""
    if interaction.guild_id is None:
        raise PermissionDenied("Use this command in a server")
    return str(interaction.user.id), str(interaction.guild_id)


class TrackerCommands(commands.Cog):
    """Slash commands for tracking threads, watchers and scheduled messages."""

    def __init__(self, bot: ThreadTrackerBot) -> None:
        self.bot = bot
        self.tracker = bot.tracker

    async def cog_app_command_error(
        self,
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, (ThreadTrackerError, ValueError)):
            message = str(original)
        else:
            log.error(
                "command_failed",
                command=interaction.command.name if interaction.command else "unknown",
                error=str(original),
            )
            message = "Something went wrong."

        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    async def _reply(self, interaction: discord.Interaction, text: str) -> None:
        await interaction.response.send_message(text, ephemeral=True)

    # =========================================================================
    # Threads
    # =========================================================================

    @app_commands.command(name="track", description="Track a thread you are writing in")
    @app_commands.describe(channel="Thread or channel to track", category="Optional category")
    async def track(
        self,
        interaction: discord.Interaction,
        channel: TrackableChannel,
        category: str | None = None,
    ) -> None:
        user_id, guild_id = _owner(interaction)
        if self.tracker.track_thread(user_id, guild_id, str(channel.id), category):
            await self._reply(interaction, f"Now tracking {channel.mention}.")
        else:
            await self._reply(interaction, f"{channel.mention} is already tracked.")

    @app_commands.command(name="untrack", description="Stop tracking a thread")
    async def untrack(self, interaction: discord.Interaction, channel: TrackableChannel) -> None:
        user_id, guild_id = _owner(interaction)
        if self.tracker.untrack_thread(user_id, guild_id, str(channel.id)):
            await self._reply(interaction, f"Stopped tracking {channel.mention}.")
        else:
            await self._reply(interaction, f"{channel.mention} was not tracked.")

    @app_commands.command(name="untrack-all", description="Stop tracking all threads, or one category")
    @app_commands.describe(category="Only this category; 'none' for uncategorized")
    async def untrack_all(self, interaction: discord.Interaction, category: str | None = None) -> None:
        user_id, guild_id = _owner(interaction)
        count = self.tracker.untrack_threads(user_id, guild_id, category)
        await self._reply(interaction, f"Stopped tracking {count} thread(s).")

    @app_commands.command(name="category", description="Change a tracked thread's category")
    @app_commands.describe(category="New category; 'none' clears it")
    async def category(
        self,
        interaction: discord.Interaction,
        channel: TrackableChannel,
        category: str,
    ) -> None:
        user_id, guild_id = _owner(interaction)
        if self.tracker.set_thread_category(user_id, guild_id, str(channel.id), category):
            await self._reply(interaction, f"Updated {channel.mention}.")
        else:
            await self._reply(interaction, f"{channel.mention} is not tracked.")

    # =========================================================================
    # Digests and watchers
    # =========================================================================

    @app_commands.command(name="replylist", description="Show your tracked threads")
    @app_commands.describe(
        categories="Space separated categories",
        pending="Only threads awaiting your reply",
        todos="Include your to do list",
    )
    async def replylist(
        self,
        interaction: discord.Interaction,
        categories: str | None = None,
        pending: bool = False,
        todos: bool = True,
    ) -> None:
        user_id, guild_id = _owner(interaction)
        await interaction.response.defer(ephemeral=True)

        digest = await self.tracker.render_digest(
            user_id,
            guild_id,
            parse_categories(categories),
            include_todos=todos,
            pending_only=pending,
        )
        for index, part in enumerate(digest.parts):
            title = digest.title if index == 0 else None
            await interaction.followup.send(
                embed=discord.Embed(title=title, description=part), ephemeral=True
            )

    @app_commands.command(name="random", description="Pick a random thread awaiting your reply")
    async def random(self, interaction: discord.Interaction, categories: str | None = None) -> None:
        user_id, guild_id = _owner(interaction)
        await interaction.response.defer(ephemeral=True)

        thread = await self.tracker.random_pending_thread(user_id, guild_id, parse_categories(categories))
        text = f"Reply to <#{thread.channel_id}>." if thread else "Nothing is awaiting your reply."
        await interaction.followup.send(text, ephemeral=True)

    @app_commands.command(name="watch", description="Post a digest here that keeps itself updated")
    async def watch(self, interaction: discord.Interaction, categories: str | None = None) -> None:
        user_id, guild_id = _owner(interaction)
        await interaction.response.defer(ephemeral=True)

        watcher = await self.tracker.open_watcher(
            user_id, guild_id, str(interaction.channel_id), parse_categories(categories)
        )
        await interaction.followup.send(f"Watcher `{watcher.id}` created.", ephemeral=True)

    @app_commands.command(name="unwatch", description="Remove one of your watchers")
    async def unwatch(self, interaction: discord.Interaction, watcher_id: str) -> None:
        user_id, _ = _owner(interaction)
        await interaction.response.defer(ephemeral=True)

        await self.tracker.remove_watcher(watcher_id.strip(), user_id)
        await interaction.followup.send("Watcher removed.", ephemeral=True)

    @app_commands.command(name="watchers", description="List your watchers in this server")
    async def watchers(self, interaction: discord.Interaction) -> None:
        user_id, guild_id = _owner(interaction)
        found = self.tracker.list_watchers(user_id, guild_id)
        if not found:
            await self._reply(interaction, "You have no watchers here.")
            return
        lines = [
            f"`{w.id}` in <#{w.channel_id}>" + (f" ({' '.join(w.categories)})" if w.categories else "")
            for w in found
        ]
        await self._reply(interaction, "\n".join(lines))

    # =========================================================================
    # Muses and todos
    # =========================================================================

    @app_commands.command(name="muse-add", description="Register a character name as yours")
    async def muse_add(self, interaction: discord.Interaction, name: str) -> None:
        user_id, guild_id = _owner(interaction)
        added = self.tracker.add_muse(user_id, guild_id, name)
        await self._reply(interaction, f"Added muse **{name}**." if added else f"**{name}** is already registered.")

    @app_commands.command(name="muse-remove", description="Remove a registered character name")
    async def muse_remove(self, interaction: discord.Interaction, name: str) -> None:
        user_id, guild_id = _owner(interaction)
        removed = self.tracker.remove_muse(user_id, guild_id, name)
        await self._reply(interaction, f"Removed muse **{name}**." if removed else f"No muse named **{name}**.")

    @app_commands.command(name="muses", description="List your registered character names")
    async def muses(self, interaction: discord.Interaction) -> None:
        user_id, guild_id = _owner(interaction)
        names = self.tracker.list_muses(user_id, guild_id)
        await self._reply(interaction, ", ".join(names) if names else "You have no muses registered.")

    @app_commands.command(name="todo-add", description="Add an entry to your to do list")
    async def todo_add(self, interaction: discord.Interaction, text: str, category: str | None = None) -> None:
        user_id, guild_id = _owner(interaction)
        added = self.tracker.add_todo(user_id, guild_id, text, category)
        await self._reply(interaction, "Added to your to do list." if added else "That entry already exists.")

    @app_commands.command(name="todo-remove", description="Remove an entry from your to do list")
    async def todo_remove(self, interaction: discord.Interaction, text: str) -> None:
        user_id, guild_id = _owner(interaction)
        removed = self.tracker.remove_todo(user_id, guild_id, text)
        await self._reply(interaction, "Removed." if removed else "No such entry.")

    @app_commands.command(name="todo-clear", description="Clear your to do list, or one category")
    async def todo_clear(self, interaction: discord.Interaction, category: str | None = None) -> None:
        user_id, guild_id = _owner(interaction)
        count = self.tracker.remove_todos(user_id, guild_id, category)
        await self._reply(interaction, f"Removed {count} entr{'y' if count == 1 else 'ies'}.")

    # =========================================================================
    # Scheduled messages
    # =========================================================================

    @app_commands.command(name="schedule-add", description="Schedule a message")
    @app_commands.describe(
        when="Local date and time, e.g. 2024-06-01T09:00",
        repeat="Optional: daily, weekly, monthly, '2 weeks', ...",
    )
    async def schedule_add(
        self,
        interaction: discord.Interaction,
        channel: TrackableChannel,
        when: str,
        title: str,
        body: str,
        repeat: str | None = None,
    ) -> None:
        user_id, _ = _owner(interaction)
        message_id = self.tracker.schedule_message(user_id, str(channel.id), when, title, body, repeat=repeat)
        await self._reply(interaction, f"Scheduled message `{message_id}`.")

    @app_commands.command(name="schedule-edit", description="Change a scheduled message")
    async def schedule_edit(
        self,
        interaction: discord.Interaction,
        message_id: str,
        when: str | None = None,
        title: str | None = None,
        body: str | None = None,
        repeat: str | None = None,
    ) -> None:
        user_id, _ = _owner(interaction)
        self.tracker.update_scheduled_message(
            message_id.strip(), user_id, local_datetime=when, title=title, body=body, repeat=repeat
        )
        await self._reply(interaction, "Scheduled message updated.")

    @app_commands.command(name="schedule-remove", description="Cancel a scheduled message")
    async def schedule_remove(self, interaction: discord.Interaction, message_id: str) -> None:
        user_id, _ = _owner(interaction)
        self.tracker.remove_scheduled_message(message_id.strip(), user_id)
        await self._reply(interaction, "Scheduled message removed.")

    @app_commands.command(name="schedules", description="List your scheduled messages")
    async def schedules(self, interaction: discord.Interaction, archived: bool = False) -> None:
        user_id, _ = _owner(interaction)
        listings = self.tracker.list_scheduled_messages(user_id, include_archived=archived)
        if not listings:
            await self._reply(interaction, "You have no scheduled messages.")
            return

        lines = []
        for listing in listings:
            message = listing.message
            line = f"`{message.id}` **{message.title}** in <#{message.channel_id}> at {listing.next_due_local}"
            if message.repeat:
                line += f", repeats {message.repeat}"
            if message.archived:
                line += f" ({message.archive_reason.value if message.archive_reason else 'archived'})"
            lines.append(line)
        await self._reply(interaction, "\n".join(lines)[:2000])

    # =========================================================================
    # Settings
    # =========================================================================

    @app_commands.command(name="setting", description="Change one of your settings")
    @app_commands.choices(
        name=[
            app_commands.Choice(name="Timezone", value=TIMEZONE),
            app_commands.Choice(name="Reply notifications", value=NOTIFY),
            app_commands.Choice(name="Show timestamps", value=TIMESTAMPS),
            app_commands.Choice(name="Sort order", value=SORT),
        ]
    )
    async def setting(
        self,
        interaction: discord.Interaction,
        name: app_commands.Choice[str],
        value: str,
    ) -> None:
        user_id, _ = _owner(interaction)
        stored = self.tracker.set_setting(user_id, name.value, value)
        await self._reply(interaction, f"{name.name} set to `{stored}`.")
        log.info("setting_changed", user_id=user_id, name=name.value)


async def setup(bot: ThreadTrackerBot) -> None:
    """Entry point for ``bot.load_extension``."""
    await bot.add_cog(TrackerCommands(bot))

