"""Command-line interface for Thread Tracker."""

import asyncio
from pathlib import Path

import click

from threadtracker import __version__
from threadtracker.config import Config
from threadtracker.logging import get_logger, setup_logging

log = get_logger("cli")


def _require_token(config: Config) -> None:
    if not config.discord_token:
        click.echo("Error: DISCORD_TOKEN environment variable not set", err=True)
        click.echo("Set DISCORD_TOKEN to your bot token to connect to Discord.", err=True)
        raise SystemExit(1)


def _open_database(config: Config):
    from threadtracker.database import create_tables, get_engine
    from threadtracker.migrations import migrate

    engine = get_engine(config)
    migrate(engine)
    create_tables(engine)
    return engine


@click.group()
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set logging level (overrides config).",
)
@click.option(
    "--log-json/--no-log-json",
    default=None,
    help="Output logs as JSON or human-readable format (overrides config).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Path | None,
    log_level: str | None,
    log_json: bool | None,
) -> None:
    """Thread Tracker - keeps track of whose turn it is to reply."""
    ctx.ensure_object(dict)

    config = Config.load_or_default(config_file)
    ctx.obj["config"] = config
    ctx.obj["config_file"] = config_file

    setup_logging(
        json_output=log_json if log_json is not None else config.log_json,
        level=log_level or config.log_level,
    )


@cli.command()
def version() -> None:
    """Print version information."""
    click.echo(f"threadtracker {__version__}")


@cli.command()
@click.pass_context
def bot(ctx: click.Context) -> None:
    """Run the Discord bot with watcher refresh and message dispatch.

    Requires DISCORD_TOKEN environment variable to be set.
    Use Ctrl+C or send SIGTERM for graceful shutdown.
    """
    from threadtracker.bot import run_bot

    config = ctx.obj["config"]
    _require_token(config)
    engine = _open_database(config)

    log.info("bot_command_invoked")

    try:
        asyncio.run(run_bot(config, engine))
    except KeyboardInterrupt:
        log.info("shutdown_requested_keyboard")
    except Exception as e:
        log.error("bot_failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    finally:
        engine.dispose()


@cli.command()
@click.option("--host", default="127.0.0.1", help="API host to bind.")
@click.option("--port", default=8000, type=int, help="API port to bind.")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Run the bot and the introspection API together.

    Both share the same database and configuration.
    Requires DISCORD_TOKEN environment variable to be set.
    """
    import uvicorn

    from threadtracker.api import create_app
    from threadtracker.bot import run_bot

    config = ctx.obj["config"]
    _require_token(config)
    engine = _open_database(config)

    log.info("serve_command_invoked", api_host=host, api_port=port)

    async def run() -> None:
        app = create_app(config)
        app.state.db = engine
        server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info"))

        api_task = asyncio.create_task(server.serve())
        bot_task = asyncio.create_task(run_bot(config, engine))

        # If either stops, stop the other
        done, pending = await asyncio.wait([bot_task, api_task], return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        for task in done:
            if not task.cancelled() and task.exception():
                raise task.exception()  # type: ignore[misc]

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        log.info("serve_shutdown_requested")
    except Exception as e:
        log.error("serve_failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    finally:
        engine.dispose()


@cli.command()
@click.option("--host", default="127.0.0.1", help="Host to bind.")
@click.option("--port", default=8000, type=int, help="Port to bind.")
@click.pass_context
def api(ctx: click.Context, host: str, port: int) -> None:
    """Start only the introspection API. Docs are served at /docs."""
    import uvicorn

    from threadtracker.api import create_app

    config = ctx.obj["config"]
    engine = _open_database(config)

    app = create_app(config)
    app.state.db = engine

    log.info("api_command_invoked", host=host, port=port)

    try:
        asyncio.run(uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info")).serve())
    except KeyboardInterrupt:
        log.info("api_shutdown_requested")
    except Exception as e:
        log.error("api_failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    finally:
        engine.dispose()


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Print usage statistics."""
    from threadtracker.store import Store

    engine = _open_database(ctx.obj["config"])
    counts = Store(engine).statistics()

    click.echo(f"Users: {counts.users}")
    click.echo(f"Servers: {counts.servers}")
    click.echo(f"Threads: {counts.threads_distinct} distinct, {counts.threads_total} tracked")
    click.echo(f"Muses: {counts.muses}")
    click.echo(f"To do entries: {counts.todos}")
    click.echo(f"Watchers: {counts.watchers}")
    click.echo(f"Scheduled messages: {counts.scheduled_messages}")


@cli.group()
def db() -> None:
    """Database management commands."""
    pass


@db.command(name="status")
@click.pass_context
def db_status(ctx: click.Context) -> None:
    """Show database migration status."""
    from threadtracker.database import get_engine
    from threadtracker.migrations import get_current_version, get_migrations

    config = ctx.obj["config"]
    engine = get_engine(config)

    current = get_current_version(engine)
    migrations = get_migrations()

    click.echo(f"Database: {config.database_path}")
    click.echo(f"Current version: {current}")
    click.echo(f"Available migrations: {len(migrations)}")

    pending = [(v, m) for v, m in migrations if v > current]
    if not pending:
        click.echo("No pending migrations")
        return
    click.echo(f"Pending migrations: {len(pending)}")
    for version_number, module in pending:
        click.echo(f"  {version_number}: {getattr(module, 'DESCRIPTION', 'No description')}")


@db.command(name="migrate")
@click.option("--target", type=int, default=None, help="Target version (default: latest).")
@click.pass_context
def db_migrate(ctx: click.Context, target: int | None) -> None:
    """Apply pending database migrations."""
    from threadtracker.database import get_engine
    from threadtracker.migrations import get_current_version, migrate

    engine = get_engine(ctx.obj["config"])

    before = get_current_version(engine)
    after = migrate(engine, target_version=target)

    if before == after:
        click.echo(f"Database already at version {after}")
    else:
        click.echo(f"Migrated from version {before} to {after}")


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command(name="check")
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=True, path_type=Path),
    default="config.yaml",
    help="Path to configuration file.",
)
def config_check(config_file: Path) -> None:
    """Validate configuration file."""
    try:
        cfg = Config.load(config_file)
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Configuration valid: {config_file}")
    click.echo(f"  Data directory: {cfg.data_dir}")
    click.echo(f"  Database path: {cfg.database_path}")
    click.echo(f"  Log level: {cfg.log_level}")
    click.echo(f"  Watcher refresh: every {cfg.watchers.refresh_interval_seconds}s")
    click.echo(f"  Message dispatch: every {cfg.scheduling.dispatch_interval_seconds}s")


@cli.group()
def schedule() -> None:
    """Scheduled message maintenance."""
    pass


@schedule.command(name="list")
@click.argument("user_id")
@click.option("--all", "include_archived", is_flag=True, help="Include archived messages.")
@click.pass_context
def schedule_list(ctx: click.Context, user_id: str, include_archived: bool) -> None:
    """List a user's scheduled messages."""
    from threadtracker.scheduling import ScheduleService
    from threadtracker.settings import Settings
    from threadtracker.store import Store

    config = ctx.obj["config"]
    store = Store(_open_database(config))
    listings = ScheduleService(store, Settings(store), config.scheduling).list_scheduled_messages(
        user_id, include_archived=include_archived
    )

    if not listings:
        click.echo("No scheduled messages")
        return

    for listing in listings:
        message = listing.message
        status = message.archive_reason.value if message.archive_reason else "active"
        line = f"{message.id}  {listing.next_due_local}  {status:<8}  {message.title}"
        if message.repeat:
            line += f"  (repeats {message.repeat})"
        if message.failure:
            line += f"  [{message.failure}]"
        click.echo(line)


@schedule.command(name="dispatch")
@click.pass_context
def schedule_dispatch(ctx: click.Context) -> None:
    """Send every due scheduled message once, then exit.

    Logs in to Discord without the gateway, so it can run beside a bot.
    Requires DISCORD_TOKEN environment variable to be set.
    """
    import discord

    from threadtracker.messaging import DiscordMessenger
    from threadtracker.scheduling import ScheduledMessageDispatcher
    from threadtracker.store import Store

    config = ctx.obj["config"]
    _require_token(config)
    engine = _open_database(config)

    async def run():
        client = discord.Client(intents=discord.Intents.none())
        await client.login(config.discord_token)
        try:
            messenger = DiscordMessenger(client, calls_per_minute=config.messaging.calls_per_minute)
            return await ScheduledMessageDispatcher(Store(engine), messenger).tick()
        finally:
            await client.close()

    try:
        result = asyncio.run(run())
    except Exception as e:
        log.error("dispatch_failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    finally:
        engine.dispose()

    if result is not None:
        click.echo(f"Sent: {result.sent}, failed: {result.failed}, retrying: {result.retrying}")
