"""Initial schema - tracked threads, watchers, muses, todos, settings and
scheduled messages.
"""

from sqlalchemy import inspect

from threadtracker.database import create_tables

VERSION = 1
DESCRIPTION = "Initial schema"


def upgrade(engine):
    """Create all tables defined in the schema."""
    create_tables(engine)


def check(engine) -> bool:
    """Check if this migration has been applied.

    Returns True if the core tables exist.
    """
    inspector = inspect(engine)
    table_names = set(inspector.get_table_names())

    required = {"threads", "watchers", "scheduled_messages", "user_settings"}
    return required.issubset(table_names)
