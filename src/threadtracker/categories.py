"""Category matching for tracked threads and to do entries.

Categories compare case-insensitively. Three sentinels are understood in a
requested set: ``all`` matches everything, ``none`` and ``unset`` match items
without a category. An empty request matches everything.

To do categories carry a leading ``!`` marker (``!bob``) so that a request for
``bob`` only reaches threads unless the caller asks for cross matching.
"""

from __future__ import annotations

from collections.abc import Iterable

TODO_MARKER = "!"

ALL = "all"
UNSET = frozenset({"none", "unset"})


def strip_marker(category: str) -> str:
    """Remove the to do marker from a category, if present."""
    return category[len(TODO_MARKER):] if category.startswith(TODO_MARKER) else category


def todo_category(category: str | None) -> str | None:
    """Normalize a to do category so it always carries the marker.

    Blank input and the ``none``/``unset`` sentinels mean no category.
    """
    if category is None:
        return None
    bare = strip_marker(category.strip())
    if not bare or bare.casefold() in UNSET:
        return None
    return TODO_MARKER + bare


def thread_category(category: str | None) -> str | None:
    """Normalize a thread category; ``none``/``unset`` clear it."""
    if category is None:
        return None
    category = category.strip()
    if not category or category.casefold() in UNSET:
        return None
    return category


def parse_categories(text: str | None) -> list[str]:
    """Split a whitespace separated category list, dropping duplicates."""
    if not text:
        return []
    seen: dict[str, str] = {}
    for token in text.split():
        seen.setdefault(token.casefold(), token)
    return list(seen.values())


def matches(
    item_category: str | None,
    requested: Iterable[str] | None,
    cross_match: bool = False,
) -> bool:
    """Check whether an item's category satisfies a requested category set.

    Args:
        item_category: The item's category, or None.
        requested: Requested categories; empty or None matches everything.
        cross_match: Ignore the to do marker on both sides, so ``bob``
            also reaches ``!bob`` and vice versa.

    Returns:
        True if the item should be included.
    """
    wanted = [c.strip().casefold() for c in (requested or []) if c and c.strip()]
    if not wanted:
        return True

    # Sentinels work with or without the marker
    sentinels = {strip_marker(c) for c in wanted}
    if ALL in sentinels:
        return True

    if item_category is None:
        return bool(sentinels & UNSET)

    have = item_category.casefold()
    if cross_match:
        have = strip_marker(have)
        wanted = [strip_marker(c) for c in wanted]

    return have in wanted


def filter_items[T](
    items: Iterable[T],
    requested: Iterable[str] | None,
    category_of=lambda item: item.category,
    cross_match: bool = False,
) -> list[T]:
    """Keep the items whose category matches the request."""
    requested = list(requested or [])
    return [item for item in items if matches(category_of(item), requested, cross_match)]
