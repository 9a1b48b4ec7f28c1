#!/usr/bin/env python3
"""Per-feature feed selection from a user's feed/group override settings."""

from typing import Any, Dict, Iterable, Optional, Set

ON = "on"
OFF = "off"


def _lookup(mapping: Dict[Any, str], key: Any) -> Optional[str]:
    # Preference files are JSON, so ids arrive as string keys
    if key is None:
        return None
    value = mapping.get(str(key))
    if value is None:
        value = mapping.get(key)
    return value


def resolve_enabled_feeds(overrides: Optional[Dict[str, Any]], feeds: Iterable[Dict[str, Any]]) -> Set[Any]:
    """Return the ids of feeds for which a feature is enabled.

    An explicit feed entry wins; otherwise the feed's group entry decides;
    with neither, the feed is disabled. Any value other than "on"/"off"
    counts as absent.
    """
    if not overrides:
        return set()

    feed_overrides = overrides.get("feeds") or {}
    group_overrides = overrides.get("groups") or {}
    enabled: Set[Any] = set()

    for feed in feeds:
        feed_id = feed.get("id")
        feed_setting = _lookup(feed_overrides, feed_id)
        if feed_setting == ON:
            enabled.add(feed_id)
            continue
        if feed_setting == OFF:
            continue

        category = feed.get("category") or {}
        if _lookup(group_overrides, category.get("id")) == ON:
            enabled.add(feed_id)

    return enabled
