#!/usr/bin/env python3
"""
Per-user preference storage.

Preferences live as one JSON document per user under PREFERENCES_DIR. The
scheduler only reads them; the update path merges changes under a per-user
lock and tells registered listeners when an AI-relevant key changed.
"""

import json
import re
from asyncio import Lock
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from config import config, get_logger

logger = get_logger("preferences")

MASKED_API_KEY = "********"

# Keys whose change can alter what the pretranslate scheduler should produce
AI_PREFERENCE_KEYS = frozenset({
    "ai_config",
    "ai_pretranslate_title",
    "ai_pretranslate_translate",
    "ai_pretranslate_summary",
    "title_translation_overrides",
    "auto_translate_overrides",
    "auto_summary_overrides",
})

LEGACY_FILTER_KEY = re.compile(r'^(feed_\d+|group_\d+|all)$')


class PreferenceStore:
    """JSON-file preference store keyed by user id."""

    def __init__(self, preferences_dir: Optional[str] = None):
        self.preferences_dir = Path(preferences_dir or config.PREFERENCES_DIR)
        self._locks: Dict[str, Lock] = {}
        self._listeners: List[Callable[[str], None]] = []

    def _path_for(self, user_id: str) -> Path:
        if not user_id or "/" in user_id or "\\" in user_id or user_id.startswith("."):
            raise ValueError(f"Invalid user id: {user_id!r}")
        return self.preferences_dir / f"{user_id}.json"

    def add_ai_change_listener(self, listener: Callable[[str], None]) -> None:
        """Register a callback invoked with the user id after an AI-relevant preference changes."""
        self._listeners.append(listener)

    async def get_all_user_ids(self) -> List[str]:
        if not self.preferences_dir.is_dir():
            return []
        return sorted(p.stem for p in self.preferences_dir.glob("*.json"))

    async def get(self, user_id: str) -> Dict[str, Any]:
        """Load a user's preferences; missing or unreadable files yield an empty dict."""
        file_path = self._path_for(user_id)
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                prefs = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading preferences for {user_id}: {e}")
            return {}
        if not isinstance(prefs, dict):
            logger.error(f"Preferences for {user_id} are not a JSON object")
            return {}
        return prefs

    async def save(self, user_id: str, prefs: Dict[str, Any]) -> bool:
        file_path = self._path_for(user_id)
        try:
            self.preferences_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = file_path.with_suffix(".json.tmp")
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(prefs, f, ensure_ascii=False, indent=2)
            tmp_path.replace(file_path)
            return True
        except OSError as e:
            logger.error(f"Error saving preferences for {user_id}: {e}")
            return False

    async def update(self, user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Merge updates into the stored preferences atomically.

        A masked API key ("********") keeps the stored key. Returns
        ``{"success": bool, "preferences": dict}``.
        """
        lock = self._locks.setdefault(user_id, Lock())
        async with lock:
            current = await self.get(user_id)
            updates = dict(updates)

            ai_config = updates.get("ai_config")
            if isinstance(ai_config, dict) and ai_config.get("apiKey") == MASKED_API_KEY:
                ai_config = dict(ai_config)
                stored_key = (current.get("ai_config") or {}).get("apiKey")
                if stored_key:
                    ai_config["apiKey"] = stored_key
                else:
                    ai_config.pop("apiKey", None)
                updates["ai_config"] = ai_config

            new_prefs = {**current, **updates}
            success = await self.save(user_id, new_prefs)

        changed = [k for k in updates if k in AI_PREFERENCE_KEYS and current.get(k) != new_prefs.get(k)]
        if success and changed:
            logger.info(f"AI preferences changed for user {user_id}: {', '.join(sorted(changed))}")
            for listener in self._listeners:
                try:
                    listener(user_id)
                except Exception as e:
                    logger.error(f"Preference change listener failed: {e}")
        return {"success": success, "preferences": new_prefs}

    async def migrate_all(self) -> int:
        """Move legacy top-level feed_<n>/group_<n>/all filter keys into list_filters.

        Returns the number of user files rewritten.
        """
        migrated = 0
        for user_id in await self.get_all_user_ids():
            prefs = await self.get(user_id)
            keys_to_move = [k for k in prefs if LEGACY_FILTER_KEY.match(k)]
            if not keys_to_move:
                continue
            filters = prefs.get("list_filters") or {}
            for key in keys_to_move:
                filters.setdefault(key, prefs[key])
                del prefs[key]
            prefs["list_filters"] = filters
            if await self.save(user_id, prefs):
                migrated += 1
                logger.info(f"Migrated {len(keys_to_move)} filter keys for user {user_id}")
        return migrated
