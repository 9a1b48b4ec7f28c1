#!/usr/bin/env python3
"""
Per-user AI pretranslation.

For one user this module decides which features and feeds are active, pulls
the recent unread entries from the feed aggregator, and runs the three
pipelines in order: title translation, full-text translation, summaries.
Results land in the AI cache under the keys the read path looks up.

All work is sequential. AI calls go through `call_with_backoff` with a backoff
state shared by the whole user round, and a `CancellationToken` is checked
before every pipeline, batch, entry and network call.
"""

import json
from asyncio import sleep
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Set

from config import config, get_logger
from errors import RoundCancelled
from llm_client import chat_completion, is_ai_configured
from models import CacheStore
from overrides import resolve_enabled_feeds
from preferences import PreferenceStore
from telemetry import trace_span
from translator import summarize_text, translate_blocks_batch, translate_titles_batch
from utils import BackoffState, call_with_backoff, chunked, extract_text_blocks, strip_html, truncate_string

logger = get_logger("pretranslator")

FETCH_HOURS = 24
FETCH_LIMIT = 500
MAX_CONTENT_LENGTH = 50000
TITLE_BATCH_SIZE = 10
BLOCK_BATCH_SIZE = 10


def title_cache_key(title: str, target_lang: str) -> str:
    return f"title:{title}||{target_lang}"


def translation_cache_key(entry_id: Any, target_lang: str) -> str:
    return f"translation:{entry_id}:{target_lang}"


def summary_cache_key(entry_id: Any, target_lang: str) -> str:
    return f"summary:{entry_id}:{target_lang}"


def legacy_summary_cache_key(entry_id: Any) -> str:
    return f"summary:{entry_id}"


class CancellationToken:
    """Cooperative cancellation flag shared by everything running in one round."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RoundCancelled()


class Pretranslator:
    """Runs the pretranslate pipelines for individual users."""

    def __init__(
        self,
        cache: CacheStore,
        preferences: PreferenceStore,
        *,
        complete: Callable = chat_completion,
        sleep_func: Callable = sleep,
        now_func: Optional[Callable[[], datetime]] = None,
    ):
        self.cache = cache
        self.preferences = preferences
        self.complete = complete
        self.sleep_func = sleep_func
        self.now_func = now_func or (lambda: datetime.now(timezone.utc))

    async def _invoke(self, operation, backoff: BackoffState, token: CancellationToken):
        return await call_with_backoff(
            operation,
            backoff,
            sleep_func=self.sleep_func,
            checkpoint=token.raise_if_cancelled,
        )

    @trace_span(
        "pretranslate.process_user",
        tracer_name="pretranslator",
        attr_from_args=lambda self, user_id, feed_client, token: {"user.id": user_id},
        expected_exceptions=(RoundCancelled,),
    )
    async def process_user(self, user_id: str, feed_client, token: CancellationToken) -> Dict[str, int]:
        """Pretranslate one user's recent unread entries.

        Returns the number of cache writes per pipeline. Missing configuration
        is not an error and simply yields zeros.
        """
        stats = {"titles": 0, "articles": 0, "summaries": 0}
        prefs = await self.preferences.get(user_id)

        enable_title = bool(prefs.get("ai_pretranslate_title"))
        enable_translate = bool(prefs.get("ai_pretranslate_translate"))
        enable_summary = bool(prefs.get("ai_pretranslate_summary"))
        if not (enable_title or enable_translate or enable_summary):
            return stats

        ai_config = prefs.get("ai_config") or {}
        if not is_ai_configured(ai_config):
            return stats
        target_lang = ai_config.get("targetLang") or config.AI_DEFAULT_TARGET_LANG

        title_overrides = prefs.get("title_translation_overrides")
        translate_overrides = prefs.get("auto_translate_overrides")
        summary_overrides = prefs.get("auto_summary_overrides")
        if not (title_overrides or translate_overrides or summary_overrides):
            return stats

        token.raise_if_cancelled()
        try:
            feeds = await feed_client.get_feeds()
        except Exception as e:
            logger.error(f"Failed to get feeds for user {user_id}: {e}")
            return stats

        title_feeds = resolve_enabled_feeds(title_overrides, feeds) if enable_title else set()
        translate_feeds = resolve_enabled_feeds(translate_overrides, feeds) if enable_translate else set()
        summary_feeds = resolve_enabled_feeds(summary_overrides, feeds) if enable_summary else set()
        all_feed_ids = title_feeds | translate_feeds | summary_feeds
        if not all_feed_ids:
            return stats

        after_ts = int((self.now_func() - timedelta(hours=FETCH_HOURS)).timestamp())
        token.raise_if_cancelled()
        try:
            response = await feed_client.get_entries(
                status="unread",
                order="published_at",
                direction="desc",
                limit=FETCH_LIMIT,
                after=after_ts,
            )
        except Exception as e:
            logger.error(f"Failed to get entries for user {user_id}: {e}")
            return stats

        entries = [e for e in (response or {}).get("entries") or [] if e.get("feed_id") in all_feed_ids]
        if not entries:
            return stats

        logger.info(f"Processing user {user_id}: {len(entries)} articles across {len(all_feed_ids)} feeds")
        backoff = BackoffState()

        token.raise_if_cancelled()
        stats["titles"] = await self.translate_titles(
            user_id, entries, title_feeds, target_lang, ai_config, backoff, token)

        token.raise_if_cancelled()
        stats["articles"] = await self.translate_articles(
            user_id, entries, translate_feeds, target_lang, ai_config, backoff, token)

        token.raise_if_cancelled()
        stats["summaries"] = await self.summarize_articles(
            user_id, entries, summary_feeds, target_lang, ai_config, backoff, token)
        return stats

    async def translate_titles(
        self,
        user_id: str,
        entries: List[Dict[str, Any]],
        enabled_feeds: Set[Any],
        target_lang: str,
        ai_config: Dict[str, Any],
        backoff: BackoffState,
        token: CancellationToken,
    ) -> int:
        """Translate uncached titles in batches; returns the number of titles cached."""
        if not enabled_feeds:
            return 0

        pending = []
        for entry in entries:
            if entry.get("feed_id") not in enabled_feeds:
                continue
            title = entry.get("title") or ""
            if not title.strip():
                continue
            if await self.cache.get(user_id, title_cache_key(title, target_lang)):
                continue
            pending.append({"id": entry["id"], "title": title})
        if not pending:
            return 0

        logger.info(f"Translating {len(pending)} titles for user {user_id}")
        cached = 0
        for batch_num, batch in enumerate(chunked(pending, TITLE_BATCH_SIZE), 1):
            token.raise_if_cancelled()
            try:
                translations = await self._invoke(
                    partial(translate_titles_batch, batch, target_lang, ai_config,
                            ai_config.get("titleTranslatePrompt"), complete=self.complete),
                    backoff,
                    token,
                )
                cache_entries = []
                for item in batch:
                    translated = translations.get(item["id"])
                    if translated and translated != item["title"]:
                        cache_entries.append({
                            "key": title_cache_key(item["title"], target_lang),
                            "content": translated,
                        })
                if cache_entries:
                    await self.cache.set_many(user_id, cache_entries)
                    cached += len(cache_entries)
                logger.info(f"Translated {len(batch)} titles (batch {batch_num})")
            except RoundCancelled:
                raise
            except Exception as e:
                logger.error(f"Title translation batch {batch_num} failed for user {user_id}: {e}")
        return cached

    async def translate_articles(
        self,
        user_id: str,
        entries: List[Dict[str, Any]],
        enabled_feeds: Set[Any],
        target_lang: str,
        ai_config: Dict[str, Any],
        backoff: BackoffState,
        token: CancellationToken,
    ) -> int:
        """Translate full articles block by block; returns the number of articles cached."""
        if not enabled_feeds:
            return 0

        count = 0
        for entry in entries:
            token.raise_if_cancelled()
            if entry.get("feed_id") not in enabled_feeds:
                continue
            cache_key = translation_cache_key(entry["id"], target_lang)
            if await self.cache.get(user_id, cache_key):
                continue
            content = entry.get("content") or ""
            if not content.strip():
                continue

            try:
                blocks = extract_text_blocks(content[:MAX_CONTENT_LENGTH], entry.get("title"))
                if not blocks:
                    continue
                translated: List[Dict[str, Any]] = []
                for batch in chunked(blocks, BLOCK_BATCH_SIZE):
                    token.raise_if_cancelled()
                    translated.extend(await self._invoke(
                        partial(translate_blocks_batch, batch, target_lang, ai_config,
                                ai_config.get("translatePrompt"), complete=self.complete),
                        backoff,
                        token,
                    ))
                if translated:
                    await self.cache.set(user_id, cache_key, json.dumps(translated, ensure_ascii=False))
                    count += 1
                    logger.info(f"Translated full article {entry['id']} ({count} done)")
            except RoundCancelled:
                raise
            except Exception as e:
                logger.error(f"Translation failed for entry {entry['id']} "
                             f"('{truncate_string(entry.get('title') or '', 60)}'): {e}")

        if count:
            logger.info(f"Full translation complete: {count} articles for user {user_id}")
        return count

    async def summarize_articles(
        self,
        user_id: str,
        entries: List[Dict[str, Any]],
        enabled_feeds: Set[Any],
        target_lang: str,
        ai_config: Dict[str, Any],
        backoff: BackoffState,
        token: CancellationToken,
    ) -> int:
        """Summarize articles lacking a summary under either key form; returns summaries cached."""
        if not enabled_feeds:
            return 0

        count = 0
        for entry in entries:
            token.raise_if_cancelled()
            if entry.get("feed_id") not in enabled_feeds:
                continue
            cache_key = summary_cache_key(entry["id"], target_lang)
            if await self.cache.get(user_id, cache_key):
                continue
            if await self.cache.get(user_id, legacy_summary_cache_key(entry["id"])):
                continue
            content = entry.get("content") or ""
            if not content.strip():
                continue

            try:
                text = strip_html(content)[:MAX_CONTENT_LENGTH]
                if not text:
                    continue
                summary = await self._invoke(
                    partial(summarize_text, text, target_lang, ai_config,
                            ai_config.get("summarizePrompt"), complete=self.complete),
                    backoff,
                    token,
                )
                if summary:
                    await self.cache.set(user_id, cache_key, summary)
                    count += 1
                    logger.info(f"Generated summary for entry {entry['id']} ({count} done)")
            except RoundCancelled:
                raise
            except Exception as e:
                logger.error(f"Summary failed for entry {entry['id']}: {e}")

        if count:
            logger.info(f"Summary complete: {count} articles for user {user_id}")
        return count
