#!/usr/bin/env python3
"""
AI Pretranslate Scheduler

Runs pretranslate rounds over every known user on a fixed cadence:

- First round 30 seconds after start()
- Next round 5 minutes after the previous one finishes
- A timer tick that lands while a round is running is skipped
- notify_config_changed() cancels the running round and restarts 0.5s after
  it unwinds
- Cache trimming once per CACHE_CLEANUP_INTERVAL_HOURS

Timers, sleeps and wall-clock reads go through an injectable Clock, so the
whole state machine can be driven from tests without waiting.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

from config import config, get_logger
from errors import RoundCancelled
from llm_client import chat_completion
from miniflux import create_client_from_config
from models import CacheStore
from preferences import PreferenceStore
from pretranslator import CancellationToken, Pretranslator
from telemetry import init_telemetry, trace_span
from utils import format_duration

# Module-specific logger
logger = get_logger("scheduler")

init_telemetry("pretranslate-scheduler")

ROUND_INTERVAL = 5 * 60
STARTUP_DELAY = 30
RESTART_DELAY = 0.5


class Clock:
    """Event-loop clock: one-shot timers, sleep and UTC now."""

    def call_later(self, delay: float, callback: Callable[[], None]):
        return asyncio.get_running_loop().call_later(delay, callback)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class PretranslateScheduler:
    """Background scheduler for AI pretranslation rounds.

    At most one round runs at a time and at most one timer is pending.
    """

    def __init__(
        self,
        cache: CacheStore,
        preferences: PreferenceStore,
        *,
        client_factory: Callable[[], Any] = create_client_from_config,
        complete: Callable = chat_completion,
        clock: Optional[Clock] = None,
    ):
        self.cache = cache
        self.preferences = preferences
        self.client_factory = client_factory
        self.clock = clock or Clock()
        self.pretranslator = Pretranslator(
            cache,
            preferences,
            complete=complete,
            sleep_func=self.clock.sleep,
            now_func=self.clock.now,
        )
        self.state = SchedulerState.IDLE
        self.rounds_completed = 0
        self._started = False
        self._stopping = False
        self._timer = None
        self._token: Optional[CancellationToken] = None
        self._restart_requested = False
        self._tasks: Set[asyncio.Task] = set()
        self._last_cache_trim: Optional[datetime] = None

    def start(self) -> None:
        """Schedule the first round. Calling start() again has no effect."""
        if self._started:
            return
        self._started = True
        self._stopping = False
        logger.info(f"Pretranslate scheduler started, first round in {STARTUP_DELAY}s")
        self._schedule(STARTUP_DELAY)

    def notify_config_changed(self, user_id: Optional[str] = None) -> None:
        """Abort the current round and start a new one shortly after.

        Used as a preference-change listener; the user id is only logged.
        """
        if not self._started or self._stopping:
            logger.debug("Config change ignored, scheduler not running")
            return
        who = f" for user {user_id}" if user_id else ""
        logger.info(f"AI config changed{who}, restarting pretranslate round")

        if self._token is not None:
            self._token.cancel()
        self._cancel_timer()

        if self.state is SchedulerState.RUNNING:
            # The round schedules the restart when it unwinds
            self._restart_requested = True
        else:
            self._schedule(RESTART_DELAY)

    async def stop(self) -> None:
        """Cancel pending work and wait for any running round to finish."""
        self._stopping = True
        self._cancel_timer()
        if self._token is not None:
            self._token.cancel()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._started = False
        logger.info("Pretranslate scheduler stopped")

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self, delay: float) -> None:
        self._cancel_timer()
        self._timer = self.clock.call_later(delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self.tick())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def tick(self) -> None:
        """Run one round unless one is already in progress, then schedule the next."""
        if self.state is SchedulerState.RUNNING:
            logger.debug("Previous round still running, skipping tick")
            self._schedule(ROUND_INTERVAL)
            return

        token = CancellationToken()
        self._token = token
        self._restart_requested = False
        self.state = SchedulerState.RUNNING
        start_time = time.time()
        try:
            await self._maybe_trim_cache()
            await self.run_all(token)
            self.rounds_completed += 1
            logger.info(f"Pretranslate round finished in {format_duration(time.time() - start_time)}")
        except RoundCancelled:
            logger.info("Pretranslate round cancelled")
        except Exception as e:
            logger.error(f"Pretranslate round failed: {e}")
        finally:
            self.state = SchedulerState.IDLE
            if self._token is token:
                self._token = None
            delay = RESTART_DELAY if self._restart_requested else ROUND_INTERVAL
            self._restart_requested = False
            if not self._stopping:
                self._schedule(delay)

    @trace_span("pretranslate.round", tracer_name="scheduler", expected_exceptions=(RoundCancelled,))
    async def run_all(self, token: CancellationToken) -> None:
        """Process every user once, sequentially."""
        client = self.client_factory()
        if client is None:
            logger.debug("Feed aggregator not configured, skipping round")
            return
        try:
            user_ids = await self.preferences.get_all_user_ids()
            for user_id in user_ids:
                token.raise_if_cancelled()
                try:
                    await self.pretranslator.process_user(user_id, client, token)
                except RoundCancelled:
                    raise
                except Exception as e:
                    logger.error(f"Pretranslate failed for user {user_id}: {e}")
        finally:
            await client.close()

    async def run_user(self, user_id: str) -> Optional[Dict[str, int]]:
        """Process a single user immediately, outside the timer chain."""
        client = self.client_factory()
        if client is None:
            logger.error("Feed aggregator not configured (set MINIFLUX_URL and credentials)")
            return None
        try:
            return await self.pretranslator.process_user(user_id, client, CancellationToken())
        finally:
            await client.close()

    async def _maybe_trim_cache(self) -> None:
        now = self.clock.now()
        interval = timedelta(hours=config.CACHE_CLEANUP_INTERVAL_HOURS)
        if self._last_cache_trim is not None and now - self._last_cache_trim < interval:
            return
        self._last_cache_trim = now
        try:
            deleted = await self.cache.trim_excess()
        except Exception as e:
            logger.error(f"Cache trim failed: {e}")
            return
        if deleted:
            logger.info(f"Cache trim removed {deleted} entries")
