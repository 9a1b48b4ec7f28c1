import os
import re
from datetime import datetime, timezone

import pytest

os.environ.setdefault("DISABLE_TELEMETRY", "true")

NUMBERED_LINE = re.compile(r'^(\d+)\.\s*(.+)$', re.MULTILINE)


class FakeCache:
    def __init__(self):
        self.data = {}
        self.trims = 0

    async def get(self, user_id, key):
        return self.data.get((user_id, key))

    async def set(self, user_id, key, content):
        self.data[(user_id, key)] = content

    async def set_many(self, user_id, entries):
        for entry in entries:
            self.data[(user_id, entry['key'])] = entry['content']
        return len(entries)

    async def trim_excess(self, max_entries=None):
        self.trims += 1
        return 0


class FakePreferences:
    def __init__(self, prefs_by_user=None):
        self.prefs = prefs_by_user or {}

    async def get_all_user_ids(self):
        return sorted(self.prefs)

    async def get(self, user_id):
        prefs = self.prefs.get(user_id, {})
        if isinstance(prefs, Exception):
            raise prefs
        return prefs


class FakeFeedClient:
    def __init__(self, feeds=None, entries=None):
        self.feeds = feeds or []
        self.entries = entries or []
        self.entry_queries = []
        self.feed_calls = 0
        self.closed = False

    async def get_feeds(self):
        self.feed_calls += 1
        return self.feeds

    async def get_entries(self, **filters):
        self.entry_queries.append(filters)
        return {"total": len(self.entries), "entries": list(self.entries)}

    async def close(self):
        self.closed = True


class FakeAI:
    """Answers numbered-line prompts line by line; summaries get a fixed reply."""

    def __init__(self, translate=None, summary="A short summary."):
        self.translate = translate or (lambda text: f"<{text}>")
        self.summary = summary
        self.calls = []
        self.errors = []
        self.on_call = None

    @property
    def purposes(self):
        return [purpose for purpose, _ in self.calls]

    async def __call__(self, prompt, ai_config, *, purpose="generic"):
        self.calls.append((purpose, prompt))
        if self.on_call:
            self.on_call()
        if self.errors:
            raise self.errors.pop(0)
        if purpose == "summarize":
            return self.summary
        lines = []
        for num, text in NUMBERED_LINE.findall(prompt):
            translated = self.translate(text.strip())
            if translated is not None:
                lines.append(f"{num}. {translated}")
        return "\n".join(lines)


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    def __init__(self):
        self.current = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        self.timers = []
        self.sleeps = []

    def call_later(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    async def sleep(self, seconds):
        self.sleeps.append(seconds)

    def now(self):
        return self.current

    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire(self):
        pending = self.pending()
        assert len(pending) == 1, f"expected one pending timer, found {len(pending)}"
        timer = pending[0]
        timer.fired = True
        timer.callback()


def ai_prefs(**overrides):
    prefs = {
        "ai_config": {
            "apiUrl": "https://ai.example.com/v1",
            "apiKey": "sk-test",
            "model": "test-model",
            "targetLang": "fr",
        },
        "ai_pretranslate_title": False,
        "ai_pretranslate_translate": False,
        "ai_pretranslate_summary": False,
    }
    prefs.update(overrides)
    return prefs


FEED_ON = {"feeds": {"1": "on"}}


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def fake_ai():
    return FakeAI()


@pytest.fixture
def clock():
    return FakeClock()
