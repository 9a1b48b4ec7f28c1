#!/usr/bin/env python3
"""
Utility classes and functions for the pretranslate pipelines.

This module contains the rate-limit backoff shared by every AI call within a
user's round, the HTML helpers that turn article markup into translatable
blocks or plain text, and a few small formatting helpers.
"""

from asyncio import sleep
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, TypeVar
import re
import unicodedata

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from config import get_logger
from errors import AIRequestError

# Module-specific logger
logger = get_logger("utils")

T = TypeVar("T")

BACKOFF_INITIAL = 30.0
BACKOFF_MAX = 300.0
BACKOFF_MULTIPLIER = 2


@dataclass
class BackoffState:
    """Delay to apply on the next rate-limited AI call, scoped to one user's round."""

    delay: float = BACKOFF_INITIAL

    def reset(self) -> None:
        self.delay = BACKOFF_INITIAL

    def advance(self) -> None:
        self.delay = min(self.delay * BACKOFF_MULTIPLIER, BACKOFF_MAX)


async def call_with_backoff(
    operation: Callable[[], Awaitable[T]],
    state: BackoffState,
    *,
    sleep_func: Callable[[float], Awaitable[Any]] = sleep,
    checkpoint: Optional[Callable[[], None]] = None,
) -> T:
    """Invoke an AI operation, sleeping and retrying for as long as it is rate limited.

    Args:
        operation: Zero-argument coroutine factory performing one AI call
        state: Shared backoff state; reset on success, grown after each 429
        sleep_func: Awaitable sleep, injectable for tests
        checkpoint: Called before every attempt; raises to abandon the retry loop

    Any failure other than a 429 propagates immediately. There is no retry limit.
    """
    while True:
        if checkpoint:
            checkpoint()
        try:
            result = await operation()
        except AIRequestError as e:
            if not e.rate_limited:
                raise
            logger.warning(f"Rate limited (429), backing off {state.delay:.0f}s...")
            await sleep_func(state.delay)
            state.advance()
            continue
        state.reset()
        return result


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most `size` items."""
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string (e.g. "1h 23m 45s")."""
    if seconds < 0:
        return "0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate a string to a maximum length, adding a suffix if truncated."""
    if not text or len(text) <= max_length:
        return text

    if len(suffix) >= max_length:
        return text[:max_length]

    return text[:max_length - len(suffix)] + suffix


# Tags whose content is never translated
SKIP_TAGS = frozenset({"script", "style", "svg", "iframe", "button", "code"})
# Tags whose markup would be corrupted by translation; they only end an inline run
CONTAINER_TAGS = frozenset({"math", "pre", "table"})
BLOCK_TAGS = frozenset({
    "address", "article", "aside", "blockquote", "canvas", "dd", "div", "dl", "dt",
    "fieldset", "figcaption", "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5",
    "h6", "header", "hr", "li", "main", "nav", "noscript", "ol", "p", "section",
    "table", "tfoot", "ul", "video",
})
MIN_BLOCK_LENGTH = 2

WHITESPACE_PATTERN = re.compile(r'\s+')


def is_meaningful_text(text: str) -> bool:
    """True if anything remains after dropping punctuation, symbols, separators and digits."""
    remaining = "".join(ch for ch in text if unicodedata.category(ch)[0] not in "PSZN")
    return len(remaining.strip()) >= 1


def _accept_block(text: str) -> bool:
    return len(text) >= MIN_BLOCK_LENGTH and is_meaningful_text(text)


def extract_text_blocks(html: Optional[str], title: Optional[str] = None) -> List[Dict[str, Any]]:
    """Split article markup into ordered translatable blocks.

    Returns a list of ``{"text": str, "isTitle": bool}``; the trimmed title comes first.
    Top-level block elements become one block each, consecutive inline content is
    coalesced into one block, and code, formulas and tables are left untouched.
    """
    blocks: List[Dict[str, Any]] = []
    if title and title.strip():
        blocks.append({"text": title.strip(), "isTitle": True})
    if not html:
        return blocks

    # lxml applies the implicit end tags feeds rely on (<p>A<p>B, <li>A<li>B)
    soup = BeautifulSoup(html, "lxml")
    body = soup.body
    if body is None:
        return blocks

    pending: List[Any] = []

    def flush() -> None:
        if not pending:
            return
        parts = []
        for node in pending:
            if isinstance(node, Tag):
                parts.append("\n" if node.name == "br" else node.get_text())
            else:
                parts.append(str(node))
        text = "".join(parts).strip()
        if _accept_block(text):
            blocks.append({"text": text, "isTitle": False})
        pending.clear()

    for node in list(body.contents):
        if isinstance(node, Tag):
            tag = node.name.lower()
            if tag in SKIP_TAGS:
                continue
            if tag in CONTAINER_TAGS:
                flush()
                continue
            if tag in BLOCK_TAGS:
                flush()
                if node.find(list(CONTAINER_TAGS)) is not None:
                    continue
                text = node.get_text().strip()
                if _accept_block(text):
                    blocks.append({"text": text, "isTitle": False})
                continue
        elif isinstance(node, NavigableString):
            # Comments, doctypes and CDATA carry no readable text
            if type(node) is not NavigableString:
                continue
            if not node.strip() and not pending:
                continue
        pending.append(node)
    flush()

    return blocks


def strip_html(html: Optional[str]) -> str:
    """Reduce markup to plain text with collapsed whitespace."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    return WHITESPACE_PATTERN.sub(" ", soup.get_text(" ")).strip()
