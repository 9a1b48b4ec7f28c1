#!/usr/bin/env python3
"""
Prompt building and response parsing for the AI pretranslate pipelines.

Every helper renders a prompt template (the user's custom prompt when set,
otherwise the configured default), performs exactly one AI call, and parses
the reply. Batch translations rely on a numbered-line protocol: the prompt
lists items as "1. text" and the model is asked to answer in the same shape.
"""

import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from config import config, get_logger
from llm_client import chat_completion

logger = get_logger("translator")

CompletionFunc = Callable[..., Awaitable[str]]

AI_LANGUAGES: Dict[str, str] = {
    'zh-CN': '简体中文',
    'zh-TW': '繁體中文',
    'en': 'English',
    'ja': '日本語',
    'ko': '한국어',
    'fr': 'Français',
    'de': 'Deutsch',
    'es': 'Español',
    'pt': 'Português',
    'ru': 'Русский',
}

TITLE_LINE_PATTERN = re.compile(r'^([0-9]+)\.\s*(.+)')
BLOCK_LINE_PATTERN = re.compile(r'^([0-9]+)\.\s*(.*)')

BLOCK_FORMAT_HINT = (
    '(The following text is divided into numbered blocks. Translate each block and output in the '
    'same numbered format, e.g. "1. translated text". Do not add any extra text.)'
)


def get_language_name(lang_id: str) -> str:
    return AI_LANGUAGES.get(lang_id, lang_id)


def render_prompt(template_key: str, custom_prompt: Optional[str], target_lang: str, content: str) -> str:
    """Fill {{targetLang}} then {{content}} so article text is never re-substituted."""
    template = custom_prompt if custom_prompt and custom_prompt.strip() else config.PROMPTS[template_key]
    return (template
            .replace('{{targetLang}}', get_language_name(target_lang))
            .replace('{{content}}', content))


def parse_numbered_lines(text: str) -> Dict[int, str]:
    """Map each "N. text" line to its number; other lines are ignored."""
    numbered: Dict[int, str] = {}
    for line in text.strip().split('\n'):
        line = line.rstrip('\r')
        if not line.strip():
            continue
        match = TITLE_LINE_PATTERN.match(line)
        if match:
            numbered[int(match.group(1))] = match.group(2).strip()
    return numbered


def parse_numbered_blocks(text: str) -> Dict[int, str]:
    """Map numbered blocks to their text, folding unnumbered lines into the preceding block."""
    numbered: Dict[int, str] = {}
    current_num: Optional[int] = None
    current_text = ''
    for line in text.split('\n'):
        line = line.rstrip('\r')
        match = BLOCK_LINE_PATTERN.match(line)
        if match:
            if current_num is not None:
                numbered[current_num] = current_text.strip()
            current_num = int(match.group(1))
            current_text = match.group(2)
        elif current_num is not None:
            current_text += '\n' + line
    if current_num is not None:
        numbered[current_num] = current_text.strip()
    return numbered


async def translate_titles_batch(
    items: List[Dict[str, Any]],
    target_lang: str,
    ai_config: Dict[str, Any],
    custom_prompt: Optional[str] = None,
    *,
    complete: CompletionFunc = chat_completion,
) -> Dict[Any, str]:
    """Translate up to a batch of titles in one call.

    Args:
        items: Dicts with 'id' and 'title'

    Returns:
        Mapping of item id to translation; items the model skipped map to their original title.
    """
    if not items:
        return {}
    titles_block = '\n'.join(f"{i + 1}. {item['title']}" for i, item in enumerate(items))
    prompt = render_prompt('title_translate', custom_prompt, target_lang, titles_block)
    result = await complete(prompt, ai_config, purpose="title_translate")
    numbered = parse_numbered_lines(result or '')
    return {item['id']: numbered.get(i + 1) or item['title'] for i, item in enumerate(items)}


async def translate_blocks_batch(
    blocks: List[Dict[str, Any]],
    target_lang: str,
    ai_config: Dict[str, Any],
    custom_prompt: Optional[str] = None,
    *,
    complete: CompletionFunc = chat_completion,
) -> List[Dict[str, Any]]:
    """Translate a batch of text blocks in one call.

    Returns records in the read-path cache shape, ``{"text", "html", "isTitle"}``,
    in input order; blocks without a usable translation keep their original text.
    """
    if not blocks:
        return []
    numbered_text = '\n\n'.join(f"{i + 1}. {block['text']}" for i, block in enumerate(blocks))
    prompt = render_prompt('translate', custom_prompt, target_lang, f"{BLOCK_FORMAT_HINT}\n\n{numbered_text}")
    result = await complete(prompt, ai_config, purpose="translate")
    numbered = parse_numbered_blocks(result or '')
    return [
        {
            'text': block['text'],
            'html': numbered.get(i + 1) or block['text'],
            'isTitle': bool(block.get('isTitle')),
        }
        for i, block in enumerate(blocks)
    ]


async def summarize_text(
    content: str,
    target_lang: str,
    ai_config: Dict[str, Any],
    custom_prompt: Optional[str] = None,
    *,
    complete: CompletionFunc = chat_completion,
) -> str:
    prompt = render_prompt('summarize', custom_prompt, target_lang, content)
    result = await complete(prompt, ai_config, purpose="summarize")
    return (result or '').strip()
