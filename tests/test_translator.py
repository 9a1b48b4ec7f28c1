import pytest

from translator import (
    get_language_name,
    parse_numbered_blocks,
    parse_numbered_lines,
    render_prompt,
    translate_blocks_batch,
    translate_titles_batch,
)

AI_CONFIG = {"apiUrl": "https://ai.example.com/v1", "apiKey": "sk-test"}


def test_parse_numbered_lines_ignores_unnumbered_lines():
    text = "Here you go:\n1. Bonjour\n\n2.   Monde  \nthanks"
    assert parse_numbered_lines(text) == {1: "Bonjour", 2: "Monde"}


def test_parse_numbered_lines_requires_text():
    assert parse_numbered_lines("1.\n2. Deux") == {2: "Deux"}


def test_parse_numbered_blocks_folds_continuation_lines():
    text = "1. First line\nsecond line\n\n2. Other"
    assert parse_numbered_blocks(text) == {1: "First line\nsecond line", 2: "Other"}


def test_parse_numbered_blocks_drops_preamble_and_allows_empty():
    assert parse_numbered_blocks("Sure!\n1.\n2. x") == {1: "", 2: "x"}


def test_render_prompt_substitutes_language_before_content():
    prompt = render_prompt("summarize", "Summarize in {{targetLang}}: {{content}}", "fr",
                           "text with {{targetLang}} inside")
    assert prompt == "Summarize in Français: text with {{targetLang}} inside"


def test_render_prompt_uses_default_template():
    prompt = render_prompt("title_translate", None, "zh-CN", "1. Hello")
    assert "简体中文" in prompt
    assert prompt.endswith("1. Hello")


def test_unknown_language_code_is_used_verbatim():
    assert get_language_name("xx-YY") == "xx-YY"


@pytest.mark.asyncio
async def test_titles_missing_from_reply_fall_back_to_original():
    async def complete(prompt, ai_config, *, purpose):
        assert purpose == "title_translate"
        assert "1. Hello\n2. World" in prompt
        return "1. Bonjour"

    items = [{"id": 7, "title": "Hello"}, {"id": 8, "title": "World"}]
    result = await translate_titles_batch(items, "fr", AI_CONFIG, complete=complete)
    assert result == {7: "Bonjour", 8: "World"}


@pytest.mark.asyncio
async def test_block_batch_returns_cache_records_in_order():
    async def complete(prompt, ai_config, *, purpose):
        assert "1. Title\n\n2. Body text" in prompt
        return "1. Titre\n2."

    blocks = [{"text": "Title", "isTitle": True}, {"text": "Body text", "isTitle": False}]
    result = await translate_blocks_batch(blocks, "fr", AI_CONFIG, complete=complete)
    assert result == [
        {"text": "Title", "html": "Titre", "isTitle": True},
        {"text": "Body text", "html": "Body text", "isTitle": False},
    ]


def test_parse_numbered_blocks_out_of_order_reply():
    reply = "3. C\n7. bogus\n1. A\nmore A\n2. B"
    assert parse_numbered_blocks(reply) == {3: "C", 7: "bogus", 1: "A\nmore A", 2: "B"}


@pytest.mark.asyncio
async def test_block_batch_reassembles_out_of_order_reply():
    async def complete(prompt, ai_config, *, purpose):
        return "3. C\n7. bogus\n1. A\nmore A\n2. B"

    blocks = [{"text": t, "isTitle": False} for t in ("a", "b", "c", "d")]
    result = await translate_blocks_batch(blocks, "fr", AI_CONFIG, complete=complete)
    assert [r["text"] for r in result] == ["a", "b", "c", "d"]
    assert [r["html"] for r in result] == ["A\nmore A", "B", "C", "d"]


def test_only_ascii_digits_number_a_line():
    assert parse_numbered_lines("١. Arabic digit\n１. Fullwidth digit\n2. Plain") == {2: "Plain"}
    assert parse_numbered_blocks("١. x\n1. y") == {1: "y"}


def test_crlf_replies_leave_no_carriage_returns():
    assert parse_numbered_lines("1. Bonjour\r\n2. Monde\r\n") == {1: "Bonjour", 2: "Monde"}
    assert parse_numbered_blocks("1. First\r\nsecond\r\n2. Other\r\n") == {1: "First\nsecond", 2: "Other"}
