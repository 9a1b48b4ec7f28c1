from utils import extract_text_blocks, is_meaningful_text, strip_html


def texts(blocks):
    return [b["text"] for b in blocks]


def test_title_comes_first_then_blocks():
    blocks = extract_text_blocks("<p>First paragraph</p><div>Second part</div>", title="  My Title ")
    assert blocks[0] == {"text": "My Title", "isTitle": True}
    assert texts(blocks[1:]) == ["First paragraph", "Second part"]
    assert not any(b["isTitle"] for b in blocks[1:])


def test_inline_runs_are_coalesced():
    html = "Hello <b>bold</b> world<p>Para</p>trailing <a href='#'>link</a>"
    assert texts(extract_text_blocks(html)) == ["Hello bold world", "Para", "trailing link"]


def test_line_breaks_kept_in_inline_runs():
    assert texts(extract_text_blocks("<b>Line one</b><br>Line two")) == ["Line one\nLine two"]


def test_code_formulas_and_tables_are_skipped():
    html = (
        "<p>Intro text</p>"
        "<pre>x = 1</pre>"
        "<code>print()</code>"
        "<script>alert(1)</script>"
        "<table><tr><td>cell</td></tr></table>"
        "<div>Has <math><mi>x</mi></math> inside</div>"
        "<p>Outro text</p>"
    )
    assert texts(extract_text_blocks(html)) == ["Intro text", "Outro text"]


def test_container_ends_inline_run():
    html = "before <i>it</i><pre>code</pre>after it"
    assert texts(extract_text_blocks(html)) == ["before it", "after it"]


def test_meaningless_blocks_are_dropped():
    html = "<p>...</p><p>a</p><p>2024</p><p>-- !</p><p>ok</p>"
    assert texts(extract_text_blocks(html)) == ["ok"]


def test_text_only_fragment_is_one_block():
    assert extract_text_blocks("  Just some text  ") == [{"text": "Just some text", "isTitle": False}]


def test_comments_are_ignored():
    assert texts(extract_text_blocks("<!-- hidden --><p>Body</p>")) == ["Body"]


def test_empty_content_yields_only_title():
    assert extract_text_blocks("", title="Only") == [{"text": "Only", "isTitle": True}]
    assert extract_text_blocks(None) == []


def test_is_meaningful_text():
    assert is_meaningful_text("abc")
    assert is_meaningful_text("你好")
    assert not is_meaningful_text("123 ... !!")
    assert not is_meaningful_text("   ")


def test_strip_html_drops_markup_and_scripts():
    html = "<p>Hello <b>world</b></p>\n<script>var x = 1;</script><style>p{}</style><p>again</p>"
    assert strip_html(html) == "Hello world again"
    assert strip_html("") == ""


def test_unclosed_paragraphs_are_separate_blocks():
    html = "<p>First paragraph<p>Second paragraph<p>Third paragraph"
    assert texts(extract_text_blocks(html)) == ["First paragraph", "Second paragraph", "Third paragraph"]


def test_unclosed_list_items_are_separate_blocks():
    html = "<li>One item<li>Two item</li><p>After the list</p>"
    assert texts(extract_text_blocks(html)) == ["One item", "Two item", "After the list"]


def test_markup_without_body_content_yields_only_title():
    assert extract_text_blocks("<!-- nothing here -->", title="T") == [{"text": "T", "isTitle": True}]
