import re

from hypothesis import given, strategies as st

from app.schemas.claude import CitationSpan
from app.services.conversation.citations import (
    CitationContext,
    format_references,
    process_text_with_citations,
)

MARKER_RE = re.compile(r'<sup id="cite-\d+(?:-\d+)?">\[\[\d+\]\]\(#ref-\d+\)</sup>')


def _span(url, start, end, title="Source", domain=""):
    return CitationSpan(
        url=url,
        title=title,
        start_index=start,
        end_index=end,
        metadata={"site_domain": domain},
    )


@st.composite
def text_with_spans(draw):
    text = draw(st.text(alphabet="abc xyz.", max_size=60))
    urls = ["https://a.example", "https://b.example", "https://c.example"]
    spans = []
    for _ in range(draw(st.integers(min_value=0, max_value=6))):
        start = draw(st.integers(min_value=0, max_value=len(text)))
        end = draw(st.integers(min_value=start, max_value=len(text) + 5))
        spans.append(_span(draw(st.sampled_from(urls)), start, end))
    return text, spans


@given(text_with_spans())
def test_markers_leave_the_original_text_intact(case):
    text, spans = case
    processed, _ = process_text_with_citations(text, spans)
    assert MARKER_RE.sub("", processed) == text


@given(text_with_spans())
def test_result_does_not_depend_on_span_order(case):
    text, spans = case
    forward = process_text_with_citations(text, spans)[0]
    backward = process_text_with_citations(text, list(reversed(spans)))[0]
    assert forward == backward


@given(st.text(max_size=80))
def test_no_citations_is_a_no_op(text):
    assert process_text_with_citations(text, []) == (text, [])
    assert process_text_with_citations(text, None) == (text, [])


def test_single_citation_scenario():
    processed, refs = process_text_with_citations("See source.", [_span("https://example.com", 0, 11)])
    assert processed == 'See source.<sup id="cite-1">[[1]](#ref-1)</sup>'
    assert len(refs) == 1
    assert refs[0].url == "https://example.com"
    assert refs[0].num == 1


def test_same_url_shares_number_with_distinct_anchors():
    spans = [_span("https://x.org", 0, 4), _span("https://x.org", 5, 9)]
    processed, refs = process_text_with_citations("aaaa bbbb", spans)
    assert len(refs) == 1
    assert [b.id for b in refs[0].backlinks] == ["cite-1", "cite-1-1"]
    assert [b.label for b in refs[0].backlinks] == ["1", "1:1"]
    assert processed == (
        'aaaa<sup id="cite-1">[[1]](#ref-1)</sup> '
        'bbbb<sup id="cite-1-1">[[1]](#ref-1)</sup>'
    )


def test_one_marker_per_end_offset():
    spans = [_span("https://a.org", 0, 4), _span("https://b.org", 2, 4)]
    processed, refs = process_text_with_citations("abcd", spans)
    assert processed.count("<sup") == 1
    assert [r.num for r in refs] == [1, 2]
    # the skipped span still gets a number but no back-link
    assert refs[1].backlinks == []


def test_marker_beyond_text_is_dropped():
    processed, refs = process_text_with_citations("short", [_span("https://a.org", 0, 50)])
    assert processed == "short"
    assert len(refs) == 1


def test_context_keeps_numbering_across_blocks():
    ctx = CitationContext()
    _, first = process_text_with_citations("one", [_span("https://a.org", 0, 3)], ctx)
    text, second = process_text_with_citations(
        "two three",
        [_span("https://a.org", 0, 3), _span("https://b.org", 4, 9)],
        ctx,
    )
    assert [r.num for r in first] == [1]
    assert [r.num for r in second] == [2]
    assert '<sup id="cite-1-1">[[1]](#ref-1)</sup>' in text
    assert '<sup id="cite-2">[[2]](#ref-2)</sup>' in text
    assert len(ctx.references) == 2


def test_format_references():
    _, refs = process_text_with_citations(
        "aaaa bbbb",
        [_span("https://x.org/p", 0, 4, title="X", domain="x.org"), _span("https://x.org/p", 5, 9)],
    )
    rendered = format_references(refs)
    assert rendered.split("\n")[:4] == ["", "---", "**References:**", ""]
    assert rendered.endswith(
        '1. <span id="ref-1">[X](https://x.org/p)</span> - x.org [[1]](#cite-1), [[1:1]](#cite-1-1)'
    )
    assert format_references([]) == ""
