"""Turn inline citation spans into numbered footnotes with back-links."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from app.schemas.claude import CitationSpan


@dataclass
class Backlink:
    id: str
    label: str


@dataclass
class Reference:
    num: int
    title: str
    url: str
    domain: str
    backlinks: List[Backlink] = field(default_factory=list)


@dataclass
class CitationContext:
    """
    Numbering state for one response.

    Text blocks of the same response share it, so a URL keeps its number and
    its occurrence counter across blocks.
    """

    url_to_num: Dict[str, int] = field(default_factory=dict)
    occurrences: Dict[str, int] = field(default_factory=dict)
    references: List[Reference] = field(default_factory=list)

    def reference_for(self, span: CitationSpan) -> Reference:
        num = self.url_to_num.get(span.url)
        if num is None:
            num = len(self.references) + 1
            self.url_to_num[span.url] = num
            self.occurrences[span.url] = 0
            self.references.append(
                Reference(
                    num=num,
                    title=span.title or "Source",
                    url=span.url,
                    domain=span.domain,
                )
            )
        return self.references[num - 1]

    def next_backlink(self, span: CitationSpan) -> Backlink:
        ref = self.reference_for(span)
        occurrence = self.occurrences[span.url]
        self.occurrences[span.url] = occurrence + 1
        if occurrence == 0:
            backlink = Backlink(id=f"cite-{ref.num}", label=f"{ref.num}")
        else:
            backlink = Backlink(id=f"cite-{ref.num}-{occurrence}", label=f"{ref.num}:{occurrence}")
        ref.backlinks.append(backlink)
        return backlink


def _span_order(span: CitationSpan) -> Tuple[int, int, str]:
    return (span.start_index, span.end_index, span.url)


def citation_marker(num: int, anchor_id: str) -> str:
    return f'<sup id="{anchor_id}">[[{num}]](#ref-{num})</sup>'


def process_text_with_citations(
    text: str,
    citations: Optional[Iterable[CitationSpan]],
    context: Optional[CitationContext] = None,
) -> Tuple[str, List[Reference]]:
    """
    Insert back-link markers at citation end offsets.

    Returns the processed text and the references first seen in this text, in
    number order. Offsets refer to the original text; markers are inserted
    right-to-left so pending offsets stay valid.
    """
    spans = sorted(citations or [], key=_span_order)
    if not spans:
        return text, []

    ctx = context if context is not None else CitationContext()
    known_before = len(ctx.references)

    # Numbers follow first appearance, including spans whose marker is skipped.
    for span in spans:
        ctx.reference_for(span)

    markers: Dict[int, str] = {}
    for span in spans:
        if span.end_index in markers:
            continue
        backlink = ctx.next_backlink(span)
        markers[span.end_index] = citation_marker(ctx.url_to_num[span.url], backlink.id)

    processed = text
    for pos in sorted(markers, reverse=True):
        if 0 <= pos <= len(text):
            processed = processed[:pos] + markers[pos] + processed[pos:]

    return processed, ctx.references[known_before:]


def format_references(references: List[Reference]) -> str:
    if not references:
        return ""

    lines = ["", "---", "**References:**", ""]
    for ref in references:
        domain = f" - {ref.domain}" if ref.domain else ""
        backlinks = ""
        if ref.backlinks:
            backlinks = " " + ", ".join(f"[[{bl.label}]](#{bl.id})" for bl in ref.backlinks)
        lines.append(f'{ref.num}. <span id="ref-{ref.num}">[{ref.title}]({ref.url})</span>{domain}{backlinks}')
    return "\n".join(lines)
