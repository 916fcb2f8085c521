"""Companion markdown documents written next to the transcript in an export folder.

Review note:
- 回复编号只统计 text-only 渲染非空的 assistant 消息；prompt 编号按 human 消息位置。
- 所有时间戳使用调用方传入的 exported_at，保证同一次导出内一致。
"""

from __future__ import annotations

from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote, urlparse

from app.schemas.claude import Conversation, Message
from app.services.conversation.artifacts import WebSource
from app.services.rendering.formatting import (
    count_words,
    extract_first_heading,
    extract_response_text_only,
    extract_text_content,
    format_duration,
    format_timestamp,
    get_code_fence,
    get_model_name,
    sanitize_for_filename,
)
from app.services.rendering.markdown import chat_link


HEADING_DISPLAY_MAX = 50


def _link_target(name: str) -> str:
    return quote(name, safe="!~*'()")


@dataclass
class ResponseEntry:
    """One numbered response of the active branch."""

    num: int
    prompt_num: int
    message: Message
    text: str
    heading: str

    @property
    def stem(self) -> str:
        return f"{self.num:03d}_{sanitize_for_filename(self.heading)}_response"

    @property
    def pure_filename(self) -> str:
        return f"{self.stem}.md"

    @property
    def full_filename(self) -> str:
        return f"{self.stem}.full.md"


def plan_responses(messages: Sequence[Message]) -> List[ResponseEntry]:
    entries: List[ResponseEntry] = []
    prompt_num = 0
    for msg in messages:
        if msg.is_human:
            prompt_num += 1
            continue
        if not msg.is_assistant:
            continue
        text = extract_response_text_only(msg)
        if not text.strip():
            continue
        entries.append(
            ResponseEntry(
                num=len(entries) + 1,
                prompt_num=prompt_num,
                message=msg,
                text=text,
                heading=extract_first_heading(text),
            )
        )
    return entries


def response_back_link(entry: ResponseEntry) -> str:
    return f"← [Prompt {entry.prompt_num}](../prompts.md#prompt-{entry.prompt_num})\n\n---\n\n"


@dataclass
class ConversationDigest:
    """Everything extracted from one conversation that the documents summarise."""

    conversation: Conversation
    messages: List[Message]
    artifacts: Dict[str, str] = field(default_factory=dict)
    text_attachments: Dict[str, str] = field(default_factory=dict)
    attachment_names: Dict[str, str] = field(default_factory=dict)
    project_files: Dict[str, str] = field(default_factory=dict)
    web_sources: List[WebSource] = field(default_factory=list)
    code_blocks: List[Tuple[str, str]] = field(default_factory=list)
    urls: List[Tuple[str, str]] = field(default_factory=list)
    responses: List[ResponseEntry] = field(default_factory=list)

    @property
    def prompt_count(self) -> int:
        return sum(1 for m in self.messages if m.is_human)

    @property
    def response_count(self) -> int:
        return sum(1 for m in self.messages if m.is_assistant)


# ---------------------------------------------------------------------------
# meta.md
# ---------------------------------------------------------------------------


def _features(conversation: Conversation) -> List[str]:
    features = []
    s = conversation.settings
    if s.enabled_web_search:
        features.append("Web Search")
    if s.preview_feature_uses_artifacts:
        features.append("Artifacts")
    if s.reasoning_mode == "extended":
        features.append("Extended Thinking")
    elif s.reasoning_mode == "normal":
        features.append("Thinking")
    return features


def generate_meta(digest: ConversationDigest, uploaded_count: int, exported_at: datetime) -> str:
    conv = digest.conversation
    messages = digest.messages

    prompt_words = 0
    response_words = 0
    for msg in messages:
        words = count_words(extract_text_content(msg))
        if msg.is_human:
            prompt_words += words
        elif msg.is_assistant:
            response_words += words

    first_at = messages[0].created_at if messages else ""
    last_at = messages[-1].created_at if messages else ""
    duration = format_duration(first_at, last_at)
    features = _features(conv)

    lines = [
        "# Conversation Metadata",
        "",
        "## Basic Info",
        "",
        "| Property | Value |",
        "|----------|-------|",
        f"| **Title** | {conv.title} |",
        f"| **UUID** | `{conv.uuid}` |",
        f"| **Model** | {get_model_name(conv)} |",
        f"| **Created** | {format_timestamp(conv.created_at)} |",
        f"| **Updated** | {format_timestamp(conv.updated_at)} |",
        f"| **Duration** | {duration or 'N/A'} |",
        f"| **Starred** | {'⭐ Yes' if conv.is_starred else 'No'} |",
        f"| **Features** | {', '.join(features) if features else 'None'} |",
        f"| **Link** | [Open in Claude]({chat_link(conv.uuid)}) |",
        "",
        "## Statistics",
        "",
        "| Metric | Count |",
        "|--------|-------|",
        f"| **Total Messages** | {len(messages)} |",
        f"| **Prompts** | {digest.prompt_count} |",
        f"| **Responses** | {digest.response_count} |",
        f"| **Artifacts** | {len(digest.artifacts)} |",
        f"| **Text Attachments** | {len(digest.text_attachments)} |",
        f"| **Project Files** | {len(digest.project_files)} |",
        f"| **Uploaded Files** | {uploaded_count} |",
        f"| **Code Blocks** | {len(digest.code_blocks)} |",
        f"| **Links** | {len(digest.urls)} |",
        f"| **Web Sources** | {len(digest.web_sources)} |",
        "",
        "## Word Counts",
        "",
        "| Type | Words |",
        "|------|-------|",
        f"| **Prompts** | {prompt_words:,} |",
        f"| **Responses** | {response_words:,} |",
        f"| **Total** | {prompt_words + response_words:,} |",
        "",
        "## Timeline",
        "",
        "| Event | Timestamp |",
        "|-------|-----------|",
        f"| **First Message** | {format_timestamp(first_at)} |",
        f"| **Last Message** | {format_timestamp(last_at)} |",
        f"| **Exported** | {format_timestamp(exported_at)} |",
        "",
        "## Code Languages",
        "",
    ]

    lang_counts = Counter(lang for lang, _ in digest.code_blocks)
    if lang_counts:
        lines.append("| Language | Count |")
        lines.append("|----------|-------|")
        for lang, count in lang_counts.most_common():
            lines.append(f"| {lang} | {count} |")
    else:
        lines.append("*No code blocks found*")

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# prompts.md / responses_text_only.md / code_snippets.md
# ---------------------------------------------------------------------------


def generate_prompts(digest: ConversationDigest) -> str:
    by_prompt: Dict[int, List[ResponseEntry]] = {}
    for entry in digest.responses:
        if entry.prompt_num > 0:
            by_prompt.setdefault(entry.prompt_num, []).append(entry)

    lines = ["# Prompts", ""]
    prompt_num = 0
    for msg in digest.messages:
        if not msg.is_human:
            continue
        prompt_num += 1
        lines.extend([f"## Prompt {prompt_num}", f"*{format_timestamp(msg.created_at)}*", ""])

        attachments = [a for a in msg.attachments if a.extracted_content]
        if attachments:
            lines.append("**Attachments:**")
            for att in attachments:
                filename = digest.attachment_names.get(att.id) if att.id else None
                filename = filename or att.file_name or "unknown"
                lines.append(f"- [{filename}](attachments/{_link_target(filename)})")
            lines.append("")

        uploads = [f for f in msg.files_v2 if f.success and f.file_name]
        if uploads:
            lines.append("**Uploaded Files:**")
            for upload in uploads:
                pages = upload.document_asset.page_count if upload.document_asset else None
                page_info = f" ({pages} pages)" if pages else ""
                lines.append(f"- [{upload.file_name}](uploads/{_link_target(upload.file_name)}){page_info}")
            lines.append("")

        lines.append(extract_text_content(msg))
        lines.append("")

        entries = by_prompt.get(prompt_num, [])
        if entries:
            lines.append("**Responses:**")
            for entry in entries:
                lines.append(
                    f"- Response {entry.num}: [text](responses/{entry.pure_filename})"
                    f" | [full](responses/{entry.full_filename})"
                )
            lines.append("")

        lines.extend(["---", ""])

    return "\n".join(lines)


def generate_responses_text_only(digest: ConversationDigest) -> str:
    lines = ["# Responses (Text Only)", ""]
    for entry in digest.responses:
        lines.extend([
            f"## Response {entry.num}",
            f"*[Prompt {entry.prompt_num}](prompts.md#prompt-{entry.prompt_num})*",
            "",
            entry.text,
            "",
            "---",
            "",
        ])
    return "\n".join(lines)


def generate_code_snippets(code_blocks: Sequence[Tuple[str, str]]) -> str:
    lines = [
        "# Code Snippets",
        "",
        f"*{len(code_blocks)} code blocks extracted from conversation*",
        "",
    ]
    for idx, (lang, code) in enumerate(code_blocks, start=1):
        fence = get_code_fence(code)
        lines.extend([f"## Snippet {idx} ({lang})", "", f"{fence}{lang}", code, fence, ""])
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# links_and_sources.md
# ---------------------------------------------------------------------------


def group_sources_by_domain(sources: Sequence[WebSource]) -> List[Tuple[str, List[WebSource]]]:
    """Domains ordered by source count, ties in first-seen order."""
    groups: "OrderedDict[str, List[WebSource]]" = OrderedDict()
    for src in sources:
        groups.setdefault(src.domain or "other", []).append(src)
    return sorted(groups.items(), key=lambda item: len(item[1]), reverse=True)


def _source_line(src: WebSource) -> str:
    flags = []
    if src.is_missing:
        flags.append("missing")
    if not src.is_citable:
        flags.append("not citable")
    flag_str = f" *({', '.join(flags)})*" if flags else ""
    return f"- [{src.title}]({src.url}){flag_str}"


def _url_host(url: str) -> str:
    try:
        return urlparse(url).hostname or "other"
    except ValueError:
        return "other"


def generate_links_and_sources(
    urls: Sequence[Tuple[str, str]],
    web_sources: Sequence[WebSource],
) -> Optional[str]:
    if not urls and not web_sources:
        return None

    lines = ["# Links & Sources", ""]

    if web_sources:
        lines.extend([
            "## Web Search Sources",
            "",
            f"*{len(web_sources)} sources from web search*",
            "",
        ])
        for domain, sources in group_sources_by_domain(web_sources):
            lines.append(f"### {domain} ({len(sources)})")
            lines.append("")
            lines.extend(_source_line(src) for src in sources)
            lines.append("")

    if urls:
        lines.extend([
            "## Links in Conversation",
            "",
            f"*{len(urls)} unique URLs found in text*",
            "",
        ])
        hosts: Dict[str, List[Tuple[str, str]]] = {}
        for url, context in urls:
            hosts.setdefault(_url_host(url), []).append((url, context))
        for host in sorted(hosts):
            lines.append(f"### {host}")
            lines.append("")
            for url, context in hosts[host]:
                lines.append(f"- [{context}]({url})" if context else f"- <{url}>")
            lines.append("")

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# README.md / index.md
# ---------------------------------------------------------------------------


@dataclass
class ProjectSection:
    files: Dict[str, str] = field(default_factory=dict)  # original name -> name in folder
    from_api: bool = False
    has_metadata: bool = False
    has_prompt_template: bool = False
    has_docs_listing: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.files or self.has_metadata or self.has_docs_listing)


@dataclass
class UploadSection:
    saved: List[Tuple[str, bool]] = field(default_factory=list)  # (name, reconstructed)
    failed: List[Tuple[str, str]] = field(default_factory=list)  # (filename, note)


def _section(title: str) -> List[str]:
    return ["", "---", "", title, ""]


def generate_readme(
    digest: ConversationDigest,
    project: ProjectSection,
    uploads: UploadSection,
    exported_at: datetime,
) -> str:
    conv = digest.conversation
    link = chat_link(conv.uuid)
    lines = [
        f"# {conv.title}",
        "",
        f"**Created:** {format_timestamp(conv.created_at)}",
        f"**Exported:** {format_timestamp(exported_at)}",
        f"**Link:** [{link}]({link})",
        "",
        "---",
        "",
        "## Overview",
        "",
        "- [meta.md](meta.md) *(statistics, metadata, word counts)*",
        "- [full_chat.md](full_chat.md) *(complete conversation with embedded artifacts)*",
        "- [integrated_chat.md](integrated_chat.md) *(markdown artifacts flow seamlessly)*",
        "- [original.json](original.json) *(original export)*",
        "",
        "---",
        "",
        f"## Prompts ({digest.prompt_count})",
        "",
        "- [prompts.md](prompts.md)",
        "",
        "---",
        "",
        f"## Responses ({len(digest.responses)})",
        "",
        "- [responses_text_only.md](responses_text_only.md) *(pure text, no thinking/tools)*",
        "",
    ]

    if digest.code_blocks or digest.urls or digest.web_sources:
        lines.extend(["---", "", "## Extras", ""])
        if digest.code_blocks:
            lines.append(f"- [code_snippets.md](code_snippets.md) *({len(digest.code_blocks)} code blocks)*")
        if digest.urls or digest.web_sources:
            parts = []
            if digest.web_sources:
                parts.append(f"{len(digest.web_sources)} web sources")
            if digest.urls:
                parts.append(f"{len(digest.urls)} links")
            lines.append(f"- [links_and_sources.md](links_and_sources.md) *({', '.join(parts)})*")
        lines.append("")

    for entry in digest.responses:
        display = entry.heading
        if len(display) > HEADING_DISPLAY_MAX:
            display = display[:HEADING_DISPLAY_MAX - 3] + "..."
        lines.append(
            f"- {display}: [text](responses/{entry.pure_filename}) | [full](responses/{entry.full_filename})"
        )

    lines.extend(_section(f"## Artefacts ({len(digest.artifacts)})"))
    for filename in sorted(digest.artifacts):
        lines.append(f"- [{filename}](artefacts/{_link_target(filename)})")

    if digest.text_attachments:
        lines.extend(_section(f"## Text Attachments ({len(digest.text_attachments)})"))
        for filename in sorted(digest.text_attachments):
            lines.append(f"- [{filename}](attachments/{_link_target(filename)})")

    if not project.is_empty:
        lines.extend(_section("## Project"))
        if project.has_metadata:
            lines.append("- [project.json](project/project.json) - Project metadata")
            if project.has_prompt_template:
                lines.append("- [prompt_template.md](project/prompt_template.md) - System prompt template")
        if project.has_docs_listing:
            lines.append("- [docs.json](project/docs.json) - Document list metadata")
        if project.files:
            lines.extend(["", f"### Documents ({len(project.files)})", ""])
            if project.from_api:
                lines.append("*Full files downloaded from Claude Project*")
            else:
                lines.append("*Partial files extracted from conversation (truncated by Claude's view tool)*")
            lines.append("")
            for original in sorted(project.files):
                actual = project.files[original]
                lines.append(f"- [{actual}](project/{_link_target(actual)})")

    if uploads.saved or uploads.failed:
        failed_note = f", {len(uploads.failed)} failed" if uploads.failed else ""
        lines.extend(_section(f"## Uploaded Files ({len(uploads.saved)}{failed_note})"))
        for name, reconstructed in sorted(uploads.saved):
            source_note = " *(from JSON)*" if reconstructed else ""
            lines.append(f"- [{name}](uploads/{_link_target(name)}){source_note}")
        if uploads.failed:
            lines.extend(["", "**Failed to download:**"])
            for filename, note in uploads.failed:
                lines.append(f"- {filename}: {note}")

    return "\n".join(lines)


@dataclass
class IndexEntry:
    name: str
    folder: str
    messages: int
    created: str
    uuid: str


def generate_index(entries: Sequence[IndexEntry], errors: Sequence[str], exported_at: datetime) -> str:
    lines = [
        "# Claude Takeout - All Conversations",
        "",
        f"**Exported:** {format_timestamp(exported_at)}",
        f"**Total Conversations:** {len(entries)}",
        "",
        "## Conversations",
        "",
        "| # | Conversation | Messages | Created |",
        "|---|--------------|----------|---------|",
    ]
    for idx, entry in enumerate(entries, start=1):
        lines.append(f"| {idx} | [{entry.name}]({entry.folder}/README.md) | {entry.messages} | {entry.created} |")

    if errors:
        lines.extend(["", "## Errors", ""])
        lines.extend(f"- {err}" for err in errors)

    return "\n".join(lines)
