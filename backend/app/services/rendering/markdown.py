"""Render a conversation's active branch to markdown.

Review note:
- 每种 block 一个纯函数渲染器；tool_use 再按工具名分派，未知工具/未知 block 走通用兜底。
- 引用编号以单条回复为作用域（CitationContext），同一回复内多个 text block 共享编号。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
import json

from app.config import settings
from app.schemas.claude import (
    ContentBlock,
    Conversation,
    Message,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
)
from app.services.conversation.artifacts import extract_artifacts
from app.services.conversation.citations import (
    CitationContext,
    format_references,
    process_text_with_citations,
)
from app.services.conversation.tree import get_message_chain
from app.services.rendering.formatting import (
    extract_text_content,
    format_timestamp,
    get_code_fence,
    language_from_filename,
    language_from_type,
)


THINKING_LABEL_MAX = 80
THINKING_LABEL_KEEP = 77
BASH_COMMAND_MAX = 100


@dataclass
class RenderOptions:
    embed_artifacts: bool = False
    seamless_md: bool = False
    include_thinking: bool = True
    # `create_file` bodies follow their announcement (per-response full files)
    inline_created_files: bool = False


@dataclass
class BlockContext:
    """Per-response rendering state."""

    options: RenderOptions
    artifacts: Dict[str, str] = field(default_factory=dict)
    citations: CitationContext = field(default_factory=CitationContext)


def _dump(value) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def _basename(path: str) -> str:
    return (path or "").split("/")[-1]


def _plain_block(*body: str) -> List[str]:
    return [*_fenced("\n".join(body), "plaintext"), ""]


def _fenced(content: str, lang: str = "") -> List[str]:
    fence = get_code_fence(content)
    return [f"{fence}{lang}", content, fence]


def _embed(name: str, content: str, lang: str, seamless: bool) -> List[str]:
    if seamless:
        return [f"\n---\n\n**📄 {name}**\n", content, "\n---\n", ""]
    return [f"\n**Artifact: {name}**\n", *_fenced(content, lang), ""]


def thinking_summary(block: ThinkingBlock) -> str:
    if block.summaries and block.summaries[-1].summary:
        return block.summaries[-1].summary
    if not block.thinking:
        return ""
    first_line = block.thinking.split("\n")[0]
    if len(first_line) > THINKING_LABEL_MAX:
        return first_line[:THINKING_LABEL_KEEP] + "..."
    return first_line


# ---------------------------------------------------------------------------
# Block renderers
# ---------------------------------------------------------------------------


def render_text(block: TextBlock, ctx: BlockContext) -> List[str]:
    if block.citations:
        text, _ = process_text_with_citations(block.text, block.citations, ctx.citations)
        return [text, ""]
    return [block.text, ""]


def render_thinking(block: ThinkingBlock, ctx: BlockContext) -> List[str]:
    if not ctx.options.include_thinking or not block.thinking:
        return []
    fence = get_code_fence(block.thinking)
    return [
        f"{fence}plaintext",
        f"Thought process: {thinking_summary(block)}",
        "",
        block.thinking,
        fence,
        "",
    ]


def _tool_create_file(data: dict, ctx: BlockContext) -> List[str]:
    filename = _basename(str(data.get("path") or ""))
    lines = [f"Creating artifact: {filename}"]
    if data.get("description"):
        lines.append(f"Description: {data['description']}")
    out = _plain_block(*lines)
    file_text = str(data.get("file_text") or "")
    if ctx.options.inline_created_files and file_text:
        out.extend([*_fenced(file_text, language_from_filename(filename)), ""])
    return out


def _tool_present_files(data: dict, ctx: BlockContext) -> List[str]:
    lines: List[str] = []
    for filepath in data.get("filepaths") or []:
        filename = _basename(str(filepath))
        content = ctx.artifacts.get(filename)
        if content is None:
            lines.append(f"\n**Artifact: {filename}** (not found)\n")
            continue
        if ctx.options.embed_artifacts:
            seamless = ctx.options.seamless_md and filename.lower().endswith(".md")
            lines.extend(_embed(filename, content, language_from_filename(filename), seamless))
        else:
            lines.extend([
                f"\n**Artifact: {filename}**\n",
                "*Request*",
                "",
                *_fenced(_dump({"filepaths": [filepath]}), "javascript"),
                "",
            ])
    return lines


def _tool_artifacts(data: dict, ctx: BlockContext) -> List[str]:
    command = data.get("command") or "create"
    if command not in ("create", "update"):
        return []
    title = data.get("title") or data.get("id") or "Untitled"
    content = data.get("content") or ""
    if ctx.options.embed_artifacts and content:
        mime_type = data.get("type") or "text/plain"
        seamless = ctx.options.seamless_md and "markdown" in mime_type
        return _embed(title, content, language_from_type(mime_type), seamless)
    action = "Updating" if command == "update" else "Creating"
    return _plain_block(f"{action} artifact: {title}")


def _tool_web_search(data: dict, ctx: BlockContext) -> List[str]:
    return _plain_block(f"Web Search: {data.get('query') or ''}")


def _tool_web_fetch(data: dict, ctx: BlockContext) -> List[str]:
    return _plain_block(f"Web Fetch: {data.get('url') or ''}")


def _tool_bash(data: dict, ctx: BlockContext) -> List[str]:
    cmd = str(data.get("command") or "")
    if len(cmd) > BASH_COMMAND_MAX:
        cmd = cmd[:BASH_COMMAND_MAX] + "..."
    return _plain_block(f"Bash: {cmd}")


def _path_label(prefix: str) -> Callable[[dict, BlockContext], List[str]]:
    def render(data: dict, ctx: BlockContext) -> List[str]:
        path = str(data.get("path") or data.get("file_path") or "")
        return _plain_block(f"{prefix}: {_basename(path)}")

    return render


def _tool_list_directory(data: dict, ctx: BlockContext) -> List[str]:
    return _plain_block(f"Listing: {data.get('path') or '.'}")


TOOL_USE_RENDERERS: Dict[str, Callable[[dict, BlockContext], List[str]]] = {
    "create_file": _tool_create_file,
    "present_files": _tool_present_files,
    "artifacts": _tool_artifacts,
    "web_search": _tool_web_search,
    "web_fetch": _tool_web_fetch,
    "bash": _tool_bash,
    "bash_tool": _tool_bash,
    "str_replace": _path_label("Edit"),
    "str_replace_editor": _path_label("Edit"),
    "view": _path_label("Reading"),
    "read_file": _path_label("Reading"),
    "write_file": _path_label("Writing"),
    "write": _path_label("Writing"),
    "list_directory": _tool_list_directory,
    "ls": _tool_list_directory,
}


def render_tool_use(block: ToolUseBlock, ctx: BlockContext) -> List[str]:
    renderer = TOOL_USE_RENDERERS.get(block.name)
    if renderer is not None:
        return renderer(block.input, ctx)
    return [*_fenced(f"Tool: {block.name}\n{_dump(block.input)}", "plaintext"), ""]


def render_tool_result(block: ToolResultBlock, ctx: BlockContext) -> List[str]:
    if block.name == "web_search" and isinstance(block.content, list):
        lines: List[str] = []
        for result in block.content:
            if isinstance(result, dict) and result.get("type") == "knowledge":
                domain = (result.get("metadata") or {}).get("site_domain") or ""
                lines.append(f"> **{result.get('title') or ''}** [{domain}]({result.get('url') or ''})")
                lines.append(">")
        lines.append("")
        return lines
    if not block.content:
        return []
    body = block.content if isinstance(block.content, str) else _dump(block.content)
    return [*_fenced(body, "plaintext"), ""]


def render_unknown(block: UnknownBlock, ctx: BlockContext) -> List[str]:
    return [*_fenced(f"Block: {block.type}\n{_dump(block.raw)}", "plaintext"), ""]


def render_block(block: ContentBlock, ctx: BlockContext) -> List[str]:
    if isinstance(block, TextBlock):
        return render_text(block, ctx)
    if isinstance(block, ThinkingBlock):
        return render_thinking(block, ctx)
    if isinstance(block, ToolUseBlock):
        return render_tool_use(block, ctx)
    if isinstance(block, ToolResultBlock):
        return render_tool_result(block, ctx)
    return render_unknown(block, ctx)


def render_response(
    msg: Message,
    options: RenderOptions,
    artifacts: Optional[Dict[str, str]] = None,
) -> str:
    """Full rendering of one assistant message, references appended."""
    ctx = BlockContext(options=options, artifacts=artifacts or {})
    lines: List[str] = []
    for block in msg.content:
        lines.extend(render_block(block, ctx))
    if ctx.citations.references:
        lines.append(format_references(ctx.citations.references))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


def chat_link(conversation_uuid: str, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.normalized_base_url).rstrip("/")
    return f"{base}/chat/{conversation_uuid}"


def convert_to_markdown(
    conversation: Conversation,
    options: Optional[RenderOptions] = None,
    artifacts: Optional[Dict[str, str]] = None,
    exported_at: Optional[datetime] = None,
) -> str:
    """Complete transcript of the active branch."""
    options = options or RenderOptions()
    if artifacts is None:
        artifacts = extract_artifacts(conversation.chat_messages)

    lines = [f"# {conversation.title}", ""]
    if conversation.created_at:
        lines.append(f"**Created:** {format_timestamp(conversation.created_at)}  ")
    if conversation.updated_at:
        lines.append(f"**Updated:** {format_timestamp(conversation.updated_at)}  ")
    lines.append(f"**Exported:** {format_timestamp(exported_at or datetime.now(timezone.utc))}  ")
    if conversation.uuid:
        link = chat_link(conversation.uuid)
        lines.append(f"**Link:** [{link}]({link})  ")
    lines.append("")

    for msg in get_message_chain(conversation):
        if msg.is_human:
            lines.extend([
                "## Prompt:",
                format_timestamp(msg.created_at),
                "",
                extract_text_content(msg),
                "",
                "",
            ])
        elif msg.is_assistant:
            lines.extend([
                "## Response:",
                format_timestamp(msg.created_at),
                "",
                render_response(msg, options, artifacts),
                "",
            ])

    return "\n".join(lines)
