"""Small formatting helpers shared by the markdown renderers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
import re

from app.schemas.claude import Conversation, Message, TextBlock, ThinkingBlock


EXT_TO_LANG: Dict[str, str] = {
    "js": "javascript",
    "ts": "typescript",
    "tsx": "tsx",
    "jsx": "jsx",
    "py": "python",
    "rb": "ruby",
    "java": "java",
    "c": "c",
    "cpp": "cpp",
    "cs": "csharp",
    "go": "go",
    "rs": "rust",
    "swift": "swift",
    "kt": "kotlin",
    "sql": "sql",
    "sh": "bash",
    "bash": "bash",
    "zsh": "bash",
    "html": "html",
    "css": "css",
    "json": "json",
    "xml": "xml",
    "yaml": "yaml",
    "yml": "yaml",
    "md": "markdown",
    "svg": "svg",
    "csv": "csv",
    "txt": "text",
}

TYPE_TO_LANG: Dict[str, str] = {
    "text/markdown": "markdown",
    "text/plain": "text",
    "text/html": "html",
    "text/css": "css",
    "text/csv": "csv",
    "application/javascript": "javascript",
    "application/json": "json",
    "application/xml": "xml",
    "text/x-python": "python",
    "text/x-java": "java",
    "text/x-c": "c",
    "text/x-cpp": "cpp",
    "text/x-csharp": "csharp",
    "text/x-ruby": "ruby",
    "text/x-go": "go",
    "text/x-rust": "rust",
    "text/x-swift": "swift",
    "text/x-kotlin": "kotlin",
    "text/x-typescript": "typescript",
    "text/x-sql": "sql",
    "text/x-shell": "bash",
    "text/x-yaml": "yaml",
    "image/svg+xml": "svg",
    "application/vnd.ant.react": "jsx",
    "application/vnd.ant.code": "text",
}

FENCE_RUN_RE = re.compile(r"`{3,}")
CODE_BLOCK_RE = re.compile(r"```(\w*)\n([\s\S]*?)```")
MD_LINK_RE = re.compile(r"\[([^\]]*)\]\(([^)]+)\)")
BARE_URL_RE = re.compile(r"(?<!\()https?://[^\s)>\]]+")


def get_code_fence(content: Optional[str]) -> str:
    """Backtick fence that cannot be closed early by the content."""
    runs = FENCE_RUN_RE.findall(content or "")
    if not runs:
        return "```"
    return "`" * (max(len(r) for r in runs) + 1)


def language_from_filename(filename: str) -> str:
    m = re.search(r"\.([^.]+)$", filename or "")
    ext = m.group(1).lower() if m else ""
    return EXT_TO_LANG.get(ext, "text")


def language_from_type(mime_type: str) -> str:
    return TYPE_TO_LANG.get(mime_type or "", "text")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[str | datetime]) -> str:
    """`MM/DD/YYYY HH:MM:SS` in UTC; empty string when unknown."""
    if isinstance(value, datetime):
        parsed = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    else:
        parsed = parse_timestamp(value)
        if parsed is None:
            return value or ""
    return parsed.astimezone(timezone.utc).strftime("%m/%d/%Y %H:%M:%S")


def format_duration(start: Optional[str], end: Optional[str]) -> str:
    first = parse_timestamp(start)
    last = parse_timestamp(end)
    if first is None or last is None:
        return ""
    minutes = int((last - first).total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    return f"{minutes}m"


def get_model_name(conversation: Conversation) -> str:
    """Display name such as `Claude 4.5 Sonnet`."""
    if conversation.model:
        model = conversation.model.lower()
        variant = ""
        if "opus" in model:
            variant = "Opus"
        elif "sonnet" in model:
            variant = "Sonnet"
        elif "haiku" in model:
            variant = "Haiku"

        version = ""
        m = re.search(r"(\d+)-(\d+)", model)
        if m:
            version = f" {m.group(1)}.{m.group(2)}"

        if variant:
            return f"Claude{version} {variant}"
        return conversation.model

    mode = conversation.settings.reasoning_mode
    if mode == "extended":
        return "Claude (extended thinking)"
    if mode == "normal":
        return "Claude (thinking)"

    for msg in conversation.chat_messages:
        if msg.is_assistant and any(isinstance(b, ThinkingBlock) for b in msg.content):
            return "Claude (with thinking)"

    return "Claude"


def sanitize_for_filename(text: str, max_len: int = 50) -> str:
    clean = re.sub(r"\*+", "", text or "")
    clean = re.sub(r"#+\s*", "", clean).strip()
    clean = re.sub(r"[^\w\s-]", "", clean)
    clean = re.sub(r"[\s-]+", "_", clean)
    clean = clean.strip("_").lower()
    return clean[:max_len] or "untitled"


def safe_filename(name: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]", "_", name or "conversation", flags=re.IGNORECASE)[:50]


def project_prefix(project_name: Optional[str]) -> str:
    return f"[{safe_filename(project_name)}-project]_" if project_name else ""


def generate_filename(
    name: Optional[str],
    ext: str,
    project_name: Optional[str] = None,
    style: str = "title",
    today: Optional[datetime] = None,
) -> str:
    """Single-file export name; `style` is title, title_date or date_title."""
    title = safe_filename(name)
    date = (today or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    prefix = project_prefix(project_name)
    if style == "title_date":
        return f"{prefix}{title}_{date}.{ext}"
    if style == "date_title":
        return f"{prefix}{date}_{title}.{ext}"
    return f"{prefix}{title}.{ext}"


def extract_first_heading(text: str) -> str:
    m = re.search(r"^#+\s+(.+)$", text, flags=re.MULTILINE)
    if m:
        return m.group(1).strip()
    m = re.match(r"^\*\*(.+?)\*\*", text)
    if m:
        return m.group(1).strip()
    first_line = text.strip().split("\n")[0][:50]
    return first_line or "response"


def extract_text_content(msg: Message) -> str:
    """Text blocks of a message joined by newlines."""
    if not msg.content and msg.text:
        return msg.text
    return "\n".join(b.text for b in msg.content if isinstance(b, TextBlock))


def extract_response_text_only(msg: Message) -> str:
    """Text-only rendering of a message: its text blocks, blank-line separated."""
    return "\n\n".join(b.text for b in msg.content if isinstance(b, TextBlock))


def count_words(text: str) -> int:
    return len(text.split())


def extract_code_blocks(text: str) -> List[Tuple[str, str]]:
    """(language, code) for every fenced block."""
    return [(m.group(1) or "text", m.group(2).strip()) for m in CODE_BLOCK_RE.finditer(text)]


def extract_urls(text: str) -> List[Tuple[str, str]]:
    """(url, context) for markdown links then bare URLs, unique by URL."""
    urls: List[Tuple[str, str]] = []
    seen = set()
    for m in MD_LINK_RE.finditer(text):
        url = m.group(2)
        if url not in seen:
            seen.add(url)
            urls.append((url, m.group(1)))
    for m in BARE_URL_RE.finditer(text):
        url = m.group(0)
        if url not in seen:
            seen.add(url)
            urls.append((url, ""))
    return urls
