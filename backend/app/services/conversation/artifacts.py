"""Extract artifacts, attachments, uploads and sources from conversation messages.

Review note:
- 两种建文件的 tool 调用：create_file(path, file_text) 与 artifacts(create/update)。
- 同名产物后写覆盖先写（不同产物清洗后同名也覆盖，保持上游行为）。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
import re

from app.schemas.claude import FileDescriptor, Message, ToolResultBlock, ToolUseBlock
from app.services.text.mojibake import fix_mojibake


TYPE_TO_EXT: Dict[str, str] = {
    "text/markdown": ".md",
    "text/plain": ".txt",
    "text/html": ".html",
    "text/css": ".css",
    "text/csv": ".csv",
    "application/javascript": ".js",
    "application/json": ".json",
    "application/xml": ".xml",
    "text/x-python": ".py",
    "text/x-java": ".java",
    "text/x-c": ".c",
    "text/x-cpp": ".cpp",
    "text/x-csharp": ".cs",
    "text/x-ruby": ".rb",
    "text/x-go": ".go",
    "text/x-rust": ".rs",
    "text/x-swift": ".swift",
    "text/x-kotlin": ".kt",
    "text/x-typescript": ".ts",
    "text/x-sql": ".sql",
    "text/x-shell": ".sh",
    "text/x-yaml": ".yaml",
    "image/svg+xml": ".svg",
}
DEFAULT_ARTIFACT_EXT = ".txt"
ARTIFACT_NAME_MAX_LEN = 60

# Only extracted text survives for these, so they are saved as .txt.
BINARY_ATTACHMENT_EXTS = {
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".odt", ".ods", ".odp", ".rtf",
}

LINE_NUMBER_RE = re.compile(r"^\s*\d+\t(.*)$")
PROJECT_VIEW_HEADER_RE = re.compile(r"^Here's the content of (/mnt/project/\S+) with line numbers:")


def _basename(path: str) -> str:
    return (path or "").split("/")[-1]


def _split_ext(filename: str) -> Tuple[str, str]:
    if "." not in filename:
        return filename, ""
    dot = filename.rindex(".")
    return filename[:dot], filename[dot:]


def suffixed_name(filename: str, counter: int) -> str:
    """`report.pdf`, 2 -> `report_2.pdf`"""
    base, ext = _split_ext(filename)
    return f"{base}_{counter}{ext}"


def sanitize_artifact_name(name: str) -> str:
    clean = re.sub(r"[^a-zA-Z0-9_\-\s]", "", name or "")
    clean = re.sub(r"\s+", "_", clean)
    return clean[:ARTIFACT_NAME_MAX_LEN]


def artifact_filename(title: str, identifier: str, mime_type: str) -> str:
    ext = TYPE_TO_EXT.get(mime_type or "", DEFAULT_ARTIFACT_EXT)
    base = sanitize_artifact_name(title or identifier)
    return base if base.endswith(ext) else base + ext


def iter_tool_uses(messages: Iterable[Message]) -> Iterable[ToolUseBlock]:
    for msg in messages:
        for block in msg.content:
            if isinstance(block, ToolUseBlock):
                yield block


def iter_tool_results(messages: Iterable[Message], name: Optional[str] = None) -> Iterable[ToolResultBlock]:
    for msg in messages:
        for block in msg.content:
            if isinstance(block, ToolResultBlock) and (name is None or block.name == name):
                yield block


def extract_artifacts(messages: Iterable[Message]) -> Dict[str, str]:
    """Filename -> content for every file declared by a tool call."""
    artifacts: Dict[str, str] = {}
    for block in iter_tool_uses(messages):
        data = block.input

        if block.name == "create_file":
            path = str(data.get("path") or "")
            file_text = str(data.get("file_text") or "")
            if path and file_text:
                artifacts[_basename(path)] = file_text

        elif block.name == "artifacts" and data.get("command") in ("create", "update"):
            content = str(data.get("content") or "")
            identifier = str(data.get("id") or "")
            title = str(data.get("title") or "")
            mime_type = str(data.get("type") or "text/plain")
            if content and (identifier or title):
                artifacts[artifact_filename(title, identifier, mime_type)] = content

    return artifacts


def extract_text_attachments(messages: Iterable[Message]) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    Pasted attachments with extracted text.

    Returns (filename -> repaired content, attachment id -> filename).
    """
    attachments: Dict[str, str] = {}
    id_to_filename: Dict[str, str] = {}
    unnamed_counter = 1

    for msg in messages:
        for att in msg.attachments:
            if not att.extracted_content:
                continue

            filename = att.file_name
            if not filename:
                filename = f"attachment_{unnamed_counter}.{att.file_type or 'txt'}"
                unnamed_counter += 1

            base, ext = _split_ext(filename)
            if ext.lower() in BINARY_ATTACHMENT_EXTS:
                filename = f"{base}.txt"

            final_name = filename
            counter = 1
            while final_name in attachments:
                final_name = suffixed_name(filename, counter)
                counter += 1

            attachments[final_name] = fix_mojibake(att.extracted_content)
            if att.id:
                id_to_filename[att.id] = final_name

    return attachments, id_to_filename


def extract_uploaded_files(messages: Iterable[Message]) -> List[FileDescriptor]:
    files: List[FileDescriptor] = []
    for msg in messages:
        for upload in msg.files_v2:
            if not (upload.success and upload.file_name):
                continue
            url = ""
            page_count = None
            if upload.document_asset and upload.document_asset.url:
                url = upload.document_asset.url
                page_count = upload.document_asset.page_count
            if upload.image_asset and upload.image_asset.url:
                url = upload.image_asset.url
            files.append(
                FileDescriptor(
                    filename=upload.file_name,
                    uuid=upload.file_uuid,
                    kind=upload.file_kind or "unknown",
                    created_at=upload.created_at,
                    path=upload.path,
                    url=url,
                    page_count=page_count,
                )
            )
    return files


@dataclass
class WebSource:
    title: str
    url: str
    domain: str
    site_name: str
    is_citable: bool
    is_missing: bool


def extract_web_sources(messages: Iterable[Message]) -> List[WebSource]:
    sources: List[WebSource] = []
    seen = set()
    for block in iter_tool_results(messages, "web_search"):
        if not isinstance(block.content, list):
            continue
        for item in block.content:
            if not isinstance(item, dict) or item.get("type") != "knowledge":
                continue
            url = item.get("url") or ""
            if not url or url in seen:
                continue
            seen.add(url)
            metadata = item.get("metadata") or {}
            sources.append(
                WebSource(
                    title=item.get("title") or "Untitled",
                    url=url,
                    domain=metadata.get("site_domain") or "",
                    site_name=metadata.get("site_name") or "",
                    is_citable=item.get("is_citable") is not False,
                    is_missing=item.get("is_missing") is True,
                )
            )
    return sources


def strip_line_numbers(text: str) -> str:
    """Drop the header and the `   12\\t` prefixes of a line-numbered view dump."""
    lines = text.split("\n")
    start = 0
    for idx, line in enumerate(lines):
        if LINE_NUMBER_RE.match(line):
            start = idx
            break
    out = []
    for line in lines[start:]:
        m = LINE_NUMBER_RE.match(line)
        out.append(m.group(1) if m else line)
    return "\n".join(out)


def extract_project_files(messages: Iterable[Message]) -> Dict[str, str]:
    """Project documents echoed by the `view` tool (possibly truncated)."""
    project_files: Dict[str, str] = {}
    for block in iter_tool_results(messages, "view"):
        for text in block.text_items():
            m = PROJECT_VIEW_HEADER_RE.match(text)
            if not m:
                continue
            project_files[_basename(m.group(1))] = fix_mojibake(strip_line_numbers(text))
    return project_files
