"""Conversation export pipeline: single conversation folders, zips and bulk runs.

Review note:
- 单会话：解析 -> 活动分支 -> 抽取 (artifacts/附件/上传/项目文档/来源) -> 渲染全部文档 -> 打包。
- 批量：严格按列表顺序串行，每项后固定 sleep；单项失败记录 `name: error` 后继续，最后汇总。
- 批量 zip 共用同一个 ArchiveAssembler，文件夹/文件重名计数跨会话共享。
- 只有最终打包失败 (ArchivePackagingError) 是致命错误。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple
import asyncio
import json
import logging

from pydantic import ValidationError

from app.config import settings
from app.schemas.claude import Conversation, ConversationSummary
from app.schemas.export import ExportOptions
from app.services.archive.assembler import ArchiveAssembler, ArchiveFolder
from app.services.conversation.artifacts import (
    extract_artifacts,
    extract_project_files,
    extract_text_attachments,
    extract_uploaded_files,
    extract_web_sources,
)
from app.services.conversation.tree import get_message_chain
from app.services.rendering.documents import (
    ConversationDigest,
    IndexEntry,
    ProjectSection,
    UploadSection,
    generate_code_snippets,
    generate_index,
    generate_links_and_sources,
    generate_meta,
    generate_prompts,
    generate_readme,
    generate_responses_text_only,
    plan_responses,
    response_back_link,
)
from app.services.rendering.formatting import (
    extract_code_blocks,
    extract_text_content,
    extract_urls,
    format_timestamp,
    generate_filename,
    project_prefix,
    safe_filename,
    sanitize_for_filename,
)
from app.services.rendering.markdown import RenderOptions, convert_to_markdown, render_response
from app.services.sources.claude.client import UpstreamClient
from app.services.sources.claude.file_resolver import FileResolver, ResolvedFile
from app.services.sources.claude.project_docs import fetch_project_docs
from app.services.text.mojibake import fix_mojibake

logger = logging.getLogger("uvicorn.error")

SINGLE_FILE_FORMATS = ("markdown", "embedded", "json")


class ExportPipelineError(RuntimeError):
    """Raised when the input cannot be exported at all."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _include_thinking(options: Optional[ExportOptions]) -> bool:
    if options is not None and options.include_thinking is not None:
        return options.include_thinking
    return settings.INCLUDE_THINKING


def _filename_style(options: Optional[ExportOptions]) -> str:
    if options is not None and options.filename_style:
        return options.filename_style
    return settings.FILENAME_STYLE


def parse_conversation(data: Any) -> Conversation:
    if isinstance(data, Conversation):
        return data
    if not isinstance(data, dict):
        raise ExportPipelineError("conversation document must be a JSON object")
    try:
        return Conversation.model_validate(data)
    except ValidationError as exc:
        raise ExportPipelineError(f"invalid conversation document: {exc}") from exc


def truncated_name(filename: str) -> str:
    """`notes.md` -> `notes_truncated.md`; a leading dot is not an extension."""
    dot = filename.rfind(".")
    if dot > 0:
        return f"{filename[:dot]}_truncated{filename[dot:]}"
    return f"{filename}_truncated"


def zip_filename(conversation: Conversation) -> str:
    prefix = ""
    if conversation.project_name:
        prefix = f"[{sanitize_for_filename(conversation.project_name, 30)}-project]_"
    return f"{prefix}{sanitize_for_filename(conversation.title, 60)}_claude-chat.zip"


def bulk_zip_filename(today: Optional[datetime] = None) -> str:
    return f"claude-takeout-{(today or _now()).strftime('%Y-%m-%d')}.zip"


def bulk_folder_name(conversation: Conversation) -> str:
    return f"{project_prefix(conversation.project_name)}{safe_filename(conversation.name or conversation.uuid)}"


def _final_name(path: str) -> str:
    return path.rsplit("/", 1)[-1]


@dataclass
class FolderResult:
    digest: ConversationDigest
    resolved: List[ResolvedFile] = field(default_factory=list)

    @property
    def failed_files(self) -> List[ResolvedFile]:
        return [r for r in self.resolved if not r.ok]


async def populate_conversation_folder(
    folder: ArchiveFolder,
    conversation: Conversation,
    raw: Optional[dict] = None,
    client: Optional[UpstreamClient] = None,
    options: Optional[ExportOptions] = None,
    exported_at: Optional[datetime] = None,
) -> FolderResult:
    """Write the complete per-conversation layout into `folder`."""
    exported_at = exported_at or _now()
    include_thinking = _include_thinking(options)
    messages = get_message_chain(conversation)

    # Artifacts and attachments come from every message, not just the active branch.
    artifacts = extract_artifacts(conversation.chat_messages)
    text_attachments, attachment_names = extract_text_attachments(conversation.chat_messages)
    uploads = extract_uploaded_files(conversation.chat_messages)
    web_sources = extract_web_sources(conversation.chat_messages)

    project = ProjectSection()
    project_docs = await fetch_project_docs(client, conversation)
    project_files = dict(project_docs.files)
    project.from_api = bool(project_files)
    if not project_files:
        project_files = extract_project_files(conversation.chat_messages)

    all_text = "".join(extract_text_content(m) + "\n\n" for m in messages)
    all_text += "".join(content + "\n\n" for content in artifacts.values())

    digest = ConversationDigest(
        conversation=conversation,
        messages=messages,
        artifacts=artifacts,
        text_attachments=text_attachments,
        attachment_names=attachment_names,
        project_files=project_files,
        web_sources=web_sources,
        code_blocks=extract_code_blocks(all_text),
        urls=extract_urls(all_text),
        responses=plan_responses(messages),
    )

    full_options = RenderOptions(embed_artifacts=True, include_thinking=include_thinking)
    response_options = RenderOptions(
        embed_artifacts=True, include_thinking=include_thinking, inline_created_files=True
    )
    for entry in digest.responses:
        folder.add_text(f"responses/{entry.pure_filename}", entry.text)
        body = render_response(entry.message, response_options, artifacts)
        folder.add_text(f"responses/{entry.full_filename}", response_back_link(entry) + body)

    for filename, content in artifacts.items():
        folder.add_text(f"artefacts/{filename}", content)

    for filename, content in text_attachments.items():
        folder.add_text(f"attachments/{filename}", content)

    # Fixed project files claim their names first; documents that clash get a suffix.
    if project_docs.docs_json is not None:
        project.has_docs_listing = True
        folder.add_json("project/docs.json", project_docs.docs_json)
    if project_docs.project_json is not None:
        project.has_metadata = True
        folder.add_json("project/project.json", project_docs.project_json)
        if project_docs.prompt_template:
            project.has_prompt_template = True
            folder.add_text("project/prompt_template.md", fix_mojibake(project_docs.prompt_template))

    for filename, content in project_files.items():
        wanted = filename if project.from_api else truncated_name(filename)
        project.files[filename] = _final_name(folder.add_text(f"project/{wanted}", content))

    resolver = FileResolver(client, org_id=options.org_id if options else None)
    upload_section = UploadSection()
    resolved_files: List[ResolvedFile] = []
    for descriptor in uploads:
        resolved = await resolver.resolve(descriptor, conversation)
        resolved_files.append(resolved)
        if not resolved.ok:
            upload_section.failed.append((descriptor.filename, resolved.failure_note()))
            continue
        if isinstance(resolved.content, str):
            path = folder.add_text(f"uploads/{descriptor.filename}", resolved.content)
        else:
            path = folder.add_bytes(f"uploads/{descriptor.filename}", resolved.content or b"")
        upload_section.saved.append((_final_name(path), resolved.provenance == "reconstructed"))

    folder.add_text("meta.md", generate_meta(digest, len(upload_section.saved), exported_at))
    folder.add_text("prompts.md", generate_prompts(digest))
    folder.add_text("responses_text_only.md", generate_responses_text_only(digest))
    if digest.code_blocks:
        folder.add_text("code_snippets.md", generate_code_snippets(digest.code_blocks))
    links = generate_links_and_sources(digest.urls, digest.web_sources)
    if links:
        folder.add_text("links_and_sources.md", links)

    folder.add_text(
        "full_chat.md",
        convert_to_markdown(conversation, full_options, artifacts, exported_at),
    )
    folder.add_text(
        "integrated_chat.md",
        convert_to_markdown(
            conversation,
            RenderOptions(embed_artifacts=True, seamless_md=True, include_thinking=include_thinking),
            artifacts,
            exported_at,
        ),
    )
    folder.add_json("original.json", raw if raw is not None else conversation.model_dump(mode="json"))
    folder.add_text("README.md", generate_readme(digest, project, upload_section, exported_at))

    return FolderResult(digest=digest, resolved=resolved_files)


async def export_conversation_zip(
    data: Any,
    client: Optional[UpstreamClient] = None,
    options: Optional[ExportOptions] = None,
    exported_at: Optional[datetime] = None,
) -> Tuple[str, bytes]:
    """Return (zip filename, zip bytes) for one conversation document."""
    conversation = parse_conversation(data)
    raw = data if isinstance(data, dict) else None
    assembler = ArchiveAssembler()
    result = await populate_conversation_folder(assembler, conversation, raw, client, options, exported_at)
    payload = assembler.build_zip()
    logger.info(
        "export-conversation uuid=%s responses=%s artifacts=%s uploads_failed=%s bytes=%s",
        conversation.uuid,
        len(result.digest.responses),
        len(result.digest.artifacts),
        len(result.failed_files),
        len(payload),
    )
    return zip_filename(conversation), payload


def render_single_file(
    data: Any,
    fmt: str,
    options: Optional[ExportOptions] = None,
    exported_at: Optional[datetime] = None,
) -> Tuple[str, str]:
    """Return (filename, content) for a `markdown`, `embedded` or `json` export."""
    if fmt not in SINGLE_FILE_FORMATS:
        raise ExportPipelineError(f"unsupported format: {fmt}")
    conversation = parse_conversation(data)
    exported_at = exported_at or _now()
    style = _filename_style(options)
    project_name = conversation.project_name or None

    if fmt == "json":
        raw = data if isinstance(data, dict) else conversation.model_dump(mode="json")
        content = json.dumps(raw, indent=2, ensure_ascii=False)
        return generate_filename(conversation.name, "json", project_name, style, exported_at), content

    embed = fmt == "embedded"
    render_options = RenderOptions(embed_artifacts=embed, include_thinking=_include_thinking(options))
    content = convert_to_markdown(conversation, render_options, exported_at=exported_at)
    name = f"{safe_filename(conversation.name)}_embedded" if embed else conversation.name
    return generate_filename(name, "md", project_name, style, exported_at), content


@dataclass
class ExportedFile:
    filename: str
    content: str


@dataclass
class BulkExportResult:
    total: int = 0
    exported: int = 0
    errors: List[str] = field(default_factory=list)
    files: List[ExportedFile] = field(default_factory=list)


@dataclass
class BulkZipResult:
    filename: str
    data: bytes
    total: int = 0
    exported: int = 0
    errors: List[str] = field(default_factory=list)


def _summaries(listing: List[dict]) -> List[ConversationSummary]:
    return [ConversationSummary.model_validate(item) for item in listing]


def _error_entry(summary: ConversationSummary, exc: Exception) -> str:
    return f"{summary.name or summary.uuid}: {exc}"


async def bulk_export(
    client: UpstreamClient,
    fmt: str,
    options: Optional[ExportOptions] = None,
    delay_sec: Optional[float] = None,
    exported_at: Optional[datetime] = None,
) -> BulkExportResult:
    """One single-file export per listed conversation, strictly in listing order."""
    if fmt not in SINGLE_FILE_FORMATS:
        raise ExportPipelineError(f"unsupported format: {fmt}")
    delay = settings.BULK_EXPORT_DELAY_SEC if delay_sec is None else delay_sec
    exported_at = exported_at or _now()

    listing = _summaries(await client.list_conversations())
    result = BulkExportResult(total=len(listing))
    for summary in listing:
        try:
            data = await client.get_conversation(summary.uuid)
            filename, content = render_single_file(data, fmt, options, exported_at)
            result.files.append(ExportedFile(filename=filename, content=content))
            result.exported += 1
        except Exception as exc:
            logger.warning("bulk-export-item-failed uuid=%s error=%s", summary.uuid, exc)
            result.errors.append(_error_entry(summary, exc))
        await asyncio.sleep(delay)

    logger.info(
        "bulk-export format=%s total=%s exported=%s failed=%s",
        fmt,
        result.total,
        result.exported,
        len(result.errors),
    )
    return result


async def bulk_export_zip(
    client: UpstreamClient,
    options: Optional[ExportOptions] = None,
    delay_sec: Optional[float] = None,
    exported_at: Optional[datetime] = None,
) -> BulkZipResult:
    """Every listed conversation as a folder of one archive, plus `index.md`."""
    delay = settings.BULK_ZIP_DELAY_SEC if delay_sec is None else delay_sec
    exported_at = exported_at or _now()

    listing = _summaries(await client.list_conversations())
    assembler = ArchiveAssembler()
    entries: List[IndexEntry] = []
    errors: List[str] = []

    for summary in listing:
        try:
            data = await client.get_conversation(summary.uuid)
            conversation = parse_conversation(data)
            folder = assembler.folder(bulk_folder_name(conversation), unique=True)
            result = await populate_conversation_folder(folder, conversation, data, client, options, exported_at)
            entries.append(
                IndexEntry(
                    name=conversation.name or "Untitled",
                    folder=folder.prefix,
                    messages=len(result.digest.messages),
                    created=format_timestamp(conversation.created_at),
                    uuid=conversation.uuid,
                )
            )
        except Exception as exc:
            logger.warning("bulk-export-item-failed uuid=%s error=%s", summary.uuid, exc)
            errors.append(_error_entry(summary, exc))
        await asyncio.sleep(delay)

    assembler.add_text("index.md", generate_index(entries, errors, exported_at))
    payload = assembler.build_zip()
    logger.info(
        "bulk-export format=zip total=%s exported=%s failed=%s bytes=%s",
        len(listing),
        len(entries),
        len(errors),
        len(payload),
    )
    return BulkZipResult(
        filename=bulk_zip_filename(exported_at),
        data=payload,
        total=len(listing),
        exported=len(entries),
        errors=errors,
    )
