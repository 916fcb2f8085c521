"""Locate the bytes of an uploaded file.

Review note:
- 按顺序尝试：直接 URL -> wiggle 路径接口 -> 4 个按 uuid 的接口，第一个 2xx 即返回。
- 全部失败且是 blob 文件时，从 view 工具结果里还原文本（去行号 + 修复乱码）。
- resolve() 不抛异常，失败以 provenance="unavailable" 返回，附带最后错误与尝试次数。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Union
from urllib.parse import quote
import logging

import httpx

from app.schemas.claude import Conversation, FileDescriptor, Message
from app.services.conversation.artifacts import iter_tool_results, strip_line_numbers
from app.services.sources.claude.client import UpstreamClient, UpstreamError
from app.services.text.mojibake import fix_mojibake

logger = logging.getLogger("uvicorn.error")

RETRIEVED = "retrieved"
RECONSTRUCTED = "reconstructed"
UNAVAILABLE = "unavailable"


@dataclass
class ResolvedFile:
    filename: str
    provenance: str
    content: Union[bytes, str, None] = None
    source_url: str = ""
    attempts: int = 0
    error: str = ""
    uuid: str = ""
    path: str = ""

    @property
    def ok(self) -> bool:
        return self.provenance != UNAVAILABLE

    def failure_note(self) -> str:
        return (
            f"{self.error} | Attempts: {self.attempts}"
            f" | UUID: {self.uuid or 'none'} | Path: {self.path or 'none'}"
        )


def candidate_urls(
    descriptor: FileDescriptor,
    org_id: str = "",
    conversation_uuid: str = "",
) -> List[str]:
    """Addresses to try, in order. Relative entries are joined by the client."""
    urls: List[str] = []
    if descriptor.url:
        urls.append(descriptor.url)
    if org_id and conversation_uuid and descriptor.path:
        urls.append(
            f"/api/organizations/{org_id}/conversations/{conversation_uuid}"
            f"/wiggle/download-file?path={quote(descriptor.path, safe='')}"
        )
    if org_id and descriptor.uuid:
        urls.extend([
            f"/api/{org_id}/files/{descriptor.uuid}/preview",
            f"/api/{org_id}/files/{descriptor.uuid}/content",
            f"/api/organizations/{org_id}/files/{descriptor.uuid}/content",
            f"/api/organizations/{org_id}/files/{descriptor.uuid}",
        ])
    return urls


def reconstruct_blob_content(messages: Iterable[Message], path: str) -> Optional[str]:
    """Text of `path` as echoed by a line-numbered view, or None."""
    if not path:
        return None
    headers = {f"content of {path}", f"content of {path.replace(' ', '_')}"}
    for block in iter_tool_results(messages):
        for text in block.text_items():
            if any(header in text for header in headers):
                return fix_mojibake(strip_line_numbers(text))
    return None


class FileResolver:
    """Resolve uploads of one conversation; `client=None` means offline."""

    def __init__(self, client: Optional[UpstreamClient] = None, org_id: Optional[str] = None):
        self.client = client
        if org_id is None and client is not None:
            org_id = client.org_id
        self.org_id = org_id or ""

    async def resolve(self, descriptor: FileDescriptor, conversation: Conversation) -> ResolvedFile:
        result = ResolvedFile(
            filename=descriptor.filename,
            provenance=UNAVAILABLE,
            uuid=descriptor.uuid,
            path=descriptor.path,
        )
        if not (descriptor.url or descriptor.uuid or descriptor.path):
            result.error = "No URL or path available to fetch file"
            return result

        if self.client is None:
            last_error = "no upstream client"
        else:
            urls = candidate_urls(descriptor, self.org_id, conversation.uuid)
            last_error = "" if urls else "no retrievable address (missing org id)"
            for url in urls:
                result.attempts += 1
                try:
                    response = await self.client.fetch(url)
                except (httpx.HTTPError, UpstreamError) as exc:
                    last_error = str(exc) or exc.__class__.__name__
                    continue
                if response.ok:
                    result.provenance = RETRIEVED
                    result.content = response.content
                    result.source_url = self.client.absolute_url(url)
                    return result
                last_error = f"HTTP {response.status_code}"

        fetch_error = f"Failed to fetch file ({last_error or 'unknown error'}). Tried {result.attempts} URLs."

        if descriptor.is_blob and descriptor.path:
            content = reconstruct_blob_content(conversation.chat_messages, descriptor.path)
            if content is not None:
                result.provenance = RECONSTRUCTED
                result.content = content
                return result
            fetch_error = f"API failed ({fetch_error}) and content not found in JSON"

        result.error = fetch_error
        logger.warning(
            "file-resolve-failed conversation=%s file=%s attempts=%s error=%s",
            conversation.uuid,
            descriptor.filename,
            result.attempts,
            fetch_error,
        )
        return result
