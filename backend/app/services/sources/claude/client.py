"""Async client for the chat product's web API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol
import json

import httpx

from app.config import settings


class UpstreamError(RuntimeError):
    """Raised when an upstream request fails or returns an unusable body."""


@dataclass
class FetchResponse:
    status_code: int
    content: bytes = b""
    content_type: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_json(self) -> bool:
        return "application/json" in (self.content_type or "")

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)


class UpstreamClient(Protocol):
    """What the exporters need from upstream; `ClaudeClient` is the real one."""

    org_id: str

    def absolute_url(self, url: str) -> str: ...

    async def fetch(self, url: str) -> FetchResponse: ...

    async def list_conversations(self) -> List[dict]: ...

    async def get_conversation(self, conversation_id: str) -> dict: ...

    async def get_project(self, project_uuid: str) -> dict: ...

    async def list_project_docs(self, project_uuid: str) -> Any: ...


class ClaudeClient:
    """
    Thin wrapper over `httpx.AsyncClient` authenticated with a session cookie.

    Pass `transport` to route requests elsewhere (tests use `httpx.MockTransport`).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        org_id: Optional[str] = None,
        session_key: Optional[str] = None,
        timeout_sec: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.normalized_base_url).rstrip("/")
        self.org_id = org_id if org_id is not None else settings.CLAUDE_ORG_ID
        key = session_key if session_key is not None else settings.CLAUDE_SESSION_KEY
        cookies = {"sessionKey": key} if key else None
        self._client = httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout_sec or settings.HTTP_TIMEOUT_SEC,
            cookies=cookies,
            headers={"Accept": "*/*"},
            transport=transport,
        )

    async def __aenter__(self) -> "ClaudeClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def absolute_url(self, url: str) -> str:
        if url.startswith("http://") or url.startswith("https://"):
            return url
        if not url.startswith("/"):
            url = "/" + url
        return f"{self.base_url}{url}"

    def _require_org(self) -> str:
        if not self.org_id:
            raise UpstreamError("CLAUDE_ORG_ID is not configured")
        return self.org_id

    async def fetch(self, url: str) -> FetchResponse:
        """GET raw bytes. Network errors propagate as `httpx.HTTPError`."""
        response = await self._client.get(self.absolute_url(url))
        return FetchResponse(
            status_code=response.status_code,
            content=response.content,
            content_type=response.headers.get("content-type", ""),
        )

    async def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        url = self.absolute_url(path)
        try:
            response = await self._client.get(url, params=params, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise UpstreamError(f"request failed: {url}: {exc}") from exc
        if response.status_code != 200:
            raise UpstreamError(f"HTTP {response.status_code} {url}")
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"invalid JSON from {url}") from exc

    async def list_conversations(self) -> List[dict]:
        org = self._require_org()
        data = await self._get_json(f"/api/organizations/{org}/chat_conversations")
        if not isinstance(data, list):
            raise UpstreamError("conversation listing is not a list")
        return [item for item in data if isinstance(item, dict)]

    async def get_conversation(self, conversation_id: str) -> dict:
        org = self._require_org()
        data = await self._get_json(
            f"/api/organizations/{org}/chat_conversations/{conversation_id}",
            params={"tree": "True", "rendering_mode": "messages", "render_all_tools": "true"},
        )
        if not isinstance(data, dict):
            raise UpstreamError(f"conversation {conversation_id} is not an object")
        return data

    async def get_project(self, project_uuid: str) -> dict:
        org = self._require_org()
        data = await self._get_json(f"/api/organizations/{org}/projects/{project_uuid}")
        if not isinstance(data, dict):
            raise UpstreamError(f"project {project_uuid} is not an object")
        return data

    async def list_project_docs(self, project_uuid: str) -> Any:
        org = self._require_org()
        return await self._get_json(f"/api/organizations/{org}/projects/{project_uuid}/docs")
