"""Fetch the documents of the project a conversation belongs to."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import json
import logging

import httpx

from app.schemas.claude import Conversation
from app.services.sources.claude.client import UpstreamClient, UpstreamError
from app.services.text.mojibake import fix_mojibake

logger = logging.getLogger("uvicorn.error")


@dataclass
class ProjectDocs:
    files: Dict[str, str] = field(default_factory=dict)
    docs_json: Any = None
    project_json: Optional[dict] = None

    @property
    def prompt_template(self) -> str:
        if not isinstance(self.project_json, dict):
            return ""
        return str(self.project_json.get("prompt_template") or "")


def _inline_content(doc: dict) -> str:
    return str(doc.get("content") or doc.get("text") or doc.get("body") or "")


def _doc_filename(doc: dict) -> str:
    return str(doc.get("file_name") or doc.get("filename") or doc.get("name") or f"doc_{doc.get('uuid')}.txt")


async def _fetch_doc_content(client: UpstreamClient, project_uuid: str, doc_uuid: str) -> str:
    base = f"/api/organizations/{client.org_id}/projects/{project_uuid}/docs/{doc_uuid}"
    for url in (f"{base}/content", base):
        try:
            response = await client.fetch(url)
        except (httpx.HTTPError, UpstreamError) as exc:
            logger.info("project-doc-fetch-failed url=%s error=%s", url, exc)
            continue
        if not response.ok:
            continue
        if response.is_json:
            try:
                payload = response.json()
            except ValueError:
                return response.text
            if isinstance(payload, dict):
                inline = _inline_content(payload)
                if inline:
                    return inline
            return json.dumps(payload, indent=2, ensure_ascii=False)
        return response.text
    return ""


async def fetch_project_docs(client: Optional[UpstreamClient], conversation: Conversation) -> ProjectDocs:
    """
    Project metadata, the raw docs listing and `filename -> text` of every doc
    whose content could be obtained. Failures leave the matching part empty.
    """
    result = ProjectDocs()
    project_uuid = conversation.project_id
    if client is None or not project_uuid or not client.org_id:
        return result

    try:
        result.project_json = await client.get_project(project_uuid)
    except UpstreamError as exc:
        logger.info("project-metadata-failed project=%s error=%s", project_uuid, exc)

    try:
        docs = await client.list_project_docs(project_uuid)
    except UpstreamError as exc:
        logger.info("project-docs-list-failed project=%s error=%s", project_uuid, exc)
        return result

    result.docs_json = docs
    if not isinstance(docs, list):
        return result

    for doc in docs:
        if not isinstance(doc, dict):
            continue
        filename = _doc_filename(doc)
        content = _inline_content(doc)
        if not content and doc.get("uuid"):
            content = await _fetch_doc_content(client, project_uuid, str(doc["uuid"]))
        if content:
            result.files[filename] = fix_mojibake(content)
        else:
            logger.info("project-doc-missing project=%s file=%s", project_uuid, filename)

    logger.info("project-docs project=%s files=%s", project_uuid, len(result.files))
    return result
