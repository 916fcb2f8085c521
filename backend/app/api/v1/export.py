"""Conversation export APIs."""

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response
from typing import Optional
from urllib.parse import quote

from app.config import settings
from app.schemas.export import (
    BulkExportRequest,
    BulkExportResponse,
    ConversationExportRequest,
    ExportOptions,
    MarkdownExportRequest,
    MarkdownExportResponse,
)
from app.services.archive.assembler import ArchivePackagingError
from app.services.pipeline.export_pipeline import (
    ExportPipelineError,
    bulk_export,
    bulk_export_zip,
    export_conversation_zip,
    render_single_file,
)
from app.services.sources.claude.client import ClaudeClient, UpstreamError

router = APIRouter()


def _org_id(options: ExportOptions) -> str:
    return (options.org_id or settings.CLAUDE_ORG_ID or "").strip()


def _client_for(options: ExportOptions) -> Optional[ClaudeClient]:
    org_id = _org_id(options)
    if not org_id:
        return None
    return ClaudeClient(org_id=org_id)


def _zip_response(filename: str, payload: bytes, headers: Optional[dict] = None) -> Response:
    all_headers = {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}
    all_headers.update(headers or {})
    return Response(content=payload, media_type="application/zip", headers=all_headers)


@router.post("/export/markdown", response_model=MarkdownExportResponse)
async def export_markdown(payload: MarkdownExportRequest):
    fmt = "embedded" if payload.embed_artifacts else "markdown"
    try:
        filename, markdown = render_single_file(payload.conversation, fmt, payload.options)
    except ExportPipelineError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"filename": filename, "markdown": markdown}


@router.post("/export/zip")
async def export_zip(payload: ConversationExportRequest):
    client = _client_for(payload.options)
    try:
        filename, data = await export_conversation_zip(payload.conversation, client, payload.options)
    except ExportPipelineError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ArchivePackagingError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    finally:
        if client is not None:
            await client.aclose()
    return _zip_response(filename, data)


@router.post("/export/bulk")
async def export_bulk(payload: BulkExportRequest):
    if not _org_id(payload.options):
        raise HTTPException(status_code=400, detail="批量导出需要配置 CLAUDE_ORG_ID")

    async with ClaudeClient(org_id=_org_id(payload.options)) as client:
        try:
            if payload.format == "zip":
                result = await bulk_export_zip(client, payload.options)
                return _zip_response(
                    result.filename,
                    result.data,
                    headers={
                        "X-Export-Total": str(result.total),
                        "X-Export-Exported": str(result.exported),
                        "X-Export-Failed": str(len(result.errors)),
                    },
                )
            result = await bulk_export(client, payload.format, payload.options)
        except UpstreamError as exc:
            raise HTTPException(status_code=502, detail=str(exc))
        except ExportPipelineError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except ArchivePackagingError as exc:
            raise HTTPException(status_code=500, detail=str(exc))

    return BulkExportResponse(
        total=result.total,
        exported=result.exported,
        errors=result.errors,
        files=[{"filename": f.filename, "content": f.content} for f in result.files],
    )
