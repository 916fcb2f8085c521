"""Export API schemas."""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional


FilenameStyle = Literal["title", "title_date", "date_title"]


class ExportOptions(BaseModel):
    """Unset fields fall back to the server settings."""

    include_thinking: Optional[bool] = None
    filename_style: Optional[FilenameStyle] = None
    org_id: Optional[str] = None


class ConversationExportRequest(BaseModel):
    conversation: Dict[str, Any]
    options: ExportOptions = Field(default_factory=ExportOptions)


class MarkdownExportRequest(ConversationExportRequest):
    embed_artifacts: bool = False


class MarkdownExportResponse(BaseModel):
    filename: str
    markdown: str


class BulkExportRequest(BaseModel):
    format: Literal["zip", "markdown", "embedded", "json"] = "zip"
    options: ExportOptions = Field(default_factory=ExportOptions)


class ExportedFileResponse(BaseModel):
    filename: str
    content: str


class BulkExportResponse(BaseModel):
    total: int
    exported: int
    errors: List[str]
    files: List[ExportedFileResponse]
