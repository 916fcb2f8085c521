"""Schemas包初始化"""
from app.schemas.claude import (
    Attachment,
    CitationSpan,
    ContentBlock,
    Conversation,
    ConversationSummary,
    FileDescriptor,
    Message,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
    UploadedFile,
)
from app.schemas.export import (
    BulkExportRequest,
    BulkExportResponse,
    ConversationExportRequest,
    ExportOptions,
    MarkdownExportRequest,
    MarkdownExportResponse,
)

__all__ = [
    # Conversation document schemas
    "Attachment",
    "CitationSpan",
    "ContentBlock",
    "Conversation",
    "ConversationSummary",
    "FileDescriptor",
    "Message",
    "TextBlock",
    "ThinkingBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "UnknownBlock",
    "UploadedFile",
    # Export API schemas
    "BulkExportRequest",
    "BulkExportResponse",
    "ConversationExportRequest",
    "ExportOptions",
    "MarkdownExportRequest",
    "MarkdownExportResponse",
]
