"""Pydantic schemas for the upstream conversation export.

Review note:
- 所有字段都有默认值，JSON 中的 null 按“未提供”处理，残缺文档也能通过校验。
- content 数组按 `type` 分派到封闭的 block 类型，未知类型落到 UnknownBlock。
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


NULL_PARENT_UUID = "00000000-0000-4000-8000-000000000000"


class LenientModel(BaseModel):
    """Base model: ignores unknown keys and treats explicit nulls as missing."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def drop_null_values(cls, data):
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------


class CitationMetadata(LenientModel):
    site_domain: str = ""
    site_name: str = ""


class CitationSpan(LenientModel):
    """Inline citation over `[start_index, end_index)` of a text block."""

    url: str = ""
    title: str = ""
    metadata: CitationMetadata = Field(default_factory=CitationMetadata)
    start_index: int = 0
    end_index: int = 0
    is_citable: bool = True
    is_missing: bool = False

    @property
    def domain(self) -> str:
        return self.metadata.site_domain or self.metadata.site_name


class TextBlock(LenientModel):
    type: Literal["text"] = "text"
    text: str = ""
    citations: List[CitationSpan] = Field(default_factory=list)


class ThinkingSummary(LenientModel):
    summary: str = ""


class ThinkingBlock(LenientModel):
    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    summaries: List[ThinkingSummary] = Field(default_factory=list)
    cut_off: bool = False


class ToolUseBlock(LenientModel):
    type: Literal["tool_use"] = "tool_use"
    id: str = ""
    name: str = ""
    input: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("input", mode="before")
    @classmethod
    def coerce_input(cls, v):
        return v if isinstance(v, dict) else {}


class ToolResultBlock(LenientModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = ""
    name: str = ""
    content: Any = None
    is_error: bool = False

    def text_items(self) -> List[str]:
        """Non-empty `text` entries of a list-shaped result."""
        if not isinstance(self.content, list):
            return []
        items: List[str] = []
        for item in self.content:
            if isinstance(item, dict) and item.get("type") == "text" and item.get("text"):
                items.append(str(item["text"]))
        return items


class UnknownBlock(LenientModel):
    type: str = "unknown"
    raw: Dict[str, Any] = Field(default_factory=dict)


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock, UnknownBlock]

_BLOCK_TYPES = {
    "text": TextBlock,
    "thinking": ThinkingBlock,
    "tool_use": ToolUseBlock,
    "tool_result": ToolResultBlock,
}


def parse_content_block(item: Any) -> ContentBlock:
    if isinstance(item, BaseModel):
        return item
    if not isinstance(item, dict):
        return UnknownBlock(type=type(item).__name__, raw={"value": item})
    block_type = item.get("type")
    model = _BLOCK_TYPES.get(block_type)
    if model is None:
        return UnknownBlock(type=str(block_type or "unknown"), raw=item)
    return model.model_validate(item)


# ---------------------------------------------------------------------------
# Attachments and uploads
# ---------------------------------------------------------------------------


class Attachment(LenientModel):
    """Pasted text attachment (content already extracted upstream)."""

    id: str = ""
    file_name: str = ""
    file_type: str = ""
    file_size: Optional[int] = None
    extracted_content: str = ""


class DocumentAsset(LenientModel):
    url: str = ""
    page_count: Optional[int] = None


class ImageAsset(LenientModel):
    url: str = ""


class UploadedFile(LenientModel):
    """`files_v2` entry on a message."""

    file_name: str = ""
    file_uuid: str = ""
    file_kind: str = "unknown"
    success: bool = False
    created_at: str = ""
    path: str = ""
    document_asset: Optional[DocumentAsset] = None
    image_asset: Optional[ImageAsset] = None


class FileDescriptor(LenientModel):
    """What the file resolver needs to locate an upload's bytes."""

    filename: str = ""
    uuid: str = ""
    kind: str = "unknown"
    created_at: str = ""
    path: str = ""
    url: str = ""
    page_count: Optional[int] = None

    @property
    def is_blob(self) -> bool:
        return self.kind == "blob"


# ---------------------------------------------------------------------------
# Messages and conversations
# ---------------------------------------------------------------------------


class Message(LenientModel):
    uuid: str = ""
    parent_message_uuid: Optional[str] = None
    sender: str = ""
    created_at: str = ""
    # legacy exports carry a flat text field next to `content`
    text: str = ""
    content: List[ContentBlock] = Field(default_factory=list)
    attachments: List[Attachment] = Field(default_factory=list)
    files_v2: List[UploadedFile] = Field(default_factory=list)

    @field_validator("parent_message_uuid", mode="before")
    @classmethod
    def convert_null_uuid(cls, v):
        if v == NULL_PARENT_UUID:
            return None
        return v

    @field_validator("content", mode="before")
    @classmethod
    def parse_blocks(cls, v):
        if isinstance(v, str):
            return [TextBlock(text=v)]
        if not isinstance(v, list):
            return []
        return [parse_content_block(item) for item in v]

    @field_validator("attachments", "files_v2", mode="before")
    @classmethod
    def keep_dict_items(cls, v):
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, (dict, BaseModel))]

    @property
    def is_human(self) -> bool:
        return self.sender == "human"

    @property
    def is_assistant(self) -> bool:
        return self.sender == "assistant"


class ConversationSettings(LenientModel):
    enabled_web_search: bool = False
    preview_feature_uses_artifacts: bool = False
    paprika_mode: Optional[str] = None

    @property
    def reasoning_mode(self) -> str:
        if self.paprika_mode in ("normal", "extended"):
            return self.paprika_mode
        return "off"


class ProjectRef(LenientModel):
    uuid: str = ""
    name: str = ""


class Conversation(LenientModel):
    uuid: str = ""
    name: str = ""
    summary: str = ""
    model: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    settings: ConversationSettings = Field(default_factory=ConversationSettings)
    is_starred: bool = False
    current_leaf_message_uuid: Optional[str] = None
    project_uuid: Optional[str] = None
    project: Optional[ProjectRef] = None
    chat_messages: List[Message] = Field(default_factory=list)

    @field_validator("chat_messages", mode="before")
    @classmethod
    def keep_message_dicts(cls, v):
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, (dict, BaseModel))]

    @property
    def title(self) -> str:
        return self.name or "Claude Conversation"

    @property
    def project_id(self) -> Optional[str]:
        if self.project_uuid:
            return self.project_uuid
        if self.project and self.project.uuid:
            return self.project.uuid
        return None

    @property
    def project_name(self) -> str:
        return self.project.name if self.project else ""


class ConversationSummary(LenientModel):
    """One entry of the conversation listing."""

    uuid: str = ""
    name: str = ""
    created_at: str = ""
    updated_at: str = ""
    project_uuid: Optional[str] = None
