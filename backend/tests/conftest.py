import pytest


ROOT = "00000000-0000-4000-8000-000000000000"


def text(value, citations=None):
    block = {"type": "text", "text": value}
    if citations is not None:
        block["citations"] = citations
    return block


def tool_use(name, **data):
    return {"type": "tool_use", "id": f"toolu_{name}", "name": name, "input": data}


def tool_result(name, content):
    return {"type": "tool_result", "tool_use_id": f"toolu_{name}", "name": name, "content": content}


def message(uuid, sender, parent=ROOT, content=None, **extra):
    msg = {
        "uuid": uuid,
        "sender": sender,
        "parent_message_uuid": parent,
        "created_at": "2024-05-01T10:00:00Z",
        "content": content if content is not None else [],
    }
    msg.update(extra)
    return msg


def conversation(messages, leaf=None, **extra):
    doc = {
        "uuid": "conv-1",
        "name": "Quarterly Report",
        "created_at": "2024-05-01T10:00:00Z",
        "updated_at": "2024-05-01T11:30:00Z",
        "current_leaf_message_uuid": leaf if leaf is not None else (messages[-1]["uuid"] if messages else None),
        "chat_messages": messages,
    }
    doc.update(extra)
    return doc


@pytest.fixture
def hello_conversation():
    return conversation([
        message("m1", "human", content=[text("Hello")]),
        message("m2", "assistant", parent="m1", content=[text("Hi")]),
    ])


@pytest.fixture
def rich_conversation():
    """Attachments, artifacts, a blob upload, a project view and a citation."""
    view_text = (
        "Here's the content of /mnt/project/notes.md with line numbers:\n"
        "     1\t# Notes\n"
        "     2\tkeep it short"
    )
    blob_text = (
        "Here's the content of /mnt/user-data/uploads/data.csv with line numbers:\n"
        "     1\ta,b\n"
        "     2\t1,2"
    )
    return conversation(
        [
            message(
                "m1",
                "human",
                content=[text("Summarise the attached notes, see https://example.com/spec")],
                attachments=[
                    {"id": "att-1", "file_name": "notes.pdf", "file_type": "pdf", "extracted_content": "café notes"},
                ],
                files_v2=[
                    {
                        "file_name": "data.csv",
                        "file_uuid": "file-1",
                        "file_kind": "blob",
                        "success": True,
                        "path": "/mnt/user-data/uploads/data.csv",
                    },
                    {
                        "file_name": "scan.pdf",
                        "file_uuid": "file-2",
                        "file_kind": "document",
                        "success": True,
                        "document_asset": {"url": "/api/files/scan.pdf", "page_count": 3},
                    },
                ],
            ),
            message(
                "m2",
                "assistant",
                parent="m1",
                content=[
                    {"type": "thinking", "thinking": "Let me read the notes first.", "summaries": []},
                    tool_use("view", path="/mnt/project/notes.md"),
                    tool_result("view", [{"type": "text", "text": view_text}]),
                    tool_use("view", path="/mnt/user-data/uploads/data.csv"),
                    tool_result("view", [{"type": "text", "text": blob_text}]),
                    tool_use("create_file", path="/mnt/user-data/outputs/report.md", file_text="# Report\n\nAll good."),
                    tool_use("present_files", filepaths=["/mnt/user-data/outputs/report.md"]),
                    text(
                        "# Summary\n\nSee source.\n\n```python\nprint('hi')\n```",
                        citations=[
                            {
                                "url": "https://example.com/spec",
                                "title": "Spec",
                                "metadata": {"site_domain": "example.com"},
                                "start_index": 11,
                                "end_index": 22,
                            }
                        ],
                    ),
                ],
            ),
        ],
        project={"uuid": "proj-1", "name": "My Project"},
    )
