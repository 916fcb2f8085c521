import asyncio

import httpx

from app.schemas.claude import Conversation, FileDescriptor
from app.services.sources.claude.client import ClaudeClient
from app.services.sources.claude.file_resolver import (
    FileResolver,
    candidate_urls,
    reconstruct_blob_content,
)

from conftest import conversation, message, tool_result

BASE = "https://claude.test"


def _client(handler):
    return ClaudeClient(
        base_url=BASE,
        org_id="org-1",
        session_key="secret",
        transport=httpx.MockTransport(handler),
    )


def _resolve(resolver, descriptor, conv):
    return asyncio.run(resolver.resolve(descriptor, conv))


def test_candidate_order():
    descriptor = FileDescriptor(filename="a b.pdf", uuid="u1", path="/mnt/a b.pdf", url="/api/files/a.pdf")
    assert candidate_urls(descriptor, "org-1", "conv-1") == [
        "/api/files/a.pdf",
        "/api/organizations/org-1/conversations/conv-1/wiggle/download-file?path=%2Fmnt%2Fa%20b.pdf",
        "/api/org-1/files/u1/preview",
        "/api/org-1/files/u1/content",
        "/api/organizations/org-1/files/u1/content",
        "/api/organizations/org-1/files/u1",
    ]
    assert candidate_urls(FileDescriptor(filename="x", uuid="u1")) == []


def test_first_successful_address_wins():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        if "wiggle" in request.url.path:
            return httpx.Response(200, content=b"%PDF-1.7")
        return httpx.Response(404)

    async def run():
        async with _client(handler) as client:
            resolver = FileResolver(client)
            descriptor = FileDescriptor(filename="a.pdf", uuid="u1", path="/mnt/a.pdf", url="/api/files/a.pdf")
            return await resolver.resolve(descriptor, Conversation(uuid="conv-1"))

    resolved = asyncio.run(run())
    assert resolved.provenance == "retrieved"
    assert resolved.content == b"%PDF-1.7"
    assert resolved.attempts == 2
    assert resolved.source_url.startswith(BASE + "/api/organizations/org-1/conversations/conv-1/wiggle/")
    assert len(seen) == 2


def test_session_cookie_is_sent():
    cookies = []

    def handler(request):
        cookies.append(request.headers.get("cookie", ""))
        return httpx.Response(200, content=b"ok")

    async def run():
        async with _client(handler) as client:
            return await FileResolver(client).resolve(FileDescriptor(filename="a", url="/a"), Conversation())

    asyncio.run(run())
    assert cookies == ["sessionKey=secret"]


def test_all_addresses_fail():
    def handler(request):
        return httpx.Response(403)

    async def run():
        async with _client(handler) as client:
            return await FileResolver(client).resolve(FileDescriptor(filename="a.pdf", uuid="u1"), Conversation())

    resolved = asyncio.run(run())
    assert resolved.provenance == "unavailable"
    assert resolved.attempts == 4
    assert "HTTP 403" in resolved.error
    assert "Tried 4 URLs" in resolved.error
    assert "UUID: u1" in resolved.failure_note()
    assert "Path: none" in resolved.failure_note()


def test_network_errors_never_escape():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def run():
        async with _client(handler) as client:
            return await FileResolver(client).resolve(FileDescriptor(filename="a", url="/a"), Conversation())

    resolved = asyncio.run(run())
    assert resolved.provenance == "unavailable"
    assert resolved.attempts == 1
    assert "connection refused" in resolved.error


def test_descriptor_without_address_fails_immediately():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200)

    async def run():
        async with _client(handler) as client:
            return await FileResolver(client).resolve(FileDescriptor(filename="ghost.bin"), Conversation())

    resolved = asyncio.run(run())
    assert resolved.provenance == "unavailable"
    assert resolved.attempts == 0
    assert calls == []


def test_blob_is_reconstructed_from_view_output():
    path = "/mnt/user-data/uploads/data.csv"
    body = f"Here's the content of {path} with line numbers:\n     1\ta,b\n     2\t1,2"
    conv = Conversation.model_validate(conversation([
        message("m1", "assistant", content=[tool_result("view", [{"type": "text", "text": body}])]),
    ]))
    descriptor = FileDescriptor(filename="data.csv", kind="blob", path=path)

    resolved = _resolve(FileResolver(None), descriptor, conv)
    assert resolved.provenance == "reconstructed"
    assert resolved.content == "a,b\n1,2"
    assert resolved.attempts == 0


def test_reconstruction_matches_underscored_path():
    body = "Here's the content of /mnt/my_file.txt with line numbers:\n     1\tok"
    conv = Conversation.model_validate(conversation([
        message("m1", "assistant", content=[tool_result("view", [{"type": "text", "text": body}])]),
    ]))
    assert reconstruct_blob_content(conv.chat_messages, "/mnt/my file.txt") == "ok"
    assert reconstruct_blob_content(conv.chat_messages, "/mnt/other.txt") is None


def test_missing_blob_reports_both_failures():
    descriptor = FileDescriptor(filename="gone.txt", kind="blob", path="/mnt/gone.txt")
    resolved = _resolve(FileResolver(None), descriptor, Conversation())
    assert resolved.provenance == "unavailable"
    assert "content not found in JSON" in resolved.error
