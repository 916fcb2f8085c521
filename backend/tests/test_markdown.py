import re
from datetime import datetime, timezone

from app.schemas.claude import Conversation, Message, ThinkingBlock
from app.services.rendering.formatting import get_code_fence
from app.services.rendering.markdown import (
    RenderOptions,
    convert_to_markdown,
    render_response,
    thinking_summary,
)

from conftest import conversation, message, text, tool_result, tool_use

EXPORTED = datetime(2024, 5, 2, 8, 0, 0, tzinfo=timezone.utc)


def _response(*blocks, options=None, artifacts=None):
    msg = Message.model_validate(message("r", "assistant", content=list(blocks)))
    return render_response(msg, options or RenderOptions(), artifacts)


def test_one_prompt_then_one_response(hello_conversation):
    md = convert_to_markdown(Conversation.model_validate(hello_conversation), exported_at=EXPORTED)
    assert md.count("## Prompt:") == 1
    assert md.count("## Response:") == 1
    assert md.index("## Prompt:") < md.index("## Response:")
    assert md.startswith("# Quarterly Report\n")
    assert "**Created:** 05/01/2024 10:00:00  " in md
    assert "**Exported:** 05/02/2024 08:00:00  " in md
    assert "/chat/conv-1" in md


def test_only_active_branch_is_rendered():
    doc = conversation(
        [
            message("p", "human", content=[text("Question")]),
            message("old", "assistant", parent="p", content=[text("Abandoned answer")]),
            message("new", "assistant", parent="p", content=[text("Current answer")]),
        ],
        leaf="new",
    )
    md = convert_to_markdown(Conversation.model_validate(doc), exported_at=EXPORTED)
    assert "Current answer" in md
    assert "Abandoned answer" not in md


def test_code_fence_grows_past_longest_run():
    assert get_code_fence("plain") == "```"
    assert get_code_fence("a ``` b") == "````"
    assert get_code_fence("`````\n```") == "``````"
    assert get_code_fence(None) == "```"


def test_thinking_block_and_label():
    long_line = "x" * 100
    block = ThinkingBlock(thinking=long_line + "\nmore")
    assert thinking_summary(block) == "x" * 77 + "..."
    assert thinking_summary(ThinkingBlock(thinking="short", summaries=[{"summary": "A"}, {"summary": "B"}])) == "B"

    out = _response({"type": "thinking", "thinking": "has ```fence``` inside"})
    assert "````plaintext\nThought process: has ```fence``` inside" in out

    hidden = _response({"type": "thinking", "thinking": "secret"}, options=RenderOptions(include_thinking=False))
    assert "secret" not in hidden


def test_tool_announcements():
    out = _response(
        tool_use("web_search", query="python zipfile"),
        tool_use("web_fetch", url="https://docs.python.org"),
        tool_use("bash_tool", command="echo " + "y" * 200),
        tool_use("str_replace", path="/repo/app/main.py"),
        tool_use("view", path="/repo/README.md"),
        tool_use("ls", path="/repo"),
    )
    assert "Web Search: python zipfile" in out
    assert "Web Fetch: https://docs.python.org" in out
    assert "Bash: " + ("echo " + "y" * 200)[:100] + "...\n" in out
    assert "Edit: main.py" in out
    assert "Reading: README.md" in out
    assert "Listing: /repo" in out


def test_unknown_tool_and_unknown_block_fallbacks():
    out = _response(tool_use("mystery", level=3), {"type": "image", "source": "abc"})
    assert "Tool: mystery" in out
    assert '"level": 3' in out
    assert "Block: image" in out


def test_present_files_modes():
    artifacts = {"notes.md": "# Notes", "app.py": "print(1)"}
    block = tool_use("present_files", filepaths=["/out/notes.md", "/out/app.py", "/out/gone.txt"])

    embedded = _response(block, options=RenderOptions(embed_artifacts=True), artifacts=artifacts)
    assert "**Artifact: notes.md**" in embedded
    assert "```python\nprint(1)\n```" in embedded
    assert "**Artifact: gone.txt** (not found)" in embedded

    seamless = _response(block, options=RenderOptions(embed_artifacts=True, seamless_md=True), artifacts=artifacts)
    assert "**📄 notes.md**" in seamless
    assert "**Artifact: app.py**" in seamless

    reference = _response(block, artifacts=artifacts)
    assert "*Request*" in reference
    assert "# Notes" not in reference


def test_artifacts_tool_embed_or_announce():
    block = tool_use("artifacts", command="update", id="d", title="Plan", type="text/markdown", content="- a")
    assert "Updating artifact: Plan" in _response(block)
    embedded = _response(block, options=RenderOptions(embed_artifacts=True))
    assert "**Artifact: Plan**" in embedded
    assert "```markdown\n- a\n```" in embedded


def test_web_search_results_are_quoted():
    results = [{"type": "knowledge", "title": "Zip docs", "url": "https://docs.python.org/zip",
                "metadata": {"site_domain": "docs.python.org"}}]
    out = _response(tool_result("web_search", results))
    assert "> **Zip docs** [docs.python.org](https://docs.python.org/zip)\n>" in out


def test_other_tool_results_are_dumped():
    out = _response(tool_result("bash_tool", [{"type": "text", "text": "ok"}]))
    assert "```plaintext" in out
    assert '"text": "ok"' in out
    assert _response(tool_result("bash_tool", [])) == ""


def test_citations_share_numbering_within_a_response():
    cite = {"url": "https://a.org", "title": "A", "start_index": 0, "end_index": 3}
    other = {"url": "https://b.org", "title": "B", "start_index": 0, "end_index": 3}
    out = _response(text("one", [cite]), text("two", [cite, other]))
    assert out.count("**References:**") == 1
    assert '<span id="ref-2">[B](https://b.org)</span>' in out
    assert "[[1]](#cite-1), [[1:1]](#cite-1-1)" in out


def test_tool_announcements_fence_past_backticks_in_input():
    out = _response(tool_use("bash_tool", command="cat <<EOF\n```\nx\nEOF"))
    assert out.startswith("````plaintext\nBash: cat <<EOF\n```\nx\nEOF\n````")

    assert "````plaintext\nWeb Search: ```js```\n````" in _response(tool_use("web_search", query="```js```"))


def test_created_file_body_inlined_for_response_files():
    block = tool_use("create_file", path="/out/app.py", file_text="print('created')")
    announced = _response(block, options=RenderOptions(embed_artifacts=True))
    assert "Creating artifact: app.py" in announced
    assert "print('created')" not in announced

    inlined = _response(block, options=RenderOptions(embed_artifacts=True, inline_created_files=True))
    assert "```plaintext\nCreating artifact: app.py\n```\n\n```python\nprint('created')\n```" in inlined


def test_export_time_defaults_to_utc_now(hello_conversation):
    before = datetime.now(timezone.utc).replace(microsecond=0)
    md = convert_to_markdown(Conversation.model_validate(hello_conversation))
    after = datetime.now(timezone.utc)

    stamp = re.search(r"\*\*Exported:\*\* (\S+ \S+)", md).group(1)
    exported = datetime.strptime(stamp, "%m/%d/%Y %H:%M:%S").replace(tzinfo=timezone.utc)
    assert before <= exported <= after
