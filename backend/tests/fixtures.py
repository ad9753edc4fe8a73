"""Shared test helpers: export builders and fake collaborators."""

import json
from collections.abc import Sequence
from typing import Any

from promptvault.categorizer.backend import CategorizerBackend
from promptvault.importer.quota import UNLIMITED, QuotaService
from promptvault.models import ExtractedPrompt, PromptMetadata, RawFile, SourceKind

# ---------------------------------------------------------------------------
# ChatGPT
# ---------------------------------------------------------------------------


def _chatgpt_node(node_id: str, parent: str | None, children: list[str],
                  role: str, content: str, model_slug: str | None = None) -> dict:
    metadata = {"model_slug": model_slug} if model_slug else {}
    return {
        "id": node_id,
        "message": {
            "id": f"msg-{node_id}",
            "author": {"role": role},
            "content": {"content_type": "text", "parts": [content]},
            "metadata": metadata,
        },
        "parent": parent,
        "children": children,
    }


def make_chatgpt_conversation(
    user_turns: Sequence[str],
    *,
    conv_id: str = "conv-1",
    title: str = "Test Conversation",
    model_slug: str | None = "gpt-4",
    create_time: float = 1700000000.0,
) -> dict:
    """A linear ChatGPT conversation: structural root, system node, then
    user/assistant pairs."""
    mapping: dict[str, dict] = {
        "root": {"id": "root", "message": None, "parent": None, "children": ["sys"]},
        "sys": _chatgpt_node("sys", "root", [], "system", "You are a helpful assistant."),
    }
    parent = "sys"
    for i, text in enumerate(user_turns):
        user_id, assistant_id = f"u{i}", f"a{i}"
        mapping[parent]["children"] = [user_id]
        mapping[user_id] = _chatgpt_node(user_id, parent, [assistant_id], "user", text,
                                         model_slug)
        mapping[assistant_id] = _chatgpt_node(assistant_id, user_id, [], "assistant",
                                              f"Answer {i}", model_slug)
        parent = assistant_id
    return {
        "id": conv_id,
        "title": title,
        "create_time": create_time,
        "mapping": mapping,
    }


def make_chatgpt_export(*conversations: dict) -> str:
    return json.dumps(list(conversations))


# ---------------------------------------------------------------------------
# Claude
# ---------------------------------------------------------------------------


def make_claude_conversation(
    user_turns: Sequence[str],
    *,
    uuid: str = "conv-claude-1",
    name: str = "Test Claude Conversation",
    model: str | None = "claude-sonnet-4-6",
    as_blocks: bool = False,
) -> dict:
    messages = []
    for i, text in enumerate(user_turns):
        human: dict[str, Any] = {"uuid": f"h{i}", "sender": "human",
                                 "created_at": "2026-02-18T03:23:11Z"}
        if as_blocks:
            human["text"] = ""
            human["content"] = [{"type": "text", "text": text}]
        else:
            human["text"] = text
        messages.append(human)
        messages.append({"uuid": f"a{i}", "sender": "assistant", "text": f"Reply {i}"})
    return {
        "uuid": uuid,
        "name": name,
        "model": model,
        "created_at": "2026-02-18T03:23:09Z",
        "chat_messages": messages,
    }


def make_claude_code_jsonl(user_turns: Sequence[str], session_id: str = "sess-1") -> str:
    lines = []
    for i, text in enumerate(user_turns):
        lines.append(json.dumps({
            "type": "user",
            "sessionId": session_id,
            "timestamp": "2026-01-01T10:00:00Z",
            "message": {"role": "user", "content": [{"type": "text", "text": text}]},
        }))
        lines.append(json.dumps({
            "type": "assistant",
            "sessionId": session_id,
            "message": {"role": "assistant", "content": f"Done {i}"},
        }))
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Cline
# ---------------------------------------------------------------------------


def make_cline_task(
    title: str,
    turns: Sequence[tuple[str, str]],
    *,
    front_matter: dict[str, Any] | None = None,
    created: str | None = "2024-01-15 10:30",
    summary: str | None = None,
) -> str:
    """A single-task Cline export with (user, assistant) turn pairs."""
    lines = [f"# {title}"]
    if front_matter:
        lines.append("---")
        lines.extend(f"{k}: {v}" for k, v in front_matter.items())
        lines.append("---")
    if created:
        lines.append(f"Created: {created}")
    if summary:
        lines.extend(["## Summary", summary, ""])
    lines.append("## Conversation")
    for user, assistant in turns:
        lines.extend(["### Human", user, "", "### Assistant", assistant, ""])
    return "\n".join(lines)


def make_cline_multi_task(tasks: Sequence[tuple[str, str, Sequence[tuple[str, str]]]]) -> str:
    """Concatenated '## Task <id> - <title> (<when>)' documents."""
    lines: list[str] = []
    for task_id, title, turns in tasks:
        lines.append(f"## Task {task_id} - {title} (2024-01-15 10:30)")
        for user, assistant in turns:
            lines.extend(["**User** (10:30)", user, "", "**Assistant** (10:31)", assistant, ""])
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Cursor
# ---------------------------------------------------------------------------


def make_cursor_session(user_turns: Sequence[str], session_id: str = "cursor-1",
                        title: str = "Cursor Chat") -> dict:
    messages = []
    for i, text in enumerate(user_turns):
        messages.append({"role": "user", "content": text,
                         "timestamp": "2024-03-01T12:00:00Z"})
        messages.append({"role": "assistant", "content": f"Sure {i}"})
    return {"id": session_id, "title": title, "messages": messages,
            "created_at": "2024-03-01T11:59:00Z", "workspace": "/home/dev/app"}


# ---------------------------------------------------------------------------
# Files and prompts
# ---------------------------------------------------------------------------


def make_raw(path: str, content: str | bytes) -> RawFile:
    return RawFile(path=path, content=content)


def make_prompt(content: str, *, source: SourceKind = SourceKind.FILE,
                title: str | None = None, index: int = 0) -> ExtractedPrompt:
    return ExtractedPrompt(
        title=title or content[:50],
        content=content,
        metadata=PromptMetadata(
            source=source,
            conversation_id="conv",
            conversation_title="Conversation",
            timestamp_millis=1700000000000,
            message_index=index,
        ),
    )


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FixedQuota(QuotaService):
    """QuotaService with a fixed number of remaining slots."""

    def __init__(self, remaining: int = UNLIMITED, description: str = "3 prompt limit for the free tier") -> None:
        self.remaining = remaining
        self.description = description

    async def remaining_slots(self, user_id: str) -> int:
        return self.remaining

    async def describe_limit(self, user_id: str) -> str:
        return self.description


class ScriptedBackend(CategorizerBackend):
    """Categorizer backend returning canned entries and counting calls."""

    name = "scripted"

    def __init__(self, entry: dict[str, Any] | None = None, error: Exception | None = None) -> None:
        self.entry = entry or {
            "category": "Debugging",
            "tags": ["python", "errors"],
            "complexity": "simple",
            "suggestedFolder": "Debugging/Python",
            "suggestedName": "Fix the bug",
        }
        self.error = error
        self.calls: list[int] = []

    async def categorize(self, prompts: Sequence[ExtractedPrompt]) -> list[dict[str, Any]]:
        self.calls.append(len(prompts))
        if self.error is not None:
            raise self.error
        return [dict(self.entry) for _ in prompts]
