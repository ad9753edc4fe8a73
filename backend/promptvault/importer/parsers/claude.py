"""Parsers for Claude exports.

Two shapes:
- Claude.ai app export (JSON): conversations with a flat message list.
  Messages live under `chat_messages` (current export) or `messages`
  (older export); only `sender == "human"` turns are kept. Text comes from
  the `text` field or from typed `content` blocks.
- Claude Code session log (JSONL): one JSON object per line. Malformed
  lines are skipped individually so one bad line never loses the session.
"""

import logging
from typing import Any

from promptvault.importer.errors import ImportFormatError
from promptvault.importer.parsers.base import (
    FormatParser,
    decode_text,
    load_json,
    make_title,
    text_from_blocks,
    to_millis,
)
from promptvault.models import ExtractedPrompt, PromptMetadata, RawFile, SourceKind
from promptvault.utils.json import parse_json_or_none

logger = logging.getLogger(__name__)

CLAUDE_CODE_MODEL = "claude-3.5-sonnet"


def _message_text(message: dict) -> str:
    text = message.get("text")
    if isinstance(text, str) and text.strip():
        return text
    return text_from_blocks(message.get("content")).strip()


def _conversations(data: Any) -> list[dict]:
    if isinstance(data, dict):
        if isinstance(data.get("conversations"), list):
            return [c for c in data["conversations"] if isinstance(c, dict)]
        if "chat_messages" in data or "messages" in data:
            return [data]
        raise ImportFormatError("Invalid Claude export format: no conversations found")
    if isinstance(data, list):
        return [c for c in data if isinstance(c, dict)]
    raise ImportFormatError("Invalid Claude export format: unexpected JSON type")


class ClaudeParser(FormatParser):
    """Claude.ai conversation export parser."""

    source = SourceKind.CLAUDE

    def validate(self, raw: RawFile) -> bool:
        data = parse_json_or_none(raw.content)
        if isinstance(data, dict):
            return (
                isinstance(data.get("conversations"), list)
                or "chat_messages" in data
            )
        if isinstance(data, list):
            return not data or (isinstance(data[0], dict) and (
                "chat_messages" in data[0] or "messages" in data[0]
            ))
        return False

    def parse(self, raw: RawFile) -> list[ExtractedPrompt]:
        data = load_json(decode_text(raw), "Claude")
        prompts: list[ExtractedPrompt] = []

        for conv in _conversations(data):
            messages = conv.get("chat_messages") or conv.get("messages") or []
            conv_id = conv.get("uuid") or conv.get("id") or ""
            conv_title = conv.get("name") or conv.get("title") or "Claude Conversation"
            conv_time = to_millis(conv.get("created_at"))
            index = 0

            for msg in messages:
                if not isinstance(msg, dict) or msg.get("sender") != "human":
                    continue
                content = _message_text(msg)
                if not content:
                    continue
                prompts.append(ExtractedPrompt(
                    title=make_title(content, conv_title),
                    content=content,
                    metadata=PromptMetadata(
                        source=SourceKind.CLAUDE,
                        conversation_id=conv_id,
                        conversation_title=conv_title,
                        timestamp_millis=to_millis(msg.get("created_at"), conv_time),
                        model=conv.get("model"),
                        message_index=index,
                        file_name=raw.name,
                    ),
                ))
                index += 1

        return prompts


class ClaudeCodeParser(FormatParser):
    """Claude Code JSONL session parser."""

    source = SourceKind.CLAUDE

    def validate(self, raw: RawFile) -> bool:
        try:
            text = decode_text(raw)
        except ImportFormatError:
            return False
        for line in text.splitlines():
            if line.strip():
                first = parse_json_or_none(line)
                return isinstance(first, dict) and ("role" in first or "type" in first)
        return False

    def parse(self, raw: RawFile) -> list[ExtractedPrompt]:
        text = decode_text(raw)
        stem = raw.name.rsplit(".", 1)[0] or "session"
        session_id = f"claude-code-{stem}"
        session_title = "Claude Code Session"
        prompts: list[ExtractedPrompt] = []

        for line_no, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            entry = parse_json_or_none(line)
            if not isinstance(entry, dict):
                logger.warning("Skipping malformed JSONL line %d in %s", line_no, raw.path)
                continue

            # Newer logs nest the chat message under "message".
            message = entry.get("message") if isinstance(entry.get("message"), dict) else entry
            if message.get("role") != "user":
                continue

            session_id = entry.get("sessionId") or session_id
            content = text_from_blocks(message.get("content"))
            if not content.strip():
                continue

            prompts.append(ExtractedPrompt(
                title=make_title(content, "Claude Code Prompt"),
                content=content,
                metadata=PromptMetadata(
                    source=SourceKind.CLAUDE,
                    conversation_id=session_id,
                    conversation_title=session_title,
                    timestamp_millis=to_millis(entry.get("timestamp")),
                    model=message.get("model") or CLAUDE_CODE_MODEL,
                    message_index=len(prompts),
                    file_name=raw.name,
                    extra={"line": line_no},
                ),
            ))

        return prompts
