"""Parser for Gemini exports.

Gemini has no single official export. Structured JSON (from takeout-style
tools) is tried first; when the content is not JSON at all, the parser falls
back to matching "You:" / "User:" / "Me:" / "Human:" sections in a plain
text copy (typically a Google Docs export). The fallback is intentional.
"""

import re
from typing import Any

from promptvault.importer.errors import ImportFormatError
from promptvault.importer.parsers.base import (
    FormatParser,
    decode_text,
    load_json,
    make_title,
    now_millis,
    to_millis,
)
from promptvault.models import ExtractedPrompt, PromptMetadata, RawFile, SourceKind
from promptvault.utils.json import parse_json_or_none

_USER_AUTHORS = {"user", "you", "human"}
_USER_PREFIX = re.compile(r"^(?:you|user|me|human):\s*", re.IGNORECASE)
_ASSISTANT_PREFIX = re.compile(r"^(?:gemini|assistant|ai|model|bard):", re.IGNORECASE)

DOCS_TITLE = "Gemini Chat"


def _is_user(message: dict) -> bool:
    for key in ("author", "role", "sender", "type"):
        value = message.get(key)
        if isinstance(value, str) and value.lower() in _USER_AUTHORS:
            return True
    return False


def _conversations(data: Any) -> list[dict]:
    if isinstance(data, list):
        return [c for c in data if isinstance(c, dict)]
    if isinstance(data, dict):
        if isinstance(data.get("conversations"), list):
            return [c for c in data["conversations"] if isinstance(c, dict)]
        if "messages" in data or "turns" in data:
            return [data]
    raise ImportFormatError("Invalid Gemini export format: no conversations found")


def _parse_json(data: Any, file_name: str) -> list[ExtractedPrompt]:
    prompts: list[ExtractedPrompt] = []
    for conv in _conversations(data):
        conv_id = str(conv.get("id") or conv.get("conversation_id") or "")
        conv_title = conv.get("title") or conv.get("name") or DOCS_TITLE
        conv_time = to_millis(conv.get("created_at"))
        index = 0
        for message in conv.get("messages") or conv.get("turns") or []:
            if not isinstance(message, dict) or not _is_user(message):
                continue
            content = message.get("content") or message.get("text") or message.get("message") or ""
            if not isinstance(content, str) or not content.strip():
                continue
            content = content.strip()
            prompts.append(ExtractedPrompt(
                title=make_title(content, conv_title),
                content=content,
                metadata=PromptMetadata(
                    source=SourceKind.GEMINI,
                    conversation_id=conv_id,
                    conversation_title=conv_title,
                    timestamp_millis=to_millis(message.get("timestamp"), conv_time),
                    model=message.get("model") or conv.get("model"),
                    message_index=index,
                    file_name=file_name,
                ),
            ))
            index += 1
    return prompts


def _parse_text(text: str, file_name: str) -> list[ExtractedPrompt]:
    """Best-effort extraction from a plain-text transcript."""
    turns: list[str] = []
    current: list[str] | None = None

    for line in text.splitlines():
        stripped = line.strip()
        if _USER_PREFIX.match(stripped):
            if current is not None:
                turns.append("\n".join(current).strip())
            current = [_USER_PREFIX.sub("", stripped, count=1)]
        elif _ASSISTANT_PREFIX.match(stripped):
            if current is not None:
                turns.append("\n".join(current).strip())
            current = None
        elif current is not None:
            current.append(line.rstrip())

    if current is not None:
        turns.append("\n".join(current).strip())

    timestamp = now_millis()
    conv_id = f"gemini-text-{file_name}"
    return [
        ExtractedPrompt(
            title=make_title(content, "Gemini Prompt"),
            content=content,
            metadata=PromptMetadata(
                source=SourceKind.GEMINI,
                conversation_id=conv_id,
                conversation_title=DOCS_TITLE,
                timestamp_millis=timestamp,
                message_index=index,
                file_name=file_name,
                extra={"format": "text"},
            ),
        )
        for index, content in enumerate(t for t in turns if t)
    ]


class GeminiParser(FormatParser):
    source = SourceKind.GEMINI

    def validate(self, raw: RawFile) -> bool:
        try:
            text = decode_text(raw)
        except ImportFormatError:
            return False
        stripped = text.lstrip()
        if stripped.startswith(("{", "[")):
            data = parse_json_or_none(stripped)
            if data is None:
                return False
            try:
                _conversations(data)
            except ImportFormatError:
                return False
            return True
        return any(_USER_PREFIX.match(line.strip()) for line in text.splitlines())

    def parse(self, raw: RawFile) -> list[ExtractedPrompt]:
        text = decode_text(raw)
        stripped = text.lstrip()
        if stripped.startswith(("{", "[")):
            data = parse_json_or_none(stripped)
            if data is not None:
                return _parse_json(data, raw.name)
            if stripped.startswith("{"):
                # Looks like JSON but is broken: report it instead of guessing.
                load_json(stripped, "Gemini")
        return _parse_text(text, raw.name)
