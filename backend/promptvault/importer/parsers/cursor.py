"""Parsers for Cursor chat exports.

JSON exports come as a single session, an array of sessions, or
`{sessions: [...]}`. Cursor's native storage is a SQLite database
(state.vscdb); reading it needs the workspace-specific key layout, so a
SQLite upload is recognised and rejected with instructions instead.
"""

from typing import Any

from promptvault.importer.errors import ImportFormatError, UnsupportedFormatError
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

SQLITE_HEADER = b"SQLite format 3\x00"
SQLITE_UNSUPPORTED = (
    "SQLite parsing requires server-side processing. "
    "Please export your Cursor chats as JSON instead."
)


def is_sqlite(raw: RawFile) -> bool:
    content = raw.content
    if isinstance(content, str):
        return content.startswith(SQLITE_HEADER.decode("ascii"))
    return content[: len(SQLITE_HEADER)] == SQLITE_HEADER


def _sessions(data: Any) -> list[dict]:
    if isinstance(data, list):
        return [s for s in data if isinstance(s, dict)]
    if isinstance(data, dict):
        if isinstance(data.get("sessions"), list):
            return [s for s in data["sessions"] if isinstance(s, dict)]
        if isinstance(data.get("messages"), list):
            return [data]
    raise ImportFormatError("Invalid Cursor export format: unrecognized structure")


class CursorParser(FormatParser):
    source = SourceKind.CURSOR

    def validate(self, raw: RawFile) -> bool:
        data = parse_json_or_none(raw.content)
        if isinstance(data, list):
            return not data or (
                isinstance(data[0], dict) and isinstance(data[0].get("messages"), list)
            )
        if isinstance(data, dict):
            return isinstance(data.get("sessions"), list) or isinstance(
                data.get("messages"), list
            )
        return False

    def parse(self, raw: RawFile) -> list[ExtractedPrompt]:
        if is_sqlite(raw):
            raise UnsupportedFormatError(SQLITE_UNSUPPORTED, file=raw.path)

        data = load_json(decode_text(raw), "Cursor")
        prompts: list[ExtractedPrompt] = []
        for session in _sessions(data):
            session_title = session.get("title") or "Cursor Chat"
            session_id = str(session.get("id") or f"cursor-{raw.name}-{len(prompts)}")
            session_time = to_millis(session.get("created_at"))
            index = 0
            for message in session.get("messages") or []:
                if not isinstance(message, dict) or message.get("role") != "user":
                    continue
                content = text_from_blocks(message.get("content"))
                if not content.strip():
                    continue
                extra = {"workspace": session["workspace"]} if session.get("workspace") else {}
                prompts.append(ExtractedPrompt(
                    title=make_title(content, session_title),
                    content=content,
                    metadata=PromptMetadata(
                        source=SourceKind.CURSOR,
                        conversation_id=session_id,
                        conversation_title=session_title,
                        timestamp_millis=to_millis(message.get("timestamp"), session_time),
                        model=message.get("model") or session.get("model"),
                        message_index=index,
                        file_name=raw.name,
                        extra=extra,
                    ),
                ))
                index += 1
        return prompts


class CursorSQLiteParser(FormatParser):
    """Recognises Cursor's SQLite store so the user gets a clear instruction."""

    source = SourceKind.CURSOR

    def validate(self, raw: RawFile) -> bool:
        return is_sqlite(raw)

    def parse(self, raw: RawFile) -> list[ExtractedPrompt]:
        raise UnsupportedFormatError(SQLITE_UNSUPPORTED, file=raw.path)
