"""Auto-detect the export source of an uploaded file and pick its parser."""

import re
from typing import Any

from promptvault.importer.errors import ImportFormatError
from promptvault.importer.parsers.base import FormatParser
from promptvault.importer.parsers.chatgpt import ChatGPTParser
from promptvault.importer.parsers.claude import ClaudeCodeParser, ClaudeParser
from promptvault.importer.parsers.cline import ClineParser
from promptvault.importer.parsers.cursor import CursorParser, CursorSQLiteParser, is_sqlite
from promptvault.importer.parsers.file import FileParser
from promptvault.importer.parsers.gemini import GeminiParser
from promptvault.models import RawFile, SourceKind
from promptvault.utils.json import parse_json_or_none

_CLINE_HEADINGS = re.compile(
    r"^(?:###\s*(?:Human|User|Assistant|Cline)\s*$|##\s+Task\s)", re.MULTILINE
)
_PLAINTEXT_USER = re.compile(r"^\s*(?:You|User):", re.MULTILINE)

_PARSERS: dict[SourceKind, FormatParser] = {
    SourceKind.CHATGPT: ChatGPTParser(),
    SourceKind.CLAUDE: ClaudeParser(),
    SourceKind.GEMINI: GeminiParser(),
    SourceKind.CLINE: ClineParser(),
    SourceKind.CURSOR: CursorParser(),
    SourceKind.FILE: FileParser(),
}
_CLAUDE_CODE = ClaudeCodeParser()
_CURSOR_SQLITE = CursorSQLiteParser()


def _detect_json(data: Any) -> SourceKind | None:
    """Detect the source from a parsed JSON structure."""
    if isinstance(data, dict):
        if "mapping" in data:
            return SourceKind.CHATGPT
        if "chat_messages" in data:
            return SourceKind.CLAUDE
        if isinstance(data.get("sessions"), list):
            return SourceKind.CURSOR
        if "turns" in data:
            return SourceKind.GEMINI
        conversations = data.get("conversations")
        if isinstance(conversations, list) and conversations:
            return _detect_json(conversations)
        messages = data.get("messages")
        if isinstance(messages, list) and messages and isinstance(messages[0], dict):
            first = messages[0]
            if "sender" in first:
                return SourceKind.CLAUDE
            if "author" in first:
                return SourceKind.GEMINI
            if "role" in first:
                return SourceKind.CURSOR
        return None

    if isinstance(data, list) and data and isinstance(data[0], dict):
        first = data[0]
        if "mapping" in first:
            return SourceKind.CHATGPT
        if "chat_messages" in first:
            return SourceKind.CLAUDE
        if "turns" in first:
            return SourceKind.GEMINI
        if "messages" in first:
            return _detect_json(first)
    return None


def _looks_like_jsonl(text: str) -> bool:
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return False
    first = parse_json_or_none(lines[0])
    return isinstance(first, dict) and ("role" in first or "type" in first)


def detect_source(raw: RawFile) -> SourceKind:
    """Best-effort source detection. Falls back to the generic file parser."""
    if is_sqlite(raw):
        return SourceKind.CURSOR
    if raw.name.lower().endswith(".jsonl"):
        return SourceKind.CLAUDE

    content = raw.content
    if isinstance(content, bytes):
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            return SourceKind.FILE
    else:
        text = content

    data = parse_json_or_none(text)
    if data is not None:
        return _detect_json(data) or SourceKind.FILE
    if _looks_like_jsonl(text):
        return SourceKind.CLAUDE
    if _CLINE_HEADINGS.search(text):
        return SourceKind.CLINE
    if _PLAINTEXT_USER.search(text):
        return SourceKind.GEMINI
    return SourceKind.FILE


def parser_for(source: SourceKind | str, raw: RawFile) -> FormatParser:
    """Resolve a source and a concrete file to the parser that handles it."""
    try:
        kind = SourceKind(source)
    except ValueError as e:
        raise ImportFormatError(f"Unsupported import source: {source}") from e

    if kind is SourceKind.CURSOR and is_sqlite(raw):
        return _CURSOR_SQLITE
    if kind is SourceKind.CLAUDE and (
        raw.name.lower().endswith(".jsonl")
        or (parse_json_or_none(raw.content) is None and _CLAUDE_CODE.validate(raw))
    ):
        return _CLAUDE_CODE
    return _PARSERS[kind]


def resolve_parser(raw: RawFile, source: SourceKind | str | None = None) -> FormatParser:
    return parser_for(source if source is not None else detect_source(raw), raw)
