"""Generic prompt files: a JSON list of prompt objects, a single object, or
plain text with prompts separated by blank lines."""

import re
from typing import Any

from promptvault.importer.parsers.base import (
    FormatParser,
    decode_text,
    make_title,
    now_millis,
)
from promptvault.models import ExtractedPrompt, PromptMetadata, RawFile, SourceKind
from promptvault.utils.json import dumps_compact, parse_json_or_none

_BLANK_LINE = re.compile(r"\n\s*\n")


def _item_content(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        for key in ("content", "prompt", "text"):
            value = item.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return dumps_compact(item)
    return dumps_compact(item)


def _item_title(item: Any, fallback: str) -> str:
    if isinstance(item, dict):
        for key in ("name", "title"):
            value = item.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return fallback


class FileParser(FormatParser):
    source = SourceKind.FILE

    def validate(self, raw: RawFile) -> bool:
        return raw.size_bytes > 0

    def parse(self, raw: RawFile) -> list[ExtractedPrompt]:
        text = decode_text(raw)
        if not text.strip():
            return []

        stem = raw.name.rsplit(".", 1)[0] or raw.name
        timestamp = now_millis()
        data = parse_json_or_none(text)

        entries: list[tuple[str, str]]
        if isinstance(data, list):
            entries = [
                (_item_title(item, f"Prompt {i + 1}"), _item_content(item))
                for i, item in enumerate(data)
            ]
        elif isinstance(data, dict):
            entries = [(_item_title(data, stem), _item_content(data))]
        else:
            entries = [
                (make_title(block, f"Prompt {i + 1}"), block.strip())
                for i, block in enumerate(b for b in _BLANK_LINE.split(text) if b.strip())
            ]

        return [
            ExtractedPrompt(
                title=title,
                content=content,
                metadata=PromptMetadata(
                    source=SourceKind.FILE,
                    conversation_id=f"file-{stem}-{index}",
                    conversation_title=raw.name,
                    timestamp_millis=timestamp,
                    message_index=index,
                    file_name=raw.name,
                ),
            )
            for index, (title, content) in enumerate(entries)
            if content.strip()
        ]
