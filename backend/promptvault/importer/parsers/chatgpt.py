"""Parser for ChatGPT conversations.json export format.

ChatGPT's export is tree-native: a `mapping` dict of nodes with parent/children
pointers. Structural nodes (message=null), system, tool and assistant nodes
are skipped; every user node with text becomes one prompt, in mapping order.
"""

from typing import Any

from promptvault.importer.errors import ImportFormatError
from promptvault.importer.parsers.base import (
    FormatParser,
    decode_text,
    load_json,
    make_title,
    to_millis,
)
from promptvault.models import ExtractedPrompt, PromptMetadata, RawFile, SourceKind
from promptvault.utils.json import parse_json_or_none


def _extract_content(message: dict) -> str:
    """Extract text content from a ChatGPT message object."""
    content_obj = message.get("content") or {}
    parts = content_obj.get("parts") or []
    # Parts can contain non-string items for multimodal messages
    text_parts = [p for p in parts if isinstance(p, str)]
    return "\n".join(text_parts)


def _detect_model(conv: dict, message: dict) -> str | None:
    """Model slug from the message, else guessed from the conversation template."""
    slug = (message.get("metadata") or {}).get("model_slug")
    if slug:
        return slug
    template = conv.get("conversation_template_id") or ""
    if "gpt-4" in template:
        return "gpt-4"
    if "gpt-3.5" in template:
        return "gpt-3.5-turbo"
    return None


def _conversations(data: Any) -> list[dict]:
    if isinstance(data, dict):
        if isinstance(data.get("conversations"), list):
            return [c for c in data["conversations"] if isinstance(c, dict)]
        if "mapping" in data:
            return [data]
        raise ImportFormatError("Invalid ChatGPT export format: no conversations found")
    if isinstance(data, list):
        return [c for c in data if isinstance(c, dict)]
    raise ImportFormatError("Invalid ChatGPT export format: unexpected JSON type")


def _parse_single(conv: dict, file_name: str) -> list[ExtractedPrompt]:
    mapping = conv.get("mapping") or {}
    conv_id = conv.get("id") or conv.get("conversation_id") or ""
    conv_title = conv.get("title") or "ChatGPT Conversation"
    conv_time = to_millis(conv.get("create_time"))

    prompts: list[ExtractedPrompt] = []
    for entry in mapping.values():
        message = (entry or {}).get("message")
        if not message:
            continue
        if (message.get("author") or {}).get("role") != "user":
            continue

        content = _extract_content(message)
        if not content.strip():
            continue

        prompts.append(ExtractedPrompt(
            title=make_title(content, conv_title),
            content=content,
            metadata=PromptMetadata(
                source=SourceKind.CHATGPT,
                conversation_id=conv_id,
                conversation_title=conv_title,
                timestamp_millis=conv_time,
                model=_detect_model(conv, message),
                message_index=len(prompts),
                file_name=file_name,
            ),
        ))
    return prompts


class ChatGPTParser(FormatParser):
    source = SourceKind.CHATGPT

    def validate(self, raw: RawFile) -> bool:
        data = parse_json_or_none(raw.content)
        if isinstance(data, dict):
            return isinstance(data.get("conversations"), list) or "mapping" in data
        if isinstance(data, list):
            return not data or (isinstance(data[0], dict) and "mapping" in data[0])
        return False

    def parse(self, raw: RawFile) -> list[ExtractedPrompt]:
        data = load_json(decode_text(raw), "ChatGPT")
        prompts: list[ExtractedPrompt] = []
        for conv in _conversations(data):
            prompts.extend(_parse_single(conv, raw.name))
        return prompts
