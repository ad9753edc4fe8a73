"""Parser for Cline (VS Code agent) Markdown task exports.

Two document shapes are recognised:

(a) A single task document::

        # Fix authentication bug
        ---
        model: claude-3-sonnet
        totalTokens: 1500
        ---
        Created: 2024-01-15 10:30
        ## Summary
        ...
        ## Conversation
        ### Human
        ...
        ### Assistant
        ...

    The front-matter block, the summary and the "## Conversation" heading are
    all optional; "### User" / "### Cline" are accepted as role markers too.
    Parsing stops at "## Additional Context" or any other "## " heading once
    the conversation has started.

(b) Several "## Task <id> - <title> (<YYYY-MM-DD HH:MM>)" documents
    concatenated, with role markers such as "### Human", "**User**" or
    "## Assistant".

A document without role markers yields no prompts rather than an error.
"""

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from promptvault.importer.errors import ImportFormatError
from promptvault.importer.parsers.base import (
    FormatParser,
    decode_text,
    now_millis,
    to_millis,
)
from promptvault.models import (
    Complexity,
    ExtractedPrompt,
    PromptMetadata,
    RawFile,
    SourceKind,
)

_USER_HEADINGS = {"### Human", "### User"}
_ASSISTANT_HEADINGS = {"### Assistant", "### Cline"}

_TASK_HEADER = re.compile(
    r"^##\s+Task\s+([A-Za-z0-9-]+)\s+-\s+(.+?)\s*\((\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2})\)\s*$"
)
_TASK_BOUNDARY = re.compile(r"^(?:##\s+Task\s|#\s+Task:)", re.MULTILINE)
_MESSAGE_MARKER = re.compile(
    r"^(?:\*\*|#{2,3}\s*)(Human|User|Assistant|Cline|AI|Bot)\b(?:\*\*)?", re.IGNORECASE
)
_MESSAGE_TIME = re.compile(r"\((\d{2}:\d{2})\)")
_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_FENCE_INFO = re.compile(r"^```([\w+#.-]*)[ \t]*(.*)$")
_COMMENT_PATH = re.compile(
    r"^\s*(?://|#|--|/\*|<!--)\s*(?:file(?:name)?:\s*)?([\w./\\-]+\.[A-Za-z0-9]{1,8})\b"
)
_BARE_PATH = re.compile(r"^([\w./\\-]+\.[A-Za-z0-9]{1,8})$")
_MODEL_MENTION = re.compile(
    r"(?:using|model:|powered by)\s*(gpt-4|claude-3|gemini|llama|mixtral|anthropic)",
    re.IGNORECASE,
)

_FRONT_MATTER_INT = {"totalTokens", "duration"}
_FRONT_MATTER_FLOAT = {"cost"}


@dataclass
class ClineMessage:
    role: str  # "user" | "assistant"
    content: str
    timestamp: str | None = None


@dataclass
class ClineTask:
    id: str
    title: str
    timestamp: str
    messages: list[ClineMessage] = field(default_factory=list)
    summary: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    files_modified: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Code block helpers
# ---------------------------------------------------------------------------


def extract_code_blocks(content: str) -> list[str]:
    return _CODE_BLOCK.findall(content)


def file_reference(block: str) -> str | None:
    """Detect a filename declared on the fence line or as a leading comment."""
    lines = block.split("\n")
    info = _FENCE_INFO.match(lines[0])
    if info and info.group(2):
        candidate = info.group(2).strip()
        comment = _COMMENT_PATH.match(candidate)
        if comment:
            return comment.group(1)
        bare = _BARE_PATH.match(candidate)
        if bare:
            return bare.group(1)
    if len(lines) > 1:
        comment = _COMMENT_PATH.match(lines[1])
        if comment:
            return comment.group(1)
    return None


def estimate_complexity(content: str, code_blocks: int = 0) -> Complexity:
    lines = len(content.split("\n"))
    words = len(content.split())
    if lines < 10 and words < 100:
        complexity = Complexity.SIMPLE
    elif lines < 50 and words < 500:
        complexity = Complexity.MODERATE
    else:
        complexity = Complexity.COMPLEX
    if complexity is Complexity.SIMPLE and code_blocks >= 3:
        return Complexity.MODERATE
    return complexity


# ---------------------------------------------------------------------------
# State machines
# ---------------------------------------------------------------------------


def _generate_task_id(title: str, timestamp: str) -> str:
    clean_title = re.sub(r"[^a-z0-9]", "-", title.lower())[:20]
    digits = re.sub(r"[^0-9]", "", timestamp)[:8] if timestamp else str(now_millis())
    return f"{clean_title}-{digits}"


def _flush(messages: list[ClineMessage], role: str | None, buffer: list[str]) -> None:
    if role is None:
        return
    content = "\n".join(buffer).strip()
    if content:
        messages.append(ClineMessage(role=role, content=content))


def _parse_front_matter_line(line: str, metadata: dict[str, Any]) -> None:
    key, sep, value = line.partition(":")
    key, value = key.strip(), value.strip()
    if not sep or not key or not value:
        return
    try:
        if key in _FRONT_MATTER_INT:
            metadata[key] = int(float(value))
        elif key in _FRONT_MATTER_FLOAT:
            metadata[key] = float(value)
        elif key == "model":
            metadata[key] = value
    except ValueError:
        pass


def _parse_single_task(lines: list[str]) -> ClineTask | None:
    messages: list[ClineMessage] = []
    metadata: dict[str, Any] = {}
    title = ""
    timestamp = ""
    summary_parts: list[str] = []
    in_conversation = False
    in_front_matter = False
    seen_front_matter = False
    role: str | None = None
    buffer: list[str] = []

    i = 0
    while i < len(lines):
        line = lines[i]
        stripped = line.strip()
        i += 1

        if not in_conversation:
            if stripped == "---" and (in_front_matter or not seen_front_matter):
                in_front_matter = not in_front_matter
                seen_front_matter = True
                continue
            if in_front_matter:
                _parse_front_matter_line(stripped, metadata)
                continue
            if stripped.startswith("# ") and not title:
                title = re.sub(r"^Task:?\s*", "", stripped[2:].strip(), flags=re.IGNORECASE)
                title = title or "Cline Task"
                continue
            if stripped.startswith("Created:"):
                timestamp = stripped[len("Created:"):].strip()
                continue
            if stripped == "## Summary":
                while i < len(lines) and not lines[i].strip().startswith("##"):
                    if lines[i].strip():
                        summary_parts.append(lines[i].strip())
                    i += 1
                continue
            if stripped == "## Conversation":
                in_conversation = True
                continue
            if stripped in _USER_HEADINGS or stripped in _ASSISTANT_HEADINGS:
                in_conversation = True
            else:
                continue

        if stripped == "## Additional Context" or (
            stripped.startswith("## ") and stripped != "## Conversation"
        ):
            break

        if stripped in _USER_HEADINGS:
            _flush(messages, role, buffer)
            role, buffer = "user", []
        elif stripped in _ASSISTANT_HEADINGS:
            _flush(messages, role, buffer)
            role, buffer = "assistant", []
        elif role is not None:
            buffer.append(line)

    _flush(messages, role, buffer)
    if not messages:
        return None

    summary = " ".join(summary_parts)
    display_title = title or summary or "Cline Task"
    return ClineTask(
        id=_generate_task_id(title or summary or "task", timestamp),
        title=display_title,
        timestamp=timestamp,
        messages=messages,
        summary=summary,
        metadata=metadata,
    )


def _parse_message(lines: list[str]) -> ClineMessage | None:
    first = lines[0].strip()
    marker = _MESSAGE_MARKER.match(first)
    if marker is None:
        return None
    role = "user" if marker.group(1).lower() in ("human", "user") else "assistant"

    time_match = _MESSAGE_TIME.search(first)
    remainder = first[marker.end():]
    remainder = _MESSAGE_TIME.sub("", remainder).strip().lstrip("*:").strip()

    body = "\n".join(([remainder] if remainder else []) + lines[1:]).strip()
    if not body:
        return None
    return ClineMessage(
        role=role,
        content=body,
        timestamp=time_match.group(1) if time_match else None,
    )


def _parse_multiple_tasks(lines: list[str]) -> list[ClineTask]:
    tasks: list[ClineTask] = []
    current: ClineTask | None = None
    message_lines: list[str] = []

    def close_message() -> None:
        if current is not None and message_lines:
            message = _parse_message(message_lines)
            if message is not None:
                current.messages.append(message)

    for line in lines:
        if line.startswith("## Task"):
            close_message()
            if current is not None and current.messages:
                tasks.append(current)
            message_lines = []
            header = _TASK_HEADER.match(line.strip())
            current = (
                ClineTask(id=header.group(1), title=header.group(2).strip(), timestamp=header.group(3))
                if header
                else None
            )
        elif _MESSAGE_MARKER.match(line.strip()):
            close_message()
            message_lines = [line]
        elif message_lines and current is not None:
            message_lines.append(line)

    close_message()
    if current is not None and current.messages:
        tasks.append(current)
    return tasks


def _finalize(task: ClineTask) -> ClineTask:
    """Collect files touched and the model used across all messages."""
    files: list[str] = []
    code_block_count = 0
    for message in task.messages:
        blocks = extract_code_blocks(message.content)
        code_block_count += len(blocks)
        for block in blocks:
            ref = file_reference(block)
            if ref and ref not in files:
                files.append(ref)
        if "model" not in task.metadata and message.role == "assistant":
            mention = _MODEL_MENTION.search(message.content)
            if mention:
                task.metadata["model"] = mention.group(1)
    task.metadata["codeBlocks"] = code_block_count
    task.files_modified = files
    return task


def parse_cline_markdown(markdown: str) -> list[ClineTask]:
    lines = markdown.replace("\r\n", "\n").split("\n")
    if any(_TASK_HEADER.match(line.strip()) for line in lines):
        return [_finalize(t) for t in _parse_multiple_tasks(lines)]
    task = _parse_single_task(lines)
    return [_finalize(task)] if task else []


def tasks_to_prompts(tasks: list[ClineTask], file_name: str | None = None) -> list[ExtractedPrompt]:
    prompts: list[ExtractedPrompt] = []
    for task in tasks:
        task_time = to_millis(task.timestamp)
        user_index = 0
        for position, message in enumerate(task.messages):
            if message.role != "user":
                continue
            response = next(
                (m.content for m in task.messages[position + 1:] if m.role == "assistant"),
                None,
            )
            blocks = extract_code_blocks(message.content)
            own_refs = [r for r in (file_reference(b) for b in blocks) if r]
            references = list(dict.fromkeys(own_refs + task.files_modified))
            extra: dict[str, Any] = {
                k: v for k, v in task.metadata.items() if k != "model"
            }
            extra["response"] = response
            if message.timestamp:
                extra["messageTimestamp"] = message.timestamp
            if task.summary:
                extra["summary"] = task.summary

            prompts.append(ExtractedPrompt(
                title=task.title or f"Cline Prompt {user_index + 1}",
                content=message.content,
                metadata=PromptMetadata(
                    source=SourceKind.CLINE,
                    conversation_id=task.id,
                    conversation_title=task.title,
                    timestamp_millis=task_time,
                    model=task.metadata.get("model"),
                    code_blocks=blocks,
                    file_references=references,
                    complexity=estimate_complexity(message.content, len(blocks)),
                    message_index=user_index,
                    file_name=file_name,
                    extra=extra,
                ),
            ))
            user_index += 1
    return prompts


class ClineParser(FormatParser):
    source = SourceKind.CLINE

    def validate(self, raw: RawFile) -> bool:
        try:
            text = decode_text(raw)
        except ImportFormatError:
            return False
        return any(
            line.strip() in _USER_HEADINGS or _MESSAGE_MARKER.match(line.strip())
            for line in text.splitlines()
        )

    def parse(self, raw: RawFile) -> list[ExtractedPrompt]:
        return tasks_to_prompts(parse_cline_markdown(decode_text(raw)), raw.name)

    def iter_sections(self, text: str) -> Iterator[str]:
        starts = [m.start() for m in _TASK_BOUNDARY.finditer(text)]
        if not starts:
            yield text
            return
        if text[:starts[0]].strip():
            yield text[:starts[0]]
        for begin, end in zip(starts, starts[1:] + [len(text)]):
            yield text[begin:end]
