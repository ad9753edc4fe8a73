"""Parser contract and helpers shared by every export format.

Each parser turns one RawFile into a list of ExtractedPrompt, keeping only
human/user turns. Empty or non-matching content yields an empty list;
only genuinely malformed input (e.g. broken JSON where JSON is required)
raises ImportFormatError.
"""

import json
import math
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Any

from promptvault.importer.errors import ImportFormatError
from promptvault.models import ExtractedPrompt, RawFile, SourceKind

TITLE_MAX_CHARS = 50


class FormatParser(ABC):
    """Abstract interface for export parsers."""

    source: SourceKind

    @abstractmethod
    def validate(self, raw: RawFile) -> bool:
        """Cheap structural check: does this file look like our format?"""
        ...

    @abstractmethod
    def parse(self, raw: RawFile) -> list[ExtractedPrompt]:
        """Extract prompts from user turns. Raises ImportFormatError on malformed input."""
        ...

    def iter_sections(self, text: str) -> Iterator[str] | None:
        """Split a large document into independently parseable sections.

        Parsers that cannot be sliced return None, and the orchestrator
        parses the whole file at once.
        """
        return None

    def parse_section(self, section: str, raw: RawFile) -> list[ExtractedPrompt]:
        """Parse one section produced by iter_sections()."""
        return self.parse(RawFile(path=raw.path, content=section))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def decode_text(raw: RawFile) -> str:
    """Return the file content as text, decoding bytes as UTF-8."""
    if isinstance(raw.content, str):
        return raw.content
    try:
        return raw.content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ImportFormatError(
            f"Invalid format: {raw.path} is not valid UTF-8 text", file=raw.path
        ) from e


def load_json(text: str, what: str) -> Any:
    """Parse a JSON document, raising ImportFormatError with a clear message."""
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ImportFormatError(
            f"Invalid {what} export format: {e.msg}", line=e.lineno
        ) from e


def make_title(content: str, fallback: str) -> str:
    """Title from the first line of a prompt, truncated to 50 characters."""
    first_line = content.strip().split("\n", 1)[0].strip()
    if len(first_line) > TITLE_MAX_CHARS:
        return first_line[:TITLE_MAX_CHARS] + "..."
    return first_line or fallback


def now_millis() -> int:
    return int(time.time() * 1000)


def to_millis(value: Any, default: int | None = None) -> int:
    """Normalize epoch seconds, epoch millis or ISO 8601 strings to epoch millis."""
    fallback = default if default is not None else now_millis()
    if value is None or value == "":
        return fallback
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return fallback
        # Anything below ~year 5000 in seconds is treated as seconds.
        try:
            return int(value * 1000) if value < 100_000_000_000 else int(value)
        except OverflowError:
            return fallback
    if isinstance(value, str):
        text = value.strip()
        try:
            return to_millis(float(text), fallback)
        except (ValueError, OverflowError):
            pass
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                dt = datetime.strptime(text, "%Y-%m-%d %H:%M")
            except ValueError:
                return fallback
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    return fallback


def text_from_blocks(content: Any) -> str:
    """Join the text of a string or a list of typed content blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                parts.append(block["text"])
        return "\n".join(parts)
    return ""
