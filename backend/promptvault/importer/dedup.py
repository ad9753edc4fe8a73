"""Content-hash plus fuzzy-similarity deduplication of extracted prompts.

Prompts are bucketed by a cheap 32-bit rolling hash of their content. A later
prompt is dropped when its Levenshtein similarity to any earlier prompt in
the same bucket, kept or dropped, is at or above the threshold. The set of
earlier prompts does not depend on the threshold, so lowering it only ever
drops more prompts.
"""

from collections.abc import Sequence

from promptvault.models import ExtractedPrompt

DEFAULT_THRESHOLD = 0.95


def content_hash(content: str) -> str:
    """32-bit polynomial rolling hash (h * 31 + c), rendered in base 36."""
    h = 0
    for ch in content:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _base36(abs(h))


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j - 1], previous[j], current[j - 1]))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """(longer - edit distance) / longer. Two empty strings are identical."""
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    if a == b:
        return 1.0
    return (longer - levenshtein(a, b)) / longer


def dedupe(
    prompts: Sequence[ExtractedPrompt], threshold: float = DEFAULT_THRESHOLD
) -> list[ExtractedPrompt]:
    """Drop near-duplicates, keeping input order and first occurrences."""
    seen_by_hash: dict[str, list[str]] = {}
    unique: list[ExtractedPrompt] = []

    for prompt in prompts:
        key = content_hash(prompt.content)
        earlier = seen_by_hash.setdefault(key, [])
        if all(similarity(other, prompt.content) < threshold for other in earlier):
            unique.append(prompt)
        earlier.append(prompt.content)

    return unique
