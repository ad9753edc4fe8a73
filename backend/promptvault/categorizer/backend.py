"""LLM backends that categorize a batch of prompts in one call.

A backend returns one raw JSON object per prompt, in input order. It may
return fewer entries than prompts; the AICategorizer fills the gaps with
heuristic results and validates everything it keeps.
"""

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from promptvault.categorizer.heuristics import PROMPT_CATEGORIES, extract_context
from promptvault.models import ExtractedPrompt

PROMPT_EXCERPT_CHARS = 1000

SYSTEM_PROMPT = f"""You categorize prompts imported from AI assistant conversations.
For each prompt return an object with:
- "category": one of {", ".join(PROMPT_CATEGORIES)}
- "tags": 3-5 short relevant tags
- "complexity": "simple", "moderate" or "complex"
- "suggestedFolder": a folder path based on the category
- "suggestedName": a short descriptive name for the prompt

Respond with JSON only: {{"prompts": [ ...one object per prompt, in order... ]}}"""


class CategorizerResponseError(Exception):
    """The backend answered with something that is not the expected JSON."""


def build_user_message(prompts: Sequence[ExtractedPrompt]) -> str:
    sections = []
    for i, prompt in enumerate(prompts, start=1):
        context = extract_context(prompt.content)
        excerpt = prompt.content[:PROMPT_EXCERPT_CHARS]
        if len(prompt.content) > PROMPT_EXCERPT_CHARS:
            excerpt += "..."
        sections.append(
            f"Prompt {i}:\n"
            f"Source: {prompt.metadata.source.value}; "
            f"conversation: {prompt.metadata.conversation_title}\n"
            f"Technologies: {', '.join(context.mentions) or 'none detected'}; "
            f"code blocks: {'yes' if context.code_blocks else 'no'}\n"
            f"Content:\n{excerpt}"
        )
    return f"Categorize these {len(prompts)} prompts:\n\n" + "\n\n".join(sections)


def parse_backend_response(text: str) -> list[dict[str, Any]]:
    """Accept a bare JSON array, {"prompts": [...]}, or JSON wrapped in prose."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"[\[{][\s\S]*[\]}]", text)
        if match is None:
            raise CategorizerResponseError("Categorizer returned no JSON") from None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise CategorizerResponseError(f"Categorizer returned invalid JSON: {e.msg}") from e

    if isinstance(data, dict):
        data = data.get("prompts", data.get("results"))
    if not isinstance(data, list):
        raise CategorizerResponseError("Categorizer response has no prompt list")
    return [entry if isinstance(entry, dict) else {} for entry in data]


class CategorizerBackend(ABC):
    name: str

    @abstractmethod
    async def categorize(self, prompts: Sequence[ExtractedPrompt]) -> list[dict[str, Any]]:
        """Return one raw categorization object per prompt, in order."""
        ...


class OpenAICategorizerBackend(CategorizerBackend):
    name = "openai"

    def __init__(
        self,
        *,
        client: AsyncOpenAI | None = None,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
    ) -> None:
        self._client = client if client is not None else AsyncOpenAI(api_key=api_key)
        self._model = model

    async def categorize(self, prompts: Sequence[ExtractedPrompt]) -> list[dict[str, Any]]:
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_message(prompts)},
            ],
            temperature=0.3,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content
        if not content:
            raise CategorizerResponseError("No response from OpenAI")
        return parse_backend_response(content)


class AnthropicCategorizerBackend(CategorizerBackend):
    name = "anthropic"

    def __init__(
        self,
        *,
        client: AsyncAnthropic | None = None,
        api_key: str | None = None,
        model: str = "claude-haiku-4-5-20251001",
    ) -> None:
        self._client = client if client is not None else AsyncAnthropic(api_key=api_key)
        self._model = model

    async def categorize(self, prompts: Sequence[ExtractedPrompt]) -> list[dict[str, Any]]:
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=2048,
            temperature=0.3,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": build_user_message(prompts)}],
        )
        text = "".join(
            getattr(block, "text", "") for block in response.content
            if getattr(block, "type", "text") == "text"
        )
        if not text:
            raise CategorizerResponseError("No response from Anthropic")
        return parse_backend_response(text)
