"""Deterministic categorization used when no AI backend answer is available.

Also validates and sanitises backend answers, so every Categorization that
leaves the categorizer has a known category, at most five clean tags, a
valid complexity and a safe folder path.
"""

import re
from dataclasses import dataclass
from typing import Any

from promptvault.models import Categorization, Complexity, ExtractedPrompt, SourceKind

PROMPT_CATEGORIES = [
    "Code Generation",
    "Debugging",
    "Refactoring",
    "Documentation",
    "Testing",
    "Architecture",
    "DevOps",
    "Data Processing",
    "UI/UX",
    "API Development",
    "Database",
    "Security",
    "Performance",
    "Learning",
    "Other",
]

TECH_TAGS = {
    "react": "React",
    "vue": "Vue",
    "angular": "Angular",
    "typescript": "TypeScript",
    "javascript": "JavaScript",
    "python": "Python",
    "java": "Java",
    "rust": "Rust",
    "go": "Go",
    "sql": "SQL",
    "graphql": "GraphQL",
    "docker": "Docker",
    "kubernetes": "Kubernetes",
    "aws": "AWS",
    "azure": "Azure",
    "gcp": "GCP",
}

MAX_TAGS = 5

_MENTION = re.compile(
    r"\b(react|vue|angular|typescript|javascript|python|java|c\+\+|rust|go|sql|graphql"
    r"|rest|api|frontend|backend|database|aws|azure|gcp|docker|kubernetes)\b",
    re.IGNORECASE,
)
_CODE_BLOCK = re.compile(r"```[\s\S]*?```")

# First match wins; checked against the lower-cased content.
_CATEGORY_KEYWORDS: list[tuple[str, re.Pattern[str]]] = [
    ("Debugging", re.compile(r"\b(debug\w*|error|exception|traceback|bug|fix|crash\w*)\b")),
    ("Testing", re.compile(r"\b(tests?|testing|spec|pytest|jest|unit test|coverage)\b")),
    ("Refactoring", re.compile(r"\b(refactor\w*|improve|clean ?up|simplify)\b")),
    ("Security", re.compile(r"\b(security|vulnerab\w*|xss|csrf|encrypt\w*|auth\w*)\b")),
    ("Performance", re.compile(r"\b(performance|optimi[sz]e\w*|slow|latency|profil\w*)\b")),
    ("API Development", re.compile(r"\b(api|endpoints?|rest|graphql|webhook)\b")),
    ("Database", re.compile(r"\b(database|sql|query|schema|migration|postgres\w*)\b")),
    ("DevOps", re.compile(r"\b(docker|kubernetes|deploy\w*|ci/cd|pipeline|terraform)\b")),
    ("Documentation", re.compile(r"\b(document\w*|readme|docstrings?|comments?)\b")),
    ("UI/UX", re.compile(r"\b(ui|ux|css|layout|component|button|design)\b")),
    ("Data Processing", re.compile(r"\b(csv|pandas|dataset|etl|parse|transform)\b")),
    ("Architecture", re.compile(r"\b(architecture|design pattern|microservices?|system design)\b")),
    ("Learning", re.compile(r"\b(explain|what is|how does|teach me|learn)\b")),
]

_SOURCE_LABELS = {
    SourceKind.CHATGPT: "ChatGPT",
    SourceKind.CLAUDE: "Claude",
    SourceKind.GEMINI: "Gemini",
    SourceKind.CLINE: "Cline",
    SourceKind.CURSOR: "Cursor",
    SourceKind.FILE: "File",
}


@dataclass
class PromptContext:
    first_line: str
    code_blocks: list[str]
    mentions: list[str]
    length: int


def extract_context(content: str) -> PromptContext:
    first_line = content.strip().split("\n", 1)[0].strip() if content.strip() else ""
    mentions = list(dict.fromkeys(m.lower() for m in _MENTION.findall(content)))
    return PromptContext(
        first_line=first_line,
        code_blocks=_CODE_BLOCK.findall(content),
        mentions=mentions,
        length=len(content),
    )


def determine_category(content: str, context: PromptContext) -> str:
    lowered = content.lower()
    for category, pattern in _CATEGORY_KEYWORDS:
        if pattern.search(lowered):
            return category
    if context.code_blocks:
        return "Code Generation"
    return "Other"


def generate_tags(context: PromptContext) -> list[str]:
    tags: list[str] = []
    for mention in context.mentions:
        tag = TECH_TAGS.get(mention)
        if tag and tag not in tags:
            tags.append(tag)
    if context.code_blocks:
        tags.append("Code")
    if "?" in context.first_line:
        tags.append("Question")
    return tags[:MAX_TAGS]


def determine_complexity(content: str) -> Complexity:
    lines = len(content.split("\n"))
    words = len(content.split())
    if lines < 10 and words < 100:
        return Complexity.SIMPLE
    if lines < 50 and words < 500:
        return Complexity.MODERATE
    return Complexity.COMPLEX


def sanitize_folder(folder: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9\s\-_/]", "", folder)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return "/".join(part.strip() for part in cleaned.split("/") if part.strip())


def default_folder(source: SourceKind) -> str:
    return f"{_SOURCE_LABELS[source]} Imports"


def default_name(prompt: ExtractedPrompt, context: PromptContext) -> str:
    if 10 < len(context.first_line) < 100:
        return context.first_line
    title = prompt.metadata.conversation_title or f"{_SOURCE_LABELS[prompt.metadata.source]} Task"
    index = prompt.metadata.message_index or 0
    return f"{title} - Prompt {index + 1}"


def heuristic_categorization(prompt: ExtractedPrompt) -> Categorization:
    context = extract_context(prompt.content)
    return Categorization(
        category=determine_category(prompt.content, context),
        tags=generate_tags(context),
        suggested_folder=default_folder(prompt.metadata.source),
        suggested_name=default_name(prompt, context),
        complexity=determine_complexity(prompt.content),
        source="heuristic",
    )


def _clean_tags(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    tags: list[str] = []
    for tag in raw:
        if not isinstance(tag, str):
            continue
        cleaned = re.sub(r"\s+", " ", tag).strip()
        if cleaned and len(cleaned) <= 30 and cleaned not in tags:
            tags.append(cleaned)
    return tags[:MAX_TAGS]


def validate_categorization(raw: dict[str, Any], prompt: ExtractedPrompt) -> Categorization:
    """Coerce a backend answer into a valid Categorization."""
    context = extract_context(prompt.content)

    category = raw.get("category")
    if category not in PROMPT_CATEGORIES:
        category = "Other"

    try:
        complexity = Complexity(raw.get("complexity"))
    except ValueError:
        complexity = determine_complexity(prompt.content)

    folder_source = raw.get("suggestedFolder") or raw.get("suggested_folder") or category
    folder = sanitize_folder(folder_source) if isinstance(folder_source, str) else ""

    name = raw.get("suggestedName") or raw.get("suggested_name")
    if not isinstance(name, str) or not name.strip():
        name = default_name(prompt, context)

    return Categorization(
        category=category,
        tags=_clean_tags(raw.get("tags")),
        suggested_folder=folder or default_folder(prompt.metadata.source),
        suggested_name=name.strip()[:100],
        complexity=complexity,
        source="ai",
    )
