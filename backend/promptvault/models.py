"""Canonical data structures for the import pipeline.

Defined once here, referenced everywhere else. Parsers produce
ExtractedPrompt, the categorizer turns them into CategorizedPrompt, and the
progress tracker owns ImportSession snapshots.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SourceKind(str, Enum):
    CHATGPT = "chatgpt"
    CLAUDE = "claude"
    GEMINI = "gemini"
    CLINE = "cline"
    CURSOR = "cursor"
    FILE = "file"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class SessionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class ErrorType(str, Enum):
    INVALID_FORMAT = "invalid_format"
    EMPTY_FILE = "empty_file"
    LARGE_FILE = "large_file"
    PARSE_ERROR = "parse_error"
    MEMORY_ERROR = "memory_error"
    PERMISSION_ERROR = "permission_error"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Input files
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawFile:
    """An uploaded export file. Owned by the caller, never mutated."""

    path: str
    content: bytes | str
    size_bytes: int = -1

    def __post_init__(self) -> None:
        if self.size_bytes < 0:
            size = (
                len(self.content)
                if isinstance(self.content, bytes)
                else len(self.content.encode("utf-8"))
            )
            object.__setattr__(self, "size_bytes", size)

    @property
    def name(self) -> str:
        return self.path.replace("\\", "/").rsplit("/", 1)[-1]


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


class PromptMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: SourceKind
    conversation_id: str
    conversation_title: str
    timestamp_millis: int
    model: str | None = None
    code_blocks: list[str] = Field(default_factory=list)
    file_references: list[str] = Field(default_factory=list)
    complexity: Complexity | None = None
    message_index: int | None = None
    file_name: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class ExtractedPrompt(BaseModel):
    """A user turn normalized out of an export. Identified only by content."""

    model_config = ConfigDict(frozen=True)

    title: str
    content: str
    metadata: PromptMetadata


class Categorization(BaseModel):
    category: str
    tags: list[str] = Field(default_factory=list)
    suggested_folder: str
    suggested_name: str
    complexity: Complexity
    source: Literal["ai", "heuristic", "cache"] = "heuristic"


class CategorizedPrompt(ExtractedPrompt):
    category: str
    tags: list[str] = Field(default_factory=list)
    suggested_folder: str
    suggested_name: str
    complexity: Complexity
    categorized_by: Literal["ai", "heuristic", "cache"] = "heuristic"

    @classmethod
    def from_parts(
        cls, prompt: ExtractedPrompt, categorization: Categorization
    ) -> "CategorizedPrompt":
        return cls(
            title=prompt.title,
            content=prompt.content,
            metadata=prompt.metadata,
            category=categorization.category,
            tags=list(categorization.tags),
            suggested_folder=categorization.suggested_folder,
            suggested_name=categorization.suggested_name,
            complexity=categorization.complexity,
            categorized_by=categorization.source,
        )


# ---------------------------------------------------------------------------
# Sessions and progress
# ---------------------------------------------------------------------------


class PerformanceStats(BaseModel):
    throughput_per_sec: float = 0.0
    avg_processing_time_ms: float = 0.0
    peak_memory_bytes: int = 0


class ImportSession(BaseModel):
    """Snapshot of one import run. Mutated only through ProgressTracker."""

    id: str
    user_id: str = ""
    platform: SourceKind = SourceKind.FILE
    status: SessionStatus = SessionStatus.PENDING
    progress_percent: int = Field(default=0, ge=0, le=100)
    message: str = "Starting import..."
    total_count: int = 0
    processed_count: int = 0
    imported_count: int = 0
    skipped_count: int = 0
    files_total: int = 0
    files_processed: int = 0
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    performance: PerformanceStats = Field(default_factory=PerformanceStats)
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None


# ---------------------------------------------------------------------------
# Errors and batch results
# ---------------------------------------------------------------------------


class ClassifiedError(BaseModel):
    type: ErrorType
    message: str
    file: str | None = None
    line: int | None = None
    recoverable: bool
    suggestion: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class RecoveryAction(BaseModel):
    label: str
    action: str
    primary: bool = False


class FailedFile(BaseModel):
    file: str
    error: str


class BatchResult(BaseModel):
    successful: list[ExtractedPrompt]
    failed: list[FailedFile]
    total_processed: int
    duration_ms: int
    retries: int = 0
    duplicates_removed: int = 0


class ImportReport(BaseModel):
    session_id: str
    status: SessionStatus
    imported: int = 0
    skipped: int = 0
    failed_files: list[FailedFile] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    prompts: list[CategorizedPrompt] = Field(default_factory=list)


@dataclass
class StoredPrompt:
    """A prompt row as returned by the store for duplicate checks."""

    id: str
    name: str
    content: str
    folder: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
