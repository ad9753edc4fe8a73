"""Import error taxonomy, classification, and recovery policy.

Every failure raised while importing a file is funnelled through
ErrorClassifier.classify(), which maps it to one of a fixed set of
ErrorTypes with a recoverable flag and a user-facing suggestion. The batch
orchestrator uses recover() to decide whether (and after what pause) a file
is retried, and the HTTP layer exposes get_recovery_actions() to clients.
"""

import asyncio
import gc
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from promptvault.models import ClassifiedError, ErrorType, RecoveryAction

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class PromptImportError(Exception):
    """Base class for errors raised by the import pipeline."""

    error_type = ErrorType.UNKNOWN
    recoverable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class ImportFormatError(PromptImportError):
    """The file is not a valid export for the expected format."""

    error_type = ErrorType.INVALID_FORMAT
    recoverable = True


class UnsupportedFormatError(PromptImportError):
    """The format is recognised but cannot be processed here."""


class QuotaExceededError(PromptImportError):
    """The tenant has no prompt slots left."""

    def __init__(self, message: str, *, limit: int | None, current: int | None) -> None:
        super().__init__(message, limit=limit, current=current)
        self.limit = limit
        self.current = current


class StoreError(PromptImportError):
    """A prompt could not be persisted."""


# ---------------------------------------------------------------------------
# Classification tables
# ---------------------------------------------------------------------------

# Order matters: the first matching pattern wins.
_ERROR_PATTERNS: list[tuple[ErrorType, re.Pattern[str]]] = [
    (
        ErrorType.INVALID_FORMAT,
        re.compile(
            r"no conversation markers found|invalid (?:markdown )?format|not valid utf-8"
        ),
    ),
    (ErrorType.EMPTY_FILE, re.compile(r"empty file|no content")),
    (ErrorType.LARGE_FILE, re.compile(r"file too large|exceeds.*limit")),
    (ErrorType.PARSE_ERROR, re.compile(r"failed to parse|parsing error|malformed")),
    (ErrorType.MEMORY_ERROR, re.compile(r"out of memory|heap.*exhausted|memoryerror")),
    (ErrorType.PERMISSION_ERROR, re.compile(r"permission denied|access denied")),
    (
        ErrorType.NETWORK_ERROR,
        re.compile(r"network error|connection.*(?:failed|refused|reset)|timed out"),
    ),
]

_POLICIES: dict[ErrorType, tuple[bool, str]] = {
    ErrorType.INVALID_FORMAT: (
        True,
        "Ensure the file contains valid conversation markers "
        "(### Human/### Assistant or User:/Cline:) or a supported JSON export.",
    ),
    ErrorType.EMPTY_FILE: (
        True,
        "Skip empty files or check that the file was saved correctly.",
    ),
    ErrorType.LARGE_FILE: (
        True,
        "Split large files into smaller chunks (max 10MB per file) or import them in batches.",
    ),
    ErrorType.PARSE_ERROR: (
        True,
        "Check the file's syntax, or import the other files first.",
    ),
    ErrorType.MEMORY_ERROR: (
        True,
        "Reduce the batch size or import fewer files at once.",
    ),
    ErrorType.PERMISSION_ERROR: (
        False,
        "Check the file permissions or copy the files to a different location.",
    ),
    ErrorType.NETWORK_ERROR: (
        True,
        "Check your internet connection and try again.",
    ),
    ErrorType.UNKNOWN: (
        False,
        "Try importing other files, or contact support if the issue persists.",
    ),
}

_TYPE_SPECIFIC_ACTIONS: dict[ErrorType, RecoveryAction] = {
    ErrorType.LARGE_FILE: RecoveryAction(label="Split File", action="split_file"),
    ErrorType.INVALID_FORMAT: RecoveryAction(label="View Format Guide", action="view_guide"),
    ErrorType.PERMISSION_ERROR: RecoveryAction(label="Copy Files", action="copy_files"),
}


def _type_from_exception(error: BaseException) -> ErrorType | None:
    """Map well-known Python exception types before falling back to messages."""
    if isinstance(error, PromptImportError) and error.error_type is not ErrorType.UNKNOWN:
        return error.error_type
    if isinstance(error, MemoryError):
        return ErrorType.MEMORY_ERROR
    if isinstance(error, PermissionError):
        return ErrorType.PERMISSION_ERROR
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return ErrorType.NETWORK_ERROR
    return None


@dataclass
class RecoveryOutcome(Generic[T]):
    success: bool
    result: T | None = None
    error: BaseException | None = None


class ErrorClassifier:
    """Classifies failures and applies the per-type recovery policy."""

    def __init__(self, *, memory_pause: float = 1.0, network_pause: float = 2.0) -> None:
        self._memory_pause = memory_pause
        self._network_pause = network_pause

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(
        self,
        error: BaseException | str,
        *,
        file: str | None = None,
        line: int | None = None,
    ) -> ClassifiedError:
        message = str(error) if not isinstance(error, str) else error
        if not message and isinstance(error, BaseException):
            message = type(error).__name__

        error_type = None
        if isinstance(error, BaseException):
            error_type = _type_from_exception(error)
            if line is None and isinstance(error, PromptImportError):
                line = error.context.get("line")
        if error_type is None:
            lowered = message.lower()
            error_type = next(
                (t for t, pattern in _ERROR_PATTERNS if pattern.search(lowered)),
                ErrorType.UNKNOWN,
            )

        recoverable, suggestion = _POLICIES[error_type]
        return ClassifiedError(
            type=error_type,
            message=message,
            file=file,
            line=line,
            recoverable=recoverable,
            suggestion=suggestion,
        )

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    @staticmethod
    def retries_automatically(error: ClassifiedError) -> bool:
        """Whether recover() will actually call retry_fn for this error."""
        return error.recoverable and error.type is not ErrorType.PARSE_ERROR

    async def recover(
        self,
        error: ClassifiedError,
        retry_fn: Callable[[], Awaitable[T]],
    ) -> RecoveryOutcome[T]:
        """Apply the type-specific pause, then call retry_fn once."""
        if not error.recoverable:
            return RecoveryOutcome(
                success=False, error=PromptImportError("Error is not recoverable")
            )

        if error.type is ErrorType.MEMORY_ERROR:
            gc.collect()
            await asyncio.sleep(self._memory_pause)
        elif error.type is ErrorType.NETWORK_ERROR:
            await asyncio.sleep(self._network_pause)
        elif error.type is ErrorType.PARSE_ERROR:
            # A corrected input is required; retrying the same bytes cannot help.
            return RecoveryOutcome(
                success=False,
                error=PromptImportError(f"Manual fix required: {error.suggestion}"),
            )

        try:
            result = await retry_fn()
        except Exception as e:
            return RecoveryOutcome(success=False, error=e)
        return RecoveryOutcome(success=True, result=result)

    @staticmethod
    def get_recovery_actions(error: ClassifiedError) -> list[RecoveryAction]:
        actions: list[RecoveryAction] = []
        if error.recoverable:
            actions.append(RecoveryAction(label="Retry Import", action="retry", primary=True))

        specific = _TYPE_SPECIFIC_ACTIONS.get(error.type)
        if specific is not None:
            actions.append(specific.model_copy())

        actions.append(RecoveryAction(label="Skip File", action="skip"))

        if not error.recoverable:
            actions.append(RecoveryAction(label="Contact Support", action="support"))
        return actions

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @staticmethod
    def format_for_user(error: ClassifiedError) -> str:
        message = f"Import error: {error.message}"
        if error.file:
            message += f"\nFile: {error.file}"
            if error.line:
                message += f" (line {error.line})"
        if error.suggestion:
            message += f"\n\nSuggestion: {error.suggestion}"
        if error.recoverable:
            message += "\n\nThis error may be recoverable. You can try again."
        return message

    @staticmethod
    def log_error(error: ClassifiedError, session_id: str | None = None) -> None:
        logger.warning(
            "Import error [%s] session=%s file=%s line=%s recoverable=%s: %s",
            error.type.value,
            session_id,
            error.file,
            error.line,
            error.recoverable,
            error.message,
        )
