"""Bounded-concurrency, chunked parsing of many export files.

Files are split into fixed-size chunks. Within a chunk, up to
max_concurrency files are parsed at once (each parse runs in a worker
thread); the next chunk starts only after the whole chunk has finished, and
memory is reclaimed in between. Every file ends with exactly one outcome:
its prompts, or a FailedFile carrying a user-facing message. Recoverable
failures are retried through ErrorClassifier.recover() up to max_retries.
"""

import asyncio
import gc
import logging
import resource
import time
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from promptvault.importer.dedup import dedupe
from promptvault.importer.errors import ErrorClassifier
from promptvault.importer.parsers.base import FormatParser, decode_text
from promptvault.importer.parsers.detection import resolve_parser
from promptvault.models import (
    BatchResult,
    ClassifiedError,
    ExtractedPrompt,
    FailedFile,
    PerformanceStats,
    RawFile,
    SessionStatus,
    SourceKind,
)
from promptvault.progress import ProgressTracker

logger = logging.getLogger(__name__)

STREAMING_THRESHOLD_BYTES = 1024 * 1024
MAX_FILE_BYTES = 10 * 1024 * 1024
CANCELLED_MESSAGE = "Import cancelled before this file was processed"

_CONVERSATION_MARKERS = ("### Human", "### User", "User:", "**User**", "## Task")


@dataclass
class BatchOptions:
    max_concurrency: int = 3
    chunk_size: int = 10
    enable_recovery: bool = True
    max_retries: int = 2
    session_id: str | None = None
    source: SourceKind | None = None
    # The importer keeps the session open for its own later stages.
    finalize_session: bool = True
    progress_span: tuple[int, int] = (0, 100)
    cancel_event: asyncio.Event | None = None

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        low, high = self.progress_span
        if not 0 <= low <= high <= 100:
            raise ValueError("progress_span must satisfy 0 <= low <= high <= 100")


@dataclass
class PerformanceReport:
    duration_ms: int
    throughput: float  # files per second
    success_rate: float  # percent
    average_time_per_file_ms: float
    total_size_mb: float


@dataclass
class FileValidation:
    valid: list[RawFile] = field(default_factory=list)
    invalid: list[FailedFile] = field(default_factory=list)


@dataclass
class _RunState:
    total: int
    started: float
    options: BatchOptions
    outcomes: list[list[ExtractedPrompt] | FailedFile | None]
    files_done: int = 0
    retries: int = 0


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def chunked(files: Sequence[RawFile], size: int) -> Iterator[tuple[int, Sequence[RawFile]]]:
    """Yield (offset, chunk) pairs preserving input order."""
    for offset in range(0, len(files), size):
        yield offset, files[offset:offset + size]


def create_performance_report(
    started: float, finished: float, processed: int, errors: int, total_size: int
) -> PerformanceReport:
    duration = max(finished - started, 0.0)
    total = processed + errors
    return PerformanceReport(
        duration_ms=int(duration * 1000),
        throughput=total / duration if duration > 0 else float(total),
        success_rate=(processed / total * 100) if total else 0.0,
        average_time_per_file_ms=(duration * 1000 / total) if total else 0.0,
        total_size_mb=total_size / (1024 * 1024),
    )


def estimate_memory_usage(files: Sequence[RawFile]) -> int:
    """Rough working-set estimate: twice the total input size."""
    return sum(f.size_bytes for f in files) * 2


def optimal_chunk_size(files: Sequence[RawFile], max_memory_mb: int = 512) -> int:
    """Chunk size that keeps ~3x the average file size within the budget, in 1..20."""
    if not files:
        return 1
    average = sum(f.size_bytes for f in files) / len(files)
    per_file = max(average * 3, 1)
    fits = int((max_memory_mb * 1024 * 1024) // per_file)
    return max(1, min(20, fits))


def validate_files(files: Sequence[RawFile], source: SourceKind | None = None) -> FileValidation:
    """Pre-flight check: empty files, oversize files, and (for Cline) missing markers."""
    result = FileValidation()
    for raw in files:
        text = raw.content if isinstance(raw.content, str) else None
        if raw.size_bytes == 0 or (text is not None and not text.strip()):
            result.invalid.append(FailedFile(file=raw.path, error="Empty file"))
        elif raw.size_bytes > MAX_FILE_BYTES:
            result.invalid.append(FailedFile(file=raw.path, error="File too large (>10MB)"))
        elif source is SourceKind.CLINE and not _has_markers(raw):
            result.invalid.append(
                FailedFile(file=raw.path, error="No conversation markers found")
            )
        else:
            result.valid.append(raw)
    return result


def _has_markers(raw: RawFile) -> bool:
    content = raw.content
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return any(marker in content for marker in _CONVERSATION_MARKERS)


def _peak_memory_bytes() -> int:
    # ru_maxrss is reported in kilobytes on Linux.
    return resource.getrusage(resource.RUSAGE_SELF).ru_maxrss * 1024


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------


class BatchProcessor:
    def __init__(
        self,
        tracker: ProgressTracker | None = None,
        classifier: ErrorClassifier | None = None,
        *,
        streaming_threshold: int = STREAMING_THRESHOLD_BYTES,
    ) -> None:
        self._tracker = tracker
        self._classifier = classifier or ErrorClassifier()
        self._streaming_threshold = streaming_threshold

    async def process_batch(
        self, files: Sequence[RawFile], options: BatchOptions | None = None
    ) -> BatchResult:
        opts = options or BatchOptions()
        state = _RunState(
            total=len(files),
            started=time.monotonic(),
            options=opts,
            outcomes=[None] * len(files),
        )
        self._update(opts, status=SessionStatus.PROCESSING,
                      message=f"Processing {len(files)} files...",
                      files_total=len(files), progress_percent=opts.progress_span[0])

        semaphore = asyncio.Semaphore(opts.max_concurrency)
        for offset, chunk in chunked(files, opts.chunk_size):
            if opts.cancel_event is not None and opts.cancel_event.is_set():
                self._cancel_remaining(files, offset, state)
                break
            await asyncio.gather(*(
                self._run_file(offset + i, raw, semaphore, state)
                for i, raw in enumerate(chunk)
            ))
            gc.collect()

        return self._finish(files, state)

    # ------------------------------------------------------------------
    # Per-file work
    # ------------------------------------------------------------------

    async def _run_file(
        self, index: int, raw: RawFile, semaphore: asyncio.Semaphore, state: _RunState
    ) -> None:
        async with semaphore:
            outcome = await self._process_file(raw, state)
        state.outcomes[index] = outcome
        state.files_done += 1
        self._emit_file_progress(raw, outcome, state)

    async def _process_file(
        self, raw: RawFile, state: _RunState
    ) -> list[ExtractedPrompt] | FailedFile:
        opts = state.options
        try:
            return await self.parse_file(raw, opts.source)
        except Exception as e:
            error = self._classify(e, raw, opts)

        retries = 0
        while (
            opts.enable_recovery
            and self._classifier.retries_automatically(error)
            and retries < opts.max_retries
        ):
            retries += 1
            state.retries += 1
            self._update(opts, message=f"Retrying {raw.path} (attempt {retries + 1})...")
            outcome = await self._classifier.recover(
                error, lambda: self.parse_file(raw, opts.source)
            )
            if outcome.success:
                return outcome.result or []
            error = self._classify(outcome.error, raw, opts)

        if opts.session_id and self._tracker is not None:
            self._tracker.add_error(opts.session_id, f"{raw.path}: {error.message}")
        return FailedFile(file=raw.path, error=self._classifier.format_for_user(error))

    def _classify(self, e: BaseException, raw: RawFile, opts: BatchOptions) -> ClassifiedError:
        error = self._classifier.classify(e, file=raw.path)
        self._classifier.log_error(error, opts.session_id)
        return error

    async def parse_file(
        self, raw: RawFile, source: SourceKind | None = None
    ) -> list[ExtractedPrompt]:
        parser, sections = await asyncio.to_thread(self._prepare, raw, source)
        if sections is None:
            return await asyncio.to_thread(parser.parse, raw)
        return await self._parse_sections(parser, raw, sections)

    def _prepare(
        self, raw: RawFile, source: SourceKind | None
    ) -> tuple[FormatParser, Iterator[str] | None]:
        """Detect the format and slice large files. Runs in a worker thread."""
        parser = resolve_parser(raw, source)
        if raw.size_bytes > self._streaming_threshold:
            return parser, parser.iter_sections(decode_text(raw))
        return parser, None

    async def _parse_sections(
        self, parser: FormatParser, raw: RawFile, sections: Iterator[str]
    ) -> list[ExtractedPrompt]:
        prompts: list[ExtractedPrompt] = []
        number = 0
        while True:
            section = await asyncio.to_thread(next, sections, None)
            if section is None:
                break
            number += 1
            try:
                prompts.extend(await asyncio.to_thread(parser.parse_section, section, raw))
            except Exception:
                logger.warning("Skipping unparseable section %d of %s", number, raw.path,
                               exc_info=True)
        return prompts

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _update(self, opts: BatchOptions, **fields) -> None:
        if opts.session_id and self._tracker is not None:
            self._tracker.update_progress(opts.session_id, **fields)

    def _performance(self, state: _RunState) -> PerformanceStats:
        elapsed = max(time.monotonic() - state.started, 1e-9)
        done = max(state.files_done, 1)
        return PerformanceStats(
            throughput_per_sec=state.files_done / elapsed,
            avg_processing_time_ms=elapsed * 1000 / done,
            peak_memory_bytes=_peak_memory_bytes(),
        )

    def _span_percent(self, state: _RunState) -> int:
        low, high = state.options.progress_span
        if state.total == 0:
            return high
        return round(low + (high - low) * state.files_done / state.total)

    def _emit_file_progress(
        self, raw: RawFile, outcome: list[ExtractedPrompt] | FailedFile, state: _RunState
    ) -> None:
        if isinstance(outcome, FailedFile):
            message = f"Failed to process {raw.name}"
        else:
            message = f"Processed {raw.name} ({len(outcome)} prompts)"
        self._update(
            state.options,
            progress_percent=self._span_percent(state),
            files_processed=state.files_done,
            message=message,
            performance=self._performance(state),
        )

    def _cancel_remaining(self, files: Sequence[RawFile], offset: int, state: _RunState) -> None:
        logger.info("Batch cancelled with %d files not started", len(files) - offset)
        for index in range(offset, len(files)):
            state.outcomes[index] = FailedFile(file=files[index].path, error=CANCELLED_MESSAGE)
            state.files_done += 1
        self._update(state.options, files_processed=state.files_done,
                     message="Import cancelled")

    def _finish(self, files: Sequence[RawFile], state: _RunState) -> BatchResult:
        opts = state.options
        extracted: list[ExtractedPrompt] = []
        failed: list[FailedFile] = []
        for outcome in state.outcomes:
            if isinstance(outcome, FailedFile):
                failed.append(outcome)
            elif outcome is not None:
                extracted.extend(outcome)

        unique = dedupe(extracted) if extracted else []
        finished = time.monotonic()
        report = create_performance_report(
            state.started,
            finished,
            len(files) - len(failed),
            len(failed),
            sum(f.size_bytes for f in files),
        )
        logger.info(
            "Batch done: %d files, %d prompts (%d duplicates removed), %d failed in %dms",
            len(files), len(unique), len(extracted) - len(unique), len(failed),
            report.duration_ms,
        )

        performance = PerformanceStats(
            throughput_per_sec=report.throughput,
            avg_processing_time_ms=report.average_time_per_file_ms,
            peak_memory_bytes=_peak_memory_bytes(),
        )
        if opts.session_id and self._tracker is not None:
            summary = f"Import completed. Processed {len(unique)} unique prompts."
            if opts.finalize_session:
                self._tracker.update_progress(
                    opts.session_id, files_processed=len(files), performance=performance
                )
                self._tracker.complete_session(opts.session_id, summary)
            else:
                self._tracker.update_progress(
                    opts.session_id,
                    files_processed=len(files),
                    performance=performance,
                    progress_percent=opts.progress_span[1],
                    message=f"Parsed {len(files)} files: {len(unique)} unique prompts",
                )

        return BatchResult(
            successful=unique,
            failed=failed,
            total_processed=len(files),
            duration_ms=report.duration_ms,
            retries=state.retries,
            duplicates_removed=len(extracted) - len(unique),
        )

