"""Import service: parse uploaded exports, enforce quota, categorize, store.

One import run is tracked as a session in the ProgressTracker. Parsing
reports progress in the first half of the bar (the batch processor leaves
the session open); the second half follows prompts being stored.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from uuid import uuid4

from promptvault.categorizer.heuristics import heuristic_categorization
from promptvault.categorizer.service import AICategorizer
from promptvault.importer.batch import BatchOptions, BatchProcessor
from promptvault.importer.errors import QuotaExceededError, StoreError
from promptvault.importer.quota import QuotaService, apply_quota
from promptvault.importer.store import PromptStore
from promptvault.models import (
    BatchResult,
    CategorizedPrompt,
    ExtractedPrompt,
    ImportReport,
    RawFile,
    SessionStatus,
    SourceKind,
)
from promptvault.progress import ProgressTracker

logger = logging.getLogger(__name__)

PARSE_SPAN = (0, 50)
STORE_SPAN = (50, 100)
DUPLICATE_CHECK_LIMIT = 100


@dataclass
class ImportOptions:
    skip_duplicates: bool = True
    skip_ai: bool = False
    target_folder: str | None = None
    default_tags: list[str] = field(default_factory=list)
    batch: BatchOptions | None = None


class ImportService:
    """Coordinates batch parsing, quota, duplicate checks, categorization and storage."""

    def __init__(
        self,
        store: PromptStore,
        quota: QuotaService,
        categorizer: AICategorizer,
        tracker: ProgressTracker,
        batch_processor: BatchProcessor | None = None,
        batch_defaults: BatchOptions | None = None,
    ) -> None:
        self._store = store
        self._quota = quota
        self._categorizer = categorizer
        self._tracker = tracker
        self._batch = batch_processor or BatchProcessor(tracker)
        self._batch_defaults = batch_defaults or BatchOptions()
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def open_session(
        self, user_id: str, platform: SourceKind | None, file_count: int
    ) -> str:
        session_id = str(uuid4())
        self._tracker.start_session(
            session_id,
            0,
            user_id=user_id,
            platform=platform or SourceKind.FILE,
            files_total=file_count,
        )
        return session_id

    async def import_files(
        self,
        user_id: str,
        platform: SourceKind | None,
        files: Sequence[RawFile],
        options: ImportOptions | None = None,
    ) -> ImportReport:
        session_id = self.open_session(user_id, platform, len(files))
        return await self.run_import(session_id, user_id, platform, files, options)

    def start_background(
        self,
        user_id: str,
        platform: SourceKind | None,
        files: Sequence[RawFile],
        options: ImportOptions | None = None,
    ) -> str:
        """Open a session and run the import as a task; returns the session id."""
        session_id = self.open_session(user_id, platform, len(files))
        task = asyncio.create_task(
            self._run_background(session_id, user_id, platform, files, options)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return session_id

    async def _run_background(
        self,
        session_id: str,
        user_id: str,
        platform: SourceKind | None,
        files: Sequence[RawFile],
        options: ImportOptions | None,
    ) -> None:
        try:
            await self.run_import(session_id, user_id, platform, files, options)
        except Exception:
            # run_import already failed the session; keep the traceback for operators.
            logger.exception("Background import %s crashed", session_id)

    async def shutdown(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def run_import(
        self,
        session_id: str,
        user_id: str,
        platform: SourceKind | None,
        files: Sequence[RawFile],
        options: ImportOptions | None = None,
    ) -> ImportReport:
        opts = options or ImportOptions()
        try:
            return await self._run(session_id, user_id, platform, files, opts)
        except Exception as e:
            self._tracker.error_session(session_id, f"Import failed: {e}")
            raise

    async def _run(
        self,
        session_id: str,
        user_id: str,
        platform: SourceKind | None,
        files: Sequence[RawFile],
        opts: ImportOptions,
    ) -> ImportReport:
        batch_opts = dataclasses.replace(
            opts.batch or self._batch_defaults,
            session_id=session_id,
            source=platform,
            finalize_session=False,
            progress_span=PARSE_SPAN,
        )
        result = await self._batch.process_batch(files, batch_opts)

        if files and len(result.failed) == len(files):
            self._tracker.error_session(
                session_id, f"Could not read any of the {len(files)} files"
            )
            return self._report(session_id, result, [])

        if not result.successful:
            self._tracker.add_warning(session_id, "No user prompts found in the uploaded files.")
            self._tracker.complete_session(session_id, "No prompts found to import")
            return self._report(session_id, result, [])

        remaining = await self._quota.remaining_slots(user_id)
        limit_description = await self._quota.describe_limit(user_id)
        usage = await self._quota.usage(user_id) if remaining == 0 else None
        try:
            decision = apply_quota(result.successful, remaining, limit_description, usage)
        except QuotaExceededError as e:
            logger.info("Session %s: quota exhausted (%s of %s prompts stored)",
                        session_id, e.current, e.limit)
            self._tracker.error_session(session_id, str(e))
            return self._report(session_id, result, [])
        if decision.warning:
            self._tracker.add_warning(session_id, decision.warning)

        accepted: list[ExtractedPrompt] = decision.accepted
        self._tracker.update_progress(
            session_id,
            total_count=len(accepted),
            progress_percent=PARSE_SPAN[1],
            message=f"Importing {len(accepted)} prompts...",
        )

        to_import = await self._skip_existing(session_id, user_id, accepted, opts)
        categorized = await self._categorize(session_id, to_import, opts)
        stored = await self._persist(session_id, user_id, categorized, opts)

        session = self._tracker.get_progress(session_id)
        skipped = session.skipped_count if session else len(accepted) - len(stored)
        self._tracker.complete_session(
            session_id,
            f"Imported {len(stored)} prompts"
            + (f", skipped {skipped}" if skipped else "")
            + (f", {len(result.failed)} files failed" if result.failed else ""),
        )
        return self._report(session_id, result, stored)

    async def _skip_existing(
        self,
        session_id: str,
        user_id: str,
        prompts: list[ExtractedPrompt],
        opts: ImportOptions,
    ) -> list[ExtractedPrompt]:
        if not opts.skip_duplicates:
            return prompts
        existing = await self._store.find_existing_for_duplicate_check(
            user_id, limit=DUPLICATE_CHECK_LIMIT
        )
        existing_contents = {p.content.strip() for p in existing}
        fresh: list[ExtractedPrompt] = []
        for prompt in prompts:
            if prompt.content.strip() in existing_contents:
                self._tracker.increment_processed(session_id, imported=False, span=STORE_SPAN)
            else:
                fresh.append(prompt)
        if len(fresh) < len(prompts):
            logger.info("Session %s: %d prompts already stored",
                        session_id, len(prompts) - len(fresh))
        return fresh

    async def _categorize(
        self, session_id: str, prompts: list[ExtractedPrompt], opts: ImportOptions
    ) -> list[CategorizedPrompt]:
        if not prompts:
            return []
        if opts.skip_ai:
            return [CategorizedPrompt.from_parts(p, heuristic_categorization(p)) for p in prompts]
        self._tracker.update_progress(
            session_id, message=f"Categorizing {len(prompts)} prompts..."
        )
        return await self._categorizer.categorize_batch(prompts)

    async def _persist(
        self,
        session_id: str,
        user_id: str,
        prompts: list[CategorizedPrompt],
        opts: ImportOptions,
    ) -> list[CategorizedPrompt]:
        stored: list[CategorizedPrompt] = []
        for prompt in prompts:
            try:
                await self._store.insert_prompt(
                    user_id, prompt, folder=opts.target_folder, tags=opts.default_tags
                )
            except StoreError as e:
                logger.warning("Session %s: %s", session_id, e)
                self._tracker.add_error(session_id, str(e))
                self._tracker.increment_processed(session_id, imported=False, span=STORE_SPAN)
                continue
            stored.append(prompt)
            self._tracker.increment_processed(session_id, imported=True, span=STORE_SPAN)
        return stored

    def _report(
        self, session_id: str, result: BatchResult, stored: list[CategorizedPrompt]
    ) -> ImportReport:
        session = self._tracker.get_progress(session_id)
        if session is None:
            return ImportReport(
                session_id=session_id,
                status=SessionStatus.FAILED,
                imported=len(stored),
                failed_files=result.failed,
                prompts=stored,
            )
        return ImportReport(
            session_id=session_id,
            status=session.status,
            imported=session.imported_count,
            skipped=session.skipped_count,
            failed_files=result.failed,
            errors=list(session.errors),
            warnings=list(session.warnings),
            prompts=stored,
        )
