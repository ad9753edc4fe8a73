"""Per-session import progress with fan-out streaming.

ProgressTracker is the only owner of ImportSession state. Every mutation
replaces the stored session with a fresh copy and pushes that copy to each
subscriber queue of the session, so all subscribers observe the same ordered
sequence of snapshots. Finished sessions are dropped after a retention
window so late subscribers can still read the final state.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

from promptvault.models import ImportSession, SessionStatus, SourceKind

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 300.0

_UPDATABLE_FIELDS = {
    "status",
    "progress_percent",
    "message",
    "total_count",
    "processed_count",
    "imported_count",
    "skipped_count",
    "files_total",
    "files_processed",
    "performance",
}


class SessionNotFoundError(Exception):
    """Raised when a session id is unknown (or already expired)."""


class ProgressTracker:
    def __init__(self, retention_seconds: float = DEFAULT_RETENTION_SECONDS) -> None:
        self._retention = retention_seconds
        self._sessions: dict[str, ImportSession] = {}
        self._subscribers: dict[str, list[asyncio.Queue[ImportSession]]] = {}
        self._expiry: dict[str, asyncio.TimerHandle] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_session(
        self,
        session_id: str,
        total: int = 0,
        *,
        user_id: str = "",
        platform: SourceKind = SourceKind.FILE,
        files_total: int = 0,
    ) -> ImportSession:
        self._cancel_expiry(session_id)
        session = ImportSession(
            id=session_id,
            user_id=user_id,
            platform=platform,
            total_count=max(0, total),
            files_total=max(0, files_total),
        )
        self._sessions[session_id] = session
        logger.info("Import session %s started (user=%s, platform=%s)",
                    session_id, user_id, platform.value)
        self._publish(session)
        return session

    def update_progress(self, session_id: str, **fields: Any) -> ImportSession | None:
        """Merge fields into the session, enforcing the session invariants."""
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning("Progress update for unknown session %s", session_id)
            return None
        if session.status.is_terminal:
            logger.debug("Ignoring update to finished session %s", session_id)
            return session

        update: dict[str, Any] = {}
        for name, value in fields.items():
            if name not in _UPDATABLE_FIELDS:
                logger.warning("Progress update: unknown field %r, skipping", name)
                continue
            update[name] = value

        if "status" in update:
            status = SessionStatus(update["status"])
            if status.is_terminal or (
                status is SessionStatus.PENDING and session.status is SessionStatus.PROCESSING
            ):
                logger.warning(
                    "Session %s: refusing status change %s -> %s",
                    session_id, session.status.value, status.value,
                )
                del update["status"]
            else:
                update["status"] = status

        total = max(update.get("total_count", session.total_count), session.processed_count)
        update["total_count"] = total
        if "processed_count" in update:
            update["processed_count"] = max(
                session.processed_count, min(update["processed_count"], total)
            )
        processed = update.get("processed_count", session.processed_count)
        skipped = min(update.get("skipped_count", session.skipped_count), processed)
        update["skipped_count"] = skipped
        update["imported_count"] = min(
            update.get("imported_count", session.imported_count), processed - skipped
        )
        if "progress_percent" in update:
            update["progress_percent"] = _clamp_percent(
                update["progress_percent"], session.progress_percent
            )

        return self._replace(session.model_copy(update=update))

    def increment_processed(
        self, session_id: str, imported: bool, span: tuple[int, int] = (0, 100)
    ) -> ImportSession | None:
        """Count one prompt as imported or skipped.

        The percentage is processed/total mapped linearly onto span, so a caller
        that reported an earlier stage can keep the bar moving from there.
        """
        session = self._sessions.get(session_id)
        if session is None or session.status.is_terminal:
            return session
        if session.processed_count >= session.total_count:
            logger.debug("Session %s already processed every prompt", session_id)
            return session

        processed = session.processed_count + 1
        low, high = span
        percent = round(low + (high - low) * processed / session.total_count)
        return self._replace(session.model_copy(update={
            "processed_count": processed,
            "imported_count": session.imported_count + (1 if imported else 0),
            "skipped_count": session.skipped_count + (0 if imported else 1),
            "progress_percent": _clamp_percent(percent, session.progress_percent),
        }))

    def add_error(self, session_id: str, message: str) -> ImportSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        return self._replace(session.model_copy(update={"errors": [*session.errors, message]}))

    def add_warning(self, session_id: str, message: str) -> ImportSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        return self._replace(
            session.model_copy(update={"warnings": [*session.warnings, message]})
        )

    def complete_session(
        self, session_id: str, message: str = "Import completed"
    ) -> ImportSession | None:
        return self._finish(session_id, SessionStatus.COMPLETED, message)

    def error_session(self, session_id: str, message: str) -> ImportSession | None:
        return self._finish(session_id, SessionStatus.FAILED, message)

    def _finish(
        self, session_id: str, status: SessionStatus, message: str
    ) -> ImportSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning("Cannot finish unknown session %s", session_id)
            return None
        if session.status.is_terminal:
            logger.debug("Session %s already finished as %s", session_id, session.status.value)
            return session

        update: dict[str, Any] = {
            "status": status,
            "progress_percent": 100,
            "message": message,
            "completed_at": datetime.now(UTC),
        }
        if status is SessionStatus.FAILED:
            update["errors"] = [*session.errors, message]
            logger.warning("Import session %s failed: %s", session_id, message)
        else:
            logger.info("Import session %s completed: %s", session_id, message)

        snapshot = self._replace(session.model_copy(update=update))
        self._schedule_expiry(session_id)
        return snapshot

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_progress(self, session_id: str) -> ImportSession | None:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> ImportSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Import session {session_id} not found")
        return session

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, []))

    async def stream_progress(self, session_id: str) -> AsyncIterator[ImportSession]:
        """Yield the current snapshot, then every update until a terminal one.

        Closing the iterator (or simply abandoning it) deregisters the
        subscriber; producers are never blocked by slow consumers.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return

        queue: asyncio.Queue[ImportSession] = asyncio.Queue()
        self._subscribers.setdefault(session_id, []).append(queue)
        try:
            yield session
            if session.status.is_terminal:
                return
            while True:
                snapshot = await queue.get()
                yield snapshot
                if snapshot.status.is_terminal:
                    return
        finally:
            queues = self._subscribers.get(session_id)
            if queues is not None:
                if queue in queues:
                    queues.remove(queue)
                if not queues:
                    del self._subscribers[session_id]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _replace(self, snapshot: ImportSession) -> ImportSession:
        self._sessions[snapshot.id] = snapshot
        self._publish(snapshot)
        return snapshot

    def _publish(self, snapshot: ImportSession) -> None:
        for queue in self._subscribers.get(snapshot.id, []):
            queue.put_nowait(snapshot)

    def _schedule_expiry(self, session_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; session %s kept until removed", session_id)
            return
        self._expiry[session_id] = loop.call_later(
            self._retention, self.remove_session, session_id
        )

    def _cancel_expiry(self, session_id: str) -> None:
        handle = self._expiry.pop(session_id, None)
        if handle is not None:
            handle.cancel()

    def remove_session(self, session_id: str) -> None:
        self._cancel_expiry(session_id)
        if self._sessions.pop(session_id, None) is not None:
            logger.debug("Session %s removed", session_id)

    def shutdown(self) -> None:
        """Cancel pending expiry timers (application shutdown)."""
        for handle in self._expiry.values():
            handle.cancel()
        self._expiry.clear()


def _clamp_percent(value: float, current: int) -> int:
    return max(current, min(100, max(0, int(round(value)))))
