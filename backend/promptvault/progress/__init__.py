"""Import progress tracking."""

from promptvault.progress.tracker import ProgressTracker, SessionNotFoundError

__all__ = ["ProgressTracker", "SessionNotFoundError"]
