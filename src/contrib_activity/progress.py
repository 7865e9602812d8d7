"""Progress notifications for aggregation runs.

Library code never prints. Callers that want feedback (the CLI, a web
handler streaming status) pass a callback that receives ``ProgressEvent``s.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ProgressEventType(Enum):
    """Types of progress events that can be emitted."""

    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    ERROR = "error"
    INFO = "info"


@dataclass
class ProgressEvent:
    """A progress update.

    Attributes:
        event_type: The type of progress event
        message: Human-readable description
        current: Units of work done so far (e.g. repository batches)
        total: Units of work expected
        metadata: Additional context such as repository names
    """

    event_type: ProgressEventType
    message: str
    current: int | None = None
    total: int | None = None
    metadata: dict[str, Any] | None = None

    @property
    def progress_percentage(self) -> float | None:
        """Calculate progress percentage if current and total are available."""
        if self.current is not None and self.total is not None and self.total > 0:
            return (self.current / self.total) * 100
        return None


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressNotifier:
    """Emits progress events to an optional callback.

    A failing callback is logged and otherwise ignored; UI problems must not
    abort an aggregation run.
    """

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self.callback = callback

    def notify(self, event: ProgressEvent) -> None:
        if not self.callback:
            return
        try:
            self.callback(event)
        except Exception as callback_error:
            logger.warning(f"Progress callback failed: {callback_error}")

    def _emit(
        self,
        event_type: ProgressEventType,
        message: str,
        current: int | None = None,
        total: int | None = None,
        **metadata: Any,
    ) -> None:
        self.notify(
            ProgressEvent(
                event_type=event_type,
                message=message,
                current=current,
                total=total,
                metadata=metadata or None,
            )
        )

    def started(self, message: str, **metadata: Any) -> None:
        self._emit(ProgressEventType.STARTED, message, **metadata)

    def progress(
        self,
        message: str,
        current: int | None = None,
        total: int | None = None,
        **metadata: Any,
    ) -> None:
        self._emit(ProgressEventType.PROGRESS, message, current, total, **metadata)

    def completed(self, message: str, **metadata: Any) -> None:
        self._emit(ProgressEventType.COMPLETED, message, **metadata)

    def error(self, message: str, **metadata: Any) -> None:
        self._emit(ProgressEventType.ERROR, message, **metadata)

    def info(self, message: str, **metadata: Any) -> None:
        self._emit(ProgressEventType.INFO, message, **metadata)

    def batch_completed(
        self, batch_number: int, total_batches: int, repositories: list[str]
    ) -> None:
        """Report that one batch of repositories has been fetched."""
        self.progress(
            f"Fetched batch {batch_number}/{total_batches} "
            f"({len(repositories)} repositories)",
            current=batch_number,
            total=total_batches,
            repositories=repositories,
        )

    def repository_failed(self, repository: str) -> None:
        """Report a repository whose every fetcher failed."""
        self.error(
            f"No data could be fetched for {repository}", repository=repository
        )
