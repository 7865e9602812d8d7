"""Event processors: merging overlapping sources, ordering and summary stats."""

import logging
from collections import Counter
from collections.abc import Iterable

from contrib_activity.models import (
    LIFECYCLE_RANKS,
    ActivitySummary,
    Event,
    EventKind,
    EventSource,
)

logger = logging.getLogger(__name__)


class EventMerger:
    """Combine event lists from overlapping fetchers into one set of unique ids.

    When two events share an id and disagree on the kind, the later lifecycle
    step wins (merged over closed over opened). Otherwise the one with more
    populated payload fields wins; on a tie the per-repository version beats
    the activity feed's, and otherwise the first one seen is kept. The
    surviving event keeps the position at which its id was first seen.
    """

    def __init__(self) -> None:
        self.duplicates = 0

    def merge(self, *groups: Iterable[Event]) -> list[Event]:
        """Merge any number of event lists.

        Returns:
            Events with unique ids, in first-seen order
        """
        merged: dict[str, Event] = {}
        for group in groups:
            for event in group:
                current = merged.get(event.id)
                if current is None:
                    merged[event.id] = event
                    continue

                self.duplicates += 1
                if self.prefer(event, current):
                    merged[event.id] = event

        if self.duplicates:
            logger.debug(f"Merged away {self.duplicates} duplicate events")
        return list(merged.values())

    @staticmethod
    def prefer(candidate: Event, current: Event) -> bool:
        """Whether ``candidate`` should replace ``current`` for the same id."""
        candidate_rank = LIFECYCLE_RANKS.get(candidate.kind)
        current_rank = LIFECYCLE_RANKS.get(current.kind)
        if (
            candidate_rank is not None
            and current_rank is not None
            and candidate_rank != current_rank
        ):
            return candidate_rank > current_rank

        candidate_fields = candidate.completeness()
        current_fields = current.completeness()
        if candidate_fields != current_fields:
            return candidate_fields > current_fields
        return (
            candidate.source is EventSource.REPOSITORY
            and current.source is EventSource.ACTIVITY
        )


def order_events(events: Iterable[Event]) -> list[Event]:
    """Sort events most recent first.

    Events with equal timestamps keep their relative order.
    """
    return sorted(events, key=lambda event: event.timestamp, reverse=True)


def summarize(events: list[Event]) -> ActivitySummary:
    """Compute headline statistics for an event list."""
    by_kind = Counter(event.kind.value for event in events)
    by_repository = Counter(event.repository.full_name for event in events)
    most_active = by_repository.most_common(1)

    return ActivitySummary(
        total_events=len(events),
        by_kind=dict(by_kind),
        open_pull_requests=by_kind[EventKind.PR_OPENED.value],
        open_issues=by_kind[EventKind.ISSUE_OPENED.value],
        reviews=by_kind[EventKind.REVIEW_SUBMITTED.value],
        comments=by_kind[EventKind.COMMENT_CREATED.value],
        repositories_active=len(by_repository),
        most_active_repository=most_active[0][0] if most_active else None,
    )
