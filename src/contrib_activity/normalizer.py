"""Normalization of classified records into canonical Events."""

import logging
import re
from collections.abc import Callable
from typing import Any

from contrib_activity.classifier import REVIEW_STATES, Classification
from contrib_activity.config import TimestampPolicy
from contrib_activity.models import (
    ActorRef,
    AssociatedWith,
    CommentPayload,
    Event,
    EventKind,
    IssuePayload,
    PullRequestPayload,
    RepositoryRef,
    ReviewPayload,
)

logger = logging.getLogger(__name__)

TRAILING_NUMBER_PATTERN = re.compile(r"/(\d+)/?$")

# Field recording the instant each lifecycle step happened
LIFECYCLE_FIELDS = {
    EventKind.PR_OPENED: "created_at",
    EventKind.PR_CLOSED: "closed_at",
    EventKind.PR_MERGED: "merged_at",
    EventKind.ISSUE_OPENED: "created_at",
    EventKind.ISSUE_CLOSED: "closed_at",
    EventKind.REVIEW_SUBMITTED: "submitted_at",
    EventKind.COMMENT_CREATED: "created_at",
}

PULL_REQUEST_STATES = {
    EventKind.PR_OPENED: "open",
    EventKind.PR_CLOSED: "closed",
    EventKind.PR_MERGED: "merged",
}


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _number_from_url(*urls: Any) -> int | None:
    for url in urls:
        if isinstance(url, str):
            match = TRAILING_NUMBER_PATTERN.search(url)
            if match:
                return int(match.group(1))
    return None


def _absolute(url: Any) -> str | None:
    if isinstance(url, str) and url.startswith(("https://", "http://")):
        return url
    return None


class EventNormalizer:
    """Turn included classifications into Events.

    One adapter per record family maps the family's raw shape onto its
    payload model; missing optional upstream fields are left out.
    """

    def __init__(
        self, timestamp_policy: TimestampPolicy = TimestampPolicy.LIFECYCLE
    ) -> None:
        self.timestamp_policy = timestamp_policy
        self._adapters: dict[EventKind, Callable[[Classification], Any]] = {
            EventKind.PR_OPENED: self._pull_request_payload,
            EventKind.PR_CLOSED: self._pull_request_payload,
            EventKind.PR_MERGED: self._pull_request_payload,
            EventKind.ISSUE_OPENED: self._issue_payload,
            EventKind.ISSUE_CLOSED: self._issue_payload,
            EventKind.REVIEW_SUBMITTED: self._review_payload,
            EventKind.COMMENT_CREATED: self._comment_payload,
        }

    def normalize(self, classification: Classification) -> Event:
        """Build the Event for an included classification.

        Raises:
            ValueError: If the record was not included, or a mandatory field
                (timestamp, parent number) cannot be determined
        """
        if not classification.included:
            raise ValueError(
                f"Cannot normalize a {classification.verdict.value} record"
            )
        kind = classification.kind
        assert kind is not None and classification.upstream_id is not None
        assert classification.actor is not None

        return Event(
            id=Event.make_id(kind, classification.upstream_id),
            kind=kind,
            timestamp=self._timestamp(classification),
            repository=classification.repository,
            actor=ActorRef(
                login=classification.actor["login"],
                avatar_url=_absolute(classification.actor.get("avatar_url")),
            ),
            payload=self._adapters[kind](classification),
            source=classification.source,
        )

    def timestamp_fields(self, kind: EventKind) -> tuple[str, ...]:
        """Subject fields consulted for an event's timestamp, in order."""
        lifecycle = LIFECYCLE_FIELDS[kind]
        if kind in (EventKind.REVIEW_SUBMITTED, EventKind.COMMENT_CREATED):
            return (lifecycle, "updated_at")
        if self.timestamp_policy is TimestampPolicy.UPDATED:
            return ("updated_at", lifecycle)
        if self.timestamp_policy is TimestampPolicy.CREATED:
            return ("created_at", "updated_at")
        return (lifecycle, "updated_at")

    def _timestamp(self, classification: Classification) -> str:
        subject = classification.subject or {}
        assert classification.kind is not None
        for field_name in self.timestamp_fields(classification.kind):
            value = _text(subject.get(field_name))
            if value:
                return value

        # Feed envelope: when the action appeared in the activity feed
        value = _text((classification.envelope or {}).get("created_at"))
        if value:
            return value
        raise ValueError(f"No timestamp available for {classification.kind.value}")

    @staticmethod
    def _fallback_url(repository: RepositoryRef | None, segment: str, number: int) -> str:
        assert repository is not None and repository.url is not None
        return f"{repository.url}/{segment}/{number}"

    def _pull_request_payload(self, classification: Classification) -> PullRequestPayload:
        pull = classification.subject or {}
        assert classification.kind is not None
        state = PULL_REQUEST_STATES[classification.kind]
        number = pull.get("number")
        if not isinstance(number, int):
            raise ValueError("Pull request has no number")

        draft = pull.get("draft")
        review_state = None
        if draft is True:
            review_state = "draft"
        elif state == "open" and (
            pull.get("requested_reviewers") or pull.get("requested_teams")
        ):
            review_state = "pending_review"

        return PullRequestPayload(
            number=number,
            title=_text(pull.get("title")),
            body=_text(pull.get("body")),
            state=state,
            url=_absolute(pull.get("html_url"))
            or self._fallback_url(classification.repository, "pull", number),
            base_ref=_text((pull.get("base") or {}).get("ref")),
            head_ref=_text((pull.get("head") or {}).get("ref")),
            draft=draft if isinstance(draft, bool) else None,
            review_state=review_state,
        )

    def _issue_payload(self, classification: Classification) -> IssuePayload:
        issue = classification.subject or {}
        number = issue.get("number")
        if not isinstance(number, int):
            raise ValueError("Issue has no number")

        labels = None
        if isinstance(issue.get("labels"), list):
            labels = [
                label["name"] if isinstance(label, dict) else label
                for label in issue["labels"]
                if isinstance(label, str)
                or (isinstance(label, dict) and isinstance(label.get("name"), str))
            ]

        return IssuePayload(
            number=number,
            title=_text(issue.get("title")),
            body=_text(issue.get("body")),
            state="closed" if classification.kind is EventKind.ISSUE_CLOSED else "open",
            url=_absolute(issue.get("html_url"))
            or self._fallback_url(classification.repository, "issues", number),
            labels=labels,
        )

    def _review_payload(self, classification: Classification) -> ReviewPayload:
        review = classification.subject or {}
        pull = classification.parent or {}

        pr_number = pull.get("number")
        if not isinstance(pr_number, int):
            pr_number = _number_from_url(review.get("pull_request_url"))
        if pr_number is None:
            raise ValueError("Review has no pull request number")

        return ReviewPayload(
            review_id=classification.upstream_id,
            state=REVIEW_STATES[str(review.get("state")).upper()],
            body=_text(review.get("body")),
            url=_absolute(review.get("html_url")),
            pr_number=pr_number,
            pr_title=_text(pull.get("title")),
            pr_url=_absolute(pull.get("html_url"))
            or self._fallback_url(classification.repository, "pull", pr_number),
        )

    def _comment_payload(self, classification: Classification) -> CommentPayload:
        comment = classification.subject or {}
        parent = classification.parent or {}

        on_pull_request = (
            "pull_request" in parent
            or "pull_request_url" in comment
            or (classification.envelope or {}).get("type")
            == "PullRequestReviewCommentEvent"
        )
        number = parent.get("number")
        if not isinstance(number, int):
            number = _number_from_url(
                comment.get("issue_url"), comment.get("pull_request_url")
            )
        if number is None:
            raise ValueError("Comment has no parent number")

        return CommentPayload(
            comment_id=classification.upstream_id,
            body=comment.get("body") or "",
            url=_absolute(comment.get("html_url")),
            associated_with=AssociatedWith(
                type="pr" if on_pull_request else "issue",
                number=number,
                title=_text(parent.get("title")),
                url=_absolute(parent.get("html_url")),
            ),
        )
