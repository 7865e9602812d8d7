"""Classification of raw GitHub records into event kinds.

The classifier decides, for one raw record, which event kind it describes,
whether it belongs to the login being aggregated, and which repository it
lives in. It never raises for malformed input; unusable records come back
with a ``SKIPPED`` verdict.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import ValidationError

from contrib_activity.models import (
    EventKind,
    EventSource,
    RawRecord,
    RecordSource,
    RepositoryRef,
)

logger = logging.getLogger(__name__)

# https://api.github.com/repos/{owner}/{repo}/...
API_URL_PATTERN = re.compile(r"^https?://[^/]+/repos/([^/]+/[^/]+?)(?:/|$)")
# https://github.com/{owner}/{repo}/pull/12, .../issues/7#issuecomment-1
HTML_URL_PATTERN = re.compile(r"^https?://[^/]+/([^/]+/[^/]+)/(?:pull|issues)/\d+")

URL_FIELDS = ("html_url", "repository_url", "url", "pull_request_url", "issue_url")

REVIEW_STATES = {
    "APPROVED": "approved",
    "CHANGES_REQUESTED": "changes_requested",
    "COMMENTED": "commented",
}

# Feed actions that describe a newly created review or comment
CREATED_ACTIONS = frozenset({"created"})


class Verdict(Enum):
    """Outcome of classifying one raw record."""

    INCLUDE = "include"
    IRRELEVANT = "irrelevant"  # Someone else's activity
    SKIPPED = "skipped"  # No repository identity or unusable shape
    UNSUPPORTED = "unsupported"  # Feed entry type outside the tracked kinds


@dataclass(frozen=True)
class Classification:
    """Classifier decision for one raw record.

    For included records every field except ``parent``, ``envelope`` and
    ``action`` is populated. ``subject`` is the pull request, issue, review or
    comment object itself, wherever it sat in the raw record.
    """

    verdict: Verdict
    record: RawRecord
    kind: EventKind | None = None
    upstream_id: int | None = None
    subject: dict[str, Any] | None = None
    parent: dict[str, Any] | None = None
    envelope: dict[str, Any] | None = None
    action: str | None = None
    actor: dict[str, Any] | None = None
    repository: RepositoryRef | None = None
    reason: str | None = None

    @property
    def included(self) -> bool:
        return self.verdict is Verdict.INCLUDE

    @property
    def source(self) -> EventSource:
        if self.record.source is RecordSource.ACTIVITY:
            return EventSource.ACTIVITY
        return EventSource.REPOSITORY


@dataclass(frozen=True)
class _Shape:
    """Where the interesting parts of a raw record live."""

    family: str
    subject: dict[str, Any] | None
    parent: dict[str, Any] | None = None
    envelope: dict[str, Any] | None = None
    action: str | None = None


def _as_dict(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def _login_of(user: Any) -> str | None:
    user = _as_dict(user)
    if user is None:
        return None
    login = user.get("login")
    return login if isinstance(login, str) and login else None


# Repository extraction strategies. Each looks at one place a repository
# may be named and returns RepositoryRef fields, or None.

RepositoryStrategy = Callable[["_Shape", RawRecord], dict[str, Any] | None]


def _from_repository_object(repo: Any) -> dict[str, Any] | None:
    repo = _as_dict(repo)
    if repo is None or not repo.get("full_name"):
        return None
    return {
        "id": repo.get("id"),
        "name": repo.get("name"),
        "full_name": repo["full_name"],
        "owner_login": _login_of(repo.get("owner")),
        "url": repo.get("html_url"),
        "language": repo.get("language"),
    }


def _from_object(obj: dict[str, Any] | None) -> dict[str, Any] | None:
    if obj is None:
        return None
    return _from_repository_object(obj.get("repository")) or _from_repository_object(
        (_as_dict(obj.get("base")) or {}).get("repo")
    )


def _from_urls(obj: dict[str, Any] | None) -> dict[str, Any] | None:
    if obj is None:
        return None
    for field_name in URL_FIELDS:
        url = obj.get(field_name)
        if not isinstance(url, str):
            continue
        for pattern in (API_URL_PATTERN, HTML_URL_PATTERN):
            match = pattern.match(url)
            if match:
                return {"full_name": match.group(1)}
    return None


def subject_repository(shape: _Shape, record: RawRecord) -> dict[str, Any] | None:
    """Repository object carried by the record itself."""
    return _from_object(shape.subject)


def feed_repository(shape: _Shape, record: RawRecord) -> dict[str, Any] | None:
    """``repo`` block of an activity feed entry (``name`` is ``owner/repo``)."""
    repo = _as_dict((shape.envelope or {}).get("repo"))
    if repo is None or not repo.get("name"):
        return None
    return {"id": repo.get("id"), "full_name": repo["name"]}


def queried_repository(shape: _Shape, record: RawRecord) -> dict[str, Any] | None:
    """Repository the fetcher was asked about."""
    if not record.repository:
        return None
    return {"full_name": record.repository}


def subject_urls(shape: _Shape, record: RawRecord) -> dict[str, Any] | None:
    """Repository parsed from one of the record's URL fields."""
    return _from_urls(shape.subject)


def parent_repository(shape: _Shape, record: RawRecord) -> dict[str, Any] | None:
    """Repository of the pull request or issue the record belongs to."""
    return _from_object(shape.parent) or _from_urls(shape.parent)


DEFAULT_REPOSITORY_STRATEGIES: tuple[RepositoryStrategy, ...] = (
    subject_repository,
    feed_repository,
    queried_repository,
    subject_urls,
    parent_repository,
)


class RecordClassifier:
    """Classify raw records relative to one login."""

    def __init__(
        self,
        login: str,
        repository_strategies: tuple[RepositoryStrategy, ...] = (
            DEFAULT_REPOSITORY_STRATEGIES
        ),
    ) -> None:
        """Initialize the classifier.

        Args:
            login: Login whose activity is being aggregated (case-insensitive)
            repository_strategies: Repository extraction strategies, tried in order
        """
        self.login = login
        self._login_key = login.casefold()
        self.repository_strategies = repository_strategies

    def classify(self, record: RawRecord) -> Classification:
        """Classify a single raw record. Pure: the same record always yields
        the same classification."""
        shape = self._shape(record)
        if shape is None:
            return self._reject(record, Verdict.UNSUPPORTED, "untracked feed entry")
        if shape.subject is None:
            return self._reject(record, Verdict.SKIPPED, "record has no subject")

        subject = shape.subject
        upstream_id = subject.get("id")
        if not isinstance(upstream_id, int) or isinstance(upstream_id, bool):
            return self._reject(record, Verdict.SKIPPED, "record has no numeric id")

        if shape.family == "issue" and "pull_request" in subject:
            return self._reject(
                record, Verdict.IRRELEVANT, "pull request listed as an issue"
            )

        actor = self._actor(shape)
        actor_login = _login_of(actor)
        if actor_login is None:
            return self._reject(record, Verdict.SKIPPED, "record has no author")
        if actor_login.casefold() != self._login_key:
            return self._reject(record, Verdict.IRRELEVANT, f"authored by {actor_login}")

        kind = self._kind(shape)
        if kind is None:
            return self._reject(record, Verdict.SKIPPED, "unrecognized review state")

        repository = self._repository(shape, record)
        if repository is None:
            return self._reject(record, Verdict.SKIPPED, "no repository identity")

        return Classification(
            verdict=Verdict.INCLUDE,
            record=record,
            kind=kind,
            upstream_id=upstream_id,
            subject=subject,
            parent=shape.parent,
            envelope=shape.envelope,
            action=shape.action,
            actor=actor,
            repository=repository,
        )

    def _reject(
        self, record: RawRecord, verdict: Verdict, reason: str
    ) -> Classification:
        logger.debug(f"{verdict.value} {record.source.value} record: {reason}")
        return Classification(verdict=verdict, record=record, reason=reason)

    def _shape(self, record: RawRecord) -> _Shape | None:
        """Locate subject/parent/envelope; None for untracked feed entries."""
        data = record.data
        if record.source is RecordSource.PULL_REQUEST:
            return _Shape("pr", data)
        if record.source is RecordSource.ISSUE:
            return _Shape("issue", data)
        if record.source is RecordSource.REVIEW:
            return _Shape("review", data, parent=record.parent)
        if record.source is RecordSource.COMMENT:
            return _Shape("comment", data, parent=record.parent)
        return self._feed_shape(data)

    @staticmethod
    def _feed_shape(entry: dict[str, Any]) -> _Shape | None:
        payload = _as_dict(entry.get("payload")) or {}
        action = payload.get("action")
        action = action if isinstance(action, str) else None
        entry_type = entry.get("type")

        if entry_type == "PullRequestEvent":
            return _Shape(
                "pr", _as_dict(payload.get("pull_request")), envelope=entry, action=action
            )
        if entry_type == "IssuesEvent":
            return _Shape(
                "issue", _as_dict(payload.get("issue")), envelope=entry, action=action
            )
        if entry_type == "PullRequestReviewEvent":
            if action not in CREATED_ACTIONS:
                return None
            return _Shape(
                "review",
                _as_dict(payload.get("review")),
                parent=_as_dict(payload.get("pull_request")),
                envelope=entry,
                action=action,
            )
        if entry_type == "IssueCommentEvent":
            if action not in CREATED_ACTIONS:
                return None
            return _Shape(
                "comment",
                _as_dict(payload.get("comment")),
                parent=_as_dict(payload.get("issue")),
                envelope=entry,
                action=action,
            )
        if entry_type == "PullRequestReviewCommentEvent":
            if action not in CREATED_ACTIONS:
                return None
            return _Shape(
                "comment",
                _as_dict(payload.get("comment")),
                parent=_as_dict(payload.get("pull_request")),
                envelope=entry,
                action=action,
            )
        return None

    @staticmethod
    def _actor(shape: _Shape) -> dict[str, Any] | None:
        """The user the relevance rule is checked against.

        Pull requests without an explicit author fall back to the feed's
        actor; every other family requires its own author field.
        """
        user = _as_dict((shape.subject or {}).get("user"))
        if _login_of(user) is not None:
            return user
        if shape.family == "pr" and shape.envelope is not None:
            return _as_dict(shape.envelope.get("actor"))
        return None

    @staticmethod
    def _kind(shape: _Shape) -> EventKind | None:
        subject = shape.subject or {}
        state = subject.get("state")

        if shape.family == "pr":
            if subject.get("merged_at") or subject.get("merged") is True:
                return EventKind.PR_MERGED
            if state == "closed" or (state is None and shape.action == "closed"):
                return EventKind.PR_CLOSED
            return EventKind.PR_OPENED

        if shape.family == "issue":
            if state == "closed" or (state is None and shape.action == "closed"):
                return EventKind.ISSUE_CLOSED
            return EventKind.ISSUE_OPENED

        if shape.family == "review":
            if str(state).upper() not in REVIEW_STATES:
                return None
            return EventKind.REVIEW_SUBMITTED

        return EventKind.COMMENT_CREATED

    def _repository(self, shape: _Shape, record: RawRecord) -> RepositoryRef | None:
        for strategy in self.repository_strategies:
            fields = strategy(shape, record)
            if fields is None:
                continue
            try:
                return RepositoryRef(**fields)
            except ValidationError as e:
                logger.debug(f"Ignoring repository from {strategy.__name__}: {e}")
        return None
