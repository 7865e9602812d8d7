"""Pydantic models for normalized contributor activity events."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)


class EventKind(str, Enum):
    """Kinds of normalized activity events."""

    PR_OPENED = "pr_opened"
    PR_CLOSED = "pr_closed"
    PR_MERGED = "pr_merged"
    ISSUE_OPENED = "issue_opened"
    ISSUE_CLOSED = "issue_closed"
    REVIEW_SUBMITTED = "review_submitted"
    COMMENT_CREATED = "comment_created"

    @property
    def family(self) -> str:
        """Record family shared by every kind describing the same upstream object."""
        return _KIND_FAMILIES[self]


_KIND_FAMILIES = {
    EventKind.PR_OPENED: "pr",
    EventKind.PR_CLOSED: "pr",
    EventKind.PR_MERGED: "pr",
    EventKind.ISSUE_OPENED: "issue",
    EventKind.ISSUE_CLOSED: "issue",
    EventKind.REVIEW_SUBMITTED: "review",
    EventKind.COMMENT_CREATED: "comment",
}

PULL_REQUEST_KINDS = frozenset(
    {EventKind.PR_OPENED, EventKind.PR_CLOSED, EventKind.PR_MERGED}
)
ISSUE_KINDS = frozenset({EventKind.ISSUE_OPENED, EventKind.ISSUE_CLOSED})

# Payload state each PR/issue kind must carry
_KIND_STATES = {
    EventKind.PR_OPENED: "open",
    EventKind.PR_CLOSED: "closed",
    EventKind.PR_MERGED: "merged",
    EventKind.ISSUE_OPENED: "open",
    EventKind.ISSUE_CLOSED: "closed",
}

# Position of each PR/issue kind along its lifecycle; later steps supersede
LIFECYCLE_RANKS = {
    EventKind.PR_OPENED: 0,
    EventKind.PR_CLOSED: 1,
    EventKind.PR_MERGED: 2,
    EventKind.ISSUE_OPENED: 0,
    EventKind.ISSUE_CLOSED: 1,
}

# Payload fields derived from the object's state rather than observed data
_DERIVED_FIELDS = frozenset({"draft", "review_state"})


class EventSource(str, Enum):
    """Which fetcher family observed an event."""

    REPOSITORY = "repository"  # Per-repository REST endpoints
    ACTIVITY = "activity"  # Account activity feed


class RecordSource(str, Enum):
    """Upstream endpoint family a raw record was fetched from."""

    PULL_REQUEST = "pull_request"
    ISSUE = "issue"
    REVIEW = "review"
    COMMENT = "comment"
    ACTIVITY = "activity"


def _require_absolute_url(value: str) -> str:
    if not value.startswith(("https://", "http://")):
        raise ValueError(f"URL must be fully qualified: {value}")
    return value


AbsoluteUrl = Annotated[str, AfterValidator(_require_absolute_url)]


class RawRecord(BaseModel):
    """An upstream payload before classification.

    ``parent`` carries the pull request or issue a review/comment was listed
    from, and ``repository`` the ``owner/repo`` the fetcher queried (if any).
    """

    source: RecordSource
    data: dict[str, Any]
    parent: dict[str, Any] | None = None
    repository: str | None = None


class RepositoryRef(BaseModel):
    """Repository an event belongs to."""

    id: int | None = None
    name: str | None = None
    full_name: str
    owner_login: str | None = None
    url: AbsoluteUrl | None = None
    language: str | None = None

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, v: str) -> str:
        """Validate full_name is a non-empty ``owner/repo`` pair."""
        owner, _, name = v.strip().partition("/")
        if not owner or not name or "/" in name:
            raise ValueError(f"Repository full_name must be 'owner/repo', got: {v!r}")
        return v.strip()

    @model_validator(mode="after")
    def fill_from_full_name(self) -> RepositoryRef:
        """Derive name, owner and URL from full_name when upstream omitted them."""
        owner, name = self.full_name.split("/")
        if self.name is None:
            self.name = name
        if self.owner_login is None:
            self.owner_login = owner
        if self.url is None:
            self.url = f"https://github.com/{self.full_name}"
        return self


class ActorRef(BaseModel):
    """User associated with an event."""

    login: str
    avatar_url: AbsoluteUrl | None = None


class PullRequestPayload(BaseModel):
    """Pull request fields of a ``pr_*`` event."""

    type: Literal["pull_request"] = "pull_request"
    number: int
    title: str | None = None
    body: str | None = None
    state: Literal["open", "closed", "merged"]
    url: AbsoluteUrl
    base_ref: str | None = None
    head_ref: str | None = None
    draft: bool | None = None
    review_state: Literal["draft", "pending_review"] | None = None


class IssuePayload(BaseModel):
    """Issue fields of an ``issue_*`` event."""

    type: Literal["issue"] = "issue"
    number: int
    title: str | None = None
    body: str | None = None
    state: Literal["open", "closed"]
    url: AbsoluteUrl
    labels: list[str] | None = None


class ReviewPayload(BaseModel):
    """Review fields of a ``review_submitted`` event."""

    type: Literal["review"] = "review"
    review_id: int
    state: Literal["approved", "changes_requested", "commented"]
    body: str | None = None
    url: AbsoluteUrl | None = None
    pr_number: int
    pr_title: str | None = None
    pr_url: AbsoluteUrl | None = None


class AssociatedWith(BaseModel):
    """Pull request or issue a comment was posted on."""

    type: Literal["pr", "issue"]
    number: int
    title: str | None = None
    url: AbsoluteUrl | None = None


class CommentPayload(BaseModel):
    """Comment fields of a ``comment_created`` event."""

    type: Literal["comment"] = "comment"
    comment_id: int
    body: str = ""
    url: AbsoluteUrl | None = None
    associated_with: AssociatedWith


EventPayload = Annotated[
    PullRequestPayload | IssuePayload | ReviewPayload | CommentPayload,
    Field(discriminator="type"),
]

_KIND_PAYLOADS: dict[EventKind, type[BaseModel]] = {
    EventKind.PR_OPENED: PullRequestPayload,
    EventKind.PR_CLOSED: PullRequestPayload,
    EventKind.PR_MERGED: PullRequestPayload,
    EventKind.ISSUE_OPENED: IssuePayload,
    EventKind.ISSUE_CLOSED: IssuePayload,
    EventKind.REVIEW_SUBMITTED: ReviewPayload,
    EventKind.COMMENT_CREATED: CommentPayload,
}


class Event(BaseModel):
    """Canonical normalized record of one user action."""

    id: str
    kind: EventKind
    timestamp: datetime
    repository: RepositoryRef
    actor: ActorRef
    payload: EventPayload
    source: EventSource = EventSource.REPOSITORY

    @field_validator("timestamp")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC so events always compare."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @model_validator(mode="after")
    def check_payload_matches_kind(self) -> Event:
        """Ensure the payload variant and its state agree with the kind."""
        expected = _KIND_PAYLOADS[self.kind]
        if not isinstance(self.payload, expected):
            raise ValueError(
                f"{self.kind.value} events require a {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )
        state = _KIND_STATES.get(self.kind)
        actual = getattr(self.payload, "state", None)
        if state is not None and actual != state:
            raise ValueError(
                f"{self.kind.value} events require state={state!r}, got {actual!r}"
            )
        return self

    @staticmethod
    def make_id(kind: EventKind, upstream_id: int) -> str:
        """Build the deterministic event id for an upstream record."""
        return f"{kind.family}-{upstream_id}"

    def completeness(self) -> int:
        """Number of non-null payload fields, used to pick between duplicates.

        ``draft`` and ``review_state`` only exist while a pull request is
        open, so they are left out to keep a stale open snapshot from
        outscoring its merged or closed counterpart.
        """
        return sum(
            1
            for name, value in self.payload.model_dump().items()
            if name not in _DERIVED_FIELDS and value is not None and value != []
        )


class RunDiagnostics(BaseModel):
    """Counters collected over one aggregation run."""

    processed: int = 0  # Raw records that reached the classifier
    skipped: int = 0  # Missing repository identity or unusable shape
    irrelevant: int = 0  # Not the authenticated user's activity
    unsupported: int = 0  # Activity feed entries outside the tracked kinds
    duplicates: int = 0  # Events merged into another representation
    failed_requests: int = 0
    failed_repositories: list[str] = Field(default_factory=list)


class ActivitySummary(BaseModel):
    """Headline statistics over an event list."""

    total_events: int
    by_kind: dict[str, int]
    open_pull_requests: int
    open_issues: int
    reviews: int
    comments: int
    repositories_active: int
    most_active_repository: str | None = None


class AggregationResult(BaseModel):
    """Output of one aggregation run."""

    login: str | None = None
    authenticated: bool = True
    events: list[Event] = Field(default_factory=list)
    total: int = 0
    message: str | None = None
    diagnostics: RunDiagnostics = Field(default_factory=RunDiagnostics)
    summary: ActivitySummary | None = None

    @classmethod
    def not_authenticated(cls, message: str) -> AggregationResult:
        """Result for a run whose credential was rejected."""
        return cls(authenticated=False, message=message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    def to_json(self, **kwargs: Any) -> str:
        """Serialize the result, keeping every documented event field."""
        return json.dumps(self.to_dict(), indent=2, **kwargs)
