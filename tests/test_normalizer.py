"""Tests for event normalization."""

from datetime import UTC, datetime

import pytest

from contrib_activity.classifier import RecordClassifier
from contrib_activity.config import TimestampPolicy
from contrib_activity.models import (
    CommentPayload,
    EventKind,
    EventSource,
    IssuePayload,
    PullRequestPayload,
    RawRecord,
    RecordSource,
    ReviewPayload,
)
from contrib_activity.normalizer import EventNormalizer
from fixtures.github_responses import (
    comment,
    feed_entry,
    issue,
    pull_request,
    review,
)

REPO = "octocat/hello-world"

classifier = RecordClassifier("octocat")


def classify(source, data, parent=None, repository=REPO):
    return classifier.classify(
        RawRecord(source=source, data=data, parent=parent, repository=repository)
    )


def merged_pull_request(**kwargs):
    return pull_request(
        10,
        1,
        state="closed",
        created_at="2024-01-01T10:00:00Z",
        updated_at="2024-01-09T10:00:00Z",
        closed_at="2024-01-05T10:00:00Z",
        merged_at="2024-01-05T10:00:00Z",
        **kwargs,
    )


class TestTimestampPolicy:
    """Test which upstream field becomes an event's timestamp."""

    def test_lifecycle_uses_the_matching_field(self):
        event = EventNormalizer().normalize(
            classify(RecordSource.PULL_REQUEST, merged_pull_request())
        )

        assert event.kind is EventKind.PR_MERGED
        assert event.timestamp == datetime(2024, 1, 5, 10, tzinfo=UTC)

    def test_lifecycle_opened_uses_created_at(self):
        event = EventNormalizer().normalize(
            classify(RecordSource.PULL_REQUEST, pull_request(10, 1))
        )
        assert event.timestamp == datetime(2024, 1, 1, 10, tzinfo=UTC)

    def test_lifecycle_falls_back_to_updated_at(self):
        data = pull_request(10, 1, state="closed", closed_at=None)
        event = EventNormalizer().normalize(classify(RecordSource.PULL_REQUEST, data))

        assert event.kind is EventKind.PR_CLOSED
        assert event.timestamp == datetime(2024, 1, 2, 10, tzinfo=UTC)

    def test_updated_policy(self):
        normalizer = EventNormalizer(TimestampPolicy.UPDATED)
        event = normalizer.normalize(
            classify(RecordSource.PULL_REQUEST, merged_pull_request())
        )
        assert event.timestamp == datetime(2024, 1, 9, 10, tzinfo=UTC)

    def test_created_policy(self):
        normalizer = EventNormalizer(TimestampPolicy.CREATED)
        event = normalizer.normalize(
            classify(RecordSource.PULL_REQUEST, merged_pull_request())
        )
        assert event.timestamp == datetime(2024, 1, 1, 10, tzinfo=UTC)

    @pytest.mark.parametrize("policy", list(TimestampPolicy))
    def test_reviews_always_use_submission_time(self, policy):
        record = classify(RecordSource.REVIEW, review(100, 1), parent=pull_request(10, 1))
        event = EventNormalizer(policy).normalize(record)

        assert event.timestamp == datetime(2024, 1, 3, 12, tzinfo=UTC)

    def test_feed_envelope_time_is_last_resort(self):
        entry = feed_entry(
            "1",
            "PullRequestEvent",
            {"action": "opened", "pull_request": {"id": 10, "number": 1}},
            created_at="2024-02-01T00:00:00Z",
        )
        record = classifier.classify(RawRecord(source=RecordSource.ACTIVITY, data=entry))
        event = EventNormalizer().normalize(record)

        assert event.timestamp == datetime(2024, 2, 1, tzinfo=UTC)
        assert event.source is EventSource.ACTIVITY

    def test_missing_timestamp_raises(self):
        data = pull_request(10, 1)
        data["created_at"] = None
        data["updated_at"] = None

        with pytest.raises(ValueError, match="No timestamp"):
            EventNormalizer().normalize(classify(RecordSource.PULL_REQUEST, data))

    def test_excluded_classification_raises(self):
        record = classify(RecordSource.PULL_REQUEST, pull_request(10, 1, login="other"))

        with pytest.raises(ValueError, match="Cannot normalize"):
            EventNormalizer().normalize(record)


class TestPullRequestPayload:
    """Test pull request normalization."""

    def test_fields(self):
        event = EventNormalizer().normalize(
            classify(RecordSource.PULL_REQUEST, merged_pull_request())
        )

        assert event.id == "pr-10"
        assert isinstance(event.payload, PullRequestPayload)
        assert event.payload.state == "merged"
        assert event.payload.number == 1
        assert event.payload.base_ref == "main"
        assert event.payload.head_ref == "feature"
        assert event.payload.url == f"https://github.com/{REPO}/pull/1"
        assert event.actor.login == "octocat"
        assert event.repository.full_name == REPO

    def test_draft_review_state(self):
        data = pull_request(10, 1, draft=True)
        event = EventNormalizer().normalize(classify(RecordSource.PULL_REQUEST, data))

        assert event.payload.draft is True
        assert event.payload.review_state == "draft"

    def test_pending_review_state(self):
        data = pull_request(10, 1, requested_reviewers=[{"login": "reviewer"}])
        event = EventNormalizer().normalize(classify(RecordSource.PULL_REQUEST, data))

        assert event.payload.review_state == "pending_review"

    def test_no_review_state_once_closed(self):
        data = pull_request(
            10,
            1,
            state="closed",
            closed_at="2024-01-03T00:00:00Z",
            requested_teams=[{"slug": "core"}],
        )
        event = EventNormalizer().normalize(classify(RecordSource.PULL_REQUEST, data))

        assert event.payload.review_state is None

    def test_missing_html_url_is_derived(self):
        data = pull_request(10, 7)
        del data["html_url"]
        event = EventNormalizer().normalize(classify(RecordSource.PULL_REQUEST, data))

        assert event.payload.url == f"https://github.com/{REPO}/pull/7"


class TestIssuePayload:
    """Test issue normalization."""

    def test_fields(self):
        data = issue(5, 7, state="closed", closed_at="2024-01-06T00:00:00Z")
        event = EventNormalizer().normalize(classify(RecordSource.ISSUE, data))

        assert event.id == "issue-5"
        assert event.kind is EventKind.ISSUE_CLOSED
        assert isinstance(event.payload, IssuePayload)
        assert event.payload.state == "closed"
        assert event.payload.labels == ["bug"]
        assert event.payload.body is None
        assert event.timestamp == datetime(2024, 1, 6, tzinfo=UTC)

    def test_string_labels_are_kept(self):
        data = issue(5, 7, labels=["help wanted", {"name": "docs"}, {"color": "f00"}])
        event = EventNormalizer().normalize(classify(RecordSource.ISSUE, data))

        assert event.payload.labels == ["help wanted", "docs"]


class TestReviewAndCommentPayloads:
    """Test review and comment normalization."""

    def test_review_fields(self):
        parent = pull_request(10, 1, login="someone-else", title="Parent PR")
        event = EventNormalizer().normalize(
            classify(RecordSource.REVIEW, review(100, 1, state="CHANGES_REQUESTED"), parent)
        )

        assert event.id == "review-100"
        assert isinstance(event.payload, ReviewPayload)
        assert event.payload.state == "changes_requested"
        assert event.payload.pr_number == 1
        assert event.payload.pr_title == "Parent PR"
        assert event.payload.pr_url == f"https://github.com/{REPO}/pull/1"

    def test_review_number_from_url_without_parent(self):
        event = EventNormalizer().normalize(classify(RecordSource.REVIEW, review(100, 42)))

        assert event.payload.pr_number == 42
        assert event.payload.pr_title is None

    def test_comment_on_issue(self):
        parent = issue(5, 7, login="someone-else", title="Crash on start")
        event = EventNormalizer().normalize(
            classify(RecordSource.COMMENT, comment(900, 7, body="Same here"), parent)
        )

        assert event.id == "comment-900"
        assert isinstance(event.payload, CommentPayload)
        assert event.payload.body == "Same here"
        assert event.payload.associated_with.type == "issue"
        assert event.payload.associated_with.number == 7
        assert event.payload.associated_with.title == "Crash on start"

    def test_comment_on_pull_request(self):
        parent = issue(5, 7, login="someone-else", is_pull_request=True)
        event = EventNormalizer().normalize(
            classify(RecordSource.COMMENT, comment(900, 7), parent)
        )

        assert event.payload.associated_with.type == "pr"
        assert event.payload.associated_with.url == f"https://github.com/{REPO}/pull/7"

    def test_comment_number_from_issue_url(self):
        event = EventNormalizer().normalize(
            classify(RecordSource.COMMENT, comment(900, 12))
        )

        assert event.payload.associated_with.number == 12
        assert event.payload.associated_with.type == "issue"
