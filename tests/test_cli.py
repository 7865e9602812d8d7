"""CLI tests: mock at the library boundary, test CLI behavior."""

import json
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from contrib_activity.cli import _describe, app
from contrib_activity.models import (
    AggregationResult,
    AssociatedWith,
    CommentPayload,
    PullRequestPayload,
    ReviewPayload,
)

runner = CliRunner()


@pytest.fixture(autouse=True)
def temp_home():
    """Keep the settings file out of the real home directory."""
    with (
        tempfile.TemporaryDirectory() as temp_dir,
        patch("contrib_activity.config.Path.home", return_value=Path(temp_dir)),
    ):
        yield Path(temp_dir)


@pytest.fixture
def mock_aggregator():
    with patch("contrib_activity.cli.ActivityAggregator") as aggregator_class:
        aggregator_class.return_value.aggregate.return_value = AggregationResult(
            login="octocat", message="No activity found for the selected repositories"
        )
        yield aggregator_class


def test_version():
    """Test the version command works."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "contrib-activity" in result.stdout


def test_auth_status():
    """Test auth-status command works."""
    result = runner.invoke(app, ["auth-status"])
    assert result.exit_code == 0
    assert "Authentication Status" in result.stdout


def test_auth_remove_without_token():
    result = runner.invoke(app, ["auth-remove"])
    assert result.exit_code == 0
    assert "No token is currently stored" in result.stdout


def test_activity_invokes_aggregator(mock_aggregator):
    """Test that CLI passes repositories, login and settings to the library."""
    result = runner.invoke(
        app,
        [
            "activity",
            "--repo",
            "octocat/hello-world",
            "-r",
            "octocat/spoon-knife",
            "--login",
            "octocat",
            "--token",
            "fake_token",
            "--max-parents",
            "10",
            "--timestamp-policy",
            "updated",
        ],
    )

    assert result.exit_code == 0
    token, config = mock_aggregator.call_args[0]
    assert token == "fake_token"
    assert config.max_parent_records == 10
    assert config.timestamp_policy.value == "updated"

    repos, login, _ = mock_aggregator.return_value.aggregate.call_args[0]
    assert repos == ["octocat/hello-world", "octocat/spoon-knife"]
    assert login == "octocat"
    assert "Aggregation Complete" in result.stdout


def test_activity_uses_stored_default_login(mock_aggregator, temp_home):
    settings_dir = temp_home / ".contrib-activity"
    settings_dir.mkdir()
    (settings_dir / "config.json").write_text(
        json.dumps({"github_token": "stored_token", "login": "stored-login"})
    )

    result = runner.invoke(app, ["activity", "-r", "o/r"], env={"GITHUB_TOKEN": ""})

    assert result.exit_code == 0
    assert mock_aggregator.call_args[0][0] == "stored_token"
    assert mock_aggregator.return_value.aggregate.call_args[0][1] == "stored-login"


def test_activity_writes_json_output(mock_aggregator, temp_home):
    output = temp_home / "out" / "activity.json"

    result = runner.invoke(
        app, ["activity", "-r", "o/r", "--token", "fake_token", "-o", str(output)]
    )

    assert result.exit_code == 0
    assert "events saved to" in result.stdout
    data = json.loads(output.read_text())
    assert data["login"] == "octocat"
    assert data["events"] == []


def test_activity_not_authenticated(mock_aggregator):
    mock_aggregator.return_value.aggregate.return_value = (
        AggregationResult.not_authenticated("GitHub authentication failed (HTTP 401)")
    )

    result = runner.invoke(app, ["activity", "-r", "o/r", "--token", "bad"])

    assert result.exit_code == 1
    assert "Not authenticated" in result.stdout


def test_activity_rejects_malformed_repository(mock_aggregator):
    result = runner.invoke(app, ["activity", "-r", "no-slash", "--token", "t"])

    assert result.exit_code == 2
    mock_aggregator.assert_not_called()


def test_activity_rejects_unknown_timestamp_policy(mock_aggregator):
    result = runner.invoke(
        app, ["activity", "-r", "o/r", "--token", "t", "--timestamp-policy", "soon"]
    )

    assert result.exit_code == 2
    mock_aggregator.assert_not_called()


def test_activity_needs_something_to_aggregate(mock_aggregator):
    result = runner.invoke(app, ["activity", "--token", "t", "--no-activity-feed"])

    assert result.exit_code == 1
    mock_aggregator.assert_not_called()


def test_describe_payloads():
    pr = PullRequestPayload(
        number=3, title="Fix bug", state="open", url="https://github.com/o/r/pull/3"
    )
    review = ReviewPayload(review_id=1, state="approved", pr_number=3)
    comment = CommentPayload(
        comment_id=2, associated_with=AssociatedWith(type="pr", number=3)
    )

    assert _describe(pr) == "PR #3 Fix bug"
    assert _describe(review) == "approved on PR #3"
    assert _describe(comment) == "comment on PR #3"
