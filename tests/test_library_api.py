"""Tests for the library API."""

from unittest.mock import patch

import httpx
import pytest

from contrib_activity.config import AggregationConfig
from contrib_activity.engine import LOGIN_UNAVAILABLE_MESSAGE
from contrib_activity.fetchers import AuthenticationError, FetcherError
from contrib_activity.github_client import GitHubClient
from contrib_activity.library import (
    ActivityAggregator,
    ConfigurationError,
    ContributorActivityError,
    NotAuthenticatedError,
    aggregate_activity,
)
from fixtures.github_responses import FakeGitHub, pull_request


def patched_client(fake):
    """Route every GitHubClient the library creates to ``fake``."""

    def factory(**kwargs):
        return GitHubClient(transport=httpx.MockTransport(fake.handler), **kwargs)

    return patch("contrib_activity.library.GitHubClient", side_effect=factory)


def quiet_config(**kwargs):
    return AggregationConfig(batch_delay=0, max_retries=0, **kwargs)


class TestActivityAggregator:
    """Test the ActivityAggregator class."""

    def test_empty_token_rejected(self):
        """Test that an empty token raises before any request."""
        with pytest.raises(NotAuthenticatedError):
            ActivityAggregator("")
        with pytest.raises(NotAuthenticatedError):
            ActivityAggregator("   ")

    def test_default_config(self):
        aggregator = ActivityAggregator(" token ")

        assert aggregator.token == "token"
        assert aggregator.config == AggregationConfig()
        assert aggregator.base_url == "https://api.github.com"

    def test_aggregate_returns_events(self):
        fake = FakeGitHub().add("/repos/o/r/pulls", [pull_request(1, 1, repo="o/r")])

        with patched_client(fake) as client_class:
            result = ActivityAggregator("token", quiet_config()).aggregate(
                ["o/r"], login="octocat"
            )

        assert result.authenticated is True
        assert [e.id for e in result.events] == ["pr-1"]
        kwargs = client_class.call_args.kwargs
        assert kwargs["token"] == "token"
        assert kwargs["max_retries"] == 0
        assert kwargs["timeout"] == 30.0
        assert kwargs["max_rate_limit_wait"] == 60.0

    def test_rejected_token_returns_unauthenticated_result(self):
        """A 401 becomes a result, not an exception."""
        fake = FakeGitHub().fail("/repos/o/r/pulls", status=401)

        with patched_client(fake):
            result = ActivityAggregator("token", quiet_config()).aggregate(
                ["o/r"], login="octocat"
            )

        assert result.authenticated is False
        assert result.events == []
        assert "401" in result.message

    def test_unavailable_login_lookup_returns_explanatory_result(self):
        """A 5xx from ``GET /user`` is reported in the result, not raised."""
        fake = FakeGitHub().fail("/user", status=503)

        with patched_client(fake):
            result = ActivityAggregator("token", quiet_config()).aggregate(["o/r"])

        assert result.authenticated is True
        assert result.events == []
        assert result.message == LOGIN_UNAVAILABLE_MESSAGE
        assert result.diagnostics.failed_requests == 1

    def test_malformed_repository_raises_configuration_error(self):
        with patched_client(FakeGitHub()):
            with pytest.raises(ConfigurationError, match="Invalid configuration"):
                ActivityAggregator("token", quiet_config()).aggregate(
                    ["missing-owner"], login="octocat"
                )

    def test_progress_callback_receives_events(self):
        events = []

        with patched_client(FakeGitHub()):
            ActivityAggregator("token", quiet_config()).aggregate(
                ["o/r"], login="octocat", progress_callback=events.append
            )

        assert events
        assert events[0].metadata == {"login": "octocat"}

    @pytest.mark.asyncio
    async def test_aggregate_async_raises_not_authenticated(self):
        fake = FakeGitHub().fail("/user", status=401)

        with patched_client(fake):
            with pytest.raises(NotAuthenticatedError):
                await ActivityAggregator("token", quiet_config()).aggregate_async(
                    ["o/r"]
                )


class TestExceptionMapping:
    """Test mapping of internal exceptions onto the public hierarchy."""

    def setup_method(self):
        self.aggregator = ActivityAggregator("token")

    def test_authentication_error(self):
        mapped = self.aggregator._map_internal_exception(AuthenticationError("nope"))
        assert isinstance(mapped, NotAuthenticatedError)

    def test_value_error(self):
        mapped = self.aggregator._map_internal_exception(ValueError("bad"))
        assert isinstance(mapped, ConfigurationError)

    def test_fetcher_error(self):
        mapped = self.aggregator._map_internal_exception(FetcherError("down"))
        assert type(mapped) is ContributorActivityError
        assert str(mapped) == "down"

    def test_unexpected_error(self):
        mapped = self.aggregator._map_internal_exception(RuntimeError("boom"))
        assert type(mapped) is ContributorActivityError
        assert "RuntimeError" in str(mapped)

    def test_library_errors_pass_through(self):
        error = ConfigurationError("already mapped")
        assert self.aggregator._map_internal_exception(error) is error


class TestAggregateActivity:
    """Test the one-off convenience function."""

    def test_invalid_config_value(self):
        with pytest.raises(ConfigurationError):
            aggregate_activity("token", ["o/r"], per_page=500)

    def test_unknown_timestamp_policy(self):
        with pytest.raises(ConfigurationError):
            aggregate_activity("token", ["o/r"], timestamp_policy="sometime")

    def test_passes_login_and_config(self):
        fake = FakeGitHub().add(
            "/repos/o/r/pulls", [pull_request(i, i, repo="o/r") for i in range(1, 4)]
        )

        with patched_client(fake):
            result = aggregate_activity(
                "token",
                ["o/r"],
                login="octocat",
                max_events=1,
                include_activity_feed=False,
                batch_delay=0,
                max_retries=0,
            )

        assert len(result.events) == 1
        assert result.total == 3
        assert "/user" not in fake.paths()
        assert not any(path.startswith("/users/") for path in fake.paths())
