"""Library API for contrib-activity.

This module provides the synchronous entry points for projects that want to
use contrib-activity as a library rather than a CLI tool.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from contrib_activity.config import AggregationConfig
from contrib_activity.engine import ActivityEngine
from contrib_activity.fetchers import AuthenticationError, FetcherError
from contrib_activity.github_client import DEFAULT_BASE_URL, GitHubClient
from contrib_activity.models import AggregationResult
from contrib_activity.progress import ProgressCallback

logger = logging.getLogger(__name__)


# Exception hierarchy for clear error handling
class ContributorActivityError(Exception):
    """Base exception for contributor activity aggregation errors."""


class NotAuthenticatedError(ContributorActivityError):
    """Raised when GitHub rejects the access token."""


class ConfigurationError(ContributorActivityError):
    """Raised when aggregation configuration or input is invalid."""


class ActivityAggregator:
    """Main entry point for aggregating a user's GitHub activity.

    Example:
        >>> aggregator = ActivityAggregator(token)
        >>> result = aggregator.aggregate(["octocat/hello-world"])
        >>> for event in result.events:
        ...     print(event.kind.value, event.repository.full_name)
    """

    def __init__(
        self,
        token: str,
        config: AggregationConfig | None = None,
        base_url: str = DEFAULT_BASE_URL,
    ) -> None:
        """Initialize aggregator with a GitHub token.

        Args:
            token: GitHub access token
            config: Run settings (uses defaults if None)
            base_url: GitHub API base URL

        Raises:
            NotAuthenticatedError: If the token is empty
        """
        if not token or not token.strip():
            raise NotAuthenticatedError("GitHub token cannot be empty")

        self.token = token.strip()
        self.config = config or AggregationConfig()
        self.base_url = base_url

    def aggregate(
        self,
        repositories: list[str],
        login: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> AggregationResult:
        """Aggregate activity across repositories.

        A rejected token does not raise; the returned result has
        ``authenticated=False`` and an explanatory ``message``.

        Args:
            repositories: ``owner/repo`` names to aggregate over
            login: Login whose activity is collected (resolved from the token if None)
            progress_callback: Optional callback receiving progress events

        Returns:
            Ordered, de-duplicated events with diagnostics

        Raises:
            ConfigurationError: If a repository name is malformed
            ContributorActivityError: If the run fails for another reason
        """
        try:
            return asyncio.run(
                self.aggregate_async(repositories, login, progress_callback)
            )
        except NotAuthenticatedError as e:
            logger.error(f"Aggregation aborted: {e}")
            return AggregationResult.not_authenticated(str(e))

    async def aggregate_async(
        self,
        repositories: list[str],
        login: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> AggregationResult:
        """Async variant of ``aggregate`` for callers already in an event loop.

        Raises:
            NotAuthenticatedError: If GitHub rejects the token
            ConfigurationError: If a repository name is malformed
            ContributorActivityError: If the run fails for another reason
        """
        try:
            async with GitHubClient(
                token=self.token,
                base_url=self.base_url,
                timeout=self.config.request_timeout,
                max_retries=self.config.max_retries,
                max_rate_limit_wait=self.config.max_rate_limit_wait,
            ) as client:
                engine = ActivityEngine(client, self.config, progress_callback)
                return await engine.run(repositories, login)
        except Exception as e:
            raise self._map_internal_exception(e) from e

    def _map_internal_exception(self, e: Exception) -> ContributorActivityError:
        """Map internal exceptions to library exceptions."""
        if isinstance(e, ContributorActivityError):
            return e
        if isinstance(e, AuthenticationError):
            return NotAuthenticatedError(str(e))
        if isinstance(e, ValidationError | ValueError):
            return ConfigurationError(f"Invalid configuration: {e}")
        if isinstance(e, FetcherError):
            return ContributorActivityError(str(e))
        return ContributorActivityError(f"Internal error ({type(e).__name__}): {e}")


def aggregate_activity(
    token: str, repositories: list[str], **kwargs: Any
) -> AggregationResult:
    """Aggregate activity with a one-off configuration.

    Keyword arguments ``login`` and ``progress_callback`` are passed to
    ``ActivityAggregator.aggregate``; any others are ``AggregationConfig``
    fields.

    Raises:
        ConfigurationError: If a configuration value or repository name is invalid
    """
    login = kwargs.pop("login", None)
    progress_callback = kwargs.pop("progress_callback", None)

    try:
        config = AggregationConfig(**kwargs)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    aggregator = ActivityAggregator(token, config)
    return aggregator.aggregate(repositories, login, progress_callback)
