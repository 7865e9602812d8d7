"""Fetchers for the GitHub endpoint families the aggregation engine reads."""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from contrib_activity.github_client import GitHubClient, RateLimitError
from contrib_activity.models import RawRecord, RecordSource

logger = logging.getLogger(__name__)

# Failures a single fetcher absorbs; anything else propagates
ISOLATED_ERRORS = (httpx.HTTPError, RateLimitError, ValueError)


class FetcherError(Exception):
    """Base exception for fetcher errors."""


class AuthenticationError(FetcherError):
    """Raised when GitHub rejects the credential."""


def split_full_name(repository: str) -> tuple[str, str]:
    """Split an ``owner/repo`` string into its two parts.

    Raises:
        ValueError: If the string is not a valid ``owner/repo`` pair
    """
    if not repository or not isinstance(repository, str):
        raise ValueError("Repository name must be a non-empty string")

    parts = repository.strip().split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(
            f"Invalid repository format: {repository!r}. Expected 'owner/repo'"
        )
    return parts[0], parts[1]


@dataclass
class FetchOutcome:
    """Raw records one fetcher produced, with its failure bookkeeping.

    ``error`` is set only when the fetcher could not retrieve anything at all
    (its first listing request failed); partial results leave it ``None``.
    """

    source: RecordSource
    repository: str | None
    records: list[RawRecord] = field(default_factory=list)
    failed_requests: int = 0
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class RepositoryFetcher(ABC):
    """Base class for the per-repository fetchers."""

    source: RecordSource

    def __init__(self, client: GitHubClient, per_page: int = 100) -> None:
        """Initialize the fetcher.

        Args:
            client: GitHub API client for making requests
            per_page: Page size requested from GitHub
        """
        self.client = client
        self.per_page = per_page

    @abstractmethod
    async def fetch(self, repository: str) -> FetchOutcome:
        """Fetch every raw record of this fetcher's family for one repository."""

    async def _collect_pages(
        self,
        outcome: FetchOutcome,
        path: str,
        params: dict[str, Any] | None = None,
        per_page: int | None = None,
        max_pages: int | None = None,
        primary: bool = True,
    ) -> list[dict[str, Any]]:
        """Collect items across pages, stopping at the first failed page.

        A failed page is counted and logged; whatever was collected before it
        is returned. When ``primary`` is set and nothing was collected, the
        whole outcome is marked as failed.

        Raises:
            AuthenticationError: If GitHub answers 401
        """
        items: list[dict[str, Any]] = []
        try:
            async for page in self.client.paginate_pages(
                path,
                params=params,
                per_page=per_page or self.per_page,
                max_pages=max_pages,
            ):
                items.extend(item for item in page if isinstance(item, dict))
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 401:
                logger.error(f"Authentication failed for {path}: HTTP 401")
                raise AuthenticationError(
                    "GitHub authentication failed (HTTP 401). "
                    "Please check that your token is valid and not expired."
                ) from e
            self._record_failure(outcome, path, e, items, primary)
        except ISOLATED_ERRORS as e:
            self._record_failure(outcome, path, e, items, primary)

        return items

    @staticmethod
    def _record_failure(
        outcome: FetchOutcome,
        path: str,
        error: Exception,
        collected: list[dict[str, Any]],
        primary: bool,
    ) -> None:
        outcome.failed_requests += 1
        logger.warning(
            f"Request to {path} failed after {len(collected)} items, "
            f"treating as end of data: {error}"
        )
        if primary and not collected:
            outcome.error = str(error) or type(error).__name__


class PullRequestFetcher(RepositoryFetcher):
    """Fetch every pull request of a repository, all pages."""

    source = RecordSource.PULL_REQUEST

    async def fetch(self, repository: str) -> FetchOutcome:
        owner, name = split_full_name(repository)
        outcome = FetchOutcome(source=self.source, repository=repository)

        pulls = await self._collect_pages(
            outcome,
            f"/repos/{owner}/{name}/pulls",
            params={"state": "all", "sort": "updated", "direction": "desc"},
        )
        outcome.records = [
            RawRecord(source=self.source, data=pull, repository=repository)
            for pull in pulls
        ]

        logger.info(f"Fetched {len(pulls)} pull requests from {repository}")
        return outcome


class IssueFetcher(RepositoryFetcher):
    """Fetch every issue of a repository, all pages.

    GitHub lists pull requests on the issues endpoint too; the classifier
    filters those out. When ``creator`` is given only that user's issues are
    requested.
    """

    source = RecordSource.ISSUE

    def __init__(
        self, client: GitHubClient, per_page: int = 100, creator: str | None = None
    ) -> None:
        super().__init__(client, per_page)
        self.creator = creator

    async def fetch(self, repository: str) -> FetchOutcome:
        owner, name = split_full_name(repository)
        outcome = FetchOutcome(source=self.source, repository=repository)

        params = {"state": "all", "sort": "updated", "direction": "desc"}
        if self.creator:
            params["creator"] = self.creator

        issues = await self._collect_pages(
            outcome, f"/repos/{owner}/{name}/issues", params=params
        )
        outcome.records = [
            RawRecord(source=self.source, data=issue, repository=repository)
            for issue in issues
        ]

        logger.info(f"Fetched {len(issues)} issues from {repository}")
        return outcome


class ParentFanOutFetcher(RepositoryFetcher):
    """Fetch child records (reviews, comments) of the N most recent parents.

    Parents are listed once, most recently updated first; children are then
    requested per parent with bounded concurrency. A failed child request
    only loses that parent's children.
    """

    parent_path: str
    child_path: str

    def __init__(
        self,
        client: GitHubClient,
        per_page: int = 100,
        max_parents: int = 50,
        max_concurrency: int = 5,
    ) -> None:
        super().__init__(client, per_page)
        self.max_parents = max_parents
        self.max_concurrency = max_concurrency

    async def fetch(self, repository: str) -> FetchOutcome:
        owner, name = split_full_name(repository)
        outcome = FetchOutcome(source=self.source, repository=repository)

        page_size = min(self.max_parents, self.per_page)
        parents = await self._collect_pages(
            outcome,
            self.parent_path.format(owner=owner, name=name),
            params={"state": "all", "sort": "updated", "direction": "desc"},
            per_page=page_size,
            max_pages=math.ceil(self.max_parents / page_size),
        )
        parents = parents[: self.max_parents]

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def fetch_children(parent: dict[str, Any]) -> list[RawRecord]:
            number = parent.get("number")
            if number is None:
                return []
            async with semaphore:
                children = await self._collect_pages(
                    outcome,
                    self.child_path.format(owner=owner, name=name, number=number),
                    primary=False,
                )
            return [
                RawRecord(
                    source=self.source,
                    data=child,
                    parent=parent,
                    repository=repository,
                )
                for child in children
            ]

        batches = await asyncio.gather(*(fetch_children(p) for p in parents))
        outcome.records = [record for batch in batches for record in batch]

        logger.info(
            f"Fetched {len(outcome.records)} {self.source.value} records "
            f"across {len(parents)} parents of {repository}"
        )
        return outcome


class ReviewFetcher(ParentFanOutFetcher):
    """Reviews on the most recently updated pull requests."""

    source = RecordSource.REVIEW
    parent_path = "/repos/{owner}/{name}/pulls"
    child_path = "/repos/{owner}/{name}/pulls/{number}/reviews"


class CommentFetcher(ParentFanOutFetcher):
    """Comments on the most recently updated issues and pull requests."""

    source = RecordSource.COMMENT
    parent_path = "/repos/{owner}/{name}/issues"
    child_path = "/repos/{owner}/{name}/issues/{number}/comments"


class AccountActivityFetcher:
    """Fetch the cross-repository activity feed of one account.

    The authenticated feed (``/users/{login}/events``, includes private
    activity the token can see) and the public feed are requested
    concurrently and merged on the feed's own event id.
    """

    def __init__(
        self,
        client: GitHubClient,
        login: str,
        per_page: int = 100,
        max_pages: int | None = 3,
    ) -> None:
        """Initialize the fetcher.

        Args:
            client: GitHub API client for making requests
            login: Account whose activity feed is read
            per_page: Page size requested from GitHub
            max_pages: Page cap per feed variant (GitHub serves at most 300 events)
        """
        self.client = client
        self.login = login
        self.per_page = per_page
        self.max_pages = max_pages

    async def _fetch_variant(
        self, path: str, outcome: FetchOutcome
    ) -> list[dict[str, Any]]:
        """Collect one feed variant, keeping the pages read before a failure.

        A failure after the first page is counted on ``outcome`` and ends the
        walk; a failure of the first page is raised.
        """
        items: list[dict[str, Any]] = []
        pages = 0
        try:
            async for page in self.client.paginate_pages(
                path, per_page=self.per_page, max_pages=self.max_pages
            ):
                pages += 1
                items.extend(item for item in page if isinstance(item, dict))
        except ISOLATED_ERRORS as e:
            if not pages:
                raise
            outcome.failed_requests += 1
            logger.warning(
                f"Activity feed {path} failed after {pages} pages, "
                f"keeping {len(items)} entries: {e}"
            )
        return items

    async def fetch(self) -> FetchOutcome:
        """Fetch and combine both feed variants.

        Never raises for upstream failures: a failed authenticated feed
        degrades to the public one, and if both fail the outcome is empty.
        """
        outcome = FetchOutcome(source=RecordSource.ACTIVITY, repository=None)

        authenticated, public = await asyncio.gather(
            self._fetch_variant(f"/users/{self.login}/events", outcome),
            self._fetch_variant(f"/users/{self.login}/events/public", outcome),
            return_exceptions=True,
        )

        variants: list[list[dict[str, Any]]] = []
        for label, result in (("authenticated", authenticated), ("public", public)):
            if isinstance(result, ISOLATED_ERRORS):
                outcome.failed_requests += 1
                logger.warning(
                    f"Failed to fetch {label} activity feed for {self.login}: {result}"
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                variants.append(result)

        if not variants:
            outcome.error = "Both activity feed variants failed"
            logger.error(f"No activity feed available for {self.login}")
            return outcome

        if isinstance(authenticated, ISOLATED_ERRORS):
            logger.info(f"Using only the public activity feed for {self.login}")

        seen: set[str] = set()
        for items in variants:
            for item in items:
                native_id = item.get("id")
                if native_id is not None:
                    if str(native_id) in seen:
                        continue
                    seen.add(str(native_id))
                outcome.records.append(
                    RawRecord(source=RecordSource.ACTIVITY, data=item)
                )

        logger.info(
            f"Fetched {len(outcome.records)} activity feed entries for {self.login}"
        )
        return outcome
