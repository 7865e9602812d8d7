"""Aggregation engine: fetch, classify, normalize, merge and order activity."""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

import httpx

from contrib_activity.classifier import RecordClassifier, Verdict
from contrib_activity.config import AggregationConfig
from contrib_activity.fetchers import (
    ISOLATED_ERRORS,
    AccountActivityFetcher,
    AuthenticationError,
    CommentFetcher,
    FetcherError,
    FetchOutcome,
    IssueFetcher,
    PullRequestFetcher,
    RepositoryFetcher,
    ReviewFetcher,
    split_full_name,
)
from contrib_activity.github_client import GitHubClient
from contrib_activity.models import AggregationResult, Event, RecordSource, RunDiagnostics
from contrib_activity.normalizer import EventNormalizer
from contrib_activity.processors import EventMerger, order_events, summarize
from contrib_activity.progress import ProgressCallback, ProgressNotifier

logger = logging.getLogger(__name__)

NO_ACTIVITY_MESSAGE = "No activity found for the selected repositories"
ALL_FAILED_MESSAGE = (
    "All upstream requests failed; no activity could be retrieved. "
    "Check network connectivity and repository access, then try again."
)
LOGIN_UNAVAILABLE_MESSAGE = (
    "Could not determine the GitHub login for the access token; "
    "no activity was retrieved. Check network connectivity, then try again."
)


@dataclass
class RunContext:
    """State owned by one aggregation run.

    Fetch results are gathered per task and folded in here from the engine's
    coroutine only, so nothing is appended concurrently.
    """

    login: str
    repositories: list[str]
    diagnostics: RunDiagnostics = field(default_factory=RunDiagnostics)
    repository_events: list[Event] = field(default_factory=list)
    activity_events: list[Event] = field(default_factory=list)
    activity_failed: bool = False


class ActivityEngine:
    """Aggregate one login's activity across repositories.

    Repositories are processed in batches; within a batch every repository's
    four fetchers run concurrently. The account activity feed is fetched in
    parallel with the batches. Only an authentication failure aborts a run;
    every other failure costs at most the records it concerned.
    """

    def __init__(
        self,
        client: GitHubClient,
        config: AggregationConfig | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            client: GitHub API client used for every upstream call
            config: Run settings (defaults if None)
            progress_callback: Optional callback receiving progress events
        """
        self.client = client
        self.config = config or AggregationConfig()
        self.notifier = ProgressNotifier(progress_callback)
        self.normalizer = EventNormalizer(self.config.timestamp_policy)

    async def resolve_login(self) -> str:
        """Look up the login the client's token belongs to.

        Raises:
            AuthenticationError: If GitHub rejects the token
            FetcherError: If the identity lookup fails for another reason
        """
        try:
            user = await self.client.validate_token()
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                raise AuthenticationError(
                    f"GitHub rejected the access token (HTTP {e.response.status_code})"
                ) from e
            raise FetcherError(f"Could not resolve the authenticated login: {e}") from e
        except ISOLATED_ERRORS as e:
            raise FetcherError(f"Could not resolve the authenticated login: {e}") from e

        login = user.get("login") if isinstance(user, dict) else None
        if not isinstance(login, str) or not login:
            raise FetcherError("GitHub did not return a login for the token")
        return login

    @staticmethod
    def validate_repositories(repositories: list[str]) -> list[str]:
        """Normalize and de-duplicate ``owner/repo`` names, keeping order.

        Raises:
            ValueError: If any name is not a valid ``owner/repo`` pair
        """
        names = []
        for repository in repositories:
            owner, name = split_full_name(repository)
            names.append(f"{owner}/{name}")
        return list(dict.fromkeys(names))

    async def run(
        self, repositories: list[str], login: str | None = None
    ) -> AggregationResult:
        """Run one aggregation.

        A login lookup that fails for any reason other than a rejected token
        ends the run early with an empty result explaining why.

        Args:
            repositories: ``owner/repo`` names to aggregate over
            login: Login whose activity is collected (resolved from the token if None)

        Returns:
            Ordered, de-duplicated events with diagnostics

        Raises:
            AuthenticationError: If GitHub rejects the token
            ValueError: If a repository name is malformed
        """
        repositories = self.validate_repositories(repositories)
        logger.debug(f"Run settings: {self.config.to_dict()}")
        if login is None:
            try:
                login = await self.resolve_login()
            except AuthenticationError:
                raise
            except FetcherError as e:
                logger.error(f"Aborting aggregation: {e}")
                self.notifier.error(LOGIN_UNAVAILABLE_MESSAGE, error=str(e))
                return AggregationResult(
                    message=LOGIN_UNAVAILABLE_MESSAGE,
                    diagnostics=RunDiagnostics(failed_requests=1),
                    summary=summarize([]),
                )

        context = RunContext(login=login, repositories=repositories)
        classifier = RecordClassifier(login)

        logger.info(
            f"Aggregating activity for {login} across {len(repositories)} repositories"
        )
        self.notifier.started(
            f"Aggregating activity for {login} across {len(repositories)} repositories",
            login=login,
        )

        activity_task = None
        if self.config.include_activity_feed:
            activity_task = asyncio.create_task(self._fetch_activity(login))

        try:
            await self._fetch_repositories(context, classifier)
        except BaseException:
            if activity_task is not None:
                activity_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await activity_task
            raise

        if activity_task is not None:
            outcome = await activity_task
            context.activity_failed = outcome.failed
            self._absorb(outcome, classifier, context, context.activity_events)

        result = self._build_result(context)
        self.notifier.completed(
            f"Collected {result.total} events for {login}",
            total=result.total,
        )
        return result

    def _repository_fetchers(self, login: str) -> list[RepositoryFetcher]:
        per_page = self.config.per_page
        max_parents = self.config.max_parent_records
        return [
            PullRequestFetcher(self.client, per_page),
            IssueFetcher(self.client, per_page, creator=login),
            ReviewFetcher(self.client, per_page, max_parents=max_parents),
            CommentFetcher(self.client, per_page, max_parents=max_parents),
        ]

    async def _fetch_repositories(
        self, context: RunContext, classifier: RecordClassifier
    ) -> None:
        repositories = context.repositories
        size = self.config.batch_size
        batches = [repositories[i : i + size] for i in range(0, len(repositories), size)]
        fetchers = self._repository_fetchers(context.login)

        for number, batch in enumerate(batches, start=1):
            if number > 1 and self.config.batch_delay:
                await asyncio.sleep(self.config.batch_delay)

            results = await asyncio.gather(
                *(self._fetch_repository(fetchers, repository) for repository in batch),
                return_exceptions=True,
            )

            for result in results:
                if isinstance(result, BaseException):
                    raise result

            for repository, outcomes in zip(batch, results, strict=True):
                for outcome in outcomes:
                    self._absorb(outcome, classifier, context, context.repository_events)
                if outcomes and all(outcome.failed for outcome in outcomes):
                    logger.error(f"Every fetcher failed for {repository}")
                    context.diagnostics.failed_repositories.append(repository)
                    self.notifier.repository_failed(repository)

            self.notifier.batch_completed(number, len(batches), batch)

    async def _fetch_repository(
        self, fetchers: list[RepositoryFetcher], repository: str
    ) -> list[FetchOutcome]:
        """Run every fetcher for one repository, isolating their failures."""
        results = await asyncio.gather(
            *(fetcher.fetch(repository) for fetcher in fetchers),
            return_exceptions=True,
        )

        outcomes = []
        for fetcher, result in zip(fetchers, results, strict=True):
            if isinstance(result, AuthenticationError):
                raise result
            if isinstance(result, Exception):
                logger.warning(
                    f"{fetcher.source.value} fetcher failed for {repository}: {result}"
                )
                outcomes.append(
                    FetchOutcome(
                        source=fetcher.source,
                        repository=repository,
                        failed_requests=1,
                        error=str(result) or type(result).__name__,
                    )
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes.append(result)
        return outcomes

    async def _fetch_activity(self, login: str) -> FetchOutcome:
        fetcher = AccountActivityFetcher(
            self.client,
            login,
            per_page=self.config.per_page,
            max_pages=self.config.activity_feed_pages,
        )
        try:
            return await fetcher.fetch()
        except Exception as e:
            logger.warning(f"Activity feed fetch failed for {login}: {e}")
            return FetchOutcome(
                source=RecordSource.ACTIVITY,
                repository=None,
                failed_requests=1,
                error=str(e) or type(e).__name__,
            )

    def _absorb(
        self,
        outcome: FetchOutcome,
        classifier: RecordClassifier,
        context: RunContext,
        target: list[Event],
    ) -> None:
        """Classify and normalize one outcome's records into ``target``."""
        diagnostics = context.diagnostics
        diagnostics.failed_requests += outcome.failed_requests

        for record in outcome.records:
            diagnostics.processed += 1
            classification = classifier.classify(record)

            if classification.verdict is Verdict.IRRELEVANT:
                diagnostics.irrelevant += 1
                continue
            if classification.verdict is Verdict.UNSUPPORTED:
                diagnostics.unsupported += 1
                continue
            if classification.verdict is Verdict.SKIPPED:
                diagnostics.skipped += 1
                continue

            try:
                event = self.normalizer.normalize(classification)
            except ValueError as e:
                logger.debug(f"Skipping {record.source.value} record: {e}")
                diagnostics.skipped += 1
                continue
            target.append(event)

    def _build_result(self, context: RunContext) -> AggregationResult:
        merger = EventMerger()
        merged = merger.merge(context.repository_events, context.activity_events)
        context.diagnostics.duplicates = merger.duplicates

        ordered = order_events(merged)
        limit = self.config.max_events
        events = ordered[:limit] if limit is not None else ordered

        message = None
        if not ordered:
            message = (
                ALL_FAILED_MESSAGE if self._everything_failed(context) else NO_ACTIVITY_MESSAGE
            )

        diagnostics = context.diagnostics
        logger.info(
            f"Aggregated {len(ordered)} events for {context.login} "
            f"(processed={diagnostics.processed}, skipped={diagnostics.skipped}, "
            f"duplicates={diagnostics.duplicates}, "
            f"failed_requests={diagnostics.failed_requests})"
        )
        logger.debug(f"Rate limit status: {self.client.get_rate_limit_status()}")

        return AggregationResult(
            login=context.login,
            events=events,
            total=len(ordered),
            message=message,
            diagnostics=diagnostics,
            summary=summarize(ordered),
        )

    def _everything_failed(self, context: RunContext) -> bool:
        repositories_failed = len(context.diagnostics.failed_repositories) == len(
            context.repositories
        )
        feed_failed = context.activity_failed or not self.config.include_activity_feed
        return (
            context.diagnostics.failed_requests > 0
            and repositories_failed
            and feed_failed
        )
