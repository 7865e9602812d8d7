"""Contributor activity aggregation for GitHub.

Library API for external projects:

    from contrib_activity import ActivityAggregator, AggregationConfig

    # Aggregate the token owner's activity
    aggregator = ActivityAggregator(token="ghp_...")
    result = aggregator.aggregate(["octocat/hello-world", "octocat/spoon-knife"])

    # Custom configuration
    config = AggregationConfig.builder().max_parent_records(20).max_events(100).build()
    result = ActivityAggregator("ghp_...", config).aggregate(["octocat/hello-world"])

    # Convenience function
    from contrib_activity import aggregate_activity

    result = aggregate_activity("ghp_...", ["octocat/hello-world"], login="octocat")
"""

__version__ = "0.1.0"

from contrib_activity.config import (
    AggregationConfig,
    AggregationConfigBuilder,
    Config,
    TimestampPolicy,
)
from contrib_activity.engine import ActivityEngine
from contrib_activity.library import (
    ActivityAggregator,
    ConfigurationError,
    # Exception hierarchy
    ContributorActivityError,
    NotAuthenticatedError,
    aggregate_activity,
)
from contrib_activity.models import (
    AggregationResult,
    Event,
    EventKind,
    EventSource,
    RunDiagnostics,
)
from contrib_activity.progress import ProgressCallback, ProgressEvent

__all__ = [
    # Core API
    "ActivityAggregator",
    "ActivityEngine",
    "AggregationConfig",
    "AggregationConfigBuilder",
    "AggregationResult",
    "TimestampPolicy",
    "ProgressCallback",
    "ProgressEvent",
    # Event model
    "Event",
    "EventKind",
    "EventSource",
    "RunDiagnostics",
    # Exceptions
    "ContributorActivityError",
    "NotAuthenticatedError",
    "ConfigurationError",
    # Convenience functions
    "aggregate_activity",
    # Local settings
    "Config",
    # Metadata
    "__version__",
]
