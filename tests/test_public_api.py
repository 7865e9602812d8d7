"""Test the public library API imports and basic functionality."""


class TestPublicAPIImports:
    """Test that the public API can be imported correctly."""

    def test_basic_import(self):
        """Test basic package import."""
        import contrib_activity

        assert contrib_activity.__version__ == "0.1.0"
        for name in contrib_activity.__all__:
            assert hasattr(contrib_activity, name)

    def test_core_classes_import(self):
        """Test core library classes can be imported."""
        from contrib_activity import ActivityAggregator, AggregationConfig

        aggregator = ActivityAggregator("ghp_test_token")
        assert aggregator.token == "ghp_test_token"

        config = AggregationConfig()
        assert config.max_parent_records == 50

    def test_builder_pattern_import(self):
        """Test builder pattern works through public API."""
        from contrib_activity import AggregationConfig, TimestampPolicy

        config = (
            AggregationConfig.builder()
            .max_events(100)
            .timestamp_policy(TimestampPolicy.CREATED)
            .build()
        )

        assert config.max_events == 100
        assert config.timestamp_policy is TimestampPolicy.CREATED

    def test_exception_hierarchy_import(self):
        """Test exception classes can be imported and used."""
        from contrib_activity import (
            ConfigurationError,
            ContributorActivityError,
            NotAuthenticatedError,
        )

        assert issubclass(NotAuthenticatedError, ContributorActivityError)
        assert issubclass(ConfigurationError, ContributorActivityError)

        error = NotAuthenticatedError("test message")
        assert str(error) == "test message"

    def test_convenience_function_import(self):
        from contrib_activity import aggregate_activity

        assert callable(aggregate_activity)

    def test_event_model_import(self):
        from contrib_activity import EventKind

        assert {kind.value for kind in EventKind} == {
            "pr_opened",
            "pr_closed",
            "pr_merged",
            "issue_opened",
            "issue_closed",
            "review_submitted",
            "comment_created",
        }
