"""Configuration for contrib-activity: run settings and local token storage."""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, field_validator

from contrib_activity.progress import ProgressCallback, ProgressNotifier


class TimestampPolicy(Enum):
    """Which upstream instant becomes the timestamp of PR and issue events.

    Reviews always use ``submitted_at`` and comments ``created_at``.
    """

    # Instant of the lifecycle step the kind names (opened/closed/merged)
    LIFECYCLE = "lifecycle"
    # Last-updated instant of the pull request or issue
    UPDATED = "updated"
    # Creation instant of the pull request or issue
    CREATED = "created"


class AggregationConfig(BaseModel):
    """Settings for one aggregation run.

    Use ``AggregationConfig.builder()`` for fluent construction.
    """

    per_page: int = 100
    max_parent_records: int = 50
    batch_size: int = 10
    batch_delay: float = 0.2
    request_timeout: float = 30.0
    max_retries: int = 2
    max_rate_limit_wait: float = 60.0
    include_activity_feed: bool = True
    activity_feed_pages: int = 3
    timestamp_policy: TimestampPolicy = TimestampPolicy.LIFECYCLE
    max_events: int | None = None

    @field_validator("per_page")
    @classmethod
    def validate_per_page(cls, v: int) -> int:
        """GitHub accepts page sizes between 1 and 100."""
        if v < 1 or v > 100:
            raise ValueError("per_page must be between 1 and 100")
        return v

    @field_validator("max_parent_records", "batch_size", "activity_feed_pages")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("batch_delay", "request_timeout", "max_rate_limit_wait")
    @classmethod
    def validate_non_negative_seconds(cls, v: float) -> float:
        if v < 0:
            raise ValueError("durations cannot be negative")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0 or v > 10:
            raise ValueError("max_retries must be between 0 and 10")
        return v

    @field_validator("max_events")
    @classmethod
    def validate_max_events(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("max_events must be at least 1")
        return v

    @classmethod
    def builder(cls) -> AggregationConfigBuilder:
        """Create a new configuration builder."""
        return AggregationConfigBuilder()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return self.model_dump(mode="json", exclude_none=True)


class AggregationConfigBuilder:
    """Fluent builder for AggregationConfig objects."""

    def __init__(self) -> None:
        self._config: dict[str, Any] = {}

    def per_page(self, per_page: int) -> AggregationConfigBuilder:
        self._config["per_page"] = per_page
        return self

    def max_parent_records(self, limit: int) -> AggregationConfigBuilder:
        """Cap the pull requests/issues whose reviews and comments are fetched."""
        self._config["max_parent_records"] = limit
        return self

    def batching(self, size: int, delay: float = 0.2) -> AggregationConfigBuilder:
        """Set how many repositories are fetched concurrently and the pause between batches."""
        self._config["batch_size"] = size
        self._config["batch_delay"] = delay
        return self

    def request_timeout(self, seconds: float) -> AggregationConfigBuilder:
        self._config["request_timeout"] = seconds
        return self

    def max_retries(self, retries: int) -> AggregationConfigBuilder:
        self._config["max_retries"] = retries
        return self

    def without_activity_feed(self) -> AggregationConfigBuilder:
        """Only use the per-repository endpoints."""
        self._config["include_activity_feed"] = False
        return self

    def timestamp_policy(
        self, policy: TimestampPolicy | str
    ) -> AggregationConfigBuilder:
        if isinstance(policy, str):
            policy = TimestampPolicy(policy)
        self._config["timestamp_policy"] = policy
        return self

    def max_events(self, max_events: int) -> AggregationConfigBuilder:
        """Truncate the ordered output; the reported total is unaffected."""
        self._config["max_events"] = max_events
        return self

    def build(self) -> AggregationConfig:
        """Build the final configuration object."""
        return AggregationConfig(**self._config)


class Config:
    """Manage contrib-activity local settings and token storage."""

    def __init__(self, progress_callback: ProgressCallback | None = None) -> None:
        """Initialize config with default paths.

        Args:
            progress_callback: Optional callback notified of storage changes
        """
        self.config_dir = Path.home() / ".contrib-activity"
        self.config_file = self.config_dir / "config.json"
        self.notifier = ProgressNotifier(progress_callback)
        self._ensure_config_dir()

    def _ensure_config_dir(self) -> None:
        """Create config directory if it doesn't exist."""
        self.config_dir.mkdir(exist_ok=True)
        self.config_dir.chmod(0o700)

    def get_token(self) -> str | None:
        """Get stored GitHub token.

        Returns:
            GitHub token if stored, None otherwise
        """
        token = self._load_config().get("github_token")
        return token if isinstance(token, str) and token else None

    def set_token(self, token: str) -> None:
        """Store GitHub token with owner-only permissions."""
        config_data = self._load_config()
        config_data["github_token"] = token
        self._write_config(config_data)
        self.notifier.completed(f"Token stored securely in {self.config_file}")

    def remove_token(self) -> None:
        """Remove stored GitHub token."""
        config_data = self._load_config()
        if config_data.pop("github_token", None) is None:
            self.notifier.info("No token was stored")
            return

        if config_data:
            self._write_config(config_data)
        else:
            self.config_file.unlink(missing_ok=True)

        self.notifier.completed("Token removed from local storage")

    def get_default_login(self) -> str | None:
        """Login to aggregate for when none is given on the command line."""
        login = self._load_config().get("login")
        return login if isinstance(login, str) and login else None

    def set_default_login(self, login: str) -> None:
        config_data = self._load_config()
        config_data["login"] = login
        self._write_config(config_data)
        self.notifier.completed(f"Default login set to {login}")

    def _load_config(self) -> dict[str, Any]:
        """Load existing config or return empty dict."""
        if not self.config_file.exists():
            return {}

        try:
            with self.config_file.open() as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_config(self, config_data: dict[str, Any]) -> None:
        with self.config_file.open("w") as f:
            json.dump(config_data, f, indent=2)
        self.config_file.chmod(0o600)

    def get_config_info(self) -> dict[str, Any]:
        """Get information about current configuration."""
        config_exists = self.config_file.exists()

        return {
            "config_file": str(self.config_file),
            "config_exists": config_exists,
            "has_token": self.get_token() is not None,
            "default_login": self.get_default_login(),
            "config_file_permissions": oct(self.config_file.stat().st_mode)[-3:]
            if config_exists
            else None,
        }
