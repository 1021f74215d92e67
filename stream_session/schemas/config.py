"""Controller and transport configuration schemas.

Defines the retry policy, the session controller configuration, and the
per-model transport configuration loaded from the TOML registry.
"""

from __future__ import annotations

from collections.abc import Callable

from pydantic import BaseModel, Field

from stream_session.retry import backoff_delay, default_is_retryable


class RetryPolicy(BaseModel):
    """Retry-with-backoff policy for transient stream failures.

    ``max_attempts`` counts retries, not opens: a policy with
    ``max_attempts=3`` opens the request at most four times.
    """

    max_attempts: int = Field(default=3, ge=0, description="Maximum number of retries")
    backoff_base_delay: float = Field(
        default=1.0, ge=0.0, description="Delay in seconds before the first retry"
    )
    backoff_max_delay: float = Field(
        default=30.0, ge=0.0, description="Upper bound on any single backoff delay"
    )
    classifier: Callable[[BaseException], bool] = Field(
        default=default_is_retryable,
        exclude=True,
        description="Predicate returning True for retryable errors",
    )

    def is_retryable(self, error: BaseException) -> bool:
        """Whether ``error`` is transient according to the classifier."""
        return bool(self.classifier(error))

    def delay_for(self, attempt: int) -> float:
        """Backoff delay in seconds before retry number ``attempt`` (1-based)."""
        return backoff_delay(attempt, self.backoff_base_delay, self.backoff_max_delay)

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """Whether another retry is allowed after ``attempt`` retries have been made."""
        return attempt < self.max_attempts and self.is_retryable(error)


class ControllerConfig(BaseModel):
    """Configuration for a StreamSessionController."""

    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    attempt_timeout: float = Field(
        default=120.0,
        gt=0.0,
        description="Upper bound in seconds on a single attempt before it is "
        "treated as a transient timeout",
    )
    reopen_delimiter: str = Field(
        default="",
        description="Text inserted into the rendered output where a retried "
        "request's output begins",
    )


class ModelConfig(BaseModel):
    """Configuration for a single model in the registry.

    Loaded from models.toml. Each entry provides the LiteLLM routing
    information the streaming transport needs.
    """

    provider: str = Field(description="Provider identifier (e.g. 'anthropic', 'openai')")
    model: str = Field(description="LiteLLM model identifier")
    display_name: str = Field(description="Human-friendly model name for CLI output")
    api_key_env: str = Field(description="Environment variable name holding the API key")
    api_base: str = Field(default="", description="Custom API base URL (empty = provider default)")
    system_prompt: str = Field(
        default="", description="System prompt prepended to every request"
    )
    temperature: float | None = Field(
        default=None, ge=0.0, le=2.0, description="Sampling temperature override"
    )
    max_tokens: int | None = Field(
        default=None, gt=0, description="Maximum tokens to generate"
    )
