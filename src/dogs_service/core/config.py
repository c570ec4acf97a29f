"""Configuration models for core domain components.

Pydantic-based configuration consolidating the resilience settings of the
outbound clients, so the composition root can inject them and tests can
build custom configurations.
"""

from pydantic import BaseModel, Field

from dogs_service.core.exceptions import TransientUpstreamError
from dogs_service.core.models.policies import (
    GatePolicy,
    RetryPolicy,
    exponential_backoff,
    include_types,
)


class ResilienceConfig(BaseModel):
    """Resilience settings for the cat facts client.

    Attributes:
        cat_facts_max_attempts: Total invocations per call (1 disables retry)
        cat_facts_concurrency: Maximum concurrent calls to the cat facts API
        retry_wait_initial: Exponential backoff multiplier in seconds (0 = immediate retry)
        retry_wait_max: Upper bound for a single backoff delay
    """

    cat_facts_max_attempts: int = Field(
        default=4,
        ge=1,
        le=10,
        description="Total attempts for a cat facts request, including the first",
    )

    cat_facts_concurrency: int = Field(
        default=10,
        ge=1,
        description="Maximum number of cat facts requests in flight at once",
    )

    retry_wait_initial: float = Field(
        default=0.0,
        ge=0,
        description="Base wait in seconds for exponential backoff (0 retries immediately)",
    )

    retry_wait_max: float = Field(
        default=1.0,
        gt=0,
        description="Maximum wait in seconds between retry attempts",
    )

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @classmethod
    def from_app_settings(cls, settings) -> "ResilienceConfig":
        """Factory method to construct config from a DogsSettings instance."""
        return cls(
            cat_facts_max_attempts=settings.DOGS_CAT_FACTS_MAX_ATTEMPTS,
            cat_facts_concurrency=settings.DOGS_CAT_FACTS_CONCURRENCY,
            retry_wait_initial=settings.DOGS_RETRY_WAIT_INITIAL,
            retry_wait_max=settings.DOGS_RETRY_WAIT_MAX,
        )

    def cat_facts_gate_policy(self) -> GatePolicy:
        return GatePolicy(limit=self.cat_facts_concurrency)

    def cat_facts_retry_policy(self) -> RetryPolicy:
        options = {}
        if self.retry_wait_initial > 0:
            options["backoff"] = exponential_backoff(self.retry_wait_initial, self.retry_wait_max)
        return RetryPolicy(
            max_attempts=self.cat_facts_max_attempts,
            inclusion=include_types(TransientUpstreamError),
            **options,
        )
