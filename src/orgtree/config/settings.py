"""
Application settings using Pydantic.

Provides environment-based configuration loading with ORGTREE_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from orgtree.chain.steps import ResourceFamily
from orgtree.operations.poller import PollPolicy


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ORGTREE_",
    )

    # AWS Organizations root-level actions are only served from one region
    control_plane_region: str = "us-east-1"

    # Polling
    poll_interval_seconds: float = 10.0
    account_max_attempts: int = 90
    organizational_unit_max_attempts: int = 30
    organization_max_attempts: int = 30
    email_identity_max_attempts: int = 60

    # Management account number used when synthesizing account emails
    management_account_id: str | None = None

    # Account details in SSM Parameter Store
    publish_account_details: bool = True
    account_parameter_prefix: str = "/accounts"

    # Time kept in reserve at the end of a Lambda invocation to return the result
    invocation_margin_seconds: float = 30.0

    # Observability
    metrics_namespace: str = "OrgTree"
    log_level: str = "INFO"

    def poll_policies(self) -> dict[ResourceFamily, PollPolicy]:
        """Poll interval and attempt budget for each resource family."""
        interval = self.poll_interval_seconds
        return {
            ResourceFamily.organization: PollPolicy(interval, self.organization_max_attempts),
            ResourceFamily.organizational_unit: PollPolicy(
                interval, self.organizational_unit_max_attempts
            ),
            ResourceFamily.account: PollPolicy(interval, self.account_max_attempts),
            ResourceFamily.email_identity: PollPolicy(interval, self.email_identity_max_attempts),
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
