"""Root test configuration."""

import logging
import os
from unittest.mock import AsyncMock

# X-Ray reads these at import time; tests run without a daemon or segment.
os.environ.setdefault("AWS_XRAY_SDK_ENABLED", "false")
os.environ.setdefault("AWS_XRAY_CONTEXT_MISSING", "LOG_ERROR")

import pytest
import structlog
from orgtree.chain.steps import ResourceFamily
from orgtree.domain.specs import parse_organization_spec
from orgtree.operations.poller import PollPolicy


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def sdlc_tree():
    """One unit with two accounts followed by a unit with one account."""
    return parse_organization_spec(
        {
            "email": "test@test.com",
            "managementAccountId": "111111111111",
            "nestedOU": [
                {
                    "name": "SDLC",
                    "accounts": [{"name": "Account1", "stageName": "theStage"}, {"name": "Account2"}],
                },
                {"name": "Prod", "accounts": [{"name": "Account3"}]},
            ],
        }
    )


@pytest.fixture
def no_sleep():
    """Replacement for asyncio.sleep so polling tests run instantly."""
    return AsyncMock(return_value=None)


@pytest.fixture
def policies():
    return {family: PollPolicy(interval=0, max_attempts=3) for family in ResourceFamily}
