"""Root test configuration."""

import logging
from typing import Any

import pytest
import structlog
from proxyplane.config.settings import Settings
from proxyplane.providers.base import ProviderContext
from proxyplane.providers.memory import InMemoryProvider
from proxyplane.reconcile.engine import Reconciler
from proxyplane.state.file_store import JsonFileStateStore


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


ASSUME_ROLE_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "rds.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}


def scenario_document(users: dict[str, str] | None = None, **proxy_overrides: Any) -> dict[str, Any]:
    """Secrets for each user, a role allowed to read them, and a proxy using both."""
    if users is None:
        users = {"alice": "secret-a", "bob": "secret-b"}
    proxy_config: dict[str, Any] = {
        "name": "main-proxy",
        "engine_family": "POSTGRESQL",
        "role_arn": {"$ref": "iam_role.proxy.arn"},
        "auth": [{"secret_arn": {"$ref": f'secret.user["{user}"].arn'}} for user in users],
        "vpc_subnet_ids": ["subnet-1", "subnet-2"],
        **proxy_overrides,
    }
    return {
        "resources": {
            "secret": {
                "user": {"for_each": dict(users), "config": {"name": {"$each": "value"}}},
            },
            "iam_role": {
                "proxy": {
                    "config": {
                        "name": "proxy-role",
                        "assume_role_policy": ASSUME_ROLE_POLICY,
                        "inline_policy": {
                            "Statement": [
                                {
                                    "Effect": "Allow",
                                    "Action": "secretsmanager:GetSecretValue",
                                    "Resource": {"$all": "secret.user.arn"},
                                }
                            ]
                        },
                    }
                }
            },
            "db_proxy": {"main": {"config": proxy_config}},
        },
        "outputs": {
            "proxy_endpoint": {"$ref": "db_proxy.main.endpoint"},
            "secret_arns": {"$all": "secret.user.arn"},
        },
    }


@pytest.fixture
def settings() -> Settings:
    """Settings with zero backoff so retries do not slow tests down."""
    return Settings(
        provider="memory",
        max_workers=4,
        retry_attempts=3,
        retry_backoff_multiplier=0,
        retry_backoff_min=0,
        retry_backoff_max=0,
    )


@pytest.fixture
def ctx() -> ProviderContext:
    return ProviderContext(region="us-east-1", run_id="test-run")


@pytest.fixture
def provider() -> InMemoryProvider:
    return InMemoryProvider()


@pytest.fixture
def state(tmp_path) -> JsonFileStateStore:
    return JsonFileStateStore(tmp_path / "state.json")


@pytest.fixture
def reconciler(provider, state, settings, ctx) -> Reconciler:
    return Reconciler(provider, state, settings=settings, ctx=ctx)


@pytest.fixture
def document() -> dict[str, Any]:
    return scenario_document()


@pytest.fixture
def make_document():
    """Factory for scenario documents with different users or proxy settings."""
    return scenario_document
