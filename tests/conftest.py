"""Test fixtures for load balancer controller tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import respx
import structlog
from kubernetes_asyncio import client
from pydantic import SecretStr
from safir.testing.kubernetes import MockKubernetesApi, patch_kubernetes
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook
from structlog.stdlib import BoundLogger

from lbcontroller.config import Config
from lbcontroller.factory import Factory
from lbcontroller.services.loadbalancer import LoadBalancerManager

from .support.config import configure
from .support.loadbalancer import MockLoadBalancerClient
from .support.security import MockSecurityRuleClient


@pytest.fixture
def config() -> Config:
    """Construct default configuration for tests."""
    return configure("standard")


@pytest_asyncio.fixture
async def factory(
    config: Config,
    mock_kubernetes: MockKubernetesApi,
    mock_load_balancer: MockLoadBalancerClient,
    mock_security: MockSecurityRuleClient,
) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    kubernetes_client = client.ApiClient()
    yield Factory(
        config,
        kubernetes_client=kubernetes_client,
        load_balancer_client=mock_load_balancer,
        security_rule_client=mock_security,
    )
    await kubernetes_client.close()


@pytest.fixture
def logger() -> BoundLogger:
    return structlog.get_logger("lbcontroller")


@pytest.fixture
def manager(factory: Factory) -> LoadBalancerManager:
    """Load balancer manager talking to the mock cloud provider."""
    return factory.create_load_balancer_manager()


@pytest.fixture
def mock_kubernetes() -> Iterator[MockKubernetesApi]:
    with patch_kubernetes() as mock:
        yield mock


@pytest.fixture
def mock_load_balancer() -> MockLoadBalancerClient:
    return MockLoadBalancerClient()


@pytest.fixture
def mock_security() -> MockSecurityRuleClient:
    return MockSecurityRuleClient()


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> Iterator[MockSlackWebhook]:
    config.slack_webhook = SecretStr("https://slack.example.com/webhook")
    webhook = config.slack_webhook.get_secret_value()
    yield mock_slack_webhook(webhook, respx_mock)
    config.slack_webhook = None
