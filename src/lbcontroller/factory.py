"""Component factory for the load balancer controller."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Self

import structlog
from kubernetes_asyncio.client.api_client import ApiClient
from safir.kubernetes import initialize_kubernetes
from safir.logging import configure_logging
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .config import Config
from .services.certificate import CertificateManager
from .services.loadbalancer import LoadBalancerManager
from .storage.kubernetes.secret import SecretStorage
from .storage.loadbalancer import LoadBalancerClient
from .storage.security import SecurityRuleClient

__all__ = ["Factory"]


class Factory:
    """Build load balancer controller components.

    The embedding application provides the cloud provider clients, since how
    to talk to the cloud provider is outside the scope of this package.

    Parameters
    ----------
    config
        Load balancer controller configuration.
    kubernetes_client
        Kubernetes API client, used to read TLS secrets.
    load_balancer_client
        Cloud provider load balancer client.
    security_rule_client
        Client that persists firewall rules for node ports.
    logger
        Logger to use. If not given, a logger for this module is used.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(
        cls,
        config: Config,
        *,
        load_balancer_client: LoadBalancerClient,
        security_rule_client: SecurityRuleClient,
    ) -> AsyncIterator[Self]:
        """Async context manager for use outside of a larger application.

        Configures logging and the Kubernetes client, and closes the
        Kubernetes client on exit.

        Parameters
        ----------
        config
            Load balancer controller configuration.
        load_balancer_client
            Cloud provider load balancer client.
        security_rule_client
            Client that persists firewall rules for node ports.

        Yields
        ------
        Factory
            Newly-created factory.
        """
        configure_logging(
            name="lbcontroller",
            profile=config.profile,
            log_level=config.log_level,
        )
        await initialize_kubernetes()
        async with ApiClient() as kubernetes_client:
            yield cls(
                config,
                kubernetes_client=kubernetes_client,
                load_balancer_client=load_balancer_client,
                security_rule_client=security_rule_client,
            )

    def __init__(
        self,
        config: Config,
        *,
        kubernetes_client: ApiClient,
        load_balancer_client: LoadBalancerClient,
        security_rule_client: SecurityRuleClient,
        logger: BoundLogger | None = None,
    ) -> None:
        self._config = config
        self._kubernetes_client = kubernetes_client
        self._load_balancer_client = load_balancer_client
        self._security_rule_client = security_rule_client
        self._logger = logger or structlog.get_logger("lbcontroller")

    def create_certificate_manager(self) -> CertificateManager:
        """Create a manager for load balancer TLS certificates."""
        return CertificateManager(
            self._load_balancer_client,
            self.create_secret_storage(),
            self._logger,
        )

    def create_load_balancer_manager(self) -> LoadBalancerManager:
        """Create the manager exposing the public load balancer operations.

        Returns
        -------
        LoadBalancerManager
            Newly-created manager.
        """
        slack_client = None
        if self._config.slack_webhook:
            slack_client = SlackWebhookClient(
                self._config.slack_webhook.get_secret_value(),
                self._config.name,
                self._logger,
            )
        return LoadBalancerManager(
            config=self._config.load_balancer,
            client=self._load_balancer_client,
            security_client=self._security_rule_client,
            certificate_manager=self.create_certificate_manager(),
            slack_client=slack_client,
            logger=self._logger,
        )

    def create_secret_storage(self) -> SecretStorage:
        """Create storage for TLS secrets referenced by services."""
        return SecretStorage(
            self._kubernetes_client,
            self._config.kubernetes_request_timeout,
            self._logger,
        )
