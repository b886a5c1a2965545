"""Reconciliation of cloud load balancers with Kubernetes services."""

from __future__ import annotations

from collections.abc import Mapping

import sentry_sdk
from kubernetes_asyncio.client import V1LoadBalancerStatus, V1Node, V1Service
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..config import LoadBalancerConfig
from ..exceptions import NoAddressError, NotFoundError, ServiceValidationError
from ..models.domain.loadbalancer import (
    BackendSet,
    Listener,
    LoadBalancer,
    LoadBalancerSpec,
)
from ..storage.loadbalancer import LoadBalancerClient
from ..storage.security import SecurityRuleClient
from .builder.desired import (
    build_backend_sets,
    build_listeners,
    build_ssl_config,
)
from .builder.spec import (
    LoadBalancerSpecBuilder,
    derive_load_balancer_name,
    extract_node_ips,
)
from .certificate import CertificateManager
from .diff import get_all_backend_modifications, get_listener_modifications
from .security import SecurityRuleChanges
from .status import load_balancer_to_status

__all__ = ["LoadBalancerManager"]


class LoadBalancerManager:
    """Create, update, and delete the load balancer of a service.

    Each call performs one reconciliation pass. Remote changes are made one
    at a time, each waiting for the previous one to finish. The first error
    aborts the pass without undoing changes already made; the caller is
    expected to retry later, and the next pass continues from whatever state
    the load balancer was left in.

    The caller must not run two passes for the same service at once.

    Parameters
    ----------
    config
        Provider-level load balancer defaults.
    client
        Cloud provider load balancer client.
    security_client
        Client that persists firewall rules for node ports.
    certificate_manager
        Installs TLS certificates on load balancers.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: LoadBalancerConfig,
        client: LoadBalancerClient,
        security_client: SecurityRuleClient,
        certificate_manager: CertificateManager,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._client = client
        self._security = security_client
        self._certificates = certificate_manager
        self._slack = slack_client
        self._logger = logger
        self._spec_builder = LoadBalancerSpecBuilder(config)

    async def get_load_balancer(
        self, cluster_name: str, service: V1Service
    ) -> V1LoadBalancerStatus | None:
        """Get the status of the load balancer for a service.

        Parameters
        ----------
        cluster_name
            Name of the Kubernetes cluster.
        service
            Kubernetes service.

        Returns
        -------
        kubernetes_asyncio.client.V1LoadBalancerStatus or None
            Status of the load balancer, or `None` if it does not exist.

        Raises
        ------
        NoAddressError
            Raised if the load balancer exists but has no address yet.
        RemoteOperationError
            Raised if the load balancer could not be retrieved.
        """
        try:
            return await self._get(cluster_name, service)
        except Exception as e:
            await self._maybe_post_exception(e, service)
            raise

    async def _get(
        self, cluster_name: str, service: V1Service
    ) -> V1LoadBalancerStatus | None:
        name = derive_load_balancer_name(service)
        logger = self._logger.bind(cluster=cluster_name, load_balancer=name)
        logger.debug("Fetching load balancer")
        try:
            load_balancer = await self._client.get_load_balancer_by_name(name)
        except NotFoundError:
            logger.info("Load balancer does not exist")
            return None
        return load_balancer_to_status(load_balancer)

    async def ensure_load_balancer(
        self, cluster_name: str, service: V1Service, nodes: list[V1Node]
    ) -> V1LoadBalancerStatus:
        """Create or update the load balancer for a service.

        Parameters
        ----------
        cluster_name
            Name of the Kubernetes cluster.
        service
            Kubernetes service of type ``LoadBalancer``.
        nodes
            Nodes that should receive traffic from the load balancer.

        Returns
        -------
        kubernetes_asyncio.client.V1LoadBalancerStatus
            Status of the load balancer after reconciliation.

        Raises
        ------
        KubernetesError
            Raised if the TLS secret could not be read.
        MissingDataError
            Raised if TLS material is missing or the load balancer has no
            address yet.
        RemoteOperationError
            Raised if any call to the cloud provider failed.
        ServiceValidationError
            Raised if the service cannot be served by a load balancer.
        """
        try:
            return await self._ensure(cluster_name, service, nodes)
        except Exception as e:
            await self._maybe_post_exception(e, service)
            raise

    async def update_load_balancer(
        self, cluster_name: str, service: V1Service, nodes: list[V1Node]
    ) -> None:
        """Update the load balancer for a service.

        This is identical to `ensure_load_balancer` except that the status is
        discarded.
        """
        await self.ensure_load_balancer(cluster_name, service, nodes)

    async def ensure_load_balancer_deleted(
        self, cluster_name: str, service: V1Service
    ) -> None:
        """Delete the load balancer for a service if it exists.

        The firewall rules for every backend set are closed before the load
        balancer is deleted.

        Parameters
        ----------
        cluster_name
            Name of the Kubernetes cluster.
        service
            Kubernetes service.

        Raises
        ------
        RemoteOperationError
            Raised if any call to the cloud provider failed.
        ServiceValidationError
            Raised if the service cannot be served by a load balancer.
        """
        try:
            await self._delete(cluster_name, service)
        except Exception as e:
            await self._maybe_post_exception(e, service)
            raise

    async def _ensure(
        self, cluster_name: str, service: V1Service, nodes: list[V1Node]
    ) -> V1LoadBalancerStatus:
        spec = self._spec_builder.build(service, extract_node_ips(nodes))
        logger = self._logger.bind(
            cluster=cluster_name,
            service=f"{service.metadata.namespace}/{service.metadata.name}",
            load_balancer=spec.name,
        )
        logger.debug("Ensuring load balancer", nodes=len(nodes))

        # The certificate is named after the load balancer. Build the TLS
        # configuration before any remote call so that a malformed
        # annotation is rejected without side effects.
        ssl_config = build_ssl_config(spec, spec.name)
        desired_backend_sets = build_backend_sets(spec, self._config.policy)
        desired_listeners = build_listeners(spec, ssl_config)

        load_balancer = await self._get_or_create(spec, logger)
        if ssl_config:
            await self._certificates.ensure(
                spec.name, service, load_balancer
            )

        rules = SecurityRuleChanges(spec, self._security, logger)
        await self._reconcile_listeners(
            load_balancer,
            desired_listeners,
            desired_backend_sets,
            rules,
            logger,
        )
        await self._reconcile_backends(
            load_balancer, desired_backend_sets, rules, logger
        )

        # Reopen every desired port, since the rules of a failed earlier pass
        # may never have been saved.
        for port in sorted(_node_ports(desired_backend_sets)):
            rules.ensure_rules_added(port)
        await rules.save()
        return load_balancer_to_status(load_balancer)

    async def _delete(self, cluster_name: str, service: V1Service) -> None:
        name = derive_load_balancer_name(service)
        logger = self._logger.bind(cluster=cluster_name, load_balancer=name)
        logger.info("Deleting load balancer")
        try:
            load_balancer = await self._client.get_load_balancer_by_name(name)
        except NotFoundError:
            logger.info("Load balancer does not exist, nothing to do")
            return

        backend_sets = [
            load_balancer.backend_sets[n]
            for n in sorted(load_balancer.backend_sets)
        ]
        node_ips = {b.ip_address for s in backend_sets for b in s.backends}
        spec = self._spec_builder.build(service, sorted(node_ips))
        rules = SecurityRuleChanges(spec, self._security, logger)
        for backend_set in backend_sets:
            if backend_set.backends:
                rules.ensure_rules_removed(backend_set.backends[0].port)
        await rules.save()

        work_request = await self._client.delete_load_balancer(
            load_balancer.id
        )
        await self._client.await_work_request(work_request)
        logger.info("Deleted load balancer", id=load_balancer.id)

    async def _get_or_create(
        self, spec: LoadBalancerSpec, logger: BoundLogger
    ) -> LoadBalancer:
        """Retrieve the load balancer, creating it if it does not exist."""
        try:
            return await self._client.get_load_balancer_by_name(spec.name)
        except NotFoundError:
            pass
        logger.info(
            "Creating load balancer",
            shape=spec.shape,
            subnets=list(spec.subnets),
        )
        load_balancer = await self._client.create_and_await_load_balancer(
            spec.name, spec.shape, spec.subnets
        )
        logger.info("Created load balancer", id=load_balancer.id)
        return load_balancer

    async def _reconcile_listeners(
        self,
        load_balancer: LoadBalancer,
        desired_listeners: Mapping[str, Listener],
        desired_backend_sets: Mapping[str, BackendSet],
        rules: SecurityRuleChanges,
        logger: BoundLogger,
    ) -> None:
        """Add and remove listeners, with their backend sets.

        Additions are done before removals. The local copy of the load
        balancer is updated to match each remote change.
        """
        modifications = get_listener_modifications(
            desired_listeners, load_balancer.listeners
        )
        desired_ports = _node_ports(desired_backend_sets)

        for listener in modifications.additions:
            name = listener.default_backend_set_name
            desired = desired_backend_sets[name]
            if name not in load_balancer.backend_sets:
                logger.info("Creating backend set", backend_set=name)
                backend_set = await self._client.create_and_await_backend_set(
                    load_balancer, desired
                )
                load_balancer.backend_sets[name] = backend_set
            if desired.backends:
                rules.ensure_rules_added(desired.backends[0].port)
            logger.info("Creating listener", listener=listener.name)
            await self._client.create_and_await_listener(
                load_balancer, listener
            )
            load_balancer.listeners[listener.name] = listener

        for listener in modifications.removals:
            logger.info("Deleting listener", listener=listener.name)
            work_request = await self._client.delete_listener(
                load_balancer.id, listener.name
            )
            await self._client.await_work_request(work_request)
            load_balancer.listeners.pop(listener.name, None)

            # A replacement listener for the same port shares the backend set.
            name = listener.default_backend_set_name
            if name in desired_backend_sets:
                continue
            backend_set = load_balancer.backend_sets.get(name)
            if not backend_set:
                continue
            if backend_set.backends:
                # Rules are per node port, so keep ports still in use.
                port = backend_set.backends[0].port
                if port not in desired_ports:
                    rules.ensure_rules_removed(port)
            logger.info("Deleting backend set", backend_set=name)
            work_request = await self._client.delete_backend_set(
                load_balancer.id, name
            )
            await self._client.await_work_request(work_request)
            del load_balancer.backend_sets[name]

    async def _reconcile_backends(
        self,
        load_balancer: LoadBalancer,
        desired_backend_sets: Mapping[str, BackendSet],
        rules: SecurityRuleChanges,
        logger: BoundLogger,
    ) -> None:
        """Add and remove individual backends of existing backend sets."""
        modifications = get_all_backend_modifications(
            desired_backend_sets, load_balancer.backend_sets
        )
        desired_ports = _node_ports(desired_backend_sets)

        for name, backends in modifications.additions.items():
            rules.ensure_rules_added(backends[0].port)
            actual = load_balancer.backend_sets[name]
            for backend in backends:
                logger.info(
                    "Adding backend", backend_set=name, backend=backend.target
                )
                work_request = await self._client.create_backend(
                    load_balancer.id, name, backend.ip_address, backend.port
                )
                await self._client.await_work_request(work_request)
                actual.backends.append(backend)

        for name, backends in modifications.removals.items():
            actual = load_balancer.backend_sets[name]
            for backend in backends:
                logger.info(
                    "Deleting backend",
                    backend_set=name,
                    backend=backend.target,
                )
                work_request = await self._client.delete_backend(
                    load_balancer.id, name, backend.target
                )
                await self._client.await_work_request(work_request)
                actual.backends.remove(backend)
            # Other nodes may still be served on the same node port.
            if backends[0].port not in desired_ports:
                rules.ensure_rules_removed(backends[0].port)

    async def _maybe_post_exception(
        self, exc: Exception, service: V1Service
    ) -> None:
        """Post an exception to an external service.

        This will post the exception to Slack if Slack reporting is configured
        and Sentry if Sentry is enabled. Problems with the service itself and
        load balancers still waiting for an address are not reported.

        Parameters
        ----------
        exc
            Exception to report.
        service
            Service being reconciled.
        """
        if isinstance(exc, ServiceValidationError | NoAddressError):
            return
        if isinstance(exc, SlackException):
            metadata = service.metadata
            exc.user = f"{metadata.namespace}/{metadata.name}"
        sentry_sdk.capture_exception(exc)

        if not self._slack:
            return
        if isinstance(exc, SlackException):
            await self._slack.post_exception(exc)
        else:
            await self._slack.post_uncaught_exception(exc)


def _node_ports(backend_sets: Mapping[str, BackendSet]) -> set[int]:
    """Collect the node ports still served by the desired backend sets."""
    return {b.port for s in backend_sets.values() for b in s.backends}
