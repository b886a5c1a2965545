"""Construction of the desired load balancer from a Kubernetes service."""

from __future__ import annotations

from kubernetes_asyncio.client import V1Node, V1Service

from ...config import LoadBalancerConfig
from ...constants import (
    ANNOTATION_INTERNAL,
    ANNOTATION_SHAPE,
    ANNOTATION_SUBNET1,
    ANNOTATION_SUBNET2,
    LOAD_BALANCER_NAME_LENGTH,
    UNSUPPORTED_PROTOCOLS,
)
from ...exceptions import (
    InvalidShapeError,
    UnsupportedInternalLoadBalancerError,
    UnsupportedLoadBalancerIPError,
    UnsupportedProtocolError,
    UnsupportedSessionAffinityError,
)
from ...models.domain.loadbalancer import LoadBalancerSpec

__all__ = [
    "LoadBalancerSpecBuilder",
    "derive_load_balancer_name",
    "extract_node_ips",
]


def derive_load_balancer_name(service: V1Service) -> str:
    """Determine the name of the load balancer for a service.

    The name combines the service name with a name derived from the service
    UID, so it does not change across reconciliations of the same service
    but differs if the service is deleted and recreated.

    Parameters
    ----------
    service
        Kubernetes service.

    Returns
    -------
    str
        Load balancer name.
    """
    uid = (service.metadata.uid or "").replace("-", "")
    cloud_name = ("a" + uid)[:LOAD_BALANCER_NAME_LENGTH]
    return f"{service.metadata.name}-{cloud_name}"


def extract_node_ips(nodes: list[V1Node]) -> list[str]:
    """Collect the internal IP addresses of the given nodes.

    Every one of these addresses becomes a backend in every backend set.

    Parameters
    ----------
    nodes
        Kubernetes nodes available to the load balancer.

    Returns
    -------
    list of str
        Internal addresses of those nodes, in node order.
    """
    node_ips = []
    for node in nodes:
        if not node.status or not node.status.addresses:
            continue
        for address in node.status.addresses:
            if address.type == "InternalIP":
                node_ips.append(address.address)
    return node_ips


class LoadBalancerSpecBuilder:
    """Build the desired state of a load balancer from a service.

    Parameters
    ----------
    config
        Provider-level load balancer defaults.
    """

    def __init__(self, config: LoadBalancerConfig) -> None:
        self._config = config

    def build(
        self, service: V1Service, node_ips: list[str]
    ) -> LoadBalancerSpec:
        """Validate a service and construct its load balancer spec.

        Checks are done in a fixed order and the first failure is raised.

        Parameters
        ----------
        service
            Kubernetes service of type ``LoadBalancer``.
        node_ips
            Current node addresses.

        Returns
        -------
        LoadBalancerSpec
            Desired load balancer.

        Raises
        ------
        InvalidShapeError
            Raised if the service requests an unknown shape.
        UnsupportedInternalLoadBalancerError
            Raised if the service requests an internal load balancer.
        UnsupportedLoadBalancerIPError
            Raised if the service requests a specific IP address.
        UnsupportedProtocolError
            Raised if a service port uses an unsupported protocol.
        UnsupportedSessionAffinityError
            Raised if the service requests session affinity.
        """
        metadata = service.metadata
        name = f"{metadata.namespace}/{metadata.name}"
        annotations = metadata.annotations or {}

        for port in service.spec.ports or []:
            protocol = port.protocol or "TCP"
            if protocol in UNSUPPORTED_PROTOCOLS:
                raise UnsupportedProtocolError(protocol, service=name)

        affinity = service.spec.session_affinity or "None"
        if affinity != "None":
            raise UnsupportedSessionAffinityError(affinity, service=name)

        if service.spec.load_balancer_ip:
            address = service.spec.load_balancer_ip
            raise UnsupportedLoadBalancerIPError(address, service=name)

        if annotations.get(ANNOTATION_INTERNAL):
            raise UnsupportedInternalLoadBalancerError(service=name)

        # The shape is only used when creating the load balancer. A change to
        # the annotation afterwards is not detected.
        shape = annotations.get(ANNOTATION_SHAPE) or self._config.default_shape
        if shape not in self._config.shapes:
            raise InvalidShapeError(shape, service=name)

        # A present but empty annotation still overrides the default.
        subnet1 = annotations.get(ANNOTATION_SUBNET1, self._config.subnet1)
        subnet2 = annotations.get(ANNOTATION_SUBNET2, self._config.subnet2)

        return LoadBalancerSpec(
            name=derive_load_balancer_name(service),
            shape=shape,
            service=service,
            node_ips=tuple(node_ips),
            subnets=(subnet1, subnet2),
        )
