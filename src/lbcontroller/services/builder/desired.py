"""Projection of a load balancer spec into desired backend sets and listeners.

Everything here is a pure function of its inputs. Maps are built in the order
of the service ports so that equal inputs produce equal results.
"""

from __future__ import annotations

from collections.abc import Mapping

from kubernetes_asyncio.client import V1Service

from ...constants import (
    ANNOTATION_SSL_PORTS,
    DEFAULT_LOAD_BALANCER_POLICY,
    HEALTH_CHECK_PATH,
    HEALTH_CHECK_PORT,
    HEALTH_CHECK_PROTOCOL,
)
from ...exceptions import InvalidAnnotationError
from ...models.domain.loadbalancer import (
    Backend,
    BackendSet,
    HealthChecker,
    Listener,
    LoadBalancerSpec,
    SSLConfiguration,
)

__all__ = [
    "build_backend_sets",
    "build_health_checker",
    "build_listeners",
    "build_ssl_config",
    "get_backend_set_name",
    "get_listener_name",
    "parse_ssl_ports",
]


def get_backend_set_name(protocol: str, port: int) -> str:
    """Derive the name of the backend set for a service port."""
    return f"{protocol}-{port}"


def get_listener_name(
    protocol: str, port: int, ssl_config: SSLConfiguration | None
) -> str:
    """Derive the name of the listener for a service port.

    The certificate name is part of the listener name, so switching a
    listener to a different certificate replaces the listener.
    """
    if ssl_config:
        return f"{protocol}-{port}-{ssl_config.certificate_name}"
    return f"{protocol}-{port}"


def build_health_checker(service: V1Service) -> HealthChecker:
    """Construct the node health check for a service.

    Services with a local external traffic policy get a dedicated health
    check node port from Kubernetes, which only reports healthy on nodes
    running an endpoint of the service. All other services use the
    kube-proxy health endpoint.

    Parameters
    ----------
    service
        Kubernetes service.

    Returns
    -------
    HealthChecker
        Health check to use for every backend set of the service.
    """
    spec = service.spec
    if (
        spec.type == "LoadBalancer"
        and spec.external_traffic_policy == "Local"
        and spec.health_check_node_port
    ):
        return HealthChecker(
            protocol=HEALTH_CHECK_PROTOCOL,
            url_path=HEALTH_CHECK_PATH,
            port=spec.health_check_node_port,
        )
    return HealthChecker(
        protocol=HEALTH_CHECK_PROTOCOL,
        url_path=HEALTH_CHECK_PATH,
        port=HEALTH_CHECK_PORT,
    )


def build_backend_sets(
    spec: LoadBalancerSpec, policy: str = DEFAULT_LOAD_BALANCER_POLICY
) -> dict[str, BackendSet]:
    """Construct the desired backend sets of a load balancer.

    Parameters
    ----------
    spec
        Desired load balancer.
    policy
        Traffic distribution policy for the backend sets.

    Returns
    -------
    dict of BackendSet
        One backend set per service port, keyed by name. All of them share
        the same health checker object.
    """
    health_checker = build_health_checker(spec.service)
    backend_sets = {}
    for service_port in spec.service.spec.ports or []:
        protocol = service_port.protocol or "TCP"
        name = get_backend_set_name(protocol, service_port.port)
        backends = [
            Backend(ip_address=ip, port=service_port.node_port, weight=1)
            for ip in spec.node_ips
        ]
        backend_sets[name] = BackendSet(
            name=name,
            health_checker=health_checker,
            backends=backends,
            policy=policy,
        )
    return backend_sets


def parse_ssl_ports(annotations: Mapping[str, str] | None) -> set[int]:
    """Parse the ports on which TLS should be terminated.

    Parameters
    ----------
    annotations
        Annotations of the service.

    Returns
    -------
    set of int
        Listener ports with TLS enabled. Empty if the annotation is missing
        or blank.

    Raises
    ------
    InvalidAnnotationError
        Raised if any entry of the annotation is not an integer.
    """
    value = (annotations or {}).get(ANNOTATION_SSL_PORTS, "")
    if not value.strip():
        return set()
    ports = set()
    for entry in value.split(","):
        try:
            ports.add(int(entry.strip()))
        except ValueError as e:
            raise InvalidAnnotationError(ANNOTATION_SSL_PORTS, value) from e
    return ports


def build_ssl_config(
    spec: LoadBalancerSpec, certificate_name: str
) -> dict[int, SSLConfiguration]:
    """Construct the TLS configuration of each listener port.

    Parameters
    ----------
    spec
        Desired load balancer.
    certificate_name
        Name of the certificate used by every TLS listener.

    Returns
    -------
    dict of SSLConfiguration
        TLS configuration keyed by listener port. Only service ports listed
        in the SSL ports annotation are present.

    Raises
    ------
    InvalidAnnotationError
        Raised if the SSL ports annotation cannot be parsed.
    """
    metadata = spec.service.metadata
    try:
        ssl_ports = parse_ssl_ports(metadata.annotations)
    except InvalidAnnotationError as e:
        e.service = f"{metadata.namespace}/{metadata.name}"
        raise
    ssl_config = {}
    for service_port in spec.service.spec.ports or []:
        if service_port.port in ssl_ports:
            ssl_config[service_port.port] = SSLConfiguration(
                certificate_name=certificate_name
            )
    return ssl_config


def build_listeners(
    spec: LoadBalancerSpec, ssl_config: Mapping[int, SSLConfiguration]
) -> dict[str, Listener]:
    """Construct the desired listeners of a load balancer.

    Parameters
    ----------
    spec
        Desired load balancer.
    ssl_config
        TLS configuration keyed by listener port.

    Returns
    -------
    dict of Listener
        One listener per service port, keyed by name.
    """
    listeners = {}
    for service_port in spec.service.spec.ports or []:
        protocol = service_port.protocol or "TCP"
        port = service_port.port
        port_ssl_config = ssl_config.get(port)
        name = get_listener_name(protocol, port, port_ssl_config)
        listeners[name] = Listener(
            name=name,
            default_backend_set_name=get_backend_set_name(protocol, port),
            protocol=protocol,
            port=port,
            ssl_config=port_ssl_config,
        )
    return listeners
