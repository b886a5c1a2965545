"""Internal models of load balancer state.

These models describe both the desired state derived from a Kubernetes
``Service`` and the actual state read from the cloud provider. Both sides use
the same types so that they can be compared by derived name.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from kubernetes_asyncio.client import V1Service

from ...constants import DEFAULT_LOAD_BALANCER_POLICY

__all__ = [
    "Backend",
    "BackendSet",
    "Certificate",
    "HealthChecker",
    "Listener",
    "LoadBalancer",
    "LoadBalancerSpec",
    "SSLConfiguration",
    "SecurityRuleUpdate",
]


@dataclass(frozen=True, slots=True)
class HealthChecker:
    """Health check run by the load balancer against each backend."""

    protocol: str
    """Protocol of the health check, normally ``HTTP``."""

    url_path: str
    """Path requested on the node."""

    port: int
    """Port on the node to check."""


@dataclass(frozen=True, slots=True)
class Backend:
    """One forwarding target of a backend set.

    Only the address and port identify a backend. The weight is carried along
    for creation but never participates in comparisons.
    """

    ip_address: str
    """IP address of the node."""

    port: int
    """Node port of the service port."""

    weight: int = field(default=1, compare=False)
    """Relative weight, always 1 for backends we create."""

    @property
    def key(self) -> str:
        """Identity of this backend when diffing."""
        return f"{self.ip_address}-{self.port}"

    @property
    def target(self) -> str:
        """Name of this backend in the cloud provider API."""
        return f"{self.ip_address}:{self.port}"


@dataclass(slots=True)
class BackendSet:
    """Named pool of backends sharing a health checker."""

    name: str
    """Name derived from the protocol and port of the service port."""

    health_checker: HealthChecker
    """Health check for all backends of the set."""

    backends: list[Backend] = field(default_factory=list)
    """Backends in the set."""

    policy: str = DEFAULT_LOAD_BALANCER_POLICY
    """Traffic distribution policy."""


@dataclass(frozen=True, slots=True)
class SSLConfiguration:
    """TLS termination settings for a listener.

    Peer verification is never enabled.
    """

    certificate_name: str
    """Name of the certificate on the load balancer."""

    verify_depth: int = 0
    """Maximum depth of peer certificate chain verification."""

    verify_peer_certificate: bool = False
    """Whether to verify client certificates."""


@dataclass(slots=True)
class Listener:
    """Front-end endpoint of the load balancer."""

    name: str
    """Name derived from protocol, port, and certificate, if any."""

    default_backend_set_name: str
    """Backend set to which traffic is forwarded."""

    protocol: str
    """Protocol of the listener."""

    port: int
    """Port on which the load balancer listens."""

    ssl_config: SSLConfiguration | None = None
    """TLS termination settings, if TLS is enabled on this port."""


@dataclass(frozen=True, slots=True)
class Certificate:
    """A TLS certificate installed on a load balancer."""

    name: str
    """Name of the certificate."""

    public_certificate: str | None = None
    """PEM-encoded certificate, if returned by the API."""


@dataclass(slots=True)
class LoadBalancer:
    """A load balancer as reported by the cloud provider."""

    id: str
    """Cloud provider identifier."""

    display_name: str
    """Name of the load balancer, derived from the service."""

    ip_addresses: list[str] = field(default_factory=list)
    """Addresses assigned to the load balancer, possibly empty."""

    backend_sets: dict[str, BackendSet] = field(default_factory=dict)
    """Backend sets keyed by name."""

    listeners: dict[str, Listener] = field(default_factory=dict)
    """Listeners keyed by name."""

    shape: str | None = None
    """Shape of the load balancer."""

    subnet_ids: list[str] = field(default_factory=list)
    """Subnets in which the load balancer was created."""


@dataclass(frozen=True, slots=True)
class LoadBalancerSpec:
    """Desired load balancer for one reconciliation of a service."""

    name: str
    """Name of the load balancer, stable across reconciliations."""

    shape: str
    """Shape used if the load balancer has to be created."""

    service: V1Service
    """Service being exposed. Must not be modified."""

    node_ips: tuple[str, ...]
    """Current node addresses."""

    subnets: tuple[str, str]
    """Subnets used if the load balancer has to be created."""


@dataclass(frozen=True, slots=True)
class SecurityRuleUpdate:
    """Batched firewall change for the node ports of a load balancer."""

    subnets: tuple[str, str]
    """Subnets of the load balancer, the source of permitted traffic."""

    node_ips: tuple[str, ...]
    """Node addresses, the destination of permitted traffic."""

    added_ports: frozenset[int]
    """Node ports to open."""

    removed_ports: frozenset[int]
    """Node ports to close."""
