"""Translation of a load balancer into Kubernetes service status."""

from __future__ import annotations

from kubernetes_asyncio.client import (
    V1LoadBalancerIngress,
    V1LoadBalancerStatus,
)

from ..exceptions import NoAddressError
from ..models.domain.loadbalancer import LoadBalancer

__all__ = ["load_balancer_to_status"]


def load_balancer_to_status(
    load_balancer: LoadBalancer,
) -> V1LoadBalancerStatus:
    """Construct the status of a service from its load balancer.

    Parameters
    ----------
    load_balancer
        Load balancer as reported by the cloud provider.

    Returns
    -------
    kubernetes_asyncio.client.V1LoadBalancerStatus
        One ingress entry per load balancer address, in the same order.

    Raises
    ------
    NoAddressError
        Raised if the load balancer has no addresses yet. A service must not
        be reported as ready without a reachable address.
    """
    if not load_balancer.ip_addresses:
        raise NoAddressError(load_balancer.display_name)
    addresses = load_balancer.ip_addresses
    ingress = [V1LoadBalancerIngress(ip=ip) for ip in addresses]
    return V1LoadBalancerStatus(ingress=ingress)
