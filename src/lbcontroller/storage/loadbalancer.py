"""Interface to the cloud provider load balancer API.

The controller does not implement this API itself. An embedding application
supplies an object satisfying `LoadBalancerClient`, normally a thin wrapper
around the cloud provider SDK. All create methods that end in ``and_await``
must return only once the long-running operation has completed.
"""

from __future__ import annotations

from typing import Protocol

from ..models.domain.loadbalancer import (
    BackendSet,
    Certificate,
    Listener,
    LoadBalancer,
)

__all__ = ["LoadBalancerClient"]


class LoadBalancerClient(Protocol):
    """Operations on cloud provider load balancers.

    Lookup methods raise `~lbcontroller.exceptions.NotFoundError` if the
    object does not exist. Every method raises
    `~lbcontroller.exceptions.RemoteOperationError` for any other failure.
    """

    async def get_load_balancer_by_name(self, name: str) -> LoadBalancer:
        """Retrieve a load balancer, with its backend sets and listeners."""

    async def create_and_await_load_balancer(
        self, name: str, shape: str, subnets: tuple[str, str]
    ) -> LoadBalancer:
        """Create a load balancer and wait for it to be provisioned."""

    async def delete_load_balancer(self, load_balancer_id: str) -> str:
        """Start deletion of a load balancer and return the work request."""

    async def await_work_request(self, work_request_id: str) -> None:
        """Wait for a work request to finish."""

    async def create_and_await_backend_set(
        self, load_balancer: LoadBalancer, backend_set: BackendSet
    ) -> BackendSet:
        """Create a backend set, with its backends, and wait for it."""

    async def delete_backend_set(
        self, load_balancer_id: str, name: str
    ) -> str:
        """Start deletion of a backend set and return the work request."""

    async def create_and_await_listener(
        self, load_balancer: LoadBalancer, listener: Listener
    ) -> None:
        """Create a listener and wait for it."""

    async def delete_listener(self, load_balancer_id: str, name: str) -> str:
        """Start deletion of a listener and return the work request."""

    async def create_backend(
        self,
        load_balancer_id: str,
        backend_set_name: str,
        ip_address: str,
        port: int,
    ) -> str:
        """Start adding a backend and return the work request."""

    async def delete_backend(
        self, load_balancer_id: str, backend_set_name: str, target: str
    ) -> str:
        """Start removing a backend, named ``ip:port``, and return the work
        request.
        """

    async def get_certificate_by_name(
        self, load_balancer_id: str, name: str
    ) -> Certificate:
        """Retrieve a certificate installed on a load balancer."""

    async def create_and_await_certificate(
        self,
        load_balancer: LoadBalancer,
        name: str,
        certificate: str,
        private_key: str,
    ) -> None:
        """Install a certificate and wait for it."""
