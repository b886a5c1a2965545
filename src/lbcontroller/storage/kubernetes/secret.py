"""Kubernetes storage for TLS secrets referenced by services."""

from __future__ import annotations

from base64 import b64decode
from datetime import timedelta

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Secret
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError

__all__ = ["SecretStorage"]


class SecretStorage:
    """Storage layer for ``Secret`` objects.

    Only reads are supported. The load balancer controller never writes
    secrets.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    timeout
        Timeout for each Kubernetes API call.
    logger
        Logger to use.
    """

    def __init__(
        self, api_client: ApiClient, timeout: timedelta, logger: BoundLogger
    ) -> None:
        self._api = client.CoreV1Api(api_client)
        self._timeout = timeout
        self._logger = logger

    async def read(self, name: str, namespace: str) -> V1Secret | None:
        """Read a secret.

        Parameters
        ----------
        name
            Name of the secret.
        namespace
            Namespace of the secret.

        Returns
        -------
        kubernetes_asyncio.client.V1Secret or None
            Secret, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        self._logger.debug("Reading Secret", name=name, namespace=namespace)
        try:
            return await self._api.read_namespaced_secret(
                name,
                namespace,
                _request_timeout=self._timeout.total_seconds(),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind="Secret",
                namespace=namespace,
                name=name,
            ) from e

    async def read_data(
        self, name: str, namespace: str
    ) -> dict[str, bytes] | None:
        """Read the decoded data of a secret.

        Parameters
        ----------
        name
            Name of the secret.
        namespace
            Namespace of the secret.

        Returns
        -------
        dict of bytes or None
            Secret data with values decoded from base64, or `None` if the
            secret does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        secret = await self.read(name, namespace)
        if secret is None:
            return None
        return {k: b64decode(v) for k, v in (secret.data or {}).items()}
