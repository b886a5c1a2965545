"""Installation of TLS certificates on load balancers."""

from __future__ import annotations

from kubernetes_asyncio.client import V1Service
from structlog.stdlib import BoundLogger

from ..constants import (
    ANNOTATION_TLS_SECRET,
    SSL_CERTIFICATE_KEY,
    SSL_PRIVATE_KEY_KEY,
)
from ..exceptions import (
    MissingAnnotationError,
    MissingSecretError,
    NotFoundError,
)
from ..models.domain.loadbalancer import LoadBalancer
from ..storage.kubernetes.secret import SecretStorage
from ..storage.loadbalancer import LoadBalancerClient

__all__ = ["CertificateManager", "parse_secret_reference"]


def parse_secret_reference(
    reference: str, default_namespace: str
) -> tuple[str, str]:
    """Split a secret reference into namespace and name.

    Parameters
    ----------
    reference
        Secret reference of the form ``namespace/name`` or ``name``.
    default_namespace
        Namespace to use if the reference does not include one or the
        namespace is empty.

    Returns
    -------
    tuple of str
        Namespace and name of the secret.
    """
    if "/" in reference:
        namespace, name = reference.split("/", 1)
        return (namespace or default_namespace, name)
    return (default_namespace, reference)


class CertificateManager:
    """Ensure the TLS certificate for a load balancer is installed.

    Parameters
    ----------
    client
        Cloud provider load balancer client.
    secret_storage
        Storage for Kubernetes secrets holding certificates.
    logger
        Logger to use.
    """

    def __init__(
        self,
        client: LoadBalancerClient,
        secret_storage: SecretStorage,
        logger: BoundLogger,
    ) -> None:
        self._client = client
        self._secrets = secret_storage
        self._logger = logger

    async def ensure(
        self, name: str, service: V1Service, load_balancer: LoadBalancer
    ) -> None:
        """Install a certificate on the load balancer if it is not there.

        Parameters
        ----------
        name
            Name of the certificate.
        service
            Service whose TLS secret annotation names the key material.
        load_balancer
            Load balancer on which to install the certificate.

        Raises
        ------
        KubernetesError
            Raised if the secret could not be read.
        MissingAnnotationError
            Raised if the service has no TLS secret annotation.
        MissingSecretError
            Raised if the secret or one of its keys is missing.
        RemoteOperationError
            Raised if the certificate could not be looked up or installed.
        """
        logger = self._logger.bind(
            certificate=name, load_balancer=load_balancer.display_name
        )
        try:
            await self._client.get_certificate_by_name(load_balancer.id, name)
        except NotFoundError:
            pass
        else:
            logger.debug("Certificate already exists")
            return

        metadata = service.metadata
        annotations = metadata.annotations or {}
        reference = annotations.get(ANNOTATION_TLS_SECRET)
        if not reference:
            service_name = f"{metadata.namespace}/{metadata.name}"
            raise MissingAnnotationError(
                ANNOTATION_TLS_SECRET, service=service_name
            )
        namespace, secret_name = parse_secret_reference(
            reference, metadata.namespace
        )

        data = await self._secrets.read_data(secret_name, namespace)
        if data is None:
            raise MissingSecretError(secret_name, namespace)
        for key in (SSL_CERTIFICATE_KEY, SSL_PRIVATE_KEY_KEY):
            if key not in data:
                raise MissingSecretError(secret_name, namespace, key)
        certificate = data[SSL_CERTIFICATE_KEY].decode()
        private_key = data[SSL_PRIVATE_KEY_KEY].decode()

        await self._client.create_and_await_certificate(
            load_balancer, name, certificate, private_key
        )
        logger.info("Created certificate", secret=f"{namespace}/{secret_name}")
