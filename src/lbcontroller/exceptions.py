"""Exceptions for the load balancer controller."""

from __future__ import annotations

from typing import Self, override

from kubernetes_asyncio.client import ApiException
from safir.slack.blockkit import (
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
)
from safir.slack.sentry import SentryEventInfo

__all__ = [
    "InvalidAnnotationError",
    "InvalidShapeError",
    "KubernetesError",
    "MissingAnnotationError",
    "MissingDataError",
    "MissingSecretError",
    "NoAddressError",
    "NotFoundError",
    "RemoteOperationError",
    "ServiceValidationError",
    "UnsupportedInternalLoadBalancerError",
    "UnsupportedLoadBalancerIPError",
    "UnsupportedProtocolError",
    "UnsupportedSessionAffinityError",
]


class ServiceValidationError(SlackException):
    """The service asks for something the load balancer cannot provide.

    Raised while building the desired state, before any call to the cloud
    provider is made.

    Parameters
    ----------
    message
        Summary of error.
    service
        Namespace and name of the service, if known.
    """

    def __init__(self, message: str, *, service: str | None = None) -> None:
        super().__init__(message)
        self.service = service

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        if self.service:
            field = SlackTextField(heading="Service", text=self.service)
            message.fields.append(field)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        if self.service:
            info.tags["service"] = self.service
        return info


class UnsupportedProtocolError(ServiceValidationError):
    """A service port uses a protocol the load balancer does not support."""

    def __init__(self, protocol: str, *, service: str | None = None) -> None:
        msg = f"Load balancers do not support {protocol} service ports"
        super().__init__(msg, service=service)
        self.protocol = protocol


class UnsupportedSessionAffinityError(ServiceValidationError):
    """The service requests session affinity other than ``None``."""

    def __init__(self, affinity: str, *, service: str | None = None) -> None:
        msg = f"Only session affinity None is supported, not {affinity}"
        super().__init__(msg, service=service)


class UnsupportedLoadBalancerIPError(ServiceValidationError):
    """The service requests a specific load balancer IP address."""

    def __init__(self, address: str, *, service: str | None = None) -> None:
        msg = f"Setting the load balancer IP ({address}) is not supported"
        super().__init__(msg, service=service)


class UnsupportedInternalLoadBalancerError(ServiceValidationError):
    """The service requests an internal load balancer."""

    def __init__(self, *, service: str | None = None) -> None:
        msg = "Internal load balancers are not supported"
        super().__init__(msg, service=service)


class InvalidShapeError(ServiceValidationError):
    """The service requests a load balancer shape that does not exist."""

    def __init__(self, shape: str, *, service: str | None = None) -> None:
        msg = f"Unknown load balancer shape {shape}"
        super().__init__(msg, service=service)
        self.shape = shape


class InvalidAnnotationError(ServiceValidationError):
    """A service annotation could not be parsed.

    Parameters
    ----------
    annotation
        Annotation key.
    value
        Unparseable value.
    """

    def __init__(
        self, annotation: str, value: str, *, service: str | None = None
    ) -> None:
        msg = f"Invalid value {value!r} for annotation {annotation}"
        super().__init__(msg, service=service)
        self.annotation = annotation
        self.value = value


class NotFoundError(SlackException):
    """An object does not exist on the cloud provider.

    Returned by lookups in the load balancer client. Callers treat this as
    absence rather than failure.

    Parameters
    ----------
    message
        Summary of error.
    kind
        Kind of object that was not found.
    name
        Name of the object.
    """

    def __init__(self, message: str, *, kind: str, name: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.name = name


class RemoteOperationError(SlackException):
    """A call to the cloud provider load balancer API failed.

    Parameters
    ----------
    message
        Summary of error.
    operation
        Name of the API operation that failed.
    load_balancer
        Name or identifier of the load balancer being acted on, if any.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        load_balancer: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.load_balancer = load_balancer
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        result = f"{self.message} ({self.operation}"
        if self.status:
            result += f", status {self.status}"
        result += ")"
        if self.body:
            result += f": {self.body}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self.message
        field = SlackTextField(heading="Operation", text=self.operation)
        message.fields.append(field)
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if self.load_balancer:
            block = SlackTextBlock(
                heading="Load balancer", text=self.load_balancer
            )
            message.blocks.append(block)
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        info.tags["operation"] = self.operation
        if self.status:
            info.tags["status"] = str(self.status)
        if self.load_balancer:
            info.tags["load_balancer"] = self.load_balancer
        if self.body:
            info.attachments["body"] = self.body
        return info


class MissingDataError(SlackException):
    """Data needed for reconciliation is absent."""


class MissingAnnotationError(MissingDataError):
    """A required service annotation is not set."""

    def __init__(self, annotation: str, *, service: str) -> None:
        super().__init__(f"No {annotation} annotation on service {service}")
        self.annotation = annotation
        self.service = service


class MissingSecretError(MissingDataError):
    """A TLS secret or a key within it was not found.

    Parameters
    ----------
    name
        Name of secret.
    namespace
        Namespace of secret.
    key
        If given, indicates the secret itself was found but the desired key
        within that secret was missing.
    """

    def __init__(
        self, name: str, namespace: str, key: str | None = None
    ) -> None:
        if key:
            message = f"No key {key} in secret {namespace}/{name}"
        else:
            message = f"Secret {namespace}/{name} does not exist"
        super().__init__(message)
        self.name = name
        self.namespace = namespace
        self.key = key

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        obj = f"Secret {self.namespace}/{self.name}"
        message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        return message


class NoAddressError(MissingDataError):
    """The load balancer has no assigned addresses yet.

    This is normally transient and the next reconciliation should succeed.
    """

    def __init__(self, load_balancer: str) -> None:
        msg = f"No IP addresses found for load balancer {load_balancer}"
        super().__init__(msg)
        self.load_balancer = load_balancer


class KubernetesError(SlackException):
    """An API call to Kubernetes failed.

    Parameters
    ----------
    message
        Summary of error.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    kind
        Kind of object being acted on.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception.
        kind
            Kind of object being acted on.
        namespace
            Namespace of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        KubernetesError
            Newly-created exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body if exc.body else exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        result = self._summary()
        if self.body:
            result += f": {self.body}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    def _summary(self) -> str:
        """Summarize the exception in a single line."""
        result = self.message
        details = []
        if self.name:
            kind = f"{self.kind} " if self.kind else ""
            if self.namespace:
                details.append(f"{kind}{self.namespace}/{self.name}")
            else:
                details.append(f"{kind}{self.name}")
        elif self.kind:
            details.append(self.kind)
        if self.status:
            details.append(f"status {self.status}")
        if details:
            result += " (" + ", ".join(details) + ")"
        return result
