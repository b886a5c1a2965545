"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "ANNOTATION_INTERNAL",
    "ANNOTATION_SHAPE",
    "ANNOTATION_SSL_PORTS",
    "ANNOTATION_SUBNET1",
    "ANNOTATION_SUBNET2",
    "ANNOTATION_TLS_SECRET",
    "CONFIGURATION_PATH",
    "DEFAULT_LOAD_BALANCER_POLICY",
    "DEFAULT_SHAPE",
    "HEALTH_CHECK_PATH",
    "HEALTH_CHECK_PORT",
    "HEALTH_CHECK_PROTOCOL",
    "KNOWN_SHAPES",
    "KUBERNETES_REQUEST_TIMEOUT",
    "LOAD_BALANCER_NAME_LENGTH",
    "SSL_CERTIFICATE_KEY",
    "SSL_PRIVATE_KEY_KEY",
    "UNSUPPORTED_PROTOCOLS",
]

_ANNOTATION_PREFIX = "service.beta.kubernetes.io/bmcs-load-balancer"

ANNOTATION_INTERNAL = f"{_ANNOTATION_PREFIX}-internal"
"""Marks a service as wanting an internal load balancer (unsupported)."""

ANNOTATION_SHAPE = f"{_ANNOTATION_PREFIX}-shape"
"""Overrides the load balancer shape.

The shape is only used at creation time. Changing it afterwards has no
effect on an existing load balancer.
"""

ANNOTATION_SUBNET1 = f"{_ANNOTATION_PREFIX}-subnet1"
"""Overrides the first load balancer subnet at creation time."""

ANNOTATION_SUBNET2 = f"{_ANNOTATION_PREFIX}-subnet2"
"""Overrides the second load balancer subnet at creation time."""

ANNOTATION_SSL_PORTS = f"{_ANNOTATION_PREFIX}-ssl-ports"
"""Comma-separated list of listener ports on which to terminate TLS."""

ANNOTATION_TLS_SECRET = f"{_ANNOTATION_PREFIX}-tls-secret"
"""Secret, as ``[namespace/]name``, holding the certificate and key."""

CONFIGURATION_PATH = Path("/etc/lbcontroller/config.yaml")
"""Default path to controller configuration."""

DEFAULT_LOAD_BALANCER_POLICY = "ROUND_ROBIN"
"""Traffic distribution policy for created backend sets."""

DEFAULT_SHAPE = "100Mbps"
"""Shape used when neither the service nor the configuration sets one."""

KNOWN_SHAPES = ("100Mbps", "400Mbps", "8000Mbps")
"""Load balancer shapes offered by the cloud provider."""

HEALTH_CHECK_PATH = "/healthz"
"""URL path of the node health check."""

HEALTH_CHECK_PORT = 10256
"""Port of the kube-proxy health endpoint on every node."""

HEALTH_CHECK_PROTOCOL = "HTTP"
"""Protocol used for node health checks."""

KUBERNETES_REQUEST_TIMEOUT = timedelta(seconds=30)
"""How long to wait for a single Kubernetes API call."""

LOAD_BALANCER_NAME_LENGTH = 32
"""Maximum length of the UID-derived portion of a load balancer name."""

SSL_CERTIFICATE_KEY = "tls.crt"
"""Key in a TLS secret holding the PEM certificate."""

SSL_PRIVATE_KEY_KEY = "tls.key"
"""Key in a TLS secret holding the PEM private key."""

UNSUPPORTED_PROTOCOLS = frozenset({"UDP"})
"""Service port protocols the load balancer cannot serve."""
