"""Convergence of cloud load balancers with Kubernetes services."""

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]

__version__: str
"""The version string of lbcontroller."""

try:
    __version__ = version("lbcontroller")
except PackageNotFoundError:
    # package is not installed
    __version__ = "0.0.0"
