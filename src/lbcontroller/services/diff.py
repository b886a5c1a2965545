"""Comparison of desired and actual load balancer state.

Listeners and backends are compared only by derived name. Two objects with
the same name are considered identical even if other fields differ, so a
change to (for example) the health check of a backend set is not acted on
until something that is part of the name also changes.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from ..models.domain.loadbalancer import Backend, BackendSet, Listener
from .builder.desired import get_listener_name

__all__ = [
    "AllBackendModifications",
    "BackendModifications",
    "ListenerModifications",
    "get_all_backend_modifications",
    "get_backend_modifications",
    "get_listener_modifications",
]


@dataclass
class ListenerModifications:
    """Listeners to add and remove, each sorted by name."""

    additions: list[Listener] = field(default_factory=list)
    removals: list[Listener] = field(default_factory=list)


@dataclass
class BackendModifications:
    """Backends of one backend set to add and remove, sorted by key."""

    additions: list[Backend] = field(default_factory=list)
    removals: list[Backend] = field(default_factory=list)


@dataclass
class AllBackendModifications:
    """Backends to add and remove, keyed by backend set name."""

    additions: dict[str, list[Backend]] = field(default_factory=dict)
    removals: dict[str, list[Backend]] = field(default_factory=dict)


def _listeners_by_name(
    listeners: Mapping[str, Listener],
) -> dict[str, Listener]:
    lookup = {}
    for listener in listeners.values():
        protocol = listener.protocol
        name = get_listener_name(protocol, listener.port, listener.ssl_config)
        lookup[name] = listener
    return lookup


def get_listener_modifications(
    desired: Mapping[str, Listener], actual: Mapping[str, Listener]
) -> ListenerModifications:
    """Determine the listeners to add and remove.

    Parameters
    ----------
    desired
        Desired listeners.
    actual
        Listeners currently present on the load balancer.

    Returns
    -------
    ListenerModifications
        Listeners whose derived name is only in the desired state, and
        listeners whose derived name is only in the actual state.
    """
    desired_lookup = _listeners_by_name(desired)
    actual_lookup = _listeners_by_name(actual)
    additions = sorted(desired_lookup.keys() - actual_lookup.keys())
    removals = sorted(actual_lookup.keys() - desired_lookup.keys())
    return ListenerModifications(
        additions=[desired_lookup[n] for n in additions],
        removals=[actual_lookup[n] for n in removals],
    )


def get_backend_modifications(
    desired: BackendSet, actual: BackendSet | None
) -> BackendModifications:
    """Determine the backends of a backend set to add and remove.

    Parameters
    ----------
    desired
        Desired backend set.
    actual
        Backend set of the same name on the load balancer, if any.

    Returns
    -------
    BackendModifications
        Backends only in the desired set and backends only in the actual
        set, compared by address and port.
    """
    desired_lookup = {b.key: b for b in desired.backends}
    actual_lookup = {b.key: b for b in actual.backends} if actual else {}
    additions = sorted(desired_lookup.keys() - actual_lookup.keys())
    removals = sorted(actual_lookup.keys() - desired_lookup.keys())
    return BackendModifications(
        additions=[desired_lookup[k] for k in additions],
        removals=[actual_lookup[k] for k in removals],
    )


def get_all_backend_modifications(
    desired: Mapping[str, BackendSet], actual: Mapping[str, BackendSet]
) -> AllBackendModifications:
    """Determine the backends to add and remove across all backend sets.

    Only backend sets present in both the desired and actual state are
    compared. Creating and deleting whole backend sets is driven by the
    listener comparison.

    Parameters
    ----------
    desired
        Desired backend sets keyed by name.
    actual
        Backend sets on the load balancer keyed by name.

    Returns
    -------
    AllBackendModifications
        Non-empty additions and removals keyed by backend set name, in name
        order.
    """
    result = AllBackendModifications()
    for name in sorted(desired.keys() & actual.keys()):
        modifications = get_backend_modifications(desired[name], actual[name])
        if modifications.additions:
            result.additions[name] = modifications.additions
        if modifications.removals:
            result.removals[name] = modifications.removals
    return result
