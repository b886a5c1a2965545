"""Batched changes to the firewall rules for load balancer node ports."""

from __future__ import annotations

from structlog.stdlib import BoundLogger

from ..models.domain.loadbalancer import LoadBalancerSpec, SecurityRuleUpdate
from ..storage.security import SecurityRuleClient

__all__ = ["SecurityRuleChanges"]


class SecurityRuleChanges:
    """Accumulate firewall rule changes during one reconciliation.

    Changes are only recorded in memory until `save` is called, which
    persists all of them in one update. If reconciliation fails before then,
    nothing is saved, so the caller requests the ports still in use again
    on the next reconciliation.

    Parameters
    ----------
    spec
        Load balancer whose node ports are being opened or closed.
    client
        Client used to persist the rules.
    logger
        Logger to use.
    """

    def __init__(
        self,
        spec: LoadBalancerSpec,
        client: SecurityRuleClient,
        logger: BoundLogger,
    ) -> None:
        self._spec = spec
        self._client = client
        self._logger = logger

        # Mapping of node port to whether it should be open. The last change
        # requested for a port wins.
        self._ports: dict[int, bool] = {}
        self._saved = False

    @property
    def pending(self) -> SecurityRuleUpdate:
        """Update that `save` would persist."""
        added = {p for p, is_open in self._ports.items() if is_open}
        removed = {p for p, is_open in self._ports.items() if not is_open}
        return SecurityRuleUpdate(
            subnets=self._spec.subnets,
            node_ips=self._spec.node_ips,
            added_ports=frozenset(added),
            removed_ports=frozenset(removed),
        )

    def ensure_rules_added(self, port: int) -> None:
        """Record that traffic to a node port should be allowed."""
        self._check_not_saved()
        self._logger.debug("Opening node port", port=port)
        self._ports[port] = True

    def ensure_rules_removed(self, port: int) -> None:
        """Record that traffic to a node port should be blocked."""
        self._check_not_saved()
        self._logger.debug("Closing node port", port=port)
        self._ports[port] = False

    async def save(self) -> None:
        """Persist all recorded changes.

        May only be called once. If no changes were recorded, nothing is sent
        to the security rule client.

        Raises
        ------
        RuntimeError
            Raised if the changes were already saved.
        lbcontroller.exceptions.RemoteOperationError
            Raised if the rules could not be saved.
        """
        self._check_not_saved()
        self._saved = True
        if not self._ports:
            return
        update = self.pending
        self._logger.info(
            "Updating security rules",
            added_ports=sorted(update.added_ports),
            removed_ports=sorted(update.removed_ports),
        )
        await self._client.update_rules(update)

    def _check_not_saved(self) -> None:
        if self._saved:
            raise RuntimeError("Security rule changes were already saved")
