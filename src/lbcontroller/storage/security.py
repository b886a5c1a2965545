"""Interface to the firewall rules protecting node ports."""

from __future__ import annotations

from typing import Protocol

from ..models.domain.loadbalancer import SecurityRuleUpdate

__all__ = ["SecurityRuleClient"]


class SecurityRuleClient(Protocol):
    """Persistence of firewall rules between load balancers and nodes.

    Implementations must apply an update atomically: either every port change
    in the update takes effect or none does.
    """

    async def update_rules(self, update: SecurityRuleUpdate) -> None:
        """Open and close node ports for traffic from the load balancer.

        Raises
        ------
        lbcontroller.exceptions.RemoteOperationError
            Raised if the rules could not be saved.
        """
