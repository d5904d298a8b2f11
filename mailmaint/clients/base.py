from typing import Optional, Protocol, Set

from mailmaint.schemas import (
    ActivationPolicy,
    ComponentName,
    ComponentState,
    ServerInfo,
)


class ControlPlaneClient(Protocol):
    """Administrative operations the maintenance plans need from the cluster.

    Implementations raise ``ControlPlaneError`` when a command fails and
    ``NotFoundError`` when ``get_server`` cannot find the identity.
    ``get_cluster_node_state`` returns the state name as the cluster reports
    it; ``ClusterNodeState`` lists the values the plans act on.
    """

    def get_server(self, identity: str) -> ServerInfo:
        ...  # pragma: no cover

    def set_component_state(
        self, server: str, component: ComponentName, state: ComponentState, requester: str
    ) -> None:
        ...  # pragma: no cover

    def redirect_messages(self, server: str, target: str) -> None:
        ...  # pragma: no cover

    def suspend_cluster_node(self, name: str) -> None:
        ...  # pragma: no cover

    def resume_cluster_node(self, name: str) -> None:
        ...  # pragma: no cover

    def get_cluster_node_state(self, name: str) -> str:
        ...  # pragma: no cover

    def set_mailbox_server_activation(self, server: str, disable_and_move_now: bool) -> None:
        ...  # pragma: no cover

    def get_mailbox_server_activation_policy(self, server: str) -> ActivationPolicy:
        ...  # pragma: no cover

    def set_mailbox_server_activation_policy(self, server: str, policy: ActivationPolicy) -> None:
        ...  # pragma: no cover

    def get_mounted_database_copies(self, server: str) -> Set[str]:
        ...  # pragma: no cover

    def get_replication_group_for_server(self, server: str) -> Optional[str]:
        ...  # pragma: no cover

    def rebalance_group(self, group: str) -> None:
        ...  # pragma: no cover
