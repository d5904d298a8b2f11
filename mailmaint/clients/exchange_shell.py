"""Control-plane client that drives the Exchange management shell.

Every call spawns one non-interactive PowerShell process, loads the Exchange
cmdlets (local snap-in or an implicit remoting session) and runs a single
cmdlet pipeline. Structured results are returned through ``ConvertTo-Json``.
"""

import json
import logging
import subprocess
from typing import Any, Callable, Optional, Set

from mailmaint.core.config import settings
from mailmaint.exceptions import ControlPlaneError, NotFoundError
from mailmaint.schemas import (
    ActivationPolicy,
    ClusterNodeState,
    ComponentName,
    ComponentState,
    ServerInfo,
)

logger = logging.getLogger(__name__)


def quote(value: str) -> str:
    """single-quoted PowerShell literal"""
    return "'" + str(value).replace("'", "''") + "'"


class ExchangeShellClient:

    def __init__(
        self,
        executable: Optional[str] = None,
        snapin: Optional[str] = None,
        connection_uri: Optional[str] = None,
        timeout: Optional[int] = None,
        rebalance_script: Optional[str] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.executable = executable or settings.POWERSHELL_EXECUTABLE
        self.snapin = snapin if snapin is not None else settings.EXCHANGE_SNAPIN
        self.connection_uri = connection_uri if connection_uri is not None else settings.EXCHANGE_CONNECTION_URI
        self.timeout = timeout or settings.SHELL_TIMEOUT_SECONDS
        self.rebalance_script = rebalance_script if rebalance_script is not None else settings.REBALANCE_SCRIPT
        self._runner = runner

    def _prelude(self, cluster: bool = False) -> str:
        parts = ["$ErrorActionPreference = 'Stop'"]
        if self.connection_uri:
            parts.append(
                "$session = New-PSSession -ConfigurationName Microsoft.Exchange "
                f"-ConnectionUri {quote(self.connection_uri)} -Authentication Kerberos"
            )
            parts.append("Import-PSSession $session -DisableNameChecking -AllowClobber | Out-Null")
        elif self.snapin:
            parts.append(f"Add-PSSnapin {quote(self.snapin)}")
        if cluster:
            parts.append("Import-Module FailoverClusters")
        return "; ".join(parts)

    def _invoke(self, script: str, cluster: bool = False) -> str:
        command = [
            self.executable,
            "-NoProfile",
            "-NonInteractive",
            "-Command",
            f"{self._prelude(cluster=cluster)}; {script}",
        ]
        logger.debug(f"Running shell command: {script}")

        try:
            proc = self._runner(command, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise ControlPlaneError(f"Command timed out after {self.timeout}s", command=script)
        except OSError as e:
            raise ControlPlaneError(f"Could not start {self.executable}: {e}", command=script)

        if proc.returncode != 0:
            message = (proc.stderr or "").strip() or f"exit status {proc.returncode}"
            raise ControlPlaneError(message, command=script)
        return (proc.stdout or "").strip()

    def _invoke_json(self, script: str, cluster: bool = False) -> Any:
        output = self._invoke(f"{script} | ConvertTo-Json -Compress -Depth 3", cluster=cluster)
        if not output:
            return None
        try:
            return json.loads(output)
        except ValueError:
            raise ControlPlaneError(f"Unparseable shell output: {output[:200]}", command=script)

    # ============= SERVERS =============

    def get_server(self, identity: str) -> ServerInfo:
        data = self._invoke_json(
            f"Get-ExchangeServer -Identity {quote(identity)} -ErrorAction SilentlyContinue "
            "| Select-Object Name, Fqdn"
        )
        if isinstance(data, list):
            data = data[0] if data else None
        if not data or not data.get("Name"):
            raise NotFoundError(f"Server {identity} not found")
        return ServerInfo(name=data["Name"], fqdn=data.get("Fqdn") or data["Name"])

    def set_component_state(
        self, server: str, component: ComponentName, state: ComponentState, requester: str
    ) -> None:
        self._invoke(
            f"Set-ServerComponentState -Identity {quote(server)} "
            f"-Component {ComponentName(component).value} -State {ComponentState(state).value} "
            f"-Requester {quote(requester)}"
        )

    # ============= TRANSPORT =============

    def redirect_messages(self, server: str, target: str) -> None:
        self._invoke(f"Redirect-Message -Server {quote(server)} -Target {quote(target)} -Confirm:$false")

    # ============= CLUSTER =============

    def suspend_cluster_node(self, name: str) -> None:
        self._invoke(f"Suspend-ClusterNode -Name {quote(name)} | Out-Null", cluster=True)

    def resume_cluster_node(self, name: str) -> None:
        self._invoke(f"Resume-ClusterNode -Name {quote(name)} | Out-Null", cluster=True)

    def get_cluster_node_state(self, name: str) -> str:
        output = self._invoke(f"(Get-ClusterNode -Name {quote(name)}).State.ToString()", cluster=True)
        if not output:
            logger.warning(f"Cluster reported no state for node {name}")
            return ClusterNodeState.UNKNOWN.value
        return output

    # ============= DATABASE ACTIVATION =============

    def set_mailbox_server_activation(self, server: str, disable_and_move_now: bool) -> None:
        flag = "$true" if disable_and_move_now else "$false"
        self._invoke(
            f"Set-MailboxServer -Identity {quote(server)} -DatabaseCopyActivationDisabledAndMoveNow {flag}"
        )

    def get_mailbox_server_activation_policy(self, server: str) -> ActivationPolicy:
        output = self._invoke(
            f"(Get-MailboxServer -Identity {quote(server)}).DatabaseCopyAutoActivationPolicy.ToString()"
        )
        try:
            return ActivationPolicy.parse(output)
        except ValueError as e:
            raise ControlPlaneError(str(e))

    def set_mailbox_server_activation_policy(self, server: str, policy: ActivationPolicy) -> None:
        self._invoke(
            f"Set-MailboxServer -Identity {quote(server)} "
            f"-DatabaseCopyAutoActivationPolicy {ActivationPolicy(policy).value}"
        )

    def get_mounted_database_copies(self, server: str) -> Set[str]:
        #-InputObject keeps single-element arrays as arrays
        data = self._invoke(
            "ConvertTo-Json -Compress -InputObject @("
            f"Get-MailboxDatabaseCopyStatus -Server {quote(server)} "
            "| Where-Object { $_.Status -eq 'Mounted' } "
            "| ForEach-Object { $_.DatabaseName })"
        )
        if not data:
            return set()
        try:
            names = json.loads(data)
        except ValueError:
            raise ControlPlaneError(f"Unparseable shell output: {data[:200]}")
        if isinstance(names, str):
            names = [names]
        return {name for name in names if name}

    # ============= REPLICATION GROUPS =============

    def get_replication_group_for_server(self, server: str) -> Optional[str]:
        output = self._invoke(
            f"$dag = (Get-MailboxServer -Identity {quote(server)}).DatabaseAvailabilityGroup; "
            "if ($dag) { $dag.Name }"
        )
        return output or None

    def _rebalance_script_path(self) -> str:
        if self.rebalance_script:
            return quote(self.rebalance_script)
        #$exscripts only exists in the interactive management shell
        return "(Join-Path $env:ExchangeInstallPath 'Scripts\\RebalanceActiveDatabaseCopies.ps1')"

    def rebalance_group(self, group: str) -> None:
        self._invoke(
            f"& {self._rebalance_script_path()} -BalanceDbsByActivationPreference "
            f"-DagName {quote(group)} -Confirm:$false"
        )
