"""The two fixed maintenance plans: enter and exit."""

import logging
from datetime import datetime, timezone
from typing import Optional

from mailmaint.core.config import settings
from mailmaint.exceptions import StepSkipped
from mailmaint.schemas import (
    ActivationPolicy,
    ClusterNodeState,
    ComponentName,
    ComponentState,
    MaintenanceRecord,
    Outcome,
    PlanName,
    StepClass,
)
from mailmaint.sequencer import MaintenanceSequencer, PlanContext, TransitionPlan

logger = logging.getLogger(__name__)


def build_enter_plan(
    sequencer: MaintenanceSequencer,
    identity: str,
    partner: Optional[str] = None,
    requester: Optional[str] = None,
) -> TransitionPlan:
    client = sequencer.client
    requester = requester or settings.COMPONENT_REQUESTER
    plan = TransitionPlan(PlanName.ENTER, PlanContext(identity=identity, partner_identity=partner))

    def resolve_source(ctx: PlanContext):
        ctx.server = sequencer.resolve(ctx.identity)
        return f"found {ctx.server.fqdn}"

    def resolve_partner(ctx: PlanContext):
        ctx.partner = sequencer.resolve(ctx.partner_identity)
        return f"found {ctx.partner.fqdn}"

    def drain_transport(ctx: PlanContext):
        client.set_component_state(ctx.server_name, ComponentName.HUB_TRANSPORT, ComponentState.DRAINING, requester)

    def redirect_messages(ctx: PlanContext):
        target = ctx.partner.routable_address
        client.redirect_messages(ctx.server_name, target)
        return f"redirected to {target}"

    def suspend_cluster_node(ctx: PlanContext):
        client.suspend_cluster_node(ctx.server_name)

    def move_active_copies(ctx: PlanContext):
        client.set_mailbox_server_activation(ctx.server_name, disable_and_move_now=True)

    def block_activation(ctx: PlanContext):
        previous = client.get_mailbox_server_activation_policy(ctx.server_name)
        ctx.record = MaintenanceRecord(
            identity=ctx.identity,
            activation_policy=previous,
            recorded_at=datetime.now(timezone.utc),
        )
        client.set_mailbox_server_activation_policy(ctx.server_name, ActivationPolicy.BLOCKED)
        return f"previous policy {previous.value}"

    def no_mounted_copies() -> bool:
        plan.context.mounted = sorted(client.get_mounted_database_copies(plan.context.server_name))
        return not plan.context.mounted

    def describe_mounted() -> str:
        return f"{len(plan.context.mounted)} database(s) still mounted: {', '.join(plan.context.mounted)}"

    def await_quiescence(ctx: PlanContext):
        attempts = sequencer.await_quiescence(no_mounted_copies, step="Wait for database copies to dismount", describe=describe_mounted)
        return f"no mounted database copies after {attempts} check(s)"

    def set_offline(ctx: PlanContext):
        client.set_component_state(ctx.server_name, ComponentName.SERVER_WIDE_OFFLINE, ComponentState.INACTIVE, requester)

    def report_record(ctx: PlanContext):
        return f"record this policy to restore on exit: {ctx.record.activation_policy.value}"

    plan.add("Resolve server", resolve_source)
    if partner:
        plan.add("Resolve partner server", resolve_partner)
    plan.add("Drain transport", drain_transport)
    if partner:
        plan.add("Redirect messages", redirect_messages)
    plan.add("Suspend cluster node", suspend_cluster_node)
    plan.add("Move active database copies", move_active_copies)
    plan.add("Block database auto-activation", block_activation)
    plan.add("Wait for database copies to dismount", await_quiescence)
    plan.add("Set server offline", set_offline)
    plan.add("Report previous activation policy", report_record)
    return plan


def build_exit_plan(
    sequencer: MaintenanceSequencer,
    identity: str,
    policy: Optional[ActivationPolicy] = None,
    requester: Optional[str] = None,
) -> TransitionPlan:
    client = sequencer.client
    requester = requester or settings.COMPONENT_REQUESTER
    context = PlanContext(identity=identity, activation_policy=policy or ActivationPolicy.UNRESTRICTED)
    plan = TransitionPlan(PlanName.EXIT, context)

    def resolve_server(ctx: PlanContext):
        ctx.server = sequencer.resolve(ctx.identity)
        return f"found {ctx.server.fqdn}"

    def find_group(ctx: PlanContext):
        ctx.group = client.get_replication_group_for_server(ctx.server_name)
        if not ctx.group:
            raise StepSkipped("server is not a member of a replication group")
        return f"member of {ctx.group}"

    def set_online(ctx: PlanContext):
        client.set_component_state(ctx.server_name, ComponentName.SERVER_WIDE_OFFLINE, ComponentState.ACTIVE, requester)

    def resume_cluster_node(ctx: PlanContext):
        state = client.get_cluster_node_state(ctx.server_name)
        if state != ClusterNodeState.PAUSED.value:
            raise StepSkipped(f"cluster node is {state}, not paused")
        client.resume_cluster_node(ctx.server_name)

    def restore_activation_policy(ctx: PlanContext):
        client.set_mailbox_server_activation_policy(ctx.server_name, ctx.activation_policy)
        return f"policy set to {ctx.activation_policy.value}"

    def allow_activation(ctx: PlanContext):
        client.set_mailbox_server_activation(ctx.server_name, disable_and_move_now=False)

    def activate_transport(ctx: PlanContext):
        client.set_component_state(ctx.server_name, ComponentName.HUB_TRANSPORT, ComponentState.ACTIVE, requester)

    def rebalance(ctx: PlanContext):
        if not ctx.group:
            raise StepSkipped("no replication group to rebalance")
        client.rebalance_group(ctx.group)
        return f"rebalanced {ctx.group}"

    plan.add("Resolve server", resolve_server)
    plan.add("Look up replication group", find_group, StepClass.BEST_EFFORT)
    plan.add("Set server online", set_online)
    plan.add("Resume cluster node", resume_cluster_node, StepClass.BEST_EFFORT)
    plan.add("Restore database auto-activation policy", restore_activation_policy)
    plan.add("Allow database activation", allow_activation)
    plan.add("Activate transport", activate_transport)
    plan.add("Rebalance replication group", rebalance, StepClass.BEST_EFFORT)
    return plan


def enter_maintenance(
    sequencer: MaintenanceSequencer,
    identity: str,
    partner: Optional[str] = None,
    requester: Optional[str] = None,
) -> Outcome:
    logger.info(f"Entering maintenance on {identity}" + (f" with partner {partner}" if partner else ""))
    return sequencer.run_plan(build_enter_plan(sequencer, identity, partner=partner, requester=requester))


def exit_maintenance(
    sequencer: MaintenanceSequencer,
    identity: str,
    policy: Optional[ActivationPolicy] = None,
    requester: Optional[str] = None,
) -> Outcome:
    logger.info(f"Exiting maintenance on {identity}")
    return sequencer.run_plan(build_exit_plan(sequencer, identity, policy=policy, requester=requester))
