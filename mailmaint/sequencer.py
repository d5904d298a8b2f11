"""Ordered plan runner for maintenance transitions.

A plan is a fixed list of steps run strictly in order. A required step that
fails ends the run; a best-effort step that fails is reported and the run
continues. Completed steps are never rolled back: the control plane offers no
compensating actions, so a failed run leaves the node wherever it stopped and
the operator finishes by hand.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from mailmaint.clients.base import ControlPlaneClient
from mailmaint.core.config import settings
from mailmaint.exceptions import (
    BestEffortStepError,
    ControlPlaneError,
    MaintenanceError,
    NotFoundError,
    PlanCancelled,
    PredicateTimeout,
    RequiredStepError,
    ResolutionError,
    StepSkipped,
)
from mailmaint.schemas import (
    ActivationPolicy,
    MaintenanceRecord,
    Outcome,
    PlanName,
    ProgressEvent,
    RunStatus,
    ServerInfo,
    StepClass,
    StepStatus,
)

logger = logging.getLogger(__name__)

_UNSET = object()

ProgressListener = Callable[[ProgressEvent], None]


@dataclass
class PlanContext:
    """mutable state shared by the steps of one run"""
    identity: str
    partner_identity: Optional[str] = None
    server: Optional[ServerInfo] = None
    partner: Optional[ServerInfo] = None
    group: Optional[str] = None
    record: Optional[MaintenanceRecord] = None
    activation_policy: ActivationPolicy = ActivationPolicy.UNRESTRICTED
    mounted: List[str] = field(default_factory=list)

    @property
    def server_name(self) -> str:
        return self.server.name if self.server else self.identity


StepAction = Callable[[PlanContext], Optional[str]]


@dataclass
class Step:
    label: str
    action: StepAction
    classification: StepClass = StepClass.REQUIRED

    @property
    def required(self) -> bool:
        return self.classification == StepClass.REQUIRED


@dataclass
class TransitionPlan:
    name: PlanName
    context: PlanContext
    steps: List[Step] = field(default_factory=list)

    def add(self, label: str, action: StepAction, classification: StepClass = StepClass.REQUIRED) -> "TransitionPlan":
        self.steps.append(Step(label, action, classification))
        return self


class MaintenanceSequencer:
    """Runs transition plans against one control-plane client.

    Progress is published as ``ProgressEvent`` objects to every registered
    listener and to the module logger. ``cancel_event`` is checked between
    steps and between poll attempts; a step already running always finishes.
    """

    def __init__(
        self,
        client: ControlPlaneClient,
        poll_interval: Optional[float] = None,
        max_attempts=_UNSET,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
        listeners: Optional[List[ProgressListener]] = None,
    ):
        self.client = client
        self.poll_interval = settings.POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.max_attempts = settings.MAX_POLL_ATTEMPTS if max_attempts is _UNSET else max_attempts
        self._sleep = sleep
        self._cancel_event = cancel_event or threading.Event()
        self._listeners: List[ProgressListener] = list(listeners or [])

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self):
        self._cancel_event.set()

    def add_listener(self, listener: ProgressListener):
        self._listeners.append(listener)

    def emit(self, step: str, status: StepStatus, detail: Optional[str] = None) -> ProgressEvent:
        event = ProgressEvent(step=step, status=status, detail=detail)
        if status == StepStatus.FAILED:
            logger.error(f"[{step}] {status.value}: {detail}")
        else:
            logger.info(f"[{step}] {status.value}" + (f": {detail}" if detail else ""))
        for listener in self._listeners:
            listener(event)
        return event

    def resolve(self, identity: str) -> ServerInfo:
        """look the node up before anything is changed on it"""
        try:
            return self.client.get_server(identity)
        except NotFoundError as e:
            raise ResolutionError(f"Server {identity} not found: {e}")
        except ControlPlaneError as e:
            raise ResolutionError(f"Could not resolve server {identity}: {e}")

    def await_quiescence(
        self,
        predicate: Callable[[], bool],
        step: str = "Await quiescence",
        poll_interval: Optional[float] = None,
        max_attempts=_UNSET,
        describe: Optional[Callable[[], str]] = None,
    ) -> int:
        """
        poll ``predicate`` at a fixed interval until it holds

        returns the number of evaluations; raises PredicateTimeout once
        ``max_attempts`` evaluations failed (None => never) and PlanCancelled
        when the cancel event is set between attempts
        """
        interval = self.poll_interval if poll_interval is None else poll_interval
        limit = self.max_attempts if max_attempts is _UNSET else max_attempts

        attempts = 0
        while True:
            attempts += 1
            if predicate():
                return attempts

            if limit is not None and attempts >= limit:
                raise PredicateTimeout(f"Condition not met after {attempts} attempts", step=step)

            reason = describe() if describe else "condition not met"
            self.emit(step, StepStatus.WAITING, f"{reason}; attempt {attempts}, retrying in {interval:g}s")
            self._sleep(interval)

            if self.cancelled:
                raise PlanCancelled("Cancelled while waiting", step=step)

    def run_plan(self, plan: TransitionPlan) -> Outcome:
        context = plan.context
        events: List[ProgressEvent] = []
        collect = events.append
        self._listeners.append(collect)

        try:
            for step in plan.steps:
                if self.cancelled:
                    return self._finish(plan, events, RunStatus.CANCELLED, PlanCancelled("Cancelled before step", step=step.label))

                self.emit(step.label, StepStatus.STARTED)
                try:
                    detail = step.action(context)
                except StepSkipped as e:
                    self.emit(step.label, StepStatus.SKIPPED, str(e) or None)
                    continue
                except PlanCancelled as e:
                    self.emit(step.label, StepStatus.FAILED, str(e))
                    return self._finish(plan, events, RunStatus.CANCELLED, e)
                except (ControlPlaneError, MaintenanceError) as e:
                    if step.required:
                        error = e if isinstance(e, MaintenanceError) else RequiredStepError(str(e))
                        error.step = step.label
                        self.emit(step.label, StepStatus.FAILED, str(e))
                        return self._finish(plan, events, RunStatus.FAILED, error)

                    warning = BestEffortStepError(str(e), step=step.label)
                    self.emit(step.label, StepStatus.FAILED, f"{warning} (best effort, continuing)")
                    continue

                self.emit(step.label, StepStatus.SUCCEEDED, detail)

            return self._finish(plan, events, RunStatus.COMPLETED)
        finally:
            self._listeners.remove(collect)

    def _finish(self, plan: TransitionPlan, events: List[ProgressEvent], status: RunStatus, error: Optional[MaintenanceError] = None) -> Outcome:
        outcome = Outcome(
            plan=plan.name,
            identity=plan.context.identity,
            status=status,
            record=plan.context.record,
            events=list(events),
        )
        if error is not None:
            outcome.failed_step = error.step
            outcome.error_kind = error.kind
            outcome.error = str(error)

        if status == RunStatus.COMPLETED:
            logger.info(f"{plan.name.value} completed for {plan.context.identity}")
        else:
            logger.error(f"{plan.name.value} {status.value} for {plan.context.identity} at step '{outcome.failed_step}': {outcome.error}")
        return outcome
