from mailmaint.database import SessionLocal
from mailmaint import crud, schemas
from mailmaint.clients.base import ControlPlaneClient
from mailmaint.core.maintenance_state import maintenance_state
from mailmaint.plans import enter_maintenance, exit_maintenance
from mailmaint.sequencer import MaintenanceSequencer
import logging

logger = logging.getLogger(__name__)

#an unbounded mount wait emits one WAITING event per poll
WAITING_EVENT_EVERY = 10


class EventRecorder:
    """persists the progress events of one run, keeping every Nth consecutive WAITING event"""

    def __init__(self, db, run_id: int, waiting_every: int = WAITING_EVENT_EVERY):
        self.db = db
        self.run_id = run_id
        self.waiting_every = max(1, waiting_every)
        self.sequence = 0
        self._waiting = 0

    def __call__(self, event: schemas.ProgressEvent):
        if event.status == schemas.StepStatus.WAITING:
            self._waiting += 1
            if (self._waiting - 1) % self.waiting_every:
                return
        else:
            self._waiting = 0
        self.sequence += 1
        crud.add_progress_event(self.db, self.run_id, event, sequence=self.sequence)


def run_plan_job(run_id: int, client: ControlPlaneClient, sequencer_factory=MaintenanceSequencer):
    """
    execute a queued plan run, persisting its progress events as they happen
    """
    cancel_event = maintenance_state.register(run_id)
    db = SessionLocal()
    try:
        run = crud.set_run_status(db, run_id, schemas.RunStatus.RUNNING)
        if run is None:
            logger.error(f"Plan run {run_id} disappeared before it started")
            return None

        sequencer = sequencer_factory(client, cancel_event=cancel_event, listeners=[EventRecorder(db, run_id)])

        logger.info(f"Starting plan run {run_id}: {run.plan.value} on {run.identity} for {run.requested_by}")
        try:
            if run.plan == schemas.PlanName.ENTER:
                outcome = enter_maintenance(sequencer, run.identity, partner=run.partner)
                #the policy is already Blocked once recorded, keep it even if a later step failed
                if outcome.record:
                    crud.save_maintenance_record(db, outcome.record)
            else:
                policy = schemas.ActivationPolicy(run.activation_policy) if run.activation_policy else None
                outcome = exit_maintenance(sequencer, run.identity, policy=policy)
                if outcome.succeeded:
                    crud.delete_maintenance_record(db, run.identity)
        except Exception as e:
            logger.exception(f"Plan run {run_id} crashed: {e}")
            db.rollback()
            outcome = schemas.Outcome(
                plan=run.plan,
                identity=run.identity,
                status=schemas.RunStatus.FAILED,
                error_kind=type(e).__name__,
                error=str(e),
            )

        crud.finish_plan_run(db, run_id, outcome)
        logger.info(f"Plan run {run_id} finished: {outcome.status.value}")
        return outcome
    finally:
        maintenance_state.release(run_id)
        db.close()


def recover_interrupted_runs() -> int:
    """
    fail runs left pending or running by a previous process so their nodes accept new runs
    """
    db = SessionLocal()
    try:
        count = crud.fail_interrupted_runs(db)
        if count:
            logger.warning(f"Marked {count} interrupted plan run(s) as failed")
        return count
    finally:
        db.close()
