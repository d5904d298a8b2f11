from sqlalchemy.orm import Session, joinedload
from typing import Optional, List
from datetime import datetime, timedelta, timezone
from . import models, schemas


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

# ============= MAINTENANCE RECORD CRUD =============

def get_maintenance_record(db: Session, identity: str) -> Optional[models.MaintenanceRecord]:
    return db.query(models.MaintenanceRecord).filter(models.MaintenanceRecord.identity == identity.lower()).first()

def save_maintenance_record(db: Session, record: schemas.MaintenanceRecord) -> models.MaintenanceRecord:
    """insert or overwrite the record for a node"""
    recorded_at = record.recorded_at.replace(tzinfo=None) if record.recorded_at else _utcnow()
    db_record = get_maintenance_record(db, record.identity)
    if db_record:
        db_record.activation_policy = record.activation_policy
        db_record.recorded_at = recorded_at
    else:
        db_record = models.MaintenanceRecord(
            identity=record.identity.lower(),
            activation_policy=record.activation_policy,
            recorded_at=recorded_at,
        )
        db.add(db_record)
    db.commit()
    db.refresh(db_record)
    return db_record

def delete_maintenance_record(db: Session, identity: str) -> bool:
    db_record = get_maintenance_record(db, identity)
    if not db_record:
        return False
    db.delete(db_record)
    db.commit()
    return True

# ============= PLAN RUN CRUD =============

def get_plan_run(db: Session, run_id: int) -> Optional[models.PlanRun]:
    return (
        db.query(models.PlanRun)
        .options(joinedload(models.PlanRun.events))
        .populate_existing()
        .filter(models.PlanRun.id == run_id)
        .first()
    )

def get_active_run_for_node(db: Session, identity: str) -> Optional[models.PlanRun]:
    return (
        db.query(models.PlanRun)
        .filter(
            models.PlanRun.identity == identity.lower(),
            models.PlanRun.status.in_([schemas.RunStatus.PENDING, schemas.RunStatus.RUNNING]),
        )
        .first()
    )

def get_plan_runs(db: Session, identity: Optional[str] = None, skip: int = 0, limit: int = 50) -> List[models.PlanRun]:
    query = db.query(models.PlanRun)
    if identity:
        query = query.filter(models.PlanRun.identity == identity.lower())
    return query.order_by(models.PlanRun.created_at.desc(), models.PlanRun.id.desc()).offset(skip).limit(limit).all()

def create_plan_run(
    db: Session,
    plan: schemas.PlanName,
    identity: str,
    requested_by: str,
    partner: Optional[str] = None,
    activation_policy: Optional[schemas.ActivationPolicy] = None,
) -> models.PlanRun:
    db_run = models.PlanRun(
        plan=plan,
        identity=identity.lower(),
        partner=partner,
        activation_policy=activation_policy.value if activation_policy else None,
        requested_by=requested_by,
        status=schemas.RunStatus.PENDING,
    )
    db.add(db_run)
    db.commit()
    db.refresh(db_run)
    return db_run

def set_run_status(db: Session, run_id: int, status: schemas.RunStatus) -> Optional[models.PlanRun]:
    db_run = db.query(models.PlanRun).filter(models.PlanRun.id == run_id).first()
    if not db_run:
        return None
    db_run.status = status
    db.commit()
    db.refresh(db_run)
    return db_run

def finish_plan_run(db: Session, run_id: int, outcome: schemas.Outcome) -> Optional[models.PlanRun]:
    db_run = db.query(models.PlanRun).filter(models.PlanRun.id == run_id).first()
    if not db_run:
        return None
    db_run.status = outcome.status
    db_run.failed_step = outcome.failed_step
    db_run.error_kind = outcome.error_kind
    db_run.error = outcome.error
    db_run.finished_at = _utcnow()
    db.commit()
    db.refresh(db_run)
    return db_run

def fail_interrupted_runs(db: Session) -> int:
    """mark runs a previous process left pending or running as failed"""
    stale_runs = (
        db.query(models.PlanRun)
        .filter(models.PlanRun.status.in_([schemas.RunStatus.PENDING, schemas.RunStatus.RUNNING]))
        .all()
    )
    for run in stale_runs:
        run.status = schemas.RunStatus.FAILED
        run.error_kind = "Interrupted"
        run.error = "the service stopped before the run finished; steps already completed were not rolled back"
        run.finished_at = _utcnow()
    db.commit()
    return len(stale_runs)

# ============= PROGRESS EVENT CRUD =============

def add_progress_event(
    db: Session, run_id: int, event: schemas.ProgressEvent, sequence: Optional[int] = None
) -> models.ProgressEvent:
    if sequence is None:
        sequence = db.query(models.ProgressEvent).filter(models.ProgressEvent.run_id == run_id).count() + 1
    db_event = models.ProgressEvent(
        run_id=run_id,
        sequence=sequence,
        step=event.step,
        status=event.status,
        detail=event.detail,
    )
    db.add(db_event)
    db.commit()
    return db_event

# ============= RETENTION =============

def cleanup_finished_runs(db: Session, retention_days: int = 90) -> int:
    """delete finished runs (and their events) older than retention_days"""
    cutoff = _utcnow() - timedelta(days=retention_days)
    old_runs = (
        db.query(models.PlanRun)
        .filter(
            models.PlanRun.finished_at.isnot(None),
            models.PlanRun.finished_at < cutoff,
        )
        .all()
    )
    for run in old_runs:
        db.delete(run)
    db.commit()
    return len(old_runs)
