from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Security, status
from sqlalchemy.orm import Session
from typing import List, Optional
from slowapi import Limiter
from slowapi.util import get_remote_address

from mailmaint.core.config import settings
from mailmaint.core.maintenance_state import maintenance_state
from mailmaint.core.security import get_maintenance_operator, audit_log
from mailmaint.clients.base import ControlPlaneClient
from mailmaint.tasks.plan_runner import run_plan_job
from .. import crud, schemas
from ..dependencies import get_db, get_control_plane_client

limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


def _ensure_node_idle(db: Session, identity: str):
    active = crud.get_active_run_for_node(db, identity)
    if active:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Run {active.id} ({active.plan.value}) is already in progress for {identity}",
        )


@router.post("/nodes/{identity}/enter", response_model=schemas.PlanRun, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.MAINTENANCE_RATE_LIMIT)
def enter_maintenance(
    request: Request,
    identity: str,
    background_tasks: BackgroundTasks,
    body: Optional[schemas.EnterMaintenanceRequest] = None,
    operator: schemas.TokenData = Security(get_maintenance_operator),
    db: Session = Depends(get_db),
    client: ControlPlaneClient = Depends(get_control_plane_client),
):
    """Queue an enter-maintenance run for a node"""
    _ensure_node_idle(db, identity)
    partner = body.partner if body else None

    run = crud.create_plan_run(
        db,
        plan=schemas.PlanName.ENTER,
        identity=identity,
        requested_by=operator.operator,
        partner=partner,
    )
    audit_log(f"Enter maintenance on {identity} (partner {partner}) requested by {operator.operator}, run {run.id}")
    background_tasks.add_task(run_plan_job, run.id, client)
    return run


@router.post("/nodes/{identity}/exit", response_model=schemas.PlanRun, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(settings.MAINTENANCE_RATE_LIMIT)
def exit_maintenance(
    request: Request,
    identity: str,
    background_tasks: BackgroundTasks,
    body: Optional[schemas.ExitMaintenanceRequest] = None,
    operator: schemas.TokenData = Security(get_maintenance_operator),
    db: Session = Depends(get_db),
    client: ControlPlaneClient = Depends(get_control_plane_client),
):
    """Queue an exit-maintenance run for a node"""
    body = body or schemas.ExitMaintenanceRequest()
    _ensure_node_idle(db, identity)

    policy = body.policy
    if policy is None and body.restore_recorded:
        record = crud.get_maintenance_record(db, identity)
        if not record:
            raise HTTPException(status_code=404, detail=f"No maintenance record for {identity}")
        policy = record.activation_policy

    run = crud.create_plan_run(
        db,
        plan=schemas.PlanName.EXIT,
        identity=identity,
        requested_by=operator.operator,
        activation_policy=policy,
    )
    audit_log(f"Exit maintenance on {identity} (policy {policy.value if policy else 'default'}) requested by {operator.operator}, run {run.id}")
    background_tasks.add_task(run_plan_job, run.id, client)
    return run


@router.get("/runs", response_model=List[schemas.PlanRun])
def list_runs(
    identity: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
    operator: schemas.TokenData = Security(get_maintenance_operator),
    db: Session = Depends(get_db),
):
    return crud.get_plan_runs(db, identity=identity, skip=skip, limit=min(limit, 200))


@router.get("/runs/{run_id}", response_model=schemas.PlanRunDetail)
def get_run(
    run_id: int,
    operator: schemas.TokenData = Security(get_maintenance_operator),
    db: Session = Depends(get_db),
):
    run = crud.get_plan_run(db, run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


@router.post("/runs/{run_id}/cancel", response_model=schemas.PlanRun)
def cancel_run(
    run_id: int,
    operator: schemas.TokenData = Security(get_maintenance_operator),
    db: Session = Depends(get_db),
):
    """Ask a running plan to stop once its current step finishes"""
    run = crud.get_plan_run(db, run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")

    if not maintenance_state.cancel(run_id):
        raise HTTPException(status_code=409, detail=f"Run {run_id} is not running in this process")

    audit_log(f"Cancellation of run {run_id} requested by {operator.operator}")
    return run


@router.get("/nodes/{identity}/record", response_model=schemas.MaintenanceRecord)
def get_record(
    identity: str,
    operator: schemas.TokenData = Security(get_maintenance_operator),
    db: Session = Depends(get_db),
):
    """Activation policy saved when the node last entered maintenance"""
    record = crud.get_maintenance_record(db, identity)
    if not record:
        raise HTTPException(status_code=404, detail=f"No maintenance record for {identity}")
    return record
