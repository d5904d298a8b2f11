"""tests for the operator maintenance endpoints"""

from datetime import timedelta

from mailmaint import crud, models, schemas
from mailmaint.core.config import settings
from mailmaint.core.security import create_access_token

BASE = f"{settings.API_V1_STR}/maintenance"


def test_enter_requires_token(client):
    response = client.post(f"{BASE}/nodes/mbx01/enter")
    assert response.status_code == 401


def test_enter_rejects_wrong_scope(client):
    token = create_access_token("bob", scope="read")
    response = client.post(f"{BASE}/nodes/mbx01/enter", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_enter_rejects_expired_token(client):
    token = create_access_token("alice", expires_delta=timedelta(minutes=-5))
    response = client.post(f"{BASE}/nodes/mbx01/enter", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_enter_runs_in_background(client, operator_headers, control_plane):
    """test the run is queued, executed and its events stored"""
    response = client.post(f"{BASE}/nodes/MBX01/enter", headers=operator_headers, json={"partner": "mbx02"})
    assert response.status_code == 202
    data = response.json()
    assert data["plan"] == "enter-maintenance"
    assert data["identity"] == "mbx01"
    assert data["partner"] == "mbx02"
    assert data["requested_by"] == "alice"

    response = client.get(f"{BASE}/runs/{data['id']}", headers=operator_headers)
    assert response.status_code == 200
    run = response.json()
    assert run["status"] == "completed"
    assert run["finished_at"] is not None
    steps = [e["step"] for e in run["events"] if e["status"] == "succeeded"]
    assert steps[0] == "Resolve server"
    assert "Redirect messages" in steps
    assert steps[-1] == "Report previous activation policy"
    assert ("redirect_messages", "MBX01", "mbx02.contoso.local") in control_plane.calls


def test_enter_saves_record(client, operator_headers):
    client.post(f"{BASE}/nodes/mbx01/enter", headers=operator_headers)

    response = client.get(f"{BASE}/nodes/mbx01/record", headers=operator_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["identity"] == "mbx01"
    assert data["activation_policy"] == "IntrasiteOnly"


def test_enter_unknown_server_fails_run(client, operator_headers, control_plane):
    response = client.post(f"{BASE}/nodes/ghost/enter", headers=operator_headers)
    run_id = response.json()["id"]

    run = client.get(f"{BASE}/runs/{run_id}", headers=operator_headers).json()
    assert run["status"] == "failed"
    assert run["error_kind"] == "ResolutionError"
    assert run["failed_step"] == "Resolve server"
    assert control_plane.mutating_calls() == []


def test_enter_conflicts_with_active_run(client, operator_headers, db_session):
    run = crud.create_plan_run(db_session, schemas.PlanName.ENTER, "mbx01", requested_by="bob")
    crud.set_run_status(db_session, run.id, schemas.RunStatus.RUNNING)

    response = client.post(f"{BASE}/nodes/mbx01/enter", headers=operator_headers)
    assert response.status_code == 409


def test_exit_restores_recorded_policy(client, operator_headers, db_session, control_plane):
    crud.save_maintenance_record(
        db_session,
        schemas.MaintenanceRecord(identity="mbx01", activation_policy=schemas.ActivationPolicy.INTRASITE_ONLY),
    )
    control_plane.policy = schemas.ActivationPolicy.BLOCKED

    response = client.post(f"{BASE}/nodes/mbx01/exit", headers=operator_headers, json={"restore_recorded": True})
    assert response.status_code == 202

    run = client.get(f"{BASE}/runs/{response.json()['id']}", headers=operator_headers).json()
    assert run["status"] == "completed"
    assert control_plane.policy == schemas.ActivationPolicy.INTRASITE_ONLY

    db_session.expire_all()
    assert client.get(f"{BASE}/nodes/mbx01/record", headers=operator_headers).status_code == 404


def test_exit_restore_without_record(client, operator_headers):
    response = client.post(f"{BASE}/nodes/mbx01/exit", headers=operator_headers, json={"restore_recorded": True})
    assert response.status_code == 404


def test_exit_explicit_policy(client, operator_headers, control_plane):
    response = client.post(f"{BASE}/nodes/mbx01/exit", headers=operator_headers, json={"policy": "Blocked"})
    assert response.status_code == 202
    assert control_plane.policy == schemas.ActivationPolicy.BLOCKED


def test_exit_rejects_unknown_policy(client, operator_headers):
    response = client.post(f"{BASE}/nodes/mbx01/exit", headers=operator_headers, json={"policy": "Sometimes"})
    assert response.status_code == 422


def test_list_runs(client, operator_headers):
    client.post(f"{BASE}/nodes/mbx01/enter", headers=operator_headers)
    client.post(f"{BASE}/nodes/mbx02/enter", headers=operator_headers)

    response = client.get(f"{BASE}/runs", headers=operator_headers, params={"identity": "mbx02"})
    assert response.status_code == 200
    runs = response.json()
    assert len(runs) == 1
    assert runs[0]["identity"] == "mbx02"


def test_get_missing_run(client, operator_headers):
    response = client.get(f"{BASE}/runs/999", headers=operator_headers)
    assert response.status_code == 404


def test_cancel_finished_run(client, operator_headers):
    """test a run that is no longer executing cannot be cancelled"""
    run_id = client.post(f"{BASE}/nodes/mbx01/enter", headers=operator_headers).json()["id"]

    response = client.post(f"{BASE}/runs/{run_id}/cancel", headers=operator_headers)
    assert response.status_code == 409


def test_cancel_running_run(client, operator_headers, db_session):
    from mailmaint.core.maintenance_state import maintenance_state

    run = crud.create_plan_run(db_session, schemas.PlanName.ENTER, "mbx01", requested_by="bob")
    event = maintenance_state.register(run.id)
    try:
        response = client.post(f"{BASE}/runs/{run.id}/cancel", headers=operator_headers)
        assert response.status_code == 200
        assert event.is_set()
    finally:
        maintenance_state.release(run.id)


def test_progress_events_are_numbered(client, operator_headers, db_session):
    run_id = client.post(f"{BASE}/nodes/mbx01/enter", headers=operator_headers).json()["id"]

    events = (
        db_session.query(models.ProgressEvent)
        .filter(models.ProgressEvent.run_id == run_id)
        .order_by(models.ProgressEvent.sequence)
        .all()
    )
    assert [e.sequence for e in events] == list(range(1, len(events) + 1))


def test_startup_fails_interrupted_runs(client, operator_headers, db_session):
    """test a run left running by a stopped service no longer blocks its node"""
    from mailmaint.main import app
    from fastapi.testclient import TestClient

    run = crud.create_plan_run(db_session, schemas.PlanName.ENTER, "mbx01", requested_by="bob")
    crud.set_run_status(db_session, run.id, schemas.RunStatus.RUNNING)
    finished = client.post(f"{BASE}/nodes/mbx02/enter", headers=operator_headers).json()["id"]

    #restart: the lifespan runs again against the same database
    with TestClient(app, base_url="http://localhost:8000"):
        pass

    interrupted = client.get(f"{BASE}/runs/{run.id}", headers=operator_headers).json()
    assert interrupted["status"] == "failed"
    assert interrupted["error_kind"] == "Interrupted"
    assert interrupted["finished_at"] is not None
    assert client.get(f"{BASE}/runs/{finished}", headers=operator_headers).json()["status"] == "completed"

    response = client.post(f"{BASE}/nodes/mbx01/enter", headers=operator_headers)
    assert response.status_code == 202


def test_waiting_events_are_thinned(db_session):
    from mailmaint.tasks.plan_runner import EventRecorder

    run = crud.create_plan_run(db_session, schemas.PlanName.ENTER, "mbx01", requested_by="bob")
    recorder = EventRecorder(db_session, run.id, waiting_every=3)
    step = "Wait for database copies to dismount"
    for attempt in range(1, 8):
        recorder(schemas.ProgressEvent(step=step, status=schemas.StepStatus.WAITING, detail=f"attempt {attempt}"))
    recorder(schemas.ProgressEvent(step=step, status=schemas.StepStatus.SUCCEEDED))

    events = (
        db_session.query(models.ProgressEvent)
        .filter(models.ProgressEvent.run_id == run.id)
        .order_by(models.ProgressEvent.sequence)
        .all()
    )
    assert [e.detail for e in events] == ["attempt 1", "attempt 4", "attempt 7", None]
    assert [e.sequence for e in events] == [1, 2, 3, 4]
