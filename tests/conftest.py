import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from unittest import mock

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")


def passthrough_decorator(*args, **kwargs):
    """Passthrough decorator that doesn't do rate limiting"""

    def decorator(func):
        return func

    return decorator


mock.patch("slowapi.Limiter.limit", passthrough_decorator).start()

# ruff: noqa: E402
from mailmaint.main import app
from mailmaint.database import Base, get_db
from mailmaint.dependencies import get_control_plane_client
from mailmaint.core.security import create_access_token
from mailmaint.exceptions import NotFoundError
from mailmaint.schemas import ActivationPolicy, ClusterNodeState, ServerInfo
from mailmaint.sequencer import MaintenanceSequencer
from mailmaint import models  # noqa: F401

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

MUTATING_CALLS = {
    "set_component_state",
    "redirect_messages",
    "suspend_cluster_node",
    "resume_cluster_node",
    "set_mailbox_server_activation",
    "set_mailbox_server_activation_policy",
    "rebalance_group",
}


class FakeControlPlane:
    """in-memory control plane that records every call"""

    def __init__(self):
        self.servers = {
            "mbx01": ServerInfo(name="MBX01", fqdn="mbx01.contoso.local"),
            "mbx02": ServerInfo(name="MBX02", fqdn="mbx02.contoso.local"),
        }
        self.policy = ActivationPolicy.INTRASITE_ONLY
        self.cluster_state = ClusterNodeState.PAUSED.value
        self.group = "DAG01"
        #each mount check consumes one entry; the last entry repeats
        self.mounted = [set()]
        self.failures = {}
        self.calls = []

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.failures:
            raise self.failures[name]

    def call_names(self):
        return [call[0] for call in self.calls]

    def mutating_calls(self):
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    def get_server(self, identity):
        self._call("get_server", identity)
        server = self.servers.get(identity.lower())
        if server is None:
            raise NotFoundError(f"Server {identity} not found")
        return server

    def set_component_state(self, server, component, state, requester):
        self._call("set_component_state", server, component, state, requester)

    def redirect_messages(self, server, target):
        self._call("redirect_messages", server, target)

    def suspend_cluster_node(self, name):
        self._call("suspend_cluster_node", name)
        self.cluster_state = ClusterNodeState.PAUSED.value

    def resume_cluster_node(self, name):
        self._call("resume_cluster_node", name)
        self.cluster_state = ClusterNodeState.UP.value

    def get_cluster_node_state(self, name):
        self._call("get_cluster_node_state", name)
        return self.cluster_state

    def set_mailbox_server_activation(self, server, disable_and_move_now):
        self._call("set_mailbox_server_activation", server, disable_and_move_now)

    def get_mailbox_server_activation_policy(self, server):
        self._call("get_mailbox_server_activation_policy", server)
        return self.policy

    def set_mailbox_server_activation_policy(self, server, policy):
        self._call("set_mailbox_server_activation_policy", server, policy)
        self.policy = policy

    def get_mounted_database_copies(self, server):
        self._call("get_mounted_database_copies", server)
        if len(self.mounted) > 1:
            return set(self.mounted.pop(0))
        return set(self.mounted[0])

    def get_replication_group_for_server(self, server):
        self._call("get_replication_group_for_server", server)
        return self.group

    def rebalance_group(self, group):
        self._call("rebalance_group", group)


@pytest.fixture(scope="function")
def control_plane():
    return FakeControlPlane()


@pytest.fixture(scope="function")
def sleeps():
    """records requested poll waits instead of sleeping"""
    return []


@pytest.fixture(scope="function")
def sequencer(control_plane, sleeps):
    return MaintenanceSequencer(control_plane, poll_interval=5, max_attempts=None, sleep=sleeps.append)


@pytest.fixture(scope="function")
def db_session():
    """create a fresh database session for each test"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session, control_plane):
    """create a test client with overridden database and control-plane dependencies"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_control_plane_client] = lambda: control_plane

    async def passthrough_middleware(self, request, call_next):
        """passthrough middleware that doesnt do rate limiting"""
        response = await call_next(request)
        return response

    with (
        mock.patch("mailmaint.main.init_db"),
        mock.patch("mailmaint.main.init_scheduler"),
        mock.patch("mailmaint.main.start_scheduler"),
        mock.patch("mailmaint.main.shutdown_scheduler"),
        mock.patch("mailmaint.tasks.plan_runner.SessionLocal", TestingSessionLocal),
        mock.patch("slowapi.middleware.SlowAPIMiddleware.dispatch", passthrough_middleware),
    ):
        with TestClient(app, base_url="http://localhost:8000") as test_client:
            yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def operator_headers():
    token = create_access_token("alice")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def session_factory():
    return TestingSessionLocal
