from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum

# ============= CONTROL PLANE ENUMS =============

class ComponentName(str, Enum):
    HUB_TRANSPORT = "HubTransport"
    SERVER_WIDE_OFFLINE = "ServerWideOffline"

class ComponentState(str, Enum):
    DRAINING = "Draining"
    ACTIVE = "Active"
    INACTIVE = "InActive"

class ActivationPolicy(str, Enum):
    BLOCKED = "Blocked"
    INTRASITE_ONLY = "IntrasiteOnly"
    UNRESTRICTED = "Unrestricted"

    @classmethod
    def parse(cls, value: str) -> "ActivationPolicy":
        """case-insensitive lookup, the shell is not picky about casing either"""
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        raise ValueError(f"Unknown activation policy: {value}")

class ClusterNodeState(str, Enum):
    UP = "Up"
    DOWN = "Down"
    PAUSED = "Paused"
    JOINING = "Joining"
    UNKNOWN = "Unknown"

# ============= SEQUENCER ENUMS =============

class StepClass(str, Enum):
    REQUIRED = "required"
    BEST_EFFORT = "best_effort"

class StepStatus(str, Enum):
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    WAITING = "waiting"

class PlanName(str, Enum):
    ENTER = "enter-maintenance"
    EXIT = "exit-maintenance"

class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

# ============= NODE SCHEMAS =============

class ServerInfo(BaseModel):
    name: str
    fqdn: str
    replication_group: Optional[str] = None

    @property
    def routable_address(self) -> str:
        return self.fqdn or self.name

class MaintenanceRecord(BaseModel):
    identity: str
    activation_policy: ActivationPolicy
    recorded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

# ============= PROGRESS SCHEMAS =============

class ProgressEvent(BaseModel):
    step: str
    status: StepStatus
    detail: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class Outcome(BaseModel):
    plan: PlanName
    identity: str
    status: RunStatus
    failed_step: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    record: Optional[MaintenanceRecord] = None
    events: List[ProgressEvent] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED

# ============= API SCHEMAS =============

class EnterMaintenanceRequest(BaseModel):
    partner: Optional[str] = Field(None, max_length=255)

    @field_validator('partner')
    @classmethod
    def validate_partner(cls, v):
        if v is not None:
            v = v.strip()
            if len(v) == 0:
                return None
        return v

class ExitMaintenanceRequest(BaseModel):
    policy: Optional[ActivationPolicy] = None
    restore_recorded: bool = False

class PlanRun(BaseModel):
    id: int
    plan: PlanName
    identity: str
    partner: Optional[str] = None
    requested_by: str
    status: RunStatus
    failed_step: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class PlanRunDetail(PlanRun):
    events: List[ProgressEvent] = []

class TokenData(BaseModel):
    operator: str
    scope: Optional[str] = None
