from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Enum
from sqlalchemy.orm import relationship
from datetime import datetime
from .database import Base
from .schemas import ActivationPolicy, PlanName, RunStatus, StepStatus

# ============= MAINTENANCE RECORD MODEL =============

class MaintenanceRecord(Base):
    __tablename__ = "maintenance_records"

    #one record per node, overwritten by every enter-maintenance run
    identity = Column(String, primary_key=True, index=True)
    activation_policy = Column(Enum(ActivationPolicy, values_callable=lambda x: [e.value for e in x]), nullable=False)
    recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False)

# ============= PLAN RUN MODEL =============

class PlanRun(Base):
    __tablename__ = "plan_runs"

    id = Column(Integer, primary_key=True, index=True)
    plan = Column(Enum(PlanName, values_callable=lambda x: [e.value for e in x]), nullable=False)
    identity = Column(String, index=True, nullable=False)
    partner = Column(String, nullable=True)
    activation_policy = Column(String, nullable=True)
    requested_by = Column(String, nullable=False)
    status = Column(Enum(RunStatus, values_callable=lambda x: [e.value for e in x]), default=RunStatus.PENDING, nullable=False, index=True)

    failed_step = Column(String, nullable=True)
    error_kind = Column(String, nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    finished_at = Column(DateTime, nullable=True)

    events = relationship("ProgressEvent", back_populates="run", cascade="all, delete-orphan", order_by="ProgressEvent.sequence")

# ============= PROGRESS EVENT MODEL =============

class ProgressEvent(Base):
    __tablename__ = "progress_events"

    id = Column(Integer, primary_key=True, index=True)
    run_id = Column(Integer, ForeignKey("plan_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    step = Column(String, nullable=False)
    status = Column(Enum(StepStatus, values_callable=lambda x: [e.value for e in x]), nullable=False)
    detail = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    run = relationship("PlanRun", back_populates="events")
