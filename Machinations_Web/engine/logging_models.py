import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field


def new_log_id() -> str:
    """Return a unique identifier for a log entry."""
    return f"log_{uuid.uuid4()}"


class BaseLogEntry(BaseModel):
    """Common metadata for all log entries."""

    log_id: str = Field(default_factory=new_log_id)
    step: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    diagram: Optional[str] = None


class FlowPayload(BaseModel):
    connection_id: str
    amount: float
    source_id: str
    target_id: str


class FlowLog(BaseLogEntry):
    event_type: str = "ResourceFlow"
    payload: FlowPayload


class StepSummaryPayload(BaseModel):
    node_count: int
    connection_count: int
    flow_count: int
    flow_total: float
    total_resources: float
    ended: bool = False


class StepSummaryLog(BaseLogEntry):
    event_type: str = "StepSummary"
    payload: StepSummaryPayload


class SimulationEndPayload(BaseModel):
    end_nodes: List[str]


class SimulationEndLog(BaseLogEntry):
    event_type: str = "SimulationEnded"
    payload: SimulationEndPayload
