"""
Types and enums for campaign workflows.

A workflow is a directed graph of steps. Every lead assigned to a campaign
walks the graph independently; its position and status live in a
LeadExecutionState persisted between engine passes.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from outreach.core.timezone import iso_utc, parse_datetime

logger = logging.getLogger(__name__)


class StepType(str, Enum):
    """Node kinds in a workflow graph."""

    START = "start"
    ACTION = "action"
    DELAY = "delay"
    CONDITION = "condition"
    END = "end"


# Step types of older campaign builders, stored as type=action + config.action
LEGACY_ACTION_TYPES = frozenset({
    "linkedin_connect",
    "linkedin_message",
    "linkedin_visit",
    "linkedin_follow",
    "email_send",
    "email_followup",
    "voice_agent_call",
    "lead_generation",
})


class LeadStatus(str, Enum):
    """Execution status of a lead inside a campaign."""

    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (LeadStatus.COMPLETED, LeadStatus.FAILED, LeadStatus.STOPPED)

    def can_transition_to(self, target: "LeadStatus") -> bool:
        """Terminal statuses never change; delayed only returns to active."""
        return target in _TRANSITIONS[self]


_TRANSITIONS = {
    LeadStatus.ACTIVE: frozenset({
        LeadStatus.ACTIVE,
        LeadStatus.DELAYED,
        LeadStatus.COMPLETED,
        LeadStatus.FAILED,
        LeadStatus.STOPPED,
    }),
    LeadStatus.DELAYED: frozenset({LeadStatus.DELAYED, LeadStatus.ACTIVE}),
    LeadStatus.COMPLETED: frozenset(),
    LeadStatus.FAILED: frozenset(),
    LeadStatus.STOPPED: frozenset(),
}


class OutcomeReason(str, Enum):
    """Why the engine stopped advancing a lead in this pass."""

    COMPLETED = "completed"
    DELAYED = "delayed"
    FAILED = "failed"
    ITERATION_CAP = "iteration_cap"
    RETRY_LATER = "retry_later"
    STOPPED = "stopped"
    SKIPPED = "skipped"
    LOCKED = "locked"
    CANCELLED = "cancelled"


class ActivityStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ERROR = "error"


def _parse_config(raw: Any) -> dict:
    """Step config may arrive as a dict or a JSON-encoded string."""
    if not raw:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning(f"[Workflow] Ignoring malformed step config: {raw[:80]}")
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


@dataclass
class Step:
    """A node of the workflow graph."""

    id: str
    type: StepType
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def action(self) -> Optional[str]:
        """Channel action name for action steps (e.g. linkedin_connect)."""
        return self.config.get("action")

    @classmethod
    def from_dict(cls, data: dict) -> "Step":
        config = _parse_config(data.get("config")) or _parse_config(data.get("data"))
        raw_type = str(data.get("type", "")).strip()

        if raw_type in LEGACY_ACTION_TYPES:
            config.setdefault("action", raw_type)
            step_type = StepType.ACTION
        else:
            try:
                step_type = StepType(raw_type)
            except ValueError:
                # Unknown channel actions fail at execution, not at load
                config.setdefault("action", raw_type)
                step_type = StepType.ACTION

        return cls(id=str(data["id"]), type=step_type, config=config)

    def to_dict(self) -> dict:
        return {"id": self.id, "type": self.type.value, "config": self.config}


@dataclass
class Edge:
    """Directed connection between two steps."""

    source: str
    target: str
    source_handle: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Edge":
        handle = data.get("sourceHandle", data.get("source_handle"))
        return cls(
            source=str(data["source"]),
            target=str(data["target"]),
            source_handle=handle or None,
        )

    def to_dict(self) -> dict:
        return {"source": self.source, "target": self.target, "sourceHandle": self.source_handle}


@dataclass
class Workflow:
    """Immutable-by-convention step graph of a campaign."""

    steps: List[Step] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)

    def __post_init__(self):
        self._index = {step.id: step for step in self.steps}

    def get_step(self, step_id: Optional[str]) -> Optional[Step]:
        if step_id is None:
            return None
        return self._index.get(step_id)

    def start_step(self) -> Optional[Step]:
        """
        Entry step: the start step with no incoming edge.

        Falls back to any start step when every candidate has incoming
        edges, so a slightly malformed graph still runs.
        """
        starts = [s for s in self.steps if s.type == StepType.START]
        if not starts:
            return None
        targets = {e.target for e in self.edges}
        for step in starts:
            if step.id not in targets:
                return step
        return starts[0]

    def outgoing(self, step_id: str) -> List[Edge]:
        return [e for e in self.edges if e.source == step_id]

    def incoming(self, step_id: str) -> List[Edge]:
        return [e for e in self.edges if e.target == step_id]

    @classmethod
    def from_dict(cls, data: Any) -> "Workflow":
        """Build from the stored JSON shape ({steps, edges}, dict or string)."""
        if isinstance(data, str):
            data = json.loads(data) if data else {}
        data = data or {}
        return cls(
            steps=[Step.from_dict(s) for s in data.get("steps") or []],
            edges=[Edge.from_dict(e) for e in data.get("edges") or []],
        )

    def to_dict(self) -> dict:
        return {
            "steps": [s.to_dict() for s in self.steps],
            "edges": [e.to_dict() for e in self.edges],
        }


@dataclass
class Campaign:
    """Campaign record as read from the graph source."""

    id: str
    tenant_id: Optional[str]
    workflow: Workflow
    name: str = ""
    status: str = "running"
    created_by: Optional[str] = None

    @classmethod
    def from_db_row(cls, row: dict) -> "Campaign":
        workflow_raw = row.get("workflow")
        if workflow_raw is None:
            workflow_raw = row.get("config")
        return cls(
            id=str(row["id"]),
            tenant_id=row.get("tenant_id"),
            workflow=Workflow.from_dict(workflow_raw),
            name=row.get("name", ""),
            status=row.get("status", "running"),
            created_by=row.get("created_by_user_id") or row.get("created_by"),
        )


@dataclass
class LeadExecutionState:
    """Position and status of one lead inside one campaign."""

    current_step_id: Optional[str] = None
    status: LeadStatus = LeadStatus.ACTIVE
    last_result: Optional[Dict[str, Any]] = None
    delay_until: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "LeadExecutionState":
        if not data:
            return cls()
        try:
            status = LeadStatus(data.get("status") or LeadStatus.ACTIVE.value)
        except ValueError:
            logger.warning(f"[Workflow] Unknown lead status {data.get('status')!r}, using active")
            status = LeadStatus.ACTIVE
        last_result = data.get("last_result")
        if isinstance(last_result, str):
            last_result = _parse_config(last_result)
        return cls(
            current_step_id=data.get("current_step_id"),
            status=status,
            last_result=last_result,
            delay_until=parse_datetime(data.get("delay_until")),
            error=data.get("error"),
        )

    def to_dict(self) -> dict:
        return {
            "current_step_id": self.current_step_id,
            "status": self.status.value,
            "last_result": self.last_result,
            "delay_until": iso_utc(self.delay_until) if self.delay_until else None,
            "error": self.error,
        }


@dataclass
class Lead:
    """
    A campaign lead.

    Attributes:
        data: enrichment/profile data (name, title, linkedin_url, email...)
        attributes: remaining top-level columns (engagement_score,
            last_activity_at, custom_fields...)
    """

    id: str
    campaign_id: str
    tenant_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)
    state: LeadExecutionState = field(default_factory=LeadExecutionState)

    _STATE_COLUMNS = ("current_step_id", "status", "last_result", "delay_until", "error")

    @classmethod
    def from_db_row(cls, row: dict) -> "Lead":
        data = row.get("lead_data")
        if isinstance(data, str):
            data = _parse_config(data)
        known = {"id", "campaign_id", "tenant_id", "lead_data", *cls._STATE_COLUMNS}
        return cls(
            id=str(row["id"]),
            campaign_id=str(row.get("campaign_id", "")),
            tenant_id=row.get("tenant_id"),
            data=data or {},
            attributes={k: v for k, v in row.items() if k not in known},
            state=LeadExecutionState.from_dict({k: row.get(k) for k in cls._STATE_COLUMNS}),
        )

    def field_view(self) -> Dict[str, Any]:
        """Flat lookup view: top-level attributes overlaid by lead data."""
        view = {"id": self.id, "campaign_id": self.campaign_id, "tenant_id": self.tenant_id}
        view.update(self.attributes)
        view.update(self.data)
        view["data"] = self.data
        return view


@dataclass
class StepResult:
    """What StepExecutor hands back to the engine for one step."""

    success: bool
    delay_pending: bool = False
    delay_until: Optional[datetime] = None
    branch_key: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    skipped: bool = False
    output: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **output) -> "StepResult":
        return cls(success=True, output=output)

    @classmethod
    def failed(cls, error: str, error_type: Optional[str] = None, **output) -> "StepResult":
        return cls(success=False, error=error, error_type=error_type, output=output)


@dataclass
class LeadOutcome:
    """Summary of one engine pass for one lead."""

    lead_id: str
    status: LeadStatus
    reason: OutcomeReason
    current_step_id: Optional[str] = None
    steps_executed: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "lead_id": self.lead_id,
            "status": self.status.value,
            "reason": self.reason.value,
            "current_step_id": self.current_step_id,
            "steps_executed": self.steps_executed,
            "error": self.error,
        }
