"""
Campaign workflow execution.

- Types: Workflow, Step, Edge, Lead, LeadExecutionState, StepResult
- Graph: validation and edge following
- Conditions: rule evaluation for branching
- Executor: one step for one lead
- Engine: per-lead traversal with delays, branching and fallback dispatch
"""

from outreach.services.workflow.types import (
    Campaign,
    Edge,
    Lead,
    LeadExecutionState,
    LeadOutcome,
    LeadStatus,
    OutcomeReason,
    Step,
    StepResult,
    StepType,
    Workflow,
)
from outreach.services.workflow.graph import next_step_id, validate_workflow
from outreach.services.workflow.conditions import ConditionEvaluator, condition_evaluator

__all__ = [
    "Campaign",
    "Edge",
    "Lead",
    "LeadExecutionState",
    "LeadOutcome",
    "LeadStatus",
    "OutcomeReason",
    "Step",
    "StepResult",
    "StepType",
    "Workflow",
    "next_step_id",
    "validate_workflow",
    "ConditionEvaluator",
    "condition_evaluator",
]
