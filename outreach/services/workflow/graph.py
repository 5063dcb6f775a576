"""
Workflow graph navigation and validation.
"""
import logging
from typing import List, Optional

from outreach.core.exceptions import NoOutgoingEdgeError
from outreach.services.workflow.types import Step, StepResult, StepType, Workflow

logger = logging.getLogger(__name__)

BRANCH_YES = "yes"
BRANCH_NO = "no"


def validate_workflow(workflow: Workflow) -> List[str]:
    """
    Report structural problems without raising.

    Checks:
    - exactly one start step, with no incoming edges
    - every non-end step has an outgoing edge
    - condition steps have both "yes" and "no" edges
    - edges reference existing steps
    - step ids are unique

    Returns:
        List of human readable problems (empty when valid)
    """
    problems = []

    seen = set()
    for step in workflow.steps:
        if step.id in seen:
            problems.append(f"duplicate step id {step.id}")
        seen.add(step.id)

    starts = [s for s in workflow.steps if s.type == StepType.START]
    if not starts:
        problems.append("no start step")
    elif len(starts) > 1:
        problems.append(f"{len(starts)} start steps, expected 1")
    for start in starts:
        if workflow.incoming(start.id):
            problems.append(f"start step {start.id} has incoming edges")

    for edge in workflow.edges:
        if edge.source not in seen:
            problems.append(f"edge source {edge.source} does not exist")
        if edge.target not in seen:
            problems.append(f"edge target {edge.target} does not exist")

    for step in workflow.steps:
        if step.type == StepType.END:
            continue
        edges = workflow.outgoing(step.id)
        if not edges:
            problems.append(f"step {step.id} has no outgoing edge")
            continue
        if step.type == StepType.CONDITION:
            handles = {e.source_handle for e in edges}
            for branch in (BRANCH_YES, BRANCH_NO):
                if branch not in handles:
                    problems.append(f"condition {step.id} has no '{branch}' edge")

    return problems


def next_step_id(workflow: Workflow, step: Step, result: StepResult) -> Optional[str]:
    """
    Follow the edge leaving ``step`` after it executed.

    Condition steps take the edge whose handle equals the branch key; any
    other step takes its default edge (the first one without a yes/no
    handle, else the first edge).

    Returns:
        Target step id, or None for end steps

    Raises:
        NoOutgoingEdgeError: no suitable edge exists
    """
    if step.type == StepType.END:
        return None

    edges = workflow.outgoing(step.id)

    if step.type == StepType.CONDITION:
        branch = result.branch_key
        for edge in edges:
            if edge.source_handle == branch:
                return edge.target
        raise NoOutgoingEdgeError(step.id, branch)

    if not edges:
        raise NoOutgoingEdgeError(step.id)

    for edge in edges:
        if edge.source_handle not in (BRANCH_YES, BRANCH_NO):
            return edge.target
    return edges[0].target
