"""
Workflow engine - advances campaign leads through the step graph.

Per lead, independently:
- resume at the persisted step (or the start step)
- execute steps until a delay parks the lead, a step fails, the graph
  ends, or the iteration cap is hit
- persist the new position after every step

Leads run concurrently under a semaphore; steps within a lead are
sequential. A failure in one lead never affects the others.
"""
import asyncio
import logging
from dataclasses import replace
from datetime import timedelta
from typing import Dict, Iterable, List, Optional

from outreach.core.config import settings
from outreach.core.exceptions import GraphError, MissingStartStepError, MissingStepError
from outreach.core.timezone import utc_now
from outreach.services.workflow.graph import next_step_id, validate_workflow
from outreach.services.workflow.locks import LocalLeadLocks
from outreach.services.workflow.types import (
    Lead,
    LeadExecutionState,
    LeadOutcome,
    LeadStatus,
    OutcomeReason,
    StepResult,
    StepType,
    Workflow,
)

logger = logging.getLogger(__name__)

DELAY_EXPIRED = "delay_expired"


class IllegalTransition(Exception):
    """Requested status change is not allowed from the current status."""


class WorkflowEngine:
    """Runs campaign workflows for batches of leads."""

    def __init__(
        self,
        lead_store,
        executor,
        graph_source=None,
        selector=None,
        locks=None,
        max_workers: Optional[int] = None,
        max_iterations: Optional[int] = None,
        delayed_ttl_hours: Optional[int] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        """
        Args:
            lead_store: LeadStore
            executor: StepExecutor
            graph_source: GraphSource, needed by run_campaign
            selector: AccountSelector; a probe session is opened per run
            locks: per-lead lock backend (default: in-process)
            max_workers: concurrent leads (default ENGINE_MAX_WORKERS)
            max_iterations: steps per lead per run (default ENGINE_MAX_ITERATIONS)
            delayed_ttl_hours: delayed leads overdue by more than this are
                stopped (default DELAYED_LEAD_TTL_HOURS, 0 disables)
            stop_event: cooperative cancellation signal
        """
        self.lead_store = lead_store
        self.executor = executor
        self.graph_source = graph_source
        self.selector = selector
        self.locks = locks or LocalLeadLocks()
        self.max_workers = max_workers or settings.ENGINE_MAX_WORKERS
        self.max_iterations = max_iterations or settings.ENGINE_MAX_ITERATIONS
        self.delayed_ttl = timedelta(
            hours=settings.DELAYED_LEAD_TTL_HOURS if delayed_ttl_hours is None else delayed_ttl_hours
        )
        self.stop_event = stop_event or asyncio.Event()

    def stop(self) -> None:
        """Ask running passes to stop between steps."""
        self.stop_event.set()

    async def run_campaign(
        self,
        campaign_id: str,
        lead_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, LeadOutcome]:
        """
        Load a campaign and its ready leads, then run them.

        Raises:
            NotFoundError: campaign does not exist
        """
        if self.graph_source is None:
            raise RuntimeError("run_campaign requires a graph source")

        campaign = await self.graph_source.get_campaign(campaign_id)
        leads = await self.lead_store.list_leads_ready_for_processing(campaign_id)

        if lead_ids is not None:
            wanted = {str(lead_id) for lead_id in lead_ids}
            leads = [lead for lead in leads if lead.id in wanted]

        for lead in leads:
            if not lead.tenant_id:
                lead.tenant_id = campaign.tenant_id
            if not lead.campaign_id:
                lead.campaign_id = campaign.id

        logger.info(f"[WorkflowEngine] Campaign {campaign_id}: {len(leads)} lead(s) to process")
        return await self.run(campaign.workflow, leads)

    async def run(self, workflow: Workflow, leads: List[Lead]) -> Dict[str, LeadOutcome]:
        """
        Advance every lead as far as it can go in this pass.

        Returns:
            lead_id -> LeadOutcome
        """
        problems = validate_workflow(workflow)
        if problems:
            logger.warning(f"[WorkflowEngine] Workflow has problems: {'; '.join(problems)}")

        if self.selector is not None:
            self.selector.start_probe_session()

        outcomes: Dict[str, LeadOutcome] = {}
        semaphore = asyncio.Semaphore(self.max_workers)
        tasks = []
        now = utc_now()

        for lead in leads:
            waiting = self._precheck(lead, now)
            if waiting is not None:
                outcomes[lead.id] = waiting
                continue
            tasks.append(self._run_lead(workflow, lead, semaphore))

        for outcome in await asyncio.gather(*tasks):
            outcomes[outcome.lead_id] = outcome

        self._log_summary(outcomes)
        return outcomes

    def _precheck(self, lead: Lead, now) -> Optional[LeadOutcome]:
        """Leads that need no worker slot: terminal, or still waiting on a delay."""
        state = lead.state
        if state.status.is_terminal:
            return self._outcome(lead, OutcomeReason.SKIPPED)
        if state.status == LeadStatus.DELAYED and state.delay_until and state.delay_until > now:
            return self._outcome(lead, OutcomeReason.DELAYED)
        return None

    async def _run_lead(self, workflow: Workflow, lead: Lead, semaphore: asyncio.Semaphore) -> LeadOutcome:
        async with semaphore:
            if self.stop_event.is_set():
                return self._outcome(lead, OutcomeReason.CANCELLED)
            try:
                async with self.locks.hold(lead.id) as acquired:
                    if not acquired:
                        logger.info(f"[WorkflowEngine] Lead {lead.id} is locked by another pass")
                        return self._outcome(lead, OutcomeReason.LOCKED)

                    # The roster may predate a pass that released this lock
                    current = await self.lead_store.get_lead(lead.id)
                    if current is None:
                        logger.warning(f"[WorkflowEngine] Lead {lead.id} no longer exists, skipping")
                        return self._outcome(lead, OutcomeReason.SKIPPED)
                    lead.state = replace(current.state)

                    waiting = self._precheck(lead, utc_now())
                    if waiting is not None:
                        return waiting
                    return await self._advance(workflow, lead)
            except Exception as e:
                logger.error(f"[WorkflowEngine] Lead {lead.id} will be retried: {e}", exc_info=True)
                return self._outcome(lead, OutcomeReason.RETRY_LATER, error=str(e))

    async def _advance(self, workflow: Workflow, lead: Lead) -> LeadOutcome:
        state = replace(lead.state)

        if state.status == LeadStatus.DELAYED:
            overdue = utc_now() - state.delay_until if state.delay_until else timedelta(0)
            await self._transition(lead, state, LeadStatus.ACTIVE)
            if self.delayed_ttl and overdue > self.delayed_ttl:
                logger.warning(
                    f"[WorkflowEngine] Lead {lead.id} resumed {overdue} after its delay, stopping"
                )
                state.error = DELAY_EXPIRED
                await self._transition(lead, state, LeadStatus.STOPPED)
                return self._outcome(lead, OutcomeReason.STOPPED, error=DELAY_EXPIRED)

        current_id = state.current_step_id
        if current_id is None:
            start = workflow.start_step()
            if start is None:
                error = MissingStartStepError()
                logger.error(f"[WorkflowEngine] {error.message}, lead {lead.id} left active")
                return self._outcome(lead, OutcomeReason.RETRY_LATER, error=error.code)
            current_id = start.id

        prior_result = state.last_result
        steps = 0

        while True:
            if steps >= self.max_iterations:
                logger.warning(
                    f"[WorkflowEngine] Max iterations ({self.max_iterations}) reached for lead {lead.id}"
                )
                return self._outcome(lead, OutcomeReason.ITERATION_CAP, steps)

            if steps and self.stop_event.is_set():
                return self._outcome(lead, OutcomeReason.CANCELLED, steps)

            step = workflow.get_step(current_id)
            if step is None:
                return await self._fail(lead, state, MissingStepError(current_id), steps)

            state.current_step_id = step.id
            lead.state = replace(state)
            result = await self.executor.execute(step, lead, prior_result)
            steps += 1

            if result.delay_pending:
                state.delay_until = result.delay_until
                await self._transition(lead, state, LeadStatus.DELAYED)
                logger.info(
                    f"[WorkflowEngine] Lead {lead.id} waiting at {step.id} "
                    f"until {result.delay_until.isoformat()}"
                )
                return self._outcome(lead, OutcomeReason.DELAYED, steps)

            if not result.success:
                state.last_result = _failure_result(result)
                state.error = result.error_type or result.error
                await self._transition(lead, state, LeadStatus.FAILED)
                return self._outcome(lead, OutcomeReason.FAILED, steps, result.error)

            try:
                next_id = next_step_id(workflow, step, result)
            except GraphError as e:
                return await self._fail(lead, state, e, steps)

            state.last_result = result.output
            state.delay_until = None
            state.error = None
            next_step = workflow.get_step(next_id)

            if next_id is not None:
                state.current_step_id = next_id

            if step.type == StepType.END or (next_step is not None and next_step.type == StepType.END):
                await self._transition(lead, state, LeadStatus.COMPLETED)
                logger.info(f"[WorkflowEngine] Lead {lead.id} completed the workflow")
                return self._outcome(lead, OutcomeReason.COMPLETED, steps)

            await self._transition(lead, state, LeadStatus.ACTIVE)
            prior_result = result.output
            current_id = next_id

    async def _fail(self, lead: Lead, state: LeadExecutionState, error: GraphError, steps: int) -> LeadOutcome:
        logger.error(f"[WorkflowEngine] Lead {lead.id} failed: {error}")
        state.error = error.code
        state.last_result = {"error": error.message, "error_type": error.code}
        await self._transition(lead, state, LeadStatus.FAILED)
        return self._outcome(lead, OutcomeReason.FAILED, steps, error.message)

    async def _transition(self, lead: Lead, state: LeadExecutionState, target: LeadStatus) -> None:
        """
        Persist ``state`` with status ``target``.

        Raises:
            IllegalTransition: lifecycle forbids the change
        """
        current = lead.state.status
        if not current.can_transition_to(target):
            raise IllegalTransition(f"lead {lead.id}: {current.value} -> {target.value}")

        state.status = target
        await self.lead_store.set_execution_state(lead.id, replace(state))
        lead.state = replace(state)

    def _outcome(
        self,
        lead: Lead,
        reason: OutcomeReason,
        steps: int = 0,
        error: Optional[str] = None,
    ) -> LeadOutcome:
        return LeadOutcome(
            lead_id=lead.id,
            status=lead.state.status,
            reason=reason,
            current_step_id=lead.state.current_step_id,
            steps_executed=steps,
            error=error,
        )

    def _log_summary(self, outcomes: Dict[str, LeadOutcome]) -> None:
        counts: Dict[str, int] = {}
        for outcome in outcomes.values():
            counts[outcome.reason.value] = counts.get(outcome.reason.value, 0) + 1
        if counts:
            summary = ", ".join(f"{reason}={count}" for reason, count in sorted(counts.items()))
            logger.info(f"[WorkflowEngine] Pass finished: {summary}")


def _failure_result(result: StepResult) -> dict:
    return {"error": result.error, "error_type": result.error_type, **result.output}
