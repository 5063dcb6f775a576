"""
Step executor - runs one workflow step for one lead.

Never changes lead state itself: it returns a StepResult and the engine
applies it. Side effects are limited to channel dispatch and the activity
log.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from outreach.core.exceptions import StepConfigError
from outreach.core.timezone import utc_now
from outreach.services.channels import channel_for_action
from outreach.services.channels.base import ChannelDispatcher, DispatchTarget
from outreach.services.workflow.conditions import ConditionEvaluator
from outreach.services.workflow.graph import BRANCH_NO, BRANCH_YES
from outreach.services.workflow.types import ActivityStatus, Lead, Step, StepResult, StepType

logger = logging.getLogger(__name__)

LEAD_GENERATION = "lead_generation"

# camelCase keys written by the campaign builder
CONFIG_ALIASES = {
    "voiceAgentId": "voice_agent_id",
    "voiceContext": "voice_context",
    "addedContext": "added_context",
    "delayDays": "delay_days",
    "delayHours": "delay_hours",
    "delayMinutes": "delay_minutes",
    "delaySeconds": "delay_seconds",
    "useEnrichment": "use_enrichment",
}

REQUIRED_CONFIG = {
    "linkedin_message": ("message",),
    "email_send": ("subject", "body"),
    "email_followup": ("subject", "body"),
    "voice_agent_call": ("voice_agent_id",),
}

_DURATION_UNITS = {"days": 86400, "hours": 3600, "minutes": 60, "seconds": 1}


def normalize_config(config: Dict[str, Any]) -> Dict[str, Any]:
    normalized = dict(config)
    for alias, key in CONFIG_ALIASES.items():
        if alias in normalized and key not in normalized:
            normalized[key] = normalized.pop(alias)
    return normalized


def missing_config(action: str, config: Dict[str, Any]) -> list:
    return [key for key in REQUIRED_CONFIG.get(action, ()) if not config.get(key)]


def _number(value: Any, name: str, step_id: str) -> float:
    if value in (None, ""):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise StepConfigError(f"Invalid delay {name}: {value!r}", step_id=step_id)
    if number < 0:
        raise StepConfigError(f"Negative delay {name}: {value!r}", step_id=step_id)
    return number


def delay_duration(step: Step) -> timedelta:
    """
    Delay length from step config.

    Accepts ``duration`` in seconds or as {days, hours, minutes, seconds},
    or the flat delay_days / delay_hours / delay_minutes keys.

    Raises:
        StepConfigError: negative or non-numeric values
    """
    config = normalize_config(step.config)
    duration = config.get("duration")

    if isinstance(duration, dict):
        seconds = sum(
            _number(duration.get(unit), unit, step.id) * factor
            for unit, factor in _DURATION_UNITS.items()
        )
    elif duration not in (None, ""):
        seconds = _number(duration, "duration", step.id)
    else:
        seconds = sum(
            _number(config.get(f"delay_{unit}"), unit, step.id) * factor
            for unit, factor in _DURATION_UNITS.items()
        )

    return timedelta(seconds=seconds)


class StepExecutor:
    """Executes start/end/delay/condition/action steps."""

    def __init__(
        self,
        selector,
        fallback,
        dispatchers: Dict[str, ChannelDispatcher],
        activity_log,
        evaluator: Optional[ConditionEvaluator] = None,
        lead_generator=None,
    ):
        """
        Args:
            selector: AccountSelector
            fallback: FallbackRetryStrategy
            dispatchers: channel -> ChannelDispatcher
            activity_log: ActivityLog
            evaluator: condition evaluator (default: new instance)
            lead_generator: optional LeadGenerator for lead_generation steps
        """
        self.selector = selector
        self.fallback = fallback
        self.dispatchers = dispatchers
        self.activity_log = activity_log
        self.evaluator = evaluator or ConditionEvaluator()
        self.lead_generator = lead_generator

    async def execute(self, step: Step, lead: Lead, prior_result: Optional[dict] = None) -> StepResult:
        """
        Execute one step.

        Returns:
            StepResult; infrastructure errors (account source down) propagate
        """
        if step.type in (StepType.START, StepType.END):
            return StepResult.ok()

        if step.type == StepType.DELAY:
            return await self._execute_delay(step, lead)

        if step.type == StepType.CONDITION:
            return await self._execute_condition(step, lead, prior_result)

        return await self._execute_action(step, lead)

    # -------------------------------------------------------------------------
    # delay
    # -------------------------------------------------------------------------

    async def _execute_delay(self, step: Step, lead: Lead) -> StepResult:
        state = lead.state
        parked_here = state.current_step_id == step.id and state.delay_until is not None

        if parked_here:
            if utc_now() >= state.delay_until:
                await self._emit(
                    lead, step, "delay", ActivityStatus.COMPLETED,
                    {"delay_until": state.delay_until.isoformat()},
                )
                return StepResult.ok(delay_until=state.delay_until.isoformat())
            return StepResult(success=True, delay_pending=True, delay_until=state.delay_until)

        try:
            duration = delay_duration(step)
        except StepConfigError as e:
            return StepResult.failed(e.message, error_type="invalid_step_config")

        delay_until = utc_now() + duration
        logger.debug(f"[StepExecutor] Lead {lead.id} delayed until {delay_until.isoformat()}")
        return StepResult(success=True, delay_pending=True, delay_until=delay_until)

    # -------------------------------------------------------------------------
    # condition
    # -------------------------------------------------------------------------

    async def _execute_condition(self, step: Step, lead: Lead, prior_result: Optional[dict]) -> StepResult:
        matched = self.evaluator.evaluate(step.config, lead, prior_result)
        branch = BRANCH_YES if matched else BRANCH_NO
        await self._emit(lead, step, "condition", ActivityStatus.COMPLETED, {"branch": branch})
        return StepResult(success=True, branch_key=branch, output={"branch": branch})

    # -------------------------------------------------------------------------
    # action
    # -------------------------------------------------------------------------

    async def _execute_action(self, step: Step, lead: Lead) -> StepResult:
        config = normalize_config(step.config)
        action = config.get("action")

        if action == LEAD_GENERATION:
            return await self._execute_lead_generation(step, lead, config)

        channel = channel_for_action(action)
        dispatcher = self.dispatchers.get(channel) if channel else None
        if dispatcher is None or not dispatcher.supports(action):
            return await self._fail(lead, step, action, f"Unsupported action: {action}", "unsupported_action")

        missing = missing_config(action, config)
        if missing:
            return await self._fail(
                lead, step, action,
                f"Missing required fields: {', '.join(missing)}",
                "invalid_step_config",
            )

        target = DispatchTarget.from_lead_data(lead.id, lead.data)
        missing_field = dispatcher.missing_target(target)
        if missing_field:
            return await self._fail(
                lead, step, action, f"Lead has no {missing_field} for {channel}", "missing_target"
            )

        payload = dispatcher.build_payload(action, lead.data, config)
        payload.campaign_id = lead.campaign_id
        payload.tenant_id = lead.tenant_id

        accounts = await self.selector.ordered(lead.tenant_id, channel)
        outcome = await self.fallback.dispatch(
            dispatcher,
            target,
            payload,
            accounts,
            use_enrichment=bool(config.get("use_enrichment", True)),
        )

        if not outcome.success:
            return await self._fail(
                lead, step, action,
                outcome.error or "dispatch failed",
                outcome.error_type.value if outcome.error_type else "dispatch_errors",
                outcome.summary(),
            )

        output = {
            "action": action,
            "channel": channel,
            "account_id": outcome.account_used.id,
            "strategy": outcome.strategy_used.value,
            "already_done": outcome.already_done,
            **outcome.data,
        }
        await self._emit(lead, step, action, ActivityStatus.COMPLETED, outcome.summary())
        return StepResult(success=True, output=output)

    async def _execute_lead_generation(self, step: Step, lead: Lead, config: dict) -> StepResult:
        if self.lead_generator is None:
            logger.info(f"[StepExecutor] No lead generator configured, skipping step {step.id}")
            await self._emit(lead, step, LEAD_GENERATION, ActivityStatus.SKIPPED, {})
            return StepResult(success=True, skipped=True)

        generated = await self.lead_generator.generate(lead.campaign_id, config)
        await self._emit(lead, step, LEAD_GENERATION, ActivityStatus.COMPLETED, {"leads_generated": generated})
        return StepResult.ok(leads_generated=generated)

    async def _fail(
        self,
        lead: Lead,
        step: Step,
        action: Optional[str],
        error: str,
        error_type: str,
        metadata: Optional[dict] = None,
    ) -> StepResult:
        logger.warning(f"[StepExecutor] Step {step.id} failed for lead {lead.id}: {error_type} ({error})")
        await self._emit(
            lead, step, action or step.type.value, ActivityStatus.ERROR,
            {"error": error, "error_type": error_type, **(metadata or {})},
        )
        return StepResult.failed(error, error_type=error_type)

    async def _emit(
        self,
        lead: Lead,
        step: Step,
        activity_type: str,
        status: ActivityStatus,
        metadata: dict,
    ) -> None:
        try:
            await self.activity_log.append(
                lead.campaign_id, lead.id, step.id, activity_type, status.value, metadata
            )
        except Exception as e:
            logger.error(f"[StepExecutor] Failed to log activity for lead {lead.id} step {step.id}: {e}")
