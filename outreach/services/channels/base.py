"""
Channel abstraction.

A ChannelCapability speaks one provider's API (send + payload shape).
ChannelDispatcher wraps a capability with the engine's contract: bounded
time, provider failures classified, never an exception to the caller.
"""
import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

import httpx

from outreach.core.config import settings
from outreach.core.exceptions import DispatchError
from outreach.services.accounts.types import Account, AccountHealthState
from outreach.services.channels.classification import FailureClass, classify

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    """Payload variants tried on each account, richest first."""

    WITH_ENRICHMENT = "with_enrichment"
    BARE = "bare"


@dataclass
class DispatchTarget:
    """Who receives the dispatch."""

    lead_id: str
    name: str = ""
    profile_url: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_lead_data(cls, lead_id: str, data: dict) -> "DispatchTarget":
        first = data.get("first_name") or ""
        last = data.get("last_name") or ""
        return cls(
            lead_id=lead_id,
            name=data.get("name") or f"{first} {last}".strip(),
            profile_url=data.get("linkedin_url") or data.get("linkedin_profile_url"),
            email=data.get("email") or data.get("email_address"),
            phone=data.get("phone") or data.get("mobile_phone") or data.get("phone_number"),
            data=data,
        )


@dataclass
class DispatchPayload:
    """
    What to send.

    ``enrichment`` holds optional extras (a connection note, call context)
    that the bare strategy leaves out.
    """

    action: str
    content: Dict[str, Any] = field(default_factory=dict)
    enrichment: Dict[str, Any] = field(default_factory=dict)
    campaign_id: Optional[str] = None
    tenant_id: Optional[str] = None

    @property
    def has_enrichment(self) -> bool:
        return any(v not in (None, "") for v in self.enrichment.values())

    def for_strategy(self, strategy: Strategy) -> Dict[str, Any]:
        body = {"action": self.action, **self.content}
        if strategy == Strategy.WITH_ENRICHMENT:
            body.update({k: v for k, v in self.enrichment.items() if v not in (None, "")})
        if self.campaign_id:
            body["campaign_id"] = self.campaign_id
        return body


@dataclass
class ProviderResponse:
    """Raw provider answer, before classification."""

    success: bool
    provider_error_code: Optional[str] = None
    provider_message: Optional[str] = None
    status_code: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DispatchResult:
    """Classified outcome of one send attempt."""

    success: bool
    failure_class: Optional[FailureClass] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    status_code: Optional[int] = None
    health_state: Optional[AccountHealthState] = None
    already_done: bool = False
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Optional[dict] = None, already_done: bool = False) -> "DispatchResult":
        return cls(success=True, already_done=already_done, data=data or {})

    @classmethod
    def failure(
        cls,
        failure_class: FailureClass,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        health_state: Optional[AccountHealthState] = None,
    ) -> "DispatchResult":
        return cls(
            success=False,
            failure_class=failure_class,
            error_code=error_code,
            message=message,
            status_code=status_code,
            health_state=health_state,
        )


_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def personalization_values(data: dict) -> Dict[str, str]:
    first = data.get("first_name") or ""
    last = data.get("last_name") or ""
    return {
        "first_name": first,
        "last_name": last,
        "full_name": data.get("name") or f"{first} {last}".strip(),
        "title": data.get("title") or data.get("headline") or "",
        "company": data.get("organization") or data.get("company") or data.get("company_name") or "",
        "email": data.get("email") or "",
        "phone": data.get("phone") or data.get("mobile_phone") or "",
        "industry": data.get("industry") or "",
        "location": data.get("city") or data.get("state") or data.get("country") or "",
    }


def personalize(template: Optional[str], data: dict) -> str:
    """
    Fill {{placeholders}} from lead data.

    Unknown placeholders are left as written.
    """
    if not template:
        return ""
    values = personalization_values(data)

    def _replace(match):
        key = match.group(1)
        if key in values:
            return str(values[key])
        return match.group(0)

    return _PLACEHOLDER.sub(_replace, str(template))


class ChannelCapability(ABC):
    """
    Provider integration for one channel.

    Implementations translate the engine's payload into provider calls and
    report the raw outcome. They may raise DispatchError subclasses or
    transport errors; ChannelDispatcher converts those.
    """

    channel: str
    actions: FrozenSet[str] = frozenset()
    target_field: Optional[str] = None

    @abstractmethod
    async def send(
        self,
        target: DispatchTarget,
        payload: Dict[str, Any],
        account: Account,
    ) -> ProviderResponse:
        """
        Perform the action.

        Args:
            target: recipient
            payload: strategy-applied body, always carrying "action"
            account: sending account

        Returns:
            ProviderResponse
        """

    def build_payload(self, action: str, data: dict, config: dict) -> DispatchPayload:
        """Personalized payload for an action; channels override the shape."""
        content = {
            key: personalize(value, data) if isinstance(value, str) else value
            for key, value in config.items()
            if key not in ("action", "label")
        }
        return DispatchPayload(action=action, content=content)


class ChannelDispatcher:
    """
    Engine-facing wrapper around a ChannelCapability.

    Guarantees:
    - bounded by a timeout (timeout => "other")
    - provider failures come back classified, never raised
    """

    def __init__(self, capability: ChannelCapability, timeout: Optional[float] = None):
        self.capability = capability
        self.timeout = timeout or settings.DISPATCH_TIMEOUT_SECONDS

    @property
    def channel(self) -> str:
        return self.capability.channel

    def supports(self, action: str) -> bool:
        return action in self.capability.actions

    def build_payload(self, action: str, data: dict, config: dict) -> DispatchPayload:
        return self.capability.build_payload(action, data, config)

    def missing_target(self, target: DispatchTarget) -> Optional[str]:
        """Name of the contact field the channel needs but the lead lacks."""
        field_name = self.capability.target_field
        if field_name and not getattr(target, field_name, None):
            return field_name
        return None

    async def send(
        self,
        target: DispatchTarget,
        payload: DispatchPayload,
        account: Account,
        strategy: Strategy,
    ) -> DispatchResult:
        """Send once with one account and one strategy."""
        body = payload.for_strategy(strategy)
        try:
            response = await asyncio.wait_for(
                self.capability.send(target, body, account),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning(
                f"[Dispatcher:{self.channel}] Timeout after {self.timeout}s "
                f"({payload.action} via {account.label})"
            )
            return DispatchResult.failure(FailureClass.OTHER, "timeout", error_code="timeout")
        except DispatchError as e:
            return self._from_dispatch_error(e)
        except httpx.HTTPError as e:
            logger.warning(f"[Dispatcher:{self.channel}] Transport error: {e}")
            return DispatchResult.failure(FailureClass.OTHER, str(e), error_code="transport_error")
        except Exception as e:
            logger.error(
                f"[Dispatcher:{self.channel}] Unexpected error in {payload.action}: {e}",
                exc_info=True,
            )
            return DispatchResult.failure(FailureClass.OTHER, str(e), error_code="unexpected_error")

        if response.success:
            return DispatchResult.ok(response.data)

        classification = classify(self.channel, response.provider_error_code, response.status_code)
        if classification.is_success:
            logger.info(
                f"[Dispatcher:{self.channel}] {payload.action} already done "
                f"(code={classification.code} status={response.status_code})"
            )
            return DispatchResult.ok(response.data, already_done=True)

        return DispatchResult.failure(
            classification.failure_class,
            response.provider_message or f"{payload.action} failed",
            error_code=classification.code,
            status_code=response.status_code,
            health_state=classification.health_state,
        )

    def _from_dispatch_error(self, error: DispatchError) -> DispatchResult:
        failure_class = FailureClass(error.failure_class)
        classification = classify(self.channel, error.error_code, error.status_code)
        health_state = classification.health_state
        if classification.failure_class != failure_class:
            health_state = _DEFAULT_HEALTH.get(failure_class)
        return DispatchResult.failure(
            failure_class,
            error.message,
            error_code=classification.code or error.error_code,
            status_code=error.status_code,
            health_state=health_state,
        )


_DEFAULT_HEALTH = {
    FailureClass.RATE_LIMITED: AccountHealthState.RATE_LIMITED,
    FailureClass.CREDENTIAL_ERROR: AccountHealthState.EXPIRED,
    FailureClass.OTHER: None,
}
