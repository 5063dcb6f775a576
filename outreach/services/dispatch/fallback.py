"""
Fallback retry strategy for channel dispatch.

Walks the candidate accounts in order and, on each, the payload
strategies richest first:

    success          -> done
    rate_limited     -> next strategy on the same account; a rate-limited
                        non-final strategy is not tried on later accounts
    credential_error -> next account
    other            -> next account

Each (account, strategy) pair is sent at most once per call. Classified
failures update the shared health registry so sibling leads skip accounts
that just expired.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

from outreach.services.accounts.health import AccountHealthRegistry
from outreach.services.accounts.types import Account, AccountHealthState
from outreach.services.channels.base import (
    ChannelDispatcher,
    DispatchPayload,
    DispatchResult,
    DispatchTarget,
    Strategy,
)
from outreach.services.channels.classification import FailureClass

logger = logging.getLogger(__name__)


class DispatchErrorType(str, Enum):
    """Why every account/strategy combination failed."""

    LIMIT_REACHED = "limit_reached"
    NO_VALID_ACCOUNTS = "no_valid_accounts"
    DISPATCH_ERRORS = "dispatch_errors"
    NO_ACCOUNTS_CONFIGURED = "no_accounts_configured"


@dataclass
class DispatchAttempt:
    """One send, kept only for the duration of a dispatch call."""

    account_id: str
    strategy: Strategy
    result: DispatchResult


@dataclass
class DispatchOutcome:
    success: bool
    account_used: Optional[Account] = None
    strategy_used: Optional[Strategy] = None
    error_type: Optional[DispatchErrorType] = None
    error: Optional[str] = None
    already_done: bool = False
    data: Dict = field(default_factory=dict)
    attempts: List[DispatchAttempt] = field(default_factory=list)

    @property
    def sends(self) -> int:
        return len(self.attempts)

    def summary(self) -> dict:
        return {
            "success": self.success,
            "account_id": self.account_used.id if self.account_used else None,
            "strategy": self.strategy_used.value if self.strategy_used else None,
            "error_type": self.error_type.value if self.error_type else None,
            "error": self.error,
            "already_done": self.already_done,
            "attempts": [
                {
                    "account_id": a.account_id,
                    "strategy": a.strategy.value,
                    "failure_class": a.result.failure_class.value if a.result.failure_class else None,
                    "error_code": a.result.error_code,
                }
                for a in self.attempts
            ],
        }


def resolve_error_type(counts: Dict[FailureClass, int]) -> DispatchErrorType:
    """
    Dominant failure decides the error type.

    Rate limits win ties; credential errors only count as
    no_valid_accounts when no rate limit was seen.
    """
    rate = counts.get(FailureClass.RATE_LIMITED, 0)
    credential = counts.get(FailureClass.CREDENTIAL_ERROR, 0)
    other = counts.get(FailureClass.OTHER, 0)

    if rate and rate >= credential and rate >= other:
        return DispatchErrorType.LIMIT_REACHED
    if credential and not rate and credential >= other:
        return DispatchErrorType.NO_VALID_ACCOUNTS
    return DispatchErrorType.DISPATCH_ERRORS


class FallbackRetryStrategy:
    """Multi-account, multi-strategy dispatch."""

    def __init__(self, registry: AccountHealthRegistry, selector=None):
        """
        Args:
            registry: shared account health registry
            selector: optional AccountSelector for lazy health probes
        """
        self.registry = registry
        self.selector = selector

    @staticmethod
    def strategies_for(payload: DispatchPayload, use_enrichment: bool = True) -> List[Strategy]:
        if use_enrichment and payload.has_enrichment:
            return [Strategy.WITH_ENRICHMENT, Strategy.BARE]
        return [Strategy.BARE]

    async def dispatch(
        self,
        dispatcher: ChannelDispatcher,
        target: DispatchTarget,
        payload: DispatchPayload,
        accounts: Sequence[Account],
        use_enrichment: bool = True,
    ) -> DispatchOutcome:
        """
        Try accounts and strategies until one send succeeds.

        Args:
            dispatcher: channel dispatcher
            target: recipient
            payload: what to send
            accounts: ordered candidates (AccountSelector.ordered)
            use_enrichment: caller wants the enriched variant tried first

        Returns:
            DispatchOutcome
        """
        channel = dispatcher.channel
        if not accounts:
            logger.warning(f"[Fallback] No {channel} accounts configured for {payload.action}")
            return DispatchOutcome(
                success=False,
                error_type=DispatchErrorType.NO_ACCOUNTS_CONFIGURED,
                error=f"No {channel} accounts configured",
            )

        strategies = self.strategies_for(payload, use_enrichment)
        final_strategy = strategies[-1]
        dropped: Set[Strategy] = set()
        tried: Set[Tuple[str, Strategy]] = set()
        counts: Dict[FailureClass, int] = {fc: 0 for fc in FailureClass}
        attempts: List[DispatchAttempt] = []
        last_error: Optional[str] = None

        for account in accounts:
            # Another lead may have burned this account since the list was built
            if not await self.registry.is_usable(account):
                logger.debug(f"[Fallback] Skipping unusable account {account.label}")
                counts[FailureClass.CREDENTIAL_ERROR] += 1
                continue

            if self.selector is not None and not await self.selector.ensure_healthy(account):
                logger.info(f"[Fallback] Account {account.label} failed its health probe")
                counts[FailureClass.CREDENTIAL_ERROR] += 1
                last_error = f"account {account.label} unhealthy"
                continue

            for strategy in strategies:
                if strategy in dropped or (account.id, strategy) in tried:
                    continue
                tried.add((account.id, strategy))

                result = await dispatcher.send(target, payload, account, strategy)
                attempts.append(DispatchAttempt(account.id, strategy, result))

                if result.success:
                    if attempts[:-1]:
                        logger.info(
                            f"[Fallback] {payload.action} succeeded on attempt {len(attempts)} "
                            f"({account.label}/{strategy.value})"
                        )
                    return DispatchOutcome(
                        success=True,
                        account_used=account,
                        strategy_used=strategy,
                        already_done=result.already_done,
                        data=result.data,
                        attempts=attempts,
                    )

                failure_class = result.failure_class or FailureClass.OTHER
                counts[failure_class] += 1
                last_error = result.message
                logger.warning(
                    f"[Fallback] {payload.action} failed on {account.label}/{strategy.value}: "
                    f"{failure_class.value} code={result.error_code}"
                )

                if failure_class == FailureClass.RATE_LIMITED and strategy != final_strategy:
                    dropped.add(strategy)
                    continue

                await self._record_health(account, result)
                break

        error_type = resolve_error_type(counts)
        logger.warning(
            f"[Fallback] {payload.action} exhausted {len(accounts)} account(s) "
            f"after {len(attempts)} send(s): {error_type.value}"
        )
        return DispatchOutcome(
            success=False,
            error_type=error_type,
            error=last_error or error_type.value,
            attempts=attempts,
        )

    async def _record_health(self, account: Account, result: DispatchResult) -> None:
        state = result.health_state
        if state is None:
            return
        if state == AccountHealthState.RATE_LIMITED:
            await self.registry.mark_rate_limited(account, result.error_code, result.status_code)
        else:
            await self.registry.mark(account, state, reason=result.error_code)
