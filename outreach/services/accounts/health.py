"""
Shared account health registry.

Dispatch failures move accounts to rate_limited (with a cooldown),
expired or checkpointed. Every lead of a run sees the same registry, so an
account that expired while serving one lead is skipped for all others.

Reads and writes go through an asyncio.Lock.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Set, Union

from outreach.core.timezone import utc_now
from outreach.services.accounts.types import Account, AccountHealthState

logger = logging.getLogger(__name__)


# Cooldown (minutes) applied when a channel signals a rate limit.
# Keys are provider error codes or HTTP statuses; "default" covers the rest.
RATE_LIMIT_COOLDOWN_MINUTES: Dict[str, Dict[Union[str, int], int]] = {
    "linkedin": {
        "default": 60,
        429: 15,
        "cannot_resend_yet": 24 * 60,
        "limit_exceeded": 24 * 60,
        "weekly_limit": 7 * 24 * 60,
    },
    "email": {
        "default": 15,
        429: 5,
        "daily_quota_exceeded": 24 * 60,
    },
    "voice": {
        "default": 10,
        429: 5,
    },
}

DEFAULT_COOLDOWN_MINUTES = 30


def cooldown_minutes(
    channel: str,
    error_code: Optional[str] = None,
    status_code: Optional[int] = None,
) -> int:
    """Cooldown for a rate-limited account, most specific key first."""
    table = RATE_LIMIT_COOLDOWN_MINUTES.get(channel, {})
    if error_code and error_code in table:
        return table[error_code]
    if status_code and status_code in table:
        return table[status_code]
    return table.get("default", DEFAULT_COOLDOWN_MINUTES)


@dataclass
class HealthEntry:
    state: AccountHealthState
    until: Optional[datetime] = None
    reason: Optional[str] = None
    updated_at: Optional[datetime] = None


class AccountHealthRegistry:
    """
    In-memory health overrides for channel accounts.

    An entry here wins over the state stored with the account. A
    rate_limited entry whose cooldown elapsed reads back as active.

    Args:
        source: optional account source; state changes are persisted
            through ``persist_health`` (failures are logged, not raised)
    """

    def __init__(self, source=None):
        self._source = source
        self._entries: Dict[str, HealthEntry] = {}
        self._lock = asyncio.Lock()

    async def state_of(self, account: Account) -> AccountHealthState:
        async with self._lock:
            return self._effective(account, utc_now())

    async def is_usable(self, account: Account) -> bool:
        return not (await self.state_of(account)).is_unusable

    async def in_cooldown(self, account: Account) -> bool:
        return await self.state_of(account) == AccountHealthState.RATE_LIMITED

    async def cooldown_until(self, account: Account) -> Optional[datetime]:
        async with self._lock:
            entry = self._entries.get(account.id)
            return entry.until if entry else None

    def _effective(self, account: Account, now: datetime) -> AccountHealthState:
        entry = self._entries.get(account.id)
        if entry is None:
            if (
                account.health_state == AccountHealthState.RATE_LIMITED
                and account.health_until
                and account.health_until <= now
            ):
                return AccountHealthState.ACTIVE
            return account.health_state
        if entry.state == AccountHealthState.RATE_LIMITED and entry.until and entry.until <= now:
            return AccountHealthState.ACTIVE
        return entry.state

    async def mark(
        self,
        account: Account,
        state: AccountHealthState,
        until: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> None:
        """Record a new health state for an account."""
        async with self._lock:
            previous = self._effective(account, utc_now())
            self._entries[account.id] = HealthEntry(
                state=state, until=until, reason=reason, updated_at=utc_now()
            )

        if previous != state:
            log = logger.info if state == AccountHealthState.ACTIVE else logger.warning
            log(
                f"[AccountHealth] {account.channel}:{account.label} "
                f"{previous.value} -> {state.value}"
                + (f" until {until.isoformat()}" if until else "")
                + (f" ({reason})" if reason else "")
            )

        await self._persist(account, state, until)

    async def mark_rate_limited(
        self,
        account: Account,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> datetime:
        """Put an account in cooldown using the channel's cooldown table."""
        minutes = cooldown_minutes(account.channel, error_code, status_code)
        until = utc_now() + timedelta(minutes=minutes)
        await self.mark(
            account,
            AccountHealthState.RATE_LIMITED,
            until=until,
            reason=error_code or (f"http_{status_code}" if status_code else None),
        )
        return until

    async def reset(self, account_id: str) -> None:
        """Forget any override for the account."""
        async with self._lock:
            self._entries.pop(account_id, None)

    async def _persist(
        self,
        account: Account,
        state: AccountHealthState,
        until: Optional[datetime],
    ) -> None:
        if self._source is None:
            return
        try:
            await self._source.persist_health(account.id, state, until)
        except Exception as e:
            logger.error(f"[AccountHealth] Failed to persist health of {account.label}: {e}")

    def snapshot(self) -> Dict[str, dict]:
        """Current overrides, for logging and tests."""
        return {
            account_id: {
                "state": entry.state.value,
                "until": entry.until.isoformat() if entry.until else None,
                "reason": entry.reason,
            }
            for account_id, entry in self._entries.items()
        }


class ProbeSession:
    """Tracks which accounts were already health-probed during one engine run."""

    def __init__(self):
        self._probed: Set[str] = set()
        self._lock = asyncio.Lock()

    async def claim(self, account_id: str) -> bool:
        """True the first time an account is seen in this session."""
        async with self._lock:
            if account_id in self._probed:
                return False
            self._probed.add(account_id)
            return True

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._probed
