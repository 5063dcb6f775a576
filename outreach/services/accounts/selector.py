"""
Account selector - candidate accounts for a dispatch.

Order of preference:
1. Accounts of the tenant on the channel, most recently connected first
2. Global accounts of the channel, only when the tenant has none

Expired and checkpointed accounts are dropped. Accounts still in a rate
limit cooldown go to the end of the list.
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from outreach.core.config import settings
from outreach.core.timezone import TZ_UTC
from outreach.services.accounts.health import AccountHealthRegistry, ProbeSession
from outreach.services.accounts.types import Account, AccountHealthState

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=TZ_UTC)


class AccountSelector:
    """Builds the ordered candidate list for a (tenant, channel) pair."""

    def __init__(
        self,
        source,
        registry: AccountHealthRegistry,
        probes: Optional[Dict[str, object]] = None,
        probe_timeout: Optional[float] = None,
    ):
        """
        Args:
            source: AccountSource (list_for_tenant, list_global)
            registry: shared health registry
            probes: channel -> AccountHealthProbe
            probe_timeout: seconds per probe (default from settings)
        """
        self.source = source
        self.registry = registry
        self.probes = probes or {}
        self.probe_timeout = probe_timeout or settings.HEALTH_PROBE_TIMEOUT_SECONDS
        self._session = ProbeSession()

    def start_probe_session(self) -> ProbeSession:
        """Begin a new probe session; each account is probed at most once per session."""
        self._session = ProbeSession()
        return self._session

    async def ordered(self, tenant_id: Optional[str], channel: str) -> List[Account]:
        """
        Candidate accounts, freshly read on every call.

        Returns:
            Usable accounts first, cooling-down accounts last
        """
        accounts = []
        if tenant_id:
            accounts = list(await self.source.list_for_tenant(tenant_id, channel))

        if not accounts:
            accounts = list(await self.source.list_global(channel))
            if accounts:
                logger.info(
                    f"[AccountSelector] Tenant {tenant_id} has no {channel} accounts, "
                    f"using {len(accounts)} global account(s)"
                )

        accounts.sort(key=lambda a: a.connected_at or _OLDEST, reverse=True)

        usable = []
        cooling = []
        excluded = 0
        for account in accounts:
            state = await self.registry.state_of(account)
            if state.is_unusable:
                excluded += 1
                continue
            if state == AccountHealthState.RATE_LIMITED:
                cooling.append(account)
            else:
                usable.append(account)

        if excluded:
            logger.debug(
                f"[AccountSelector] Excluded {excluded} expired/checkpointed {channel} account(s)"
            )

        return usable + cooling

    async def ensure_healthy(self, account: Account) -> bool:
        """
        Lazily probe an account the first time it is tried in this session.

        A failed probe call (timeout, transport error) is not evidence of a
        bad account; the account stays usable.

        Returns:
            False when the account is (now) expired or checkpointed
        """
        probe = self.probes.get(account.channel)
        if probe is None or not await self._session.claim(account.id):
            return await self.registry.is_usable(account)

        try:
            check = await asyncio.wait_for(probe.check(account), timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[AccountSelector] Health probe timed out for {account.label}")
            return await self.registry.is_usable(account)
        except Exception as e:
            logger.warning(f"[AccountSelector] Health probe failed for {account.label}: {e}")
            return await self.registry.is_usable(account)

        if check.healthy:
            return await self.registry.is_usable(account)

        state = check.state if check.state and check.state.is_unusable else AccountHealthState.EXPIRED
        await self.registry.mark(account, state, reason=check.reason or "health_probe")
        return False
