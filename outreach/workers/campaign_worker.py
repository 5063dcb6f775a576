"""
Campaign worker - periodically advances the leads of running campaigns.

Each cycle lists the running campaigns (or the ids it was started with)
and runs one engine pass per campaign. Campaigns are processed one after
the other; leads inside a campaign run concurrently.
"""

import asyncio
from typing import Dict, List, Optional

from outreach.core.config import settings
from outreach.core.exceptions import ConfigurationError, NotFoundError
from outreach.core.logging import get_logger
from outreach.services.accounts.health import AccountHealthRegistry
from outreach.services.accounts.repository import AccountRepository
from outreach.services.accounts.selector import AccountSelector
from outreach.services.channels import build_dispatchers, build_health_probes
from outreach.services.dispatch.fallback import FallbackRetryStrategy
from outreach.services.workflow.engine import WorkflowEngine
from outreach.services.workflow.executor import StepExecutor
from outreach.services.redis import check_redis_connection
from outreach.services.workflow.locks import RedisLeadLocks, build_lead_locks
from outreach.services.workflow.repository import (
    SupabaseActivityLog,
    SupabaseGraphSource,
    SupabaseLeadStore,
)

logger = get_logger(__name__)


def build_engine(stop_event: Optional[asyncio.Event] = None) -> WorkflowEngine:
    """Wire the engine with the Supabase adapters and the HTTP channels."""
    accounts = AccountRepository()
    registry = AccountHealthRegistry(source=accounts)
    selector = AccountSelector(accounts, registry, probes=build_health_probes())
    executor = StepExecutor(
        selector=selector,
        fallback=FallbackRetryStrategy(registry, selector=selector),
        dispatchers=build_dispatchers(),
        activity_log=SupabaseActivityLog(),
    )
    return WorkflowEngine(
        lead_store=SupabaseLeadStore(),
        executor=executor,
        graph_source=SupabaseGraphSource(),
        selector=selector,
        locks=build_lead_locks(),
        stop_event=stop_event,
    )


class CampaignWorker:
    """Runs engine passes in a loop until stopped."""

    def __init__(
        self,
        engine: WorkflowEngine,
        campaign_ids: Optional[List[str]] = None,
        interval_seconds: Optional[int] = None,
    ):
        """
        Args:
            engine: configured WorkflowEngine (with a graph source)
            campaign_ids: fixed campaigns to process; None means every running campaign
            interval_seconds: pause between cycles
        """
        self.engine = engine
        self.campaign_ids = campaign_ids or None
        self.interval = interval_seconds or settings.WORKER_INTERVAL_SECONDS
        self.running = False
        self._stats = {"cycles": 0, "campaigns": 0, "errors": 0}

    @property
    def stop_event(self) -> asyncio.Event:
        return self.engine.stop_event

    async def start(self):
        """
        Loop until stop() is called.

        Raises:
            ConfigurationError: lead locks live in Redis and Redis is unreachable
        """
        if isinstance(self.engine.locks, RedisLeadLocks) and not await check_redis_connection():
            raise ConfigurationError("Lead locks need Redis but Redis is unreachable")

        self.running = True
        logger.info(f"CampaignWorker started (interval={self.interval}s)")

        while self.running and not self.stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error(f"Worker cycle error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        self.running = False
        logger.info(f"CampaignWorker stopped. Stats: {self._stats}")

    async def stop(self):
        """Stop after the in-flight dispatches finish."""
        self.running = False
        self.engine.stop()

    async def run_cycle(self) -> Dict[str, dict]:
        """
        One pass over every campaign.

        Returns:
            campaign_id -> {reason: count}
        """
        self._stats["cycles"] += 1
        campaign_ids = self.campaign_ids or await self.engine.graph_source.list_running_campaign_ids()
        summary: Dict[str, dict] = {}

        for campaign_id in campaign_ids:
            if self.stop_event.is_set():
                break
            try:
                outcomes = await self.engine.run_campaign(campaign_id)
            except NotFoundError:
                logger.warning(f"Campaign {campaign_id} not found, skipping")
                self._stats["errors"] += 1
                continue
            except Exception as e:
                logger.error(f"Campaign {campaign_id} pass failed: {e}", exc_info=True)
                self._stats["errors"] += 1
                continue

            self._stats["campaigns"] += 1
            counts: Dict[str, int] = {}
            for outcome in outcomes.values():
                counts[outcome.reason.value] = counts.get(outcome.reason.value, 0) + 1
            summary[campaign_id] = counts

        return summary
