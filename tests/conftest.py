"""
Shared test fixtures.

In-memory fakes for the engine's ports (lead store, activity log, graph
source, account source) and a scripted channel capability, plus builders
that wire a complete engine around them.

Usage:
    def test_something(engine_factory, make_lead):
        engine, ctx = engine_factory(workflow)
        outcomes = await engine.run(workflow, [make_lead("l1")])
"""

import copy
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from outreach.core.exceptions import NotFoundError
from outreach.services.accounts.health import AccountHealthRegistry
from outreach.services.accounts.selector import AccountSelector
from outreach.services.accounts.types import Account, AccountHealthState
from outreach.services.channels.base import (
    ChannelCapability,
    ChannelDispatcher,
    DispatchResult,
    ProviderResponse,
    Strategy,
)
from outreach.services.channels.classification import FailureClass
from outreach.services.channels.email import EMAIL_ACTIONS
from outreach.services.channels.linkedin import LINKEDIN_ACTIONS, UnipileLinkedInCapability
from outreach.services.dispatch.fallback import FallbackRetryStrategy
from outreach.services.workflow.engine import WorkflowEngine
from outreach.services.workflow.executor import StepExecutor
from outreach.services.workflow.ports import AccountSource, ActivityLog, GraphSource, LeadStore
from outreach.services.workflow.types import (
    Campaign,
    Lead,
    LeadExecutionState,
    LeadStatus,
    Workflow,
)


# =============================================================================
# FAKES
# =============================================================================


class FakeLeadStore(LeadStore):
    """Keeps leads in memory and records every persisted state."""

    def __init__(self, leads: Optional[List[Lead]] = None):
        self.leads: Dict[str, Lead] = {lead.id: lead for lead in leads or []}
        self.history: List[tuple] = []

    async def get_lead(self, lead_id):
        return self.leads.get(lead_id)

    async def set_execution_state(self, lead_id, state):
        self.history.append((lead_id, replace(state)))
        if lead_id in self.leads:
            self.leads[lead_id].state = replace(state)

    async def list_leads_ready_for_processing(self, campaign_id):
        return [
            copy.deepcopy(lead)
            for lead in self.leads.values()
            if lead.campaign_id == campaign_id and not lead.state.status.is_terminal
        ]

    def statuses(self, lead_id) -> List[LeadStatus]:
        return [state.status for lid, state in self.history if lid == lead_id]


class FakeActivityLog(ActivityLog):
    def __init__(self, fail: bool = False):
        self.records: List[dict] = []
        self.fail = fail

    async def append(self, campaign_id, lead_id, step_id, type, status, metadata=None):
        if self.fail:
            raise ConnectionError("activity log unavailable")
        self.records.append({
            "campaign_id": campaign_id,
            "lead_id": lead_id,
            "step_id": step_id,
            "type": type,
            "status": status,
            "metadata": metadata or {},
        })

    def for_step(self, step_id) -> List[dict]:
        return [r for r in self.records if r["step_id"] == step_id]


class FakeGraphSource(GraphSource):
    def __init__(self, campaigns: Optional[List[Campaign]] = None):
        self.campaigns = {c.id: c for c in campaigns or []}
        self.reads = 0

    async def get_campaign(self, campaign_id):
        self.reads += 1
        if campaign_id not in self.campaigns:
            raise NotFoundError("Campaign", campaign_id)
        return self.campaigns[campaign_id]

    async def list_running_campaign_ids(self):
        return [c.id for c in self.campaigns.values() if c.status == "running"]


class FakeAccountSource(AccountSource):
    def __init__(self, tenant_accounts=None, global_accounts=None):
        self.tenant_accounts: Dict[tuple, List[Account]] = tenant_accounts or {}
        self.global_accounts: Dict[str, List[Account]] = global_accounts or {}
        self.persisted: List[tuple] = []

    async def list_for_tenant(self, tenant_id, channel):
        return list(self.tenant_accounts.get((tenant_id, channel), []))

    async def list_global(self, channel):
        return list(self.global_accounts.get(channel, []))

    async def persist_health(self, account_id, state, until=None):
        self.persisted.append((account_id, state, until))


Responder = Callable[[Any, dict, Account], Any]


class ScriptedCapability(ChannelCapability):
    """
    Channel capability answering from a responder function.

    The responder receives (target, payload, account) and returns a
    ProviderResponse or raises. Every call is recorded.
    """

    def __init__(self, channel: str, actions, responder: Optional[Responder] = None, target_field=None):
        self.channel = channel
        self.actions = frozenset(actions)
        self.target_field = target_field
        self.responder = responder or (lambda target, payload, account: ProviderResponse(success=True))
        self.calls: List[dict] = []

    async def send(self, target, payload, account):
        self.calls.append({"lead_id": target.lead_id, "payload": dict(payload), "account_id": account.id})
        return self.responder(target, payload, account)


class ScriptedLinkedIn(ScriptedCapability):
    """LinkedIn payload shape (optional connection note) with scripted answers."""

    def __init__(self, responder: Optional[Responder] = None):
        super().__init__("linkedin", LINKEDIN_ACTIONS, responder, target_field="profile_url")
        self._shape = UnipileLinkedInCapability(client=MagicMock())

    def build_payload(self, action, data, config):
        return self._shape.build_payload(action, data, config)


class ScriptedDispatcher:
    """
    Dispatcher stand-in answering per (account_id, strategy).

    Unscripted pairs succeed.
    """

    def __init__(self, script: Optional[Dict[tuple, DispatchResult]] = None, channel: str = "linkedin"):
        self.script = script or {}
        self.channel = channel
        self.calls: List[tuple] = []

    async def send(self, target, payload, account, strategy):
        self.calls.append((account.id, strategy))
        return self.script.get((account.id, strategy), DispatchResult.ok({"sent": True}))


# =============================================================================
# FACTORIES
# =============================================================================


def _account(account_id, channel="linkedin", tenant_id="t1", minutes_ago=0, **kwargs) -> Account:
    return Account(
        id=account_id,
        channel=channel,
        tenant_id=tenant_id,
        health_state=kwargs.pop("health_state", AccountHealthState.ACTIVE),
        name=kwargs.pop("name", account_id),
        connected_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
        **kwargs,
    )


@pytest.fixture
def make_account():
    """Factory: make_account("a1", minutes_ago=5, channel="email")."""
    return _account


@pytest.fixture
def make_lead():
    """Factory for leads with LinkedIn/email/phone contact data."""

    def _make(lead_id="lead-1", campaign_id="camp-1", tenant_id="t1", data=None, state=None, **attributes):
        lead_data = {
            "first_name": "Ana",
            "last_name": "Souza",
            "title": "Head of Growth",
            "company": "Acme",
            "linkedin_url": f"https://www.linkedin.com/in/{lead_id}",
            "email": f"{lead_id}@acme.test",
            "phone": "+15550001111",
        }
        lead_data.update(data or {})
        return Lead(
            id=lead_id,
            campaign_id=campaign_id,
            tenant_id=tenant_id,
            data=lead_data,
            attributes=attributes,
            state=state or LeadExecutionState(),
        )

    return _make


@pytest.fixture
def rate_limited():
    return DispatchResult.failure(
        FailureClass.RATE_LIMITED, "limit", error_code="cannot_resend_yet",
        health_state=AccountHealthState.RATE_LIMITED,
    )


@pytest.fixture
def credential_error():
    return DispatchResult.failure(
        FailureClass.CREDENTIAL_ERROR, "expired", error_code="disconnected_account",
        health_state=AccountHealthState.EXPIRED,
    )


@pytest.fixture
def other_error():
    return DispatchResult.failure(FailureClass.OTHER, "boom", error_code="server_error")


@pytest.fixture
def scripted_dispatcher():
    return ScriptedDispatcher


@pytest.fixture
def fake_lead_store():
    return FakeLeadStore


@pytest.fixture
def fake_activity_log():
    return FakeActivityLog


@pytest.fixture
def fake_graph_source():
    return FakeGraphSource


@pytest.fixture
def fake_account_source():
    return FakeAccountSource


@pytest.fixture
def scripted_capability():
    return ScriptedCapability


@pytest.fixture
def scripted_linkedin():
    return ScriptedLinkedIn


class EngineContext:
    """Everything an engine test may want to inspect."""

    def __init__(self, **parts):
        self.__dict__.update(parts)


@pytest.fixture
def engine_factory():
    """
    Build a fully wired WorkflowEngine over in-memory fakes.

    Returns:
        callable(leads=None, accounts=None, linkedin=None, email=None, **engine_kwargs)
        -> (engine, ctx)
    """

    def _build(
        leads=None,
        accounts=None,
        linkedin: Optional[ScriptedCapability] = None,
        email: Optional[ScriptedCapability] = None,
        activity_log: Optional[FakeActivityLog] = None,
        campaigns=None,
        lead_generator=None,
        **engine_kwargs,
    ):
        store = FakeLeadStore(leads or [])
        log = activity_log or FakeActivityLog()
        if accounts is None:
            accounts = [_account("acc-1")]
        by_key: Dict[tuple, List[Account]] = {}
        for account in accounts:
            by_key.setdefault((account.tenant_id, account.channel), []).append(account)
        source = FakeAccountSource(tenant_accounts=by_key)
        registry = AccountHealthRegistry(source=source)
        selector = AccountSelector(source, registry)
        linkedin = linkedin or ScriptedLinkedIn()
        email = email or ScriptedCapability("email", EMAIL_ACTIONS, target_field="email")
        dispatchers = {
            "linkedin": ChannelDispatcher(linkedin, timeout=1),
            "email": ChannelDispatcher(email, timeout=1),
        }
        executor = StepExecutor(
            selector=selector,
            fallback=FallbackRetryStrategy(registry, selector=selector),
            dispatchers=dispatchers,
            activity_log=log,
            lead_generator=lead_generator,
        )
        graph = FakeGraphSource(campaigns or [])
        engine = WorkflowEngine(
            lead_store=store,
            executor=executor,
            graph_source=graph,
            selector=selector,
            **engine_kwargs,
        )
        ctx = EngineContext(
            store=store,
            activity_log=log,
            accounts=source,
            registry=registry,
            selector=selector,
            linkedin=linkedin,
            email=email,
            executor=executor,
            graph=graph,
        )
        return engine, ctx

    return _build


@pytest.fixture
def linear_workflow():
    """start -> connect -> end"""
    return Workflow.from_dict({
        "steps": [
            {"id": "start", "type": "start"},
            {"id": "connect", "type": "linkedin_connect", "data": {"message": "Hi {{first_name}}"}},
            {"id": "end", "type": "end"},
        ],
        "edges": [
            {"source": "start", "target": "connect"},
            {"source": "connect", "target": "end"},
        ],
    })


@pytest.fixture
def mock_redis():
    """Redis client mock for lock tests."""
    mock = MagicMock()
    mock.set = AsyncMock(return_value=True)
    mock.eval = AsyncMock(return_value=1)
    mock.ping = AsyncMock(return_value=True)
    return mock


def criar_mock_supabase(rows: Optional[List[dict]] = None) -> MagicMock:
    """
    Supabase client mock supporting the query chain.

    Every builder method returns the mock itself; ``.execute().data`` holds
    ``rows``.

    Example:
        mock = criar_mock_supabase([{"id": "123"}])
        mock.table("campaigns").select("*").eq("id", "123").execute().data
    """
    mock = MagicMock()
    for method in ("table", "select", "insert", "update", "upsert", "delete",
                   "eq", "neq", "in_", "is_", "order", "limit"):
        getattr(mock, method).return_value = mock
    mock.execute.return_value = MagicMock(data=rows or [])
    return mock


@pytest.fixture
def mock_supabase():
    """Factory: mock_supabase(rows)."""
    return criar_mock_supabase
