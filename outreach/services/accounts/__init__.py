"""
Channel account management.

- Types: Account, AccountHealthState, HealthCheck
- Health: shared registry of rate limits, expirations and checkpoints
- Selector: ordered candidate accounts for a dispatch
- Repository: Supabase-backed account source
"""

from outreach.services.accounts.types import Account, AccountHealthState, HealthCheck
from outreach.services.accounts.health import (
    AccountHealthRegistry,
    ProbeSession,
    cooldown_minutes,
)
from outreach.services.accounts.selector import AccountSelector

__all__ = [
    "Account",
    "AccountHealthState",
    "HealthCheck",
    "AccountHealthRegistry",
    "ProbeSession",
    "cooldown_minutes",
    "AccountSelector",
]
