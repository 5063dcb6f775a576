"""
Email channel via the internal email service.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from outreach.core.config import settings
from outreach.core.exceptions import ConfigurationError
from outreach.services.accounts.types import Account
from outreach.services.channels.base import (
    ChannelCapability,
    DispatchPayload,
    DispatchTarget,
    ProviderResponse,
    personalize,
)
from outreach.services.http_client import get_http_client

logger = logging.getLogger(__name__)

EMAIL_ACTIONS = frozenset({"email_send", "email_followup"})


def service_response(response: httpx.Response, success_fields: tuple) -> ProviderResponse:
    """Translate an internal service reply ({success, ...}) into a ProviderResponse."""
    try:
        data = response.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    if response.status_code < 400 and data.get("success"):
        return ProviderResponse(
            success=True,
            status_code=response.status_code,
            data={key: data.get(key) for key in success_fields if key in data},
        )

    return ProviderResponse(
        success=False,
        provider_error_code=data.get("error_code") or data.get("code"),
        provider_message=data.get("message") or data.get("error"),
        status_code=response.status_code,
        data=data,
    )


class EmailCapability(ChannelCapability):
    """Sends campaign emails through the mailbox bound to the account."""

    channel = "email"
    actions = EMAIL_ACTIONS
    target_field = "email"

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or settings.EMAIL_API_URL or "").rstrip("/")

    def build_payload(self, action: str, data: dict, config: dict) -> DispatchPayload:
        return DispatchPayload(
            action=action,
            content={
                "subject": personalize(config.get("subject"), data),
                "body": personalize(config.get("body"), data),
            },
            enrichment={"signature": config.get("signature")},
        )

    async def send(
        self,
        target: DispatchTarget,
        payload: Dict[str, Any],
        account: Account,
    ) -> ProviderResponse:
        if not self.base_url:
            raise ConfigurationError("EMAIL_API_URL is not configured")

        body = {
            "to": target.email,
            "subject": payload.get("subject", ""),
            "body": payload.get("body", ""),
            "lead_id": target.lead_id,
            "campaign_id": payload.get("campaign_id"),
            "account_id": account.provider_account_id or account.id,
            "is_followup": payload["action"] == "email_followup",
        }
        if payload.get("signature"):
            body["signature"] = payload["signature"]

        client = await get_http_client()
        response = await client.post(f"{self.base_url}/api/email/send", json=body)

        result = service_response(response, ("email_id", "status"))
        if result.success:
            logger.info(f"[Email] {payload['action']} sent to lead {target.lead_id} via {account.label}")
        return result
