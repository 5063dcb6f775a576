"""
Voice channel via the voice agent service.
"""
import logging
from typing import Any, Dict, Optional

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
from outreach.services.channels.email import service_response
from outreach.services.http_client import get_http_client

logger = logging.getLogger(__name__)

VOICE_ACTIONS = frozenset({"voice_agent_call"})


class VoiceAgentCapability(ChannelCapability):
    """Places AI voice agent calls from the account's line."""

    channel = "voice"
    actions = VOICE_ACTIONS
    target_field = "phone"

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or settings.VOICE_API_URL or "").rstrip("/")

    def build_payload(self, action: str, data: dict, config: dict) -> DispatchPayload:
        context = config.get("voice_context") or config.get("added_context") or ""
        return DispatchPayload(
            action=action,
            content={"voice_agent_id": config.get("voice_agent_id")},
            enrichment={"added_context": personalize(context, data)},
        )

    async def send(
        self,
        target: DispatchTarget,
        payload: Dict[str, Any],
        account: Account,
    ) -> ProviderResponse:
        if not self.base_url:
            raise ConfigurationError("VOICE_API_URL is not configured")

        body = {
            "phone_number": target.phone,
            "voice_agent_id": payload.get("voice_agent_id"),
            "added_context": payload.get("added_context", ""),
            "lead_id": target.lead_id,
            "campaign_id": payload.get("campaign_id"),
            "from_account_id": account.provider_account_id or account.id,
        }

        client = await get_http_client()
        response = await client.post(f"{self.base_url}/api/voice-agent/make-call", json=body)

        result = service_response(response, ("call_id", "status"))
        if result.success:
            logger.info(f"[Voice] Call placed for lead {target.lead_id} via {account.label}")
        return result
