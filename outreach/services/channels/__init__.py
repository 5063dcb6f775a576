"""
Channel dispatchers.

Supports:
- LinkedIn (Unipile)
- Email (internal email service)
- Voice (voice agent service)

Usage:
    from outreach.services.channels import get_dispatcher, channel_for_action

    dispatcher = get_dispatcher(channel_for_action("linkedin_connect"))
    result = await dispatcher.send(target, payload, account, Strategy.BARE)
"""

import logging
from typing import Dict, Optional

from outreach.services.channels.base import (
    ChannelCapability,
    ChannelDispatcher,
    DispatchPayload,
    DispatchResult,
    DispatchTarget,
    ProviderResponse,
    Strategy,
    personalize,
)
from outreach.services.channels.classification import FailureClass, classify
from outreach.services.channels.email import EMAIL_ACTIONS, EmailCapability
from outreach.services.channels.linkedin import (
    LINKEDIN_ACTIONS,
    UnipileHealthProbe,
    UnipileLinkedInCapability,
)
from outreach.services.channels.voice import VOICE_ACTIONS, VoiceAgentCapability

logger = logging.getLogger(__name__)

ACTION_CHANNELS: Dict[str, str] = {
    **{action: "linkedin" for action in LINKEDIN_ACTIONS},
    **{action: "email" for action in EMAIL_ACTIONS},
    **{action: "voice" for action in VOICE_ACTIONS},
}

_dispatcher_cache: Dict[str, ChannelDispatcher] = {}

__all__ = [
    "ChannelCapability",
    "ChannelDispatcher",
    "DispatchPayload",
    "DispatchResult",
    "DispatchTarget",
    "ProviderResponse",
    "Strategy",
    "FailureClass",
    "classify",
    "personalize",
    "ACTION_CHANNELS",
    "channel_for_action",
    "get_dispatcher",
    "build_dispatchers",
    "build_health_probes",
    "clear_dispatcher_cache",
]


def channel_for_action(action: Optional[str]) -> Optional[str]:
    """Channel that performs an action, None when unknown."""
    if not action:
        return None
    return ACTION_CHANNELS.get(action)


def get_dispatcher(channel: str) -> ChannelDispatcher:
    """
    Dispatcher for a channel, cached per process.

    Raises:
        ValueError: unknown channel
    """
    if channel in _dispatcher_cache:
        return _dispatcher_cache[channel]

    if channel == "linkedin":
        capability = UnipileLinkedInCapability()
    elif channel == "email":
        capability = EmailCapability()
    elif channel == "voice":
        capability = VoiceAgentCapability()
    else:
        raise ValueError(f"Unknown channel: {channel}")

    dispatcher = ChannelDispatcher(capability)
    _dispatcher_cache[channel] = dispatcher
    logger.debug(f"[Channels] Created dispatcher for {channel}")
    return dispatcher


def build_dispatchers() -> Dict[str, ChannelDispatcher]:
    """Dispatchers for every known channel."""
    return {channel: get_dispatcher(channel) for channel in sorted(set(ACTION_CHANNELS.values()))}


def build_health_probes() -> Dict[str, object]:
    """Health probes per channel; channels without one are never probed."""
    return {"linkedin": UnipileHealthProbe()}


def clear_dispatcher_cache(channel: Optional[str] = None) -> None:
    if channel:
        _dispatcher_cache.pop(channel, None)
    else:
        _dispatcher_cache.clear()
