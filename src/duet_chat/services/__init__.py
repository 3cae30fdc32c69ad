# src/duet_chat/services/__init__.py
"""Hub services: envelope crypto, session registry, routing and the hub actor."""

from .envelope import EnvelopeError, EnvelopeService, Role, SealedMessage
from .hub import Hub, build_hub
from .registry import SessionRegistry, TransportSession
from .router import AuthenticationError, HubRouter

__all__ = [
    "AuthenticationError",
    "EnvelopeError",
    "EnvelopeService",
    "Hub",
    "build_hub",
    "HubRouter",
    "Role",
    "SealedMessage",
    "SessionRegistry",
    "TransportSession",
]
