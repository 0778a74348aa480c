"""
Data model for the routing & retrieval core.

Catalog rows (destinations, model descriptors) are read-only here; the
derived types (matches, passages, decisions) are ephemeral per request.
"""
from .access import AccessDecision, DenialReason, ModelDescriptor, Tier, UserAccessState
from .chat import (
    ChatContext,
    ChatMessage,
    ChatRequest,
    ConversationCheckpoint,
    IntentDecision,
    Persona,
    StreamEvent,
)
from .destinations import DestinationMatch, DestinationType, PageDestination, SectionDestination
from .knowledge import KnowledgePassage

__all__ = [
    "AccessDecision",
    "ChatContext",
    "ChatMessage",
    "ChatRequest",
    "ConversationCheckpoint",
    "DenialReason",
    "DestinationMatch",
    "DestinationType",
    "IntentDecision",
    "KnowledgePassage",
    "ModelDescriptor",
    "PageDestination",
    "Persona",
    "SectionDestination",
    "StreamEvent",
    "Tier",
    "UserAccessState",
]
