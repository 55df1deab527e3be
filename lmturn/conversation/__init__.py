"""Conversation state and the turn engine that advances it."""

from lmturn.conversation.builder import ConversationBuilder
from lmturn.conversation.conversation import Conversation
from lmturn.conversation.engine import TurnEngine, TurnPhase
from lmturn.conversation.state import ConversationState

__all__ = ["Conversation", "ConversationBuilder", "ConversationState", "TurnEngine", "TurnPhase"]
