from __future__ import annotations

from lmturn.conversation.engine import TurnEngine
from lmturn.conversation.state import ConversationState
from lmturn.llm.types import Message


class Conversation:
    """
    Pairs a ``ConversationState`` with the ``TurnEngine`` that advances it.

    Usage::

        convo = Conversation(engine, ConversationState("qwen2.5-7b-instruct"))
        convo.add_system_message("You are terse.")
        text = await convo.send("What's the weather in SF?")
    """

    def __init__(self, engine: TurnEngine, state: ConversationState) -> None:
        self.engine = engine
        self.state = state

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.state.messages

    @property
    def last_message(self) -> Message | None:
        return self.state.last_message

    def add_system_message(self, content: str) -> Conversation:
        self.state.add_system_message(content)
        return self

    def add_user_message(self, content: str) -> Conversation:
        self.state.add_user_message(content)
        return self

    async def send(self, text: str | None = None, timeout: float | None = None) -> str:
        """Append *text* as a user message (if given) and run one turn."""
        if text is not None:
            self.state.add_user_message(text)
        return await self.engine.handle(self.state, timeout=timeout)
