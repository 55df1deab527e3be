"""Model clients."""

from lmturn.llm.providers.base import ModelClient
from lmturn.llm.providers.openai_compat import OpenAICompatClient

__all__ = ["ModelClient", "OpenAICompatClient"]
