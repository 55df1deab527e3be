"""lmturn -- tool-calling conversation turns against OpenAI-compatible servers."""

__version__ = "0.1.0"
