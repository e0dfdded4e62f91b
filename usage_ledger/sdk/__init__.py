"""
SDK for the usage ledger.

Client wrappers that record API usage as it happens.
"""

from .openai_client import TrackedOpenAI

__all__ = ["TrackedOpenAI"]
