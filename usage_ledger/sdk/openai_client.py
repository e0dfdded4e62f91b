"""
Tracked OpenAI client wrapper.

Records one usage delta per successful chat completion without changing
the response.
"""

from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..core.pricing import estimate_cost
from ..core.token_counter import TokenUsage
from ..storage.repository import UsageLedger


class TrackedOpenAI:
    """OpenAI client wrapper that feeds the usage ledger.

    Each successful call adds one request, its total tokens and its
    estimated cost to today's aggregate for the provider. Failures are
    loud: nothing is swallowed.
    """

    def __init__(
        self,
        model: str,
        ledger: UsageLedger,
        provider: str = "openai",
        client: Optional[OpenAI] = None
    ):
        """Initialize tracked OpenAI client.

        Args:
            model: OpenAI model name (required)
            ledger: Ledger that receives usage deltas
            provider: Provider name the usage is recorded under
            client: Preconfigured OpenAI client; one is created if omitted

        Raises:
            ValueError: If model or provider is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not provider or not provider.strip():
            raise ValueError("provider is required and cannot be empty")

        self.model = model
        self.provider = provider
        self.ledger = ledger
        self.client = client or OpenAI()

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create chat completion with usage recording.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty or the response has no usage
            OpenAI API errors: Propagated without modification
            LedgerError: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )

        usage = response.usage
        if not usage:
            raise ValueError("OpenAI response missing usage information")

        token_usage = TokenUsage(
            input_tokens=usage.prompt_tokens,
            output_tokens=usage.completion_tokens
        )
        self.ledger.record_usage(
            self.provider,
            request_delta=1,
            token_delta=usage.total_tokens,
            cost_delta=estimate_cost(self.model, token_usage)
        )

        return response
