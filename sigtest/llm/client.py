"""
LLM clients that explain why a strategy won, and the annotator that calls
them without ever letting a failure reach the backtest.
"""
import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, Optional, Type

from openai import OpenAI

from sigtest.errors import EnrichmentError
from sigtest.retry import RetryPolicy
from sigtest.signal import Direction

logger = logging.getLogger(__name__)

REASONING_UNAVAILABLE = "Reasoning unavailable due to API error"

# Registry for LLM clients
CLIENT_REGISTRY: Dict[str, Type["LLMClient"]] = {}


def register_client(name: str, client_class: Type["LLMClient"]):
    """
    Registers a new LLM client class.

    Args:
        name (str): The identifier for the client.
        client_class (Type["LLMClient"]): The client class to register.
    """
    if name in CLIENT_REGISTRY:
        raise ValueError(f"LLM Client '{name}' is already registered.")
    CLIENT_REGISTRY[name] = client_class


def get_client(name: str, **kwargs) -> "LLMClient":
    """
    Retrieves an instance of a registered LLM client.

    Args:
        name (str): The identifier of the client to retrieve.
        **kwargs: Keyword arguments to pass to the client's constructor.

    Returns:
        LLMClient: An instance of the requested client.
    """
    if name not in CLIENT_REGISTRY:
        raise ValueError(
            f"LLM Client '{name}' is not registered. Available: {list(CLIENT_REGISTRY.keys())}"
        )
    client_class = CLIENT_REGISTRY[name]
    return client_class(**kwargs)


def build_prompt(
    instrument_id: str,
    best_strategy: str,
    pnl_by_strategy: Dict[str, float],
    direction: Direction,
) -> str:
    """
    Builds the prompt asking for a short explanation of the winning strategy.
    """
    if direction is Direction.SHORT:
        position = "bearish position where profit is made when price falls"
        bias = "bearish"
    else:
        position = "bullish position where profit is made when price rises"
        bias = "bullish"
    lines = "\n".join(f"- {name}: {pnl:.2f}%" for name, pnl in pnl_by_strategy.items())
    return (
        f'For the token "{instrument_id}", the best strategy was "{best_strategy}" '
        f"with a P&L of {pnl_by_strategy[best_strategy]:.2f}%.\n"
        f"The signal direction was {direction.value} ({position}).\n"
        f"P&L values for all strategies:\n{lines}\n"
        f'Provide a brief reasoning (1-2 sentences) why "{best_strategy}" might have been '
        f"the best choice for this {bias} position."
    )


class LLMClient(ABC):
    """
    Abstract base class for all Large Language Model clients.
    """

    @abstractmethod
    def explain(
        self,
        instrument_id: str,
        best_strategy: str,
        pnl_by_strategy: Dict[str, float],
        direction: Direction,
    ) -> str:
        """
        Explains why `best_strategy` outperformed the others.

        Args:
            instrument_id (str): The instrument that was traded.
            best_strategy (str): The winning strategy name.
            pnl_by_strategy (Dict[str, float]): P&L of every exited strategy.
            direction (Direction): The signal direction.

        Returns:
            str: A short human-readable explanation.

        Raises:
            EnrichmentError: If no explanation could be produced.
        """
        raise NotImplementedError


class MockLLMClient(LLMClient):
    """
    A mock LLM client for testing purposes.

    It returns a predefined explanation, or raises if `fail` is set.
    """

    def __init__(self, text: str = "The trend persisted long enough for this exit to capture it.",
                 fail: bool = False, **kwargs):
        self._text = text
        self._fail = fail
        self.prompts = []

    def explain(self, instrument_id, best_strategy, pnl_by_strategy, direction) -> str:
        self.prompts.append(build_prompt(instrument_id, best_strategy, pnl_by_strategy, direction))
        if self._fail:
            raise EnrichmentError("mock failure")
        return self._text


class OpenAIClient(LLMClient):
    """
    An LLM client using OpenAI's chat completions API.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        base_url: Optional[str] = None,
    ):
        """
        Initializes the OpenAI client. The API key is read from the
        OPENAI_API_KEY environment variable.

        Args:
            model (str): The model to use for generating responses.
            timeout (float): Per-request timeout in seconds.
            retry (Optional[RetryPolicy]): Retry policy for failed requests.
            base_url (Optional[str]): Custom API endpoint URL.
        """
        self.model = model
        self.timeout = timeout
        self.base_url = base_url
        self.retry = retry or RetryPolicy(max_attempts=2, backoff_seconds=[1.0])
        self.client: Optional[OpenAI] = None

    def _get_client(self) -> OpenAI:
        # Created on first use, so a missing API key fails `explain`, not construction.
        if self.client is None:
            # Retries are handled by the policy, not by the SDK.
            self.client = OpenAI(
                api_key=os.environ.get("OPENAI_API_KEY"),
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self.client

    def _complete(self, client: OpenAI, prompt: str) -> str:
        response = client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
        )
        content = response.choices[0].message.content
        if not content or not content.strip():
            raise EnrichmentError("Empty response from OpenAI")
        return content.strip()

    def explain(self, instrument_id, best_strategy, pnl_by_strategy, direction) -> str:
        prompt = build_prompt(instrument_id, best_strategy, pnl_by_strategy, direction)
        try:
            return self.retry.call(self._complete, self._get_client(), prompt)
        except Exception as e:
            raise EnrichmentError(f"OpenAI request failed: {e}") from e


class ReasoningAnnotator:
    """
    Best-effort enrichment step. `annotate` never raises: any client failure
    yields a placeholder string.
    """

    def __init__(self, client: LLMClient, placeholder: str = REASONING_UNAVAILABLE):
        self.client = client
        self.placeholder = placeholder

    def annotate(
        self,
        instrument_id: str,
        best_strategy: str,
        pnl_by_strategy: Dict[str, float],
        direction: Direction,
    ) -> str:
        try:
            return self.client.explain(instrument_id, best_strategy, pnl_by_strategy, direction)
        except Exception as e:
            logger.error("Error getting reasoning for %s: %s", instrument_id, e)
            return self.placeholder


# Register the built-in clients
register_client("mock", MockLLMClient)
register_client("openai", OpenAIClient)
