"""
Tests for the LLM clients and the reasoning annotator.
"""
from types import SimpleNamespace

import pytest

from sigtest.errors import EnrichmentError
from sigtest.llm.client import (
    REASONING_UNAVAILABLE,
    MockLLMClient,
    OpenAIClient,
    ReasoningAnnotator,
    build_prompt,
    get_client,
)
from sigtest.retry import NO_RETRY, RetryPolicy
from sigtest.signal import Direction

PNLS = {"Trailing Stop": 8.0, "SMA10": 3.5, "Dynamic TP/SL": -5.0}


class FakeCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    def create(self, model, messages):
        self.requests.append((model, messages))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        message = SimpleNamespace(content=reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def openai_client(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    return OpenAIClient(model="gpt-4o-mini", retry=NO_RETRY)


def attach(client, replies):
    completions = FakeCompletions(replies)
    client.client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return completions


def test_build_prompt_long():
    prompt = build_prompt("bitcoin", "Trailing Stop", PNLS, Direction.LONG)

    assert '"bitcoin"' in prompt
    assert 'best strategy was "Trailing Stop" with a P&L of 8.00%' in prompt
    assert "- SMA10: 3.50%" in prompt
    assert "- Dynamic TP/SL: -5.00%" in prompt
    assert "bullish" in prompt


def test_build_prompt_short():
    prompt = build_prompt("ethereum", "Trailing Stop", PNLS, Direction.SHORT)
    assert "direction was short" in prompt
    assert "profit is made when price falls" in prompt
    assert "bearish position" in prompt


def test_mock_llm_client():
    """
    Tests that the MockLLMClient returns the text it was initialized with and
    records the prompts it was asked.
    """
    client = MockLLMClient(text="It locked in the move.")

    assert client.explain("bitcoin", "Trailing Stop", PNLS, Direction.LONG) == "It locked in the move."
    assert len(client.prompts) == 1


def test_get_client_passes_config():
    client = get_client("mock", model="ignored", timeout=5, retry=NO_RETRY, base_url=None)
    assert isinstance(client, MockLLMClient)


def test_openai_client_explain(openai_client):
    completions = attach(openai_client, ["  Trailing let the rally run.  "])

    text = openai_client.explain("bitcoin", "Trailing Stop", PNLS, Direction.LONG)

    assert text == "Trailing let the rally run."
    model, messages = completions.requests[0]
    assert model == "gpt-4o-mini"
    assert messages[0]["role"] == "user"
    assert "Trailing Stop" in messages[0]["content"]


@pytest.mark.parametrize("reply", ["", "   ", None, RuntimeError("rate limited")])
def test_openai_client_failures_raise_enrichment_error(openai_client, reply):
    attach(openai_client, [reply])
    with pytest.raises(EnrichmentError):
        openai_client.explain("bitcoin", "Trailing Stop", PNLS, Direction.LONG)


def test_openai_client_retries(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    client = OpenAIClient(retry=RetryPolicy(max_attempts=2, backoff_seconds=[0.0]))
    completions = attach(client, [RuntimeError("timeout"), "Second time lucky."])

    assert client.explain("bitcoin", "Trailing Stop", PNLS, Direction.LONG) == "Second time lucky."
    assert len(completions.requests) == 2


def test_openai_client_without_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    client = OpenAIClient(retry=NO_RETRY)

    with pytest.raises(EnrichmentError):
        client.explain("bitcoin", "Trailing Stop", PNLS, Direction.LONG)
    annotator = ReasoningAnnotator(client)
    assert annotator.annotate("bitcoin", "Trailing Stop", PNLS, Direction.LONG) == REASONING_UNAVAILABLE


def test_annotator_returns_explanation():
    annotator = ReasoningAnnotator(MockLLMClient(text="Because."))
    assert annotator.annotate("bitcoin", "Trailing Stop", PNLS, Direction.LONG) == "Because."


def test_annotator_never_raises():
    annotator = ReasoningAnnotator(MockLLMClient(fail=True))
    assert annotator.annotate("bitcoin", "Trailing Stop", PNLS, Direction.LONG) == REASONING_UNAVAILABLE
    assert REASONING_UNAVAILABLE == "Reasoning unavailable due to API error"
