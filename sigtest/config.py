"""
Configuration models for the sigtest framework.

This module defines the Pydantic models for validating and managing the
framework's configuration, which is typically loaded from a YAML file.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from sigtest.backtester.orchestrator import NoExitPolicy
from sigtest.retry import RetryPolicy
from sigtest.strategies import DEFAULT_STRATEGIES, StrategyConfig, ensure_unique_names


class DataConfig(BaseModel):
    """
    Configuration for price data.

    Args:
        source (str): 'coingecko' to fetch over HTTP, or 'csv' to read a file.
        base_url (Optional[str]): Custom endpoint of the price chart API.
        path (Optional[str]): Path to the price CSV, required for 'csv'.
        timeout (float): Per-request timeout in seconds.
    """
    source: Literal["coingecko", "csv"] = Field("coingecko", description="Price data source.")
    base_url: Optional[str] = Field(None, description="Custom price API endpoint.")
    path: Optional[str] = Field(None, description="Path to a price CSV file.")
    timeout: float = Field(60.0, gt=0, description="Request timeout in seconds.")


class BacktestConfig(BaseModel):
    """
    Configuration of the backtest itself.

    Args:
        strategies (List[StrategyConfig]): Ordered exit strategies. Order
            breaks P&L ties.
        no_exit_policy (NoExitPolicy): What to do with strategies that never
            trigger before the data ends.
        max_workers (int): Number of signals resolved concurrently.
    """
    strategies: List[StrategyConfig] = Field(default_factory=lambda: list(DEFAULT_STRATEGIES))
    no_exit_policy: NoExitPolicy = NoExitPolicy.UNRESOLVED
    max_workers: int = Field(1, ge=1, description="Concurrent signals per batch.")

    @field_validator("strategies")
    @classmethod
    def _unique_names(cls, strategies: List[StrategyConfig]) -> List[StrategyConfig]:
        if not strategies:
            raise ValueError("At least one strategy must be configured.")
        ensure_unique_names(strategies)
        return strategies


class LLMConfig(BaseModel):
    """
    Configuration for the Large Language Model client.

    Args:
        enabled (bool): Whether results are annotated at all.
        client (str): The identifier for the LLM client to use (e.g. 'openai', 'mock').
        model (str): The specific model name to be used.
        base_url (Optional[str]): Custom API endpoint URL.
        timeout (float): Per-request timeout in seconds.
    """
    enabled: bool = True
    client: str = Field("openai", description="Identifier for the LLM client.")
    model: str = Field("gpt-4o-mini", description="The specific LLM model to use.")
    base_url: Optional[str] = Field(None, description="Custom API endpoint URL.")
    timeout: float = Field(30.0, gt=0, description="Request timeout in seconds.")


class DeliveryConfig(BaseModel):
    """
    Configuration for subscriber notifications.

    Args:
        enabled (bool): Whether outcomes are sent to subscribers.
        url (Optional[str]): Message relay endpoint.
        timeout (float): Per-request timeout in seconds.
    """
    enabled: bool = False
    url: Optional[str] = Field(None, description="Message relay endpoint.")
    timeout: float = Field(10.0, gt=0, description="Request timeout in seconds.")


class SinkConfig(BaseModel):
    """
    Configuration of the result store.

    Args:
        path (Optional[str]): JSON Lines file for results. None keeps
            results in memory only.
    """
    path: Optional[str] = None


class Config(BaseModel):
    """
    Top-level configuration object for a sigtest run.

    Args:
        data (DataConfig): Price data configuration.
        backtest (BacktestConfig): Strategies and run options.
        retry (RetryPolicy): Retry policy for every network collaborator.
        llm (LLMConfig): Language Model configuration.
        delivery (DeliveryConfig): Notification configuration.
        sink (SinkConfig): Result store configuration.
    """
    data: DataConfig
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    sink: SinkConfig = Field(default_factory=SinkConfig)
