"""
Input/Output operations for the sigtest framework.

This module provides utility functions for loading configurations and
signal sheets.
"""
import logging
from typing import List, Tuple

import pandas as pd
import yaml

from sigtest.config import Config
from sigtest.errors import SignalValidationError
from sigtest.signal import LifecycleState, Signal

logger = logging.getLogger(__name__)


def load_config(path: str) -> Config:
    """
    Loads a YAML configuration file and parses it into a strongly-typed
    Config object.

    Args:
        path (str): The path to the YAML configuration file.

    Returns:
        Config: A Pydantic Config object with the validated configuration.
    """
    with open(path, 'r') as f:
        raw_config = yaml.safe_load(f)
    return Config(**raw_config)


def load_signals(path: str) -> Tuple[List[Signal], List[SignalValidationError]]:
    """
    Loads a signal sheet (CSV) into Signal objects.

    Rows that cannot be parsed are returned as errors instead of aborting
    the load. Rows that already carry a 'Final Exit Price' were resolved by
    an earlier run and are loaded as processed.

    Args:
        path (str): The path to the CSV file.

    Returns:
        Tuple[List[Signal], List[SignalValidationError]]: The parsed signals
        and the rows that were rejected.
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    signals: List[Signal] = []
    errors: List[SignalValidationError] = []
    for idx, record in enumerate(df.to_dict("records")):
        try:
            signal = Signal.from_record(record)
        except SignalValidationError as e:
            logger.warning("Skipping unparseable signal row %d: %s", idx + 1, e)
            errors.append(e)
            continue
        if str(record.get("Final Exit Price", "")).strip():
            signal = signal.model_copy(update={"lifecycle_state": LifecycleState.PROCESSED})
        signals.append(signal)
    return signals, errors
