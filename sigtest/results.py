"""
The BatchSummary object for storing and reporting on a batch run.
"""
import os
from collections import Counter
from typing import Dict, List

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd
from pydantic import BaseModel

from sigtest.analysis import strategy_summary
from sigtest.backtester.results import BacktestResult, Resolution, ResolutionStatus

SKIPPED_STATUSES = (ResolutionStatus.INVALID, ResolutionStatus.NO_DATA, ResolutionStatus.ALREADY_PROCESSED)


class BatchSummary(BaseModel):
    """
    Represents the outcome of one batch run.

    Args:
        resolutions (List[Resolution]): One resolution per signal, in the
            order the signals were given.
    """
    resolutions: List[Resolution]

    def counts(self) -> Dict[str, int]:
        """Number of signals per resolution status."""
        counter = Counter(r.status for r in self.resolutions)
        return {status.value: counter.get(status, 0) for status in ResolutionStatus}

    @property
    def processed(self) -> int:
        return sum(1 for r in self.resolutions if r.status is ResolutionStatus.RESOLVED)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.resolutions if r.status in SKIPPED_STATUSES)

    @property
    def unresolved(self) -> int:
        return sum(1 for r in self.resolutions if r.status is ResolutionStatus.UNRESOLVED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.resolutions if r.status is ResolutionStatus.FAILED)

    @property
    def cancelled(self) -> int:
        return sum(1 for r in self.resolutions if r.status is ResolutionStatus.CANCELLED)

    def describe(self) -> str:
        return (
            f"{len(self.resolutions)} signals: {self.processed} processed, {self.skipped} skipped, "
            f"{self.unresolved} unresolved, {self.failed} failed, {self.cancelled} cancelled"
        )

    def results(self) -> List[BacktestResult]:
        return [r.result for r in self.resolutions if r.result is not None]

    def to_frame(self) -> pd.DataFrame:
        """
        One row per resolved signal, in the result document layout, plus the
        annotation if there is one.
        """
        rows = []
        for resolution in self.resolutions:
            if resolution.result is None:
                continue
            row = resolution.result.to_document()
            row["Reasoning"] = resolution.reasoning
            rows.append(row)
        return pd.DataFrame(rows)

    def generate_report(self, output_dir: str):
        """
        Generates a collection of static report files in the specified
        output directory: the results table, a per-strategy summary, a text
        summary and a chart of how often each strategy won.
        """
        os.makedirs(output_dir, exist_ok=True)

        # 1. Text summary
        with open(os.path.join(output_dir, "batch_summary.txt"), 'w') as f:
            f.write("=== Batch Run Summary ===\n\n")
            f.write(self.describe() + "\n\n")
            for status, count in self.counts().items():
                f.write(f"{status}: {count}\n")
            problems = [r for r in self.resolutions if r.status is not ResolutionStatus.RESOLVED]
            if problems:
                f.write("\n=== Unresolved / Skipped Signals ===\n\n")
                for r in problems:
                    f.write(f"{r.signal_id} [{r.status.value}]: {r.reason}\n")

        results = self.results()
        if not results:
            return

        # 2. Results table
        self.to_frame().to_csv(os.path.join(output_dir, "results.csv"), index=False)

        # 3. Per-strategy summary
        strategy_summary(results).to_csv(os.path.join(output_dir, "strategy_summary.csv"))

        # 4. Best strategy frequency
        self._plot_best_strategies(output_dir, results)

    def _plot_best_strategies(self, output_dir: str, results: List[BacktestResult]):
        """Plots how many signals each strategy won."""
        wins = Counter(result.best_strategy for result in results)
        names = list(wins.keys())

        fig, ax = plt.subplots(figsize=(10, 6))
        ax.bar(names, [wins[name] for name in names])
        ax.set_xlabel("Strategy")
        ax.set_ylabel("Signals won")
        ax.set_title("Best Strategy Frequency")
        ax.grid(True, axis='y')

        plt.tight_layout()
        plt.savefig(os.path.join(output_dir, "best_strategy_frequency.png"))
        plt.close(fig)
