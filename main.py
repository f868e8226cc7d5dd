"""
Main entry point for backtesting a sheet of influencer signals.
"""
import argparse
import logging
import sys

import sigtest
from sigtest.errors import FatalBatchError
from sigtest.logging_utils import configure_logging

logger = logging.getLogger("sigtest.main")


def main(argv=None) -> int:
    """
    Main execution function.
    """
    parser = argparse.ArgumentParser(description="Backtest influencer trading signals.")
    parser.add_argument("config", help="Path to the YAML configuration file.")
    parser.add_argument("signals", help="Path to the signals CSV.")
    parser.add_argument("--report-dir", default=None, help="Write a report to this directory.")
    parser.add_argument("--log-file", default=None, help="Also log to this file.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    configure_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    # 1. Load configuration and signals
    config = sigtest.load_config(args.config)
    signals, rejected = sigtest.load_signals(args.signals)
    logger.info("Loaded %d signals (%d rows rejected)", len(signals), len(rejected))

    # 2. Run the batch
    try:
        runner = sigtest.BatchRunner.from_config(config)
        runner.mark_rejected(rejected, signals)
        summary = runner.run(signals)
    except FatalBatchError as e:
        logger.error("Batch aborted: %s", e)
        return 2
    except KeyboardInterrupt:
        logger.warning("Batch interrupted")
        return 130

    print(summary.describe())

    # 3. Generate the report
    if args.report_dir:
        summary.generate_report(output_dir=args.report_dir)
        print(f"Report generated in '{args.report_dir}'.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
