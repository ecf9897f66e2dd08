"""
Batch entry point: solve one planning date and print the result as a single
JSON document on stdout.

Examples:
  induction-engine 2025-01-15
  induction-engine 2025-01-15 --weights '{"predictiveHealth": 8000}' --time-limit 30
"""
import argparse
import json
import logging
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional

from .config import EngineConfig
from .exceptions import DataUnavailable, InvalidWeights, OptimizationCancelled
from .loader import FleetSnapshotLoader
from .pipeline import InductionScheduler

logger = logging.getLogger(__name__)

EXIT_DATA_UNAVAILABLE = 2
EXIT_INVALID_WEIGHTS = 3
EXIT_CANCELLED = 4

INTERRUPT_POLL_SECONDS = 0.2


def _planning_date(value: str):
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


def _weights(value: str):
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"weights must be a JSON object: {e}")
    if not isinstance(parsed, dict):
        raise argparse.ArgumentTypeError("weights must be a JSON object")
    return parsed


def _install_interrupt_handler(cancel_event: threading.Event) -> Callable[[], None]:
    """Turn Ctrl-C into a cooperative cancel so the solver stops without a partial plan"""
    if threading.current_thread() is not threading.main_thread():
        return lambda: None

    def on_interrupt(signum, frame):
        logger.warning("Interrupt received; cancelling optimization")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, on_interrupt)
    return lambda: signal.signal(signal.SIGINT, previous or signal.default_int_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="induction-engine",
        description="Generate the nightly fleet induction plan for a planning date.",
    )
    parser.add_argument("planning_date", type=_planning_date, help="planning date (YYYY-MM-DD)")
    parser.add_argument("--weights", type=_weights, default=None,
                        help="JSON object of constraint weight overrides")
    parser.add_argument("--data-dir", default=None, help="directory holding <date>_input_data.json snapshots")
    parser.add_argument("--time-limit", type=float, default=None, help="solver time limit in seconds")
    parser.add_argument("--fallback-days", type=int, default=0,
                        help="use the most recent snapshot up to N days earlier if the date has none")
    parser.add_argument("--pretty", action="store_true", help="indent the JSON output")
    parser.add_argument("--log-level", default=None, help="logging level (default from LOG_LEVEL or INFO)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = EngineConfig.from_env()
    if args.data_dir:
        config = replace(config, data_dir=args.data_dir)

    # stdout carries the JSON document only
    logging.basicConfig(level=args.log_level or config.log_level, stream=sys.stderr)

    scheduler = InductionScheduler(FleetSnapshotLoader(config.data_dir), config)
    cancel_event = threading.Event()
    restore_interrupt_handler = _install_interrupt_handler(cancel_event)

    try:
        # The solve runs on a worker so the main thread stays free to handle SIGINT
        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(
                scheduler.generate,
                planning_date=args.planning_date,
                constraint_weights=args.weights,
                fallback_days=args.fallback_days,
                time_limit_seconds=args.time_limit,
                cancel_event=cancel_event,
            )
            while not future.done():
                wait([future], timeout=INTERRUPT_POLL_SECONDS)
            result = future.result()
    except InvalidWeights as e:
        logger.error(str(e))
        return EXIT_INVALID_WEIGHTS
    except DataUnavailable as e:
        logger.error(str(e))
        return EXIT_DATA_UNAVAILABLE
    except OptimizationCancelled as e:
        logger.error(f"{e}; no schedule produced")
        return EXIT_CANCELLED
    finally:
        restore_interrupt_handler()

    sys.stdout.write(result.model_dump_json(by_alias=True, indent=2 if args.pretty else None))
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
