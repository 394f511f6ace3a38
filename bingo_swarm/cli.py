"""
Command-line entry point for a bingo swarm run.

Reads the configuration for the selected environment, applies any
command-line overrides, launches the spawn controller and prints a
summary.  With ``--thresholds`` the summary is gated against a YAML file
and the exit code tells CI whether the backend held up.

Usage::

    bingo-swarm --env development --participants 50 --concurrency 20
    python -m bingo_swarm --token-file tokens.txt --thresholds thresholds.yml
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from collections.abc import Sequence
from pathlib import Path

from .config import SwarmSettings, config, get_config
from .spawner import SpawnController
from .thresholds import (
    EXIT_PASS,
    EXIT_SCRIPT_ERROR,
    evaluate,
    exit_code,
    load_thresholds,
    print_summary,
)
from .tokens import load_tokens

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments.  Unset options fall back to the environment config."""
    parser = argparse.ArgumentParser(
        prog="bingo-swarm",
        description="Load-test a real-time bingo backend with a swarm of virtual players.",
    )
    parser.add_argument(
        "--env",
        choices=sorted(name for name in config if name != "default"),
        default=None,
        help="Configuration environment (default: $SWARM_ENV or production)",
    )
    parser.add_argument("--base-url", help="Backend root URL")
    parser.add_argument("--hub-path", help="Path of the notification hub")
    parser.add_argument("--win-claim-path", help="Path of the win-claim endpoint")
    parser.add_argument("--participants", type=int, help="Number of participants to launch")
    parser.add_argument("--concurrency", type=int, help="Maximum participants running at once")
    parser.add_argument("--spawn-delay", type=float, help="Seconds between admissions")
    parser.add_argument("--report-every", type=int, help="Log progress every N admissions")
    parser.add_argument("--run-horizon", type=float, help="Seconds each participant stays in the game")
    parser.add_argument("--join-grace", type=float, help="Extra seconds to wait for stragglers")
    parser.add_argument("--trigger-window", type=int, help="Countdown ticks submissions are spread over")
    parser.add_argument("--selection-jitter", type=float, help="Upper bound of the random pre-request delay")
    parser.add_argument(
        "--score-full-grid",
        action="store_true",
        default=None,
        help="Also score the whole card as one line",
    )
    parser.add_argument("--max-claim-retries", type=int, help="Card claim attempts before forcing")
    parser.add_argument("--max-select-retries", type=int, help="Card selection attempts")
    parser.add_argument("--max-identity-retries", type=int, help="Registration attempts on identity collision")
    parser.add_argument("--claim-conflict-delay", type=float, help="Seconds to wait after a claim conflict")
    parser.add_argument("--claim-error-delay", type=float, help="Seconds to wait after a listing error")
    parser.add_argument("--request-timeout", type=float, help="Per-request HTTP timeout in seconds")
    parser.add_argument("--token-file", help="File of pre-issued bearer tokens, one per line")
    parser.add_argument(
        "--wait-for-go-ahead",
        action="store_true",
        default=None,
        help="Hold card claims until the operator presses Enter",
    )
    parser.add_argument(
        "--thresholds",
        type=Path,
        default=None,
        help="YAML file with max_failure_rate_percent / max_forced_claims",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> SwarmSettings:
    """Freeze the environment config and apply command-line overrides."""
    settings = SwarmSettings.from_config(get_config(args.env))
    return settings.replace(
        base_url=args.base_url,
        hub_path=args.hub_path,
        win_claim_path=args.win_claim_path,
        participants=args.participants,
        concurrency=args.concurrency,
        spawn_delay=args.spawn_delay,
        report_every=args.report_every,
        run_horizon=args.run_horizon,
        join_grace=args.join_grace,
        trigger_window=args.trigger_window,
        selection_jitter=args.selection_jitter,
        score_full_grid=args.score_full_grid,
        max_claim_retries=args.max_claim_retries,
        max_select_retries=args.max_select_retries,
        max_identity_retries=args.max_identity_retries,
        claim_conflict_delay=args.claim_conflict_delay,
        claim_error_delay=args.claim_error_delay,
        request_timeout=args.request_timeout,
        token_file=args.token_file,
        wait_for_go_ahead=args.wait_for_go_ahead,
    )


def _prompt_for_go_ahead(controller: SpawnController) -> None:
    try:
        input("Press Enter to let participants claim their cards...\n")
    except EOFError:
        logger.warning("No operator input available, releasing go-ahead now")
    controller.release()


def main(argv: Sequence[str] | None = None) -> int:
    """
    Entry point: configure, run the swarm, print and gate the results.

    Returns:
        ``EXIT_PASS`` (0) if the run finished and all thresholds are met,
        ``EXIT_THRESHOLD_BREACH`` (1) if any are exceeded, or
        ``EXIT_SCRIPT_ERROR`` (2) if the run could not be carried out.
    """
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    try:
        settings = build_settings(args)
        thresholds = load_thresholds(args.thresholds) if args.thresholds else None
        tokens = load_tokens(settings.token_file) if settings.token_file else None

        controller = SpawnController(settings, tokens=tokens)
        if controller.go_ahead is not None:
            threading.Thread(
                target=_prompt_for_go_ahead,
                args=(controller,),
                name="go-ahead-prompt",
                daemon=True,
            ).start()

        report = controller.run()
    except Exception as exc:
        logger.debug("Swarm run aborted", exc_info=True)
        print(f"Swarm run failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR

    if thresholds is None:
        print_summary(report)
        return EXIT_PASS

    results = evaluate(report, thresholds)
    print_summary(report, results)
    return exit_code(results)
