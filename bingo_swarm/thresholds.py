"""
Gate a finished swarm run against threshold limits.

After the spawn controller returns its :class:`~bingo_swarm.spawner.SwarmReport`,
the CLI compares it with limits read from a YAML file so that CI can
fail a build on a degraded backend:

- **Failure rate (%)** -- ``failed / admitted x 100``
- **Forced claims** -- optional ceiling on participants that had to fall
  back to possibly shared cards

Exit codes follow a three-state convention so that CI can distinguish
"thresholds breached" from "script crashed":

- ``0`` -- all thresholds passed
- ``1`` -- at least one threshold was breached
- ``2`` -- the run itself could not be carried out (bad YAML, bad
  token file, unexpected error)

Key Concepts Demonstrated:
- YAML-driven pass/fail gating with ``PyYAML``
- Human-readable summary table printed to stdout for CI logs
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from .metrics import Counter
from .spawner import SwarmReport

# Three-state exit codes so CI can tell "test failed" from "script crashed".
EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2


@dataclass(frozen=True)
class Thresholds:
    """Limits a run must stay within.  ``None`` disables a check."""

    max_failure_rate_percent: float
    max_forced_claims: int | None = None


@dataclass(frozen=True)
class ThresholdResult:
    metric: str
    actual: float
    limit: float

    @property
    def passed(self) -> bool:
        return self.actual <= self.limit


def load_thresholds(path: str | Path) -> Thresholds:
    """
    Read threshold limits from a YAML file.

    Args:
        path: Path to a YAML file containing ``max_failure_rate_percent``
            and, optionally, ``max_forced_claims``.

    Returns:
        The parsed :class:`Thresholds`.

    Raises:
        ValueError: If the failure-rate limit is missing or a value is
            non-numeric.
    """
    with Path(path).open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    if not isinstance(data, dict):
        raise ValueError("Thresholds file must contain a mapping")

    try:
        max_failure_rate = float(data["max_failure_rate_percent"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(
            "Thresholds file must define a numeric max_failure_rate_percent"
        ) from exc

    max_forced = data.get("max_forced_claims")
    if max_forced is not None:
        try:
            max_forced = int(max_forced)
        except (TypeError, ValueError) as exc:
            raise ValueError("max_forced_claims must be an integer") from exc

    return Thresholds(
        max_failure_rate_percent=max_failure_rate,
        max_forced_claims=max_forced,
    )


def evaluate(report: SwarmReport, thresholds: Thresholds) -> list[ThresholdResult]:
    """Compare *report* with every enabled limit in *thresholds*."""
    results = [
        ThresholdResult(
            metric="Failure rate (%)",
            actual=report.failure_rate_percent,
            limit=thresholds.max_failure_rate_percent,
        )
    ]
    if thresholds.max_forced_claims is not None:
        results.append(
            ThresholdResult(
                metric="Forced claims",
                actual=float(report.metrics.get(Counter.FORCED_CLAIMS.value, 0)),
                limit=float(thresholds.max_forced_claims),
            )
        )
    return results


def print_summary(report: SwarmReport, results: list[ThresholdResult] | None = None) -> None:
    """Print the run outcome, and the threshold table if any, to stdout."""
    print("Bingo Swarm Summary")
    print("-" * 60)
    print(f"{'Participants admitted':<32}{report.admitted:>12}")
    print(f"{'Succeeded':<32}{report.succeeded:>12}")
    print(f"{'Failed':<32}{report.failed:>12}")
    print(f"{'Unfinished':<32}{report.unfinished:>12}")
    print(f"{'Elapsed (s)':<32}{report.elapsed:>12.1f}")
    print("-" * 60)
    for name, value in report.metrics.items():
        print(f"{name:<32}{value:>12}")

    if not results:
        return

    print()
    print("Threshold Check")
    print("-" * 60)
    print(f"{'Metric':<22}{'Actual':>12}{'Limit':>14}{'Status':>12}")
    print("-" * 60)
    for result in results:
        status = "PASS" if result.passed else "FAIL"
        print(f"{result.metric:<22}{result.actual:>12.2f}{result.limit:>14.2f}{status:>12}")
    print("-" * 60)
    passed = all(result.passed for result in results)
    print(f"Overall: {'PASS' if passed else 'FAIL'}")


def exit_code(results: list[ThresholdResult]) -> int:
    return EXIT_PASS if all(result.passed for result in results) else EXIT_THRESHOLD_BREACH
