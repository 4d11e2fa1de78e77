"""Command-line argument parsing for the delivery metrics generator."""

from __future__ import annotations

import argparse

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _positive_int(value: str) -> int:
    """Parse and validate a positive integer CLI value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments for metrics generation.

    Returns:
        Parsed CLI arguments: repositories, days of history, production branch
        pattern, deploy workflow patterns, deployment environment, whether to
        skip flow metrics and log level.
    """
    parser = argparse.ArgumentParser(
        prog="delivery-metrics",
        description=(
            "Generate DORA delivery metrics (deployment frequency, lead time, "
            "change failure rate and MTTR) and issue and pull request flow "
            "metrics for GitHub repositories."
        ),
    )

    parser.add_argument(
        "--repo",
        dest="repositories",
        action="append",
        required=True,
        help="Repository to analyze as owner/name (repeatable).",
    )
    parser.add_argument(
        "--days",
        type=_positive_int,
        default=30,
        help="Number of days of history to analyze (default: 30).",
    )
    parser.add_argument(
        "--production-branch",
        default=None,
        help="Substring identifying production branches (default: production).",
    )
    parser.add_argument(
        "--deploy-pattern",
        dest="deploy_patterns",
        action="append",
        default=None,
        help="Substring identifying deploy workflow runs (repeatable, default: deploy).",
    )
    parser.add_argument(
        "--environment",
        default=None,
        help="Deployment environment to measure (default: production).",
    )
    parser.add_argument(
        "--skip-extended",
        action="store_true",
        help="Only compute DORA metrics; skip issue and pull request flow metrics.",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default="WARNING",
        help="Logging verbosity (default: WARNING).",
    )

    return parser.parse_args()
