"""Entry point wiring CLI, configuration, GitHub fetches and delivery metrics."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from .aggregate import aggregate_multi_repo_metrics, calculate_metrics_for_repository
from .cli import parse_args
from .collectors import collect_extended_metrics
from .config import Config, load_config
from .errors import EXIT_OK, EXIT_UNEXPECTED, DeliveryMetricsError
from .github_client import GitHubClient
from .kpi import filter_excluded_by_labels
from .models import DevOpsMetrics, ExtendedMetrics
from .report import generate_report

logger = logging.getLogger(__name__)


def _collect_repository_metrics(
    client: GitHubClient,
    config: Config,
    repository: str,
    since: datetime,
    until: datetime,
) -> Tuple[DevOpsMetrics, Optional[ExtendedMetrics]]:
    settings = config.settings

    print(f"Fetching delivery data for '{repository}' from the last {config.days} days...")
    prs = filter_excluded_by_labels(
        client.list_pull_requests(repository, since=since), settings.exclude_metrics_labels
    )
    deployments = client.list_deployments(
        repository, environment=settings.deployment_environment, since=since
    )
    runs = client.list_workflow_runs(repository, since=since)
    incidents = client.list_incidents(repository, labels=settings.incident_labels, since=since)

    metrics = calculate_metrics_for_repository(
        repository,
        prs=prs,
        runs=runs,
        deployments=deployments,
        incidents=incidents,
        period_days=config.days,
        settings=settings,
    )

    if not config.include_extended:
        return metrics, None

    issues = filter_excluded_by_labels(
        client.list_issues(repository, since=since), settings.exclude_metrics_labels
    )
    extended = collect_extended_metrics(
        client, repository, prs, issues, since, until, settings=settings
    )
    return metrics, extended


def orchestrate_metrics_generation() -> int:
    """Run the metrics generation workflow and map failures to exit codes.

    Returns:
        0 on success, otherwise the exit code of the raised error: 2 for
        configuration, 3 for authentication, 4 for GitHub API, 5 for data
        validation and 1 for anything unexpected.
    """
    try:
        args = parse_args()
        logging.getLogger().setLevel(args.log_level)
        config = load_config(
            repositories=args.repositories,
            days=args.days,
            production_branch_pattern=args.production_branch,
            deploy_workflow_patterns=args.deploy_patterns,
            deployment_environment=args.environment,
            include_extended=not args.skip_extended,
        )

        client = GitHubClient(config=config)
        until = datetime.now(timezone.utc)
        since = until - timedelta(days=config.days)

        metrics: List[DevOpsMetrics] = []
        extended: Dict[str, ExtendedMetrics] = {}
        for repository in config.repositories:
            row, flow = _collect_repository_metrics(client, config, repository, since, until)
            metrics.append(row)
            if flow is not None:
                extended[repository] = flow
        summary = aggregate_multi_repo_metrics(metrics)

        print(generate_report(metrics, summary, period_days=config.days, extended=extended))
        return EXIT_OK
    except DeliveryMetricsError as exc:
        logger.error("Metrics generation failed", extra={"error_type": type(exc).__name__})
        print(f"ERROR: {exc}", file=sys.stderr)
        return exc.exit_code
    except Exception:
        logger.exception("Unexpected error during metrics generation")
        print("ERROR: An unexpected error occurred.", file=sys.stderr)
        return EXIT_UNEXPECTED


def main() -> int:
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return orchestrate_metrics_generation()


if __name__ == "__main__":
    raise SystemExit(main())
