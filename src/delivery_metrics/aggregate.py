"""Per-repository composition and multi-repository rollup of DORA metrics."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from .config import MetricsSettings
from .dora import (
    calculate_change_failure_rate,
    calculate_deployment_frequency,
    calculate_incident_metrics,
    calculate_lead_time,
    calculate_mttr,
)
from .models import (
    AggregatedSummary,
    Deployment,
    DevOpsMetrics,
    Incident,
    IncidentMetrics,
    OverallSummary,
    PullRequest,
    RepositorySummary,
    WorkflowRun,
)
from .stats import mean, round_one, round_optional

logger = logging.getLogger(__name__)


def generate_date_range(since: datetime, until: datetime) -> List[date]:
    """Return every UTC calendar date from ``since`` to ``until`` inclusive."""
    current = since.astimezone(timezone.utc).date()
    end = until.astimezone(timezone.utc).date()
    dates: List[date] = []
    while current <= end:
        dates.append(current)
        current += timedelta(days=1)
    return dates


def is_on_date(moment: datetime, day: date) -> bool:
    """Return True when ``moment`` falls on ``day`` in UTC."""
    return moment.astimezone(timezone.utc).date() == day


def _compose_metrics(
    repository: str,
    date_str: str,
    prs: Sequence[PullRequest],
    runs: Sequence[WorkflowRun],
    deployments: Sequence[Deployment],
    incidents: Sequence[Incident],
    period_days: float,
    settings: MetricsSettings,
) -> DevOpsMetrics:
    frequency = calculate_deployment_frequency(deployments, runs, period_days, settings)
    failure_rate = calculate_change_failure_rate(deployments, runs, settings)
    lead_time = calculate_lead_time(prs, deployments, settings)

    incident_metrics: Optional[IncidentMetrics] = None
    if incidents:
        incident_metrics = calculate_incident_metrics(incidents)
        mttr_hours = incident_metrics.mttr_hours
    else:
        mttr_hours = calculate_mttr(deployments, runs, settings)

    return DevOpsMetrics(
        date=date_str,
        repository=repository,
        deployment_count=frequency.count,
        deployment_frequency=frequency.frequency,
        lead_time_for_changes_hours=lead_time.hours,
        merge_to_deploy_count=lead_time.merge_to_deploy_count,
        create_to_merge_count=lead_time.create_to_merge_count,
        total_deployments=failure_rate.total,
        failed_deployments=failure_rate.failed,
        change_failure_rate=failure_rate.rate,
        mean_time_to_recovery_hours=mttr_hours,
        incident_metrics=incident_metrics,
    )


def calculate_metrics_for_repository(
    repository: str,
    prs: Sequence[PullRequest],
    runs: Sequence[WorkflowRun],
    deployments: Sequence[Deployment] = (),
    incidents: Sequence[Incident] = (),
    period_days: float = 30,
    settings: MetricsSettings = MetricsSettings(),
    as_of: Optional[date] = None,
) -> DevOpsMetrics:
    """Compute DORA metrics for one repository over a period.

    Every collection is filtered to ``repository`` first. MTTR prefers
    incident records when any exist; otherwise deployment or workflow-run
    event pairing is used.
    """
    repo_prs = [pr for pr in prs if pr.repository == repository]
    repo_runs = [run for run in runs if run.repository == repository]
    repo_deployments = [d for d in deployments if d.repository == repository]
    repo_incidents = [i for i in incidents if i.repository == repository]

    logger.info(
        "Computing repository metrics",
        extra={
            "repository": repository,
            "prs_total": len(repo_prs),
            "runs_total": len(repo_runs),
            "deployments_total": len(repo_deployments),
            "incidents_total": len(repo_incidents),
        },
    )

    report_date = as_of or datetime.now(timezone.utc).date()
    return _compose_metrics(
        repository=repository,
        date_str=report_date.isoformat(),
        prs=repo_prs,
        runs=repo_runs,
        deployments=repo_deployments,
        incidents=repo_incidents,
        period_days=period_days,
        settings=settings,
    )


def calculate_metrics_for_date(
    repository: str,
    day: date,
    prs: Sequence[PullRequest],
    runs: Sequence[WorkflowRun],
    deployments: Sequence[Deployment],
    settings: MetricsSettings = MetricsSettings(),
) -> DevOpsMetrics:
    """Compute one day's metrics from records already filtered to that day."""
    return _compose_metrics(
        repository=repository,
        date_str=day.isoformat(),
        prs=prs,
        runs=runs,
        deployments=deployments,
        incidents=(),
        period_days=1,
        settings=settings,
    )


def calculate_daily_metrics(
    repositories: Sequence[str],
    prs: Sequence[PullRequest],
    runs: Sequence[WorkflowRun],
    deployments: Sequence[Deployment],
    since: datetime,
    until: datetime,
    settings: MetricsSettings = MetricsSettings(),
) -> List[DevOpsMetrics]:
    """Compute a metrics row per repository per day in ``[since, until]``.

    A PR belongs to the day it was merged; deployments and runs to the day
    they were created.
    """
    rows: List[DevOpsMetrics] = []

    for day in generate_date_range(since, until):
        for repository in repositories:
            day_prs = [
                pr
                for pr in prs
                if pr.repository == repository
                and pr.merged_at is not None
                and is_on_date(pr.merged_at, day)
            ]
            day_deployments = [
                d for d in deployments if d.repository == repository and is_on_date(d.created_at, day)
            ]
            day_runs = [
                r for r in runs if r.repository == repository and is_on_date(r.created_at, day)
            ]
            rows.append(
                calculate_metrics_for_date(
                    repository, day, day_prs, day_runs, day_deployments, settings
                )
            )

    return rows


def _average(values: Sequence[float]) -> float:
    """Rounded mean of a non-empty sequence."""
    return round_one(sum(values) / len(values))


def _summarize_repository(repository: str, rows: Sequence[DevOpsMetrics]) -> RepositorySummary:
    mttrs = [
        row.mean_time_to_recovery_hours
        for row in rows
        if row.mean_time_to_recovery_hours is not None
    ]
    return RepositorySummary(
        repository=repository,
        data_point_count=len(rows),
        avg_deployment_count=_average([row.deployment_count for row in rows]),
        avg_lead_time_hours=_average([row.lead_time_for_changes_hours for row in rows]),
        avg_change_failure_rate=_average([row.change_failure_rate for row in rows]),
        avg_mttr_hours=round_optional(mean(mttrs)),
        last_updated=max(row.date for row in rows),
    )


def aggregate_multi_repo_metrics(metrics: Sequence[DevOpsMetrics]) -> AggregatedSummary:
    """Roll metrics rows up into per-repository and fleet-wide averages.

    The rollup is two-level and unweighted: each repository is averaged over
    its own rows first, then the fleet average is the plain mean of those
    repository averages, so a repository with one row weighs the same as one
    with a hundred.
    """
    if not metrics:
        return AggregatedSummary(
            repository_summaries=[],
            overall_summary=OverallSummary(
                total_repositories=0,
                avg_deployment_count=0.0,
                avg_lead_time_hours=0.0,
                avg_change_failure_rate=0.0,
                avg_mttr_hours=None,
            ),
        )

    by_repository: Dict[str, List[DevOpsMetrics]] = {}
    for row in metrics:
        by_repository.setdefault(row.repository, []).append(row)

    summaries = [
        _summarize_repository(repository, rows) for repository, rows in by_repository.items()
    ]
    mttrs = [s.avg_mttr_hours for s in summaries if s.avg_mttr_hours is not None]

    return AggregatedSummary(
        repository_summaries=summaries,
        overall_summary=OverallSummary(
            total_repositories=len(summaries),
            avg_deployment_count=_average([s.avg_deployment_count for s in summaries]),
            avg_lead_time_hours=_average([s.avg_lead_time_hours for s in summaries]),
            avg_change_failure_rate=_average([s.avg_change_failure_rate for s in summaries]),
            avg_mttr_hours=round_optional(mean(mttrs)),
        ),
    )
