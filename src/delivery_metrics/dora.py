"""DORA four key metrics: lead time, deployment frequency, change failure rate, MTTR.

Each calculator is a single pass over already-fetched records. Missing
evidence is reported as ``None`` (or the documented zero default) rather than
raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from .config import MetricsSettings
from .models import (
    ChangeFailureRateResult,
    Deployment,
    DeploymentFrequencyResult,
    DeploymentStatus,
    Incident,
    IncidentMetrics,
    LeadTimeResult,
    PullRequest,
    WorkflowRun,
)
from .stats import hours_between, mean, round_one, round_optional

logger = logging.getLogger(__name__)

DAILY_THRESHOLD = 1.0
WEEKLY_THRESHOLD = 1 / 7
MONTHLY_THRESHOLD = 1 / 30

LEAD_TIME_ELITE_HOURS = 1.0
LEAD_TIME_HIGH_HOURS = 24.0
LEAD_TIME_MEDIUM_HOURS = 24.0 * 7

CHANGE_FAILURE_RATE_HIGH = 15.0
CHANGE_FAILURE_RATE_MEDIUM = 30.0

MTTR_ELITE_HOURS = 1.0
MTTR_HIGH_HOURS = 24.0
MTTR_MEDIUM_HOURS = 24.0 * 7


class PerformanceLevel(str, Enum):
    """DORA performance band, from elite down to low."""

    ELITE = "elite"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True, slots=True)
class RecoveryEvent:
    """One point on the deployment timeline used for MTTR pairing."""

    occurred_at: datetime
    is_failure: bool
    is_success: bool


# ---------------------------------------------------------------------------
# Lead Time for Changes
# ---------------------------------------------------------------------------


def calculate_lead_time(
    prs: Sequence[PullRequest],
    deployments: Sequence[Deployment] = (),
    settings: MetricsSettings = MetricsSettings(),
) -> LeadTimeResult:
    """Compute average lead time for changes in hours.

    For every merged PR the earliest successful deployment at or after the
    merge is located. When it happened within
    ``settings.lead_time_match_threshold_hours`` the merge-to-deploy duration
    is used; otherwise, or without any successful deployment, the PR's
    create-to-merge duration is used as a fallback.

    No merged PRs yields ``0.0`` hours with zero counts (not ``None``).
    """
    merged_prs = [pr for pr in prs if pr.merged_at is not None]
    if not merged_prs:
        return LeadTimeResult(hours=0.0, merge_to_deploy_count=0, create_to_merge_count=0)

    deployed_times = sorted(
        deployment.created_at
        for deployment in deployments
        if deployment.status is DeploymentStatus.SUCCESS
    )

    samples: List[float] = []
    merge_to_deploy_count = 0
    create_to_merge_count = 0

    for pr in merged_prs:
        merged_at = pr.merged_at
        deployed_at = next((t for t in deployed_times if t >= merged_at), None)

        if deployed_at is not None:
            merge_to_deploy = hours_between(merged_at, deployed_at)
            if merge_to_deploy <= settings.lead_time_match_threshold_hours:
                samples.append(merge_to_deploy)
                merge_to_deploy_count += 1
                continue

        samples.append(hours_between(pr.created_at, merged_at))
        create_to_merge_count += 1

    logger.debug(
        "Computed lead time samples",
        extra={
            "merged_prs": len(merged_prs),
            "merge_to_deploy_count": merge_to_deploy_count,
            "create_to_merge_count": create_to_merge_count,
        },
    )

    return LeadTimeResult(
        hours=round_one(sum(samples) / len(samples)),
        merge_to_deploy_count=merge_to_deploy_count,
        create_to_merge_count=create_to_merge_count,
    )


# ---------------------------------------------------------------------------
# Deployment Frequency
# ---------------------------------------------------------------------------


def classify_frequency(avg_per_day: float) -> str:
    """Map deployments per day to ``daily``/``weekly``/``monthly``/``yearly`` (inclusive bounds)."""
    if avg_per_day >= DAILY_THRESHOLD:
        return "daily"
    if avg_per_day >= WEEKLY_THRESHOLD:
        return "weekly"
    if avg_per_day >= MONTHLY_THRESHOLD:
        return "monthly"
    return "yearly"


def calculate_deployment_frequency(
    deployments: Sequence[Deployment],
    runs: Sequence[WorkflowRun],
    period_days: float,
    settings: MetricsSettings = MetricsSettings(),
) -> DeploymentFrequencyResult:
    """Count successful deployments in a period and classify their frequency.

    Successful deployments are preferred. When there are none, successful
    workflow runs whose name matches a deploy pattern are counted instead.

    Raises:
        ValueError: If ``period_days`` is not positive.
    """
    if period_days <= 0:
        raise ValueError("period_days must be greater than 0.")

    count = sum(1 for d in deployments if d.status is DeploymentStatus.SUCCESS)
    if count == 0:
        count = sum(
            1
            for run in runs
            if run.conclusion == "success" and settings.is_deploy_workflow(run.name)
        )

    avg_per_day = count / period_days
    return DeploymentFrequencyResult(
        count=count,
        frequency=classify_frequency(avg_per_day),
        avg_per_day=avg_per_day,
    )


# ---------------------------------------------------------------------------
# Change Failure Rate
# ---------------------------------------------------------------------------


def _failure_rate(failed: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round_one(failed / total * 100)


def calculate_change_failure_rate(
    deployments: Sequence[Deployment],
    runs: Sequence[WorkflowRun],
    settings: MetricsSettings = MetricsSettings(),
) -> ChangeFailureRateResult:
    """Compute the percentage of failed deployments.

    Deployments with an unknown status are excluded from both numerator and
    denominator. When no deployment has a known status, deploy workflow runs
    are used and a run counts as failed when its conclusion is ``failure``.
    """
    known = [d for d in deployments if d.status.is_known]
    if known:
        failed = sum(1 for d in known if d.status.is_failure)
        return ChangeFailureRateResult(
            total=len(known), failed=failed, rate=_failure_rate(failed, len(known))
        )

    deploy_runs = [run for run in runs if settings.is_deploy_workflow(run.name)]
    failed = sum(1 for run in deploy_runs if run.conclusion == "failure")
    return ChangeFailureRateResult(
        total=len(deploy_runs), failed=failed, rate=_failure_rate(failed, len(deploy_runs))
    )


# ---------------------------------------------------------------------------
# Mean Time to Recovery
# ---------------------------------------------------------------------------


def calculate_recovery_time(events: Iterable[RecoveryEvent]) -> Optional[float]:
    """Average the failure-to-next-success gaps in a chronological event stream.

    The most recent failure is remembered until a success is observed; the
    gap is recorded and the pending failure cleared. Trailing failures without
    a later success are dropped. Returns ``None`` when no pair was found.
    """
    recovery_hours: List[float] = []
    pending_failure: Optional[datetime] = None

    for event in events:
        if event.is_failure:
            pending_failure = event.occurred_at
        elif event.is_success and pending_failure is not None:
            recovery_hours.append(hours_between(pending_failure, event.occurred_at))
            pending_failure = None

    return round_optional(mean(recovery_hours))


def calculate_mttr(
    deployments: Sequence[Deployment],
    runs: Sequence[WorkflowRun],
    settings: MetricsSettings = MetricsSettings(),
) -> Optional[float]:
    """Compute deployment-based MTTR in hours.

    Uses deployments with a known status, falling back to deploy workflow runs.
    """
    known = sorted((d for d in deployments if d.status.is_known), key=lambda d: d.created_at)
    if known:
        return calculate_recovery_time(
            RecoveryEvent(
                occurred_at=d.created_at,
                is_failure=d.status.is_failure,
                is_success=d.status is DeploymentStatus.SUCCESS,
            )
            for d in known
        )

    deploy_runs = sorted(
        (run for run in runs if settings.is_deploy_workflow(run.name)),
        key=lambda run: run.created_at,
    )
    return calculate_recovery_time(
        RecoveryEvent(
            occurred_at=run.created_at,
            is_failure=run.conclusion == "failure",
            is_success=run.conclusion == "success",
        )
        for run in deploy_runs
    )


def calculate_incident_metrics(incidents: Sequence[Incident]) -> IncidentMetrics:
    """Compute incident counts and issue-based MTTR (creation to close).

    Open incidents are counted but never contribute to the average.
    """
    closed_hours = [
        hours_between(incident.created_at, incident.closed_at)
        for incident in incidents
        if incident.closed_at is not None
    ]
    open_incidents = sum(1 for incident in incidents if incident.state == "open")

    return IncidentMetrics(
        incident_count=len(incidents),
        open_incidents=open_incidents,
        mttr_hours=round_optional(mean(closed_hours)),
    )


# ---------------------------------------------------------------------------
# Performance levels
# ---------------------------------------------------------------------------


def deployment_frequency_level(deploys_per_day: float) -> PerformanceLevel:
    """Elite at 1+ deploys per day, high at 1/7+, medium at 1/30+, else low."""
    if deploys_per_day >= DAILY_THRESHOLD:
        return PerformanceLevel.ELITE
    if deploys_per_day >= WEEKLY_THRESHOLD:
        return PerformanceLevel.HIGH
    if deploys_per_day >= MONTHLY_THRESHOLD:
        return PerformanceLevel.MEDIUM
    return PerformanceLevel.LOW


def lead_time_level(hours: float) -> PerformanceLevel:
    """Elite under 1h, high under 24h, medium under one week (168h), else low."""
    if hours < LEAD_TIME_ELITE_HOURS:
        return PerformanceLevel.ELITE
    if hours < LEAD_TIME_HIGH_HOURS:
        return PerformanceLevel.HIGH
    if hours < LEAD_TIME_MEDIUM_HOURS:
        return PerformanceLevel.MEDIUM
    return PerformanceLevel.LOW


def change_failure_rate_level(rate: float) -> PerformanceLevel:
    """Classify a failure rate. Elite and high share a band, so this never returns elite."""
    if rate <= CHANGE_FAILURE_RATE_HIGH:
        return PerformanceLevel.HIGH
    if rate <= CHANGE_FAILURE_RATE_MEDIUM:
        return PerformanceLevel.MEDIUM
    return PerformanceLevel.LOW


def mttr_level(hours: float) -> PerformanceLevel:
    """Elite under 1h, high under 24h, medium under one week (168h), else low."""
    if hours < MTTR_ELITE_HOURS:
        return PerformanceLevel.ELITE
    if hours < MTTR_HIGH_HOURS:
        return PerformanceLevel.HIGH
    if hours < MTTR_MEDIUM_HOURS:
        return PerformanceLevel.MEDIUM
    return PerformanceLevel.LOW
