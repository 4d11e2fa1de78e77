"""Plain-text rendering of repository metrics, flow metrics and the fleet summary."""

from __future__ import annotations

from typing import List, Mapping, Optional, Sequence

from .dora import (
    change_failure_rate_level,
    deployment_frequency_level,
    lead_time_level,
    mttr_level,
)
from .models import AggregatedSummary, DevOpsMetrics, ExtendedMetrics
from .stats import format_hours, format_percentage


def _repository_section(metrics: DevOpsMetrics, period_days: int) -> List[str]:
    deploys_per_day = metrics.deployment_count / period_days
    mttr = metrics.mean_time_to_recovery_hours
    mttr_suffix = "" if mttr is None else f" ({mttr_level(mttr).value})"

    lines = [
        f"Repository: {metrics.repository} (as of {metrics.date})",
        f"   Deployments: {metrics.deployment_count} over {period_days} days"
        f" | Frequency: {metrics.deployment_frequency}"
        f" ({deployment_frequency_level(deploys_per_day).value})",
        f"   Lead time for changes: {format_hours(metrics.lead_time_for_changes_hours)}"
        f" ({lead_time_level(metrics.lead_time_for_changes_hours).value})"
        f" | merge-to-deploy: {metrics.merge_to_deploy_count}"
        f" | create-to-merge: {metrics.create_to_merge_count}",
        f"   Change failure rate: {format_percentage(metrics.change_failure_rate)}"
        f" ({change_failure_rate_level(metrics.change_failure_rate).value})"
        f" | failed {metrics.failed_deployments} of {metrics.total_deployments}",
        f"   Mean time to recovery: {format_hours(mttr)}{mttr_suffix}",
    ]

    if metrics.incident_metrics is not None:
        lines.append(
            f"   Incidents: {metrics.incident_metrics.incident_count}"
            f" | open: {metrics.incident_metrics.open_incidents}"
        )

    return lines


def _format_number(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    return f"{value:.1f}"


def _extended_section(extended: ExtendedMetrics) -> List[str]:
    cycle = extended.cycle_time
    coding = extended.coding_time
    rework = extended.rework_rate
    review = extended.review_efficiency
    size = extended.pr_size

    lines = [
        f"   Flow metrics ({cycle.period})",
        f"   Cycle time: avg {format_hours(cycle.avg_cycle_time_hours)}"
        f" | median {format_hours(cycle.median_cycle_time_hours)}"
        f" | completed issues: {cycle.completed_task_count}",
    ]
    for detail in cycle.issue_details:
        lines.append(
            f"      #{detail.issue_number} {detail.title}:"
            f" {format_hours(detail.cycle_time_hours)} via {detail.pr_chain_summary}"
        )

    lines.extend(
        [
            f"   Coding time: avg {format_hours(coding.avg_coding_time_hours)}"
            f" | median {format_hours(coding.median_coding_time_hours)}"
            f" | issues: {coding.issue_count}",
            f"   Rework: additional commits avg {_format_number(rework.additional_commits.avg_per_pr)}"
            f" per PR (total {rework.additional_commits.total})"
            f" | force pushes: {rework.force_pushes.prs_with_force_push} of {rework.pr_count} PRs"
            f" ({format_percentage(rework.force_pushes.force_push_rate)})",
            f"   Review: first review avg {format_hours(review.time_to_first_review.avg_hours)}"
            f" | review duration avg {format_hours(review.review_duration.avg_hours)}"
            f" | time to merge avg {format_hours(review.time_to_merge.avg_hours)}"
            f" | total avg {format_hours(review.total_time.avg_hours)}"
            f" | PRs: {review.pr_count}",
            f"   PR size: avg {_format_number(size.lines_of_code.avg)} lines"
            f" | avg {_format_number(size.files_changed.avg)} files"
            f" | PRs: {size.pr_count}",
        ]
    )

    return lines



def generate_report(
    metrics: Sequence[DevOpsMetrics],
    summary: AggregatedSummary,
    period_days: int = 30,
    extended: Optional[Mapping[str, ExtendedMetrics]] = None,
) -> str:
    """Generate a human-readable DORA report.

    One block per repository row, with its flow metrics when available, is
    followed by the fleet-wide summary, which averages repositories with equal
    weight.

    Args:
        metrics: Per-repository metrics rows.
        summary: Rollup produced by ``aggregate_multi_repo_metrics``.
        period_days: Length of the measured period, used for frequency levels.
        extended: Flow metrics keyed by repository. Repositories without an
            entry get no flow section.

    Returns:
        Formatted multi-line text report.
    """
    lines = ["DORA Metrics Report", ""]

    for row in metrics:
        lines.extend(_repository_section(row, period_days))
        if extended and row.repository in extended:
            lines.extend(_extended_section(extended[row.repository]))
        lines.append("")

    overall = summary.overall_summary
    lines.extend(
        [
            f"Summary across {overall.total_repositories} repositories",
            f"   Avg deployments: {overall.avg_deployment_count:.1f}",
            f"   Avg lead time: {format_hours(overall.avg_lead_time_hours)}",
            f"   Avg change failure rate: {format_percentage(overall.avg_change_failure_rate)}",
            f"   Avg MTTR: {format_hours(overall.avg_mttr_hours)}",
        ]
    )

    return "\n".join(lines)
