"""Extended delivery metrics aggregated over per-item samples.

Cycle time, coding time, rework rate, review efficiency and PR size all
reduce to the shared :func:`~delivery_metrics.stats.calculate_stats`
summary, so an empty input always yields ``None`` averages.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .models import (
    AdditionalCommitStats,
    CodingTimeMetrics,
    CycleTimeMetrics,
    ForcePushStats,
    IssueCodingTime,
    IssueCodingTimeDetail,
    IssueCycleTime,
    IssueCycleTimeDetail,
    NumericStatistics,
    PRChainItem,
    PRReviewData,
    PRReworkData,
    PRSizeData,
    PRSizeMetrics,
    ReviewEfficiencyMetrics,
    ReworkRateMetrics,
    TimeStatistics,
)
from .stats import calculate_stats, round_one

logger = logging.getLogger(__name__)

CHAIN_SEPARATOR = "→"


def format_pr_chain(chain: Sequence[PRChainItem]) -> str:
    """Render a chain as ``"#10→#20→#30"`` for audit display."""
    return CHAIN_SEPARATOR.join(f"#{item.pr_number}" for item in chain)


def calculate_cycle_time(records: Sequence[IssueCycleTime], period: str) -> CycleTimeMetrics:
    """Aggregate cycle time over issues whose change reached production.

    Issues with an unresolved production merge are excluded entirely rather
    than counted as zero.
    """
    details = [
        IssueCycleTimeDetail(
            issue_number=record.issue_number,
            title=record.issue_title,
            repository=record.repository,
            issue_created_at=record.issue_created_at,
            production_merged_at=record.production_merged_at,
            cycle_time_hours=record.cycle_time_hours,
            pr_chain_summary=format_pr_chain(record.pr_chain),
        )
        for record in records
        if record.production_merged_at is not None and record.cycle_time_hours is not None
    ]

    stats = calculate_stats(detail.cycle_time_hours for detail in details)

    logger.info(
        "Computed cycle time",
        extra={"period": period, "issues_total": len(records), "completed": len(details)},
    )

    return CycleTimeMetrics(
        period=period,
        completed_task_count=len(details),
        avg_cycle_time_hours=stats.avg,
        median_cycle_time_hours=stats.median,
        min_cycle_time_hours=stats.min,
        max_cycle_time_hours=stats.max,
        issue_details=details,
    )


def calculate_coding_time(records: Sequence[IssueCodingTime], period: str) -> CodingTimeMetrics:
    """Aggregate coding time over issues with a linked PR.

    Negative durations (a PR opened before its issue) are discarded.
    """
    details: List[IssueCodingTimeDetail] = []
    discarded = 0

    for record in records:
        if record.pr_created_at is None or record.coding_time_hours is None:
            continue
        if record.coding_time_hours < 0:
            discarded += 1
            logger.debug(
                "Skipping coding time sample due to negative duration",
                extra={"issue_number": record.issue_number, "hours": record.coding_time_hours},
            )
            continue
        details.append(
            IssueCodingTimeDetail(
                issue_number=record.issue_number,
                title=record.issue_title,
                repository=record.repository,
                issue_created_at=record.issue_created_at,
                pr_created_at=record.pr_created_at,
                pr_number=record.pr_number,
                coding_time_hours=record.coding_time_hours,
            )
        )

    stats = calculate_stats(detail.coding_time_hours for detail in details)

    return CodingTimeMetrics(
        period=period,
        issue_count=len(details),
        avg_coding_time_hours=stats.avg,
        median_coding_time_hours=stats.median,
        min_coding_time_hours=stats.min,
        max_coding_time_hours=stats.max,
        issue_details=details,
    )


def calculate_rework_rate(records: Sequence[PRReworkData], period: str) -> ReworkRateMetrics:
    """Aggregate additional commits and force pushes per PR."""
    if not records:
        return ReworkRateMetrics(
            period=period,
            pr_count=0,
            additional_commits=AdditionalCommitStats(total=0, avg_per_pr=None, median=None, max=None),
            force_pushes=ForcePushStats(
                total=0, avg_per_pr=None, prs_with_force_push=0, force_push_rate=None
            ),
        )

    pr_count = len(records)
    commit_counts = [record.additional_commits for record in records]
    commit_stats = calculate_stats(commit_counts)
    total_commits = sum(commit_counts)

    total_force_pushes = sum(record.force_push_count for record in records)
    prs_with_force_push = sum(1 for record in records if record.force_push_count > 0)

    return ReworkRateMetrics(
        period=period,
        pr_count=pr_count,
        additional_commits=AdditionalCommitStats(
            total=total_commits,
            avg_per_pr=round_one(total_commits / pr_count),
            median=commit_stats.median,
            max=commit_stats.max,
        ),
        force_pushes=ForcePushStats(
            total=total_force_pushes,
            avg_per_pr=round_one(total_force_pushes / pr_count),
            prs_with_force_push=prs_with_force_push,
            force_push_rate=round_one(prs_with_force_push / pr_count * 100),
        ),
        pr_details=list(records),
    )


def _time_statistics(values: Sequence[Optional[float]]) -> TimeStatistics:
    present = [value for value in values if value is not None]
    stats = calculate_stats(present)
    return TimeStatistics(
        avg_hours=stats.avg,
        median_hours=stats.median,
        min_hours=stats.min,
        max_hours=stats.max,
        sample_count=len(present),
    )


def calculate_review_efficiency(
    records: Sequence[PRReviewData], period: str
) -> ReviewEfficiencyMetrics:
    """Aggregate the four review phases independently.

    A PR missing one phase still contributes to the other three.
    """
    return ReviewEfficiencyMetrics(
        period=period,
        pr_count=len(records),
        time_to_first_review=_time_statistics([r.time_to_first_review_hours for r in records]),
        review_duration=_time_statistics([r.review_duration_hours for r in records]),
        time_to_merge=_time_statistics([r.time_to_merge_hours for r in records]),
        total_time=_time_statistics([r.total_time_hours for r in records]),
        pr_details=list(records),
    )


def _numeric_statistics(values: Sequence[int]) -> NumericStatistics:
    stats = calculate_stats(values)
    return NumericStatistics(
        total=sum(values),
        avg=stats.avg,
        median=stats.median,
        min=stats.min,
        max=stats.max,
    )


def calculate_pr_size(records: Sequence[PRSizeData], period: str) -> PRSizeMetrics:
    """Aggregate additions, deletions, lines of code and files changed."""
    return PRSizeMetrics(
        period=period,
        pr_count=len(records),
        additions=_numeric_statistics([r.additions for r in records]),
        deletions=_numeric_statistics([r.deletions for r in records]),
        lines_of_code=_numeric_statistics([r.lines_of_code for r in records]),
        files_changed=_numeric_statistics([r.files_changed for r in records]),
        pr_details=list(records),
    )
