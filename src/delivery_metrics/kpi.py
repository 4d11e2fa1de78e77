"""Per-issue and per-PR sample extraction.

This module turns individual issues and pull requests into the samples the
aggregators consume:
- Cycle time: issue creation to production merge (from a merge trace).
- Coding time: issue creation to the earliest linked PR creation.
- Rework: commits pushed after PR creation and force pushes.
- Review efficiency: ready-for-review, first review, approval and merge phases.
- PR size: additions, deletions and changed files.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, TypeVar

from .models import (
    Issue,
    IssueCodingTime,
    IssueCycleTime,
    PRReviewData,
    PRReworkData,
    PRSizeData,
    ProductionMergeTrace,
    PullRequest,
    Review,
)
from .stats import hours_between, round_one

logger = logging.getLogger(__name__)

Labelled = TypeVar("Labelled", Issue, PullRequest)

APPROVED = "APPROVED"
PENDING = "PENDING"


def should_exclude_by_labels(labels: Iterable[str], exclude_labels: Sequence[str]) -> bool:
    """Return True when any label is configured as excluded from metrics."""
    if not exclude_labels:
        return False
    return any(label in exclude_labels for label in labels)


def filter_excluded_by_labels(
    items: Sequence[Labelled], exclude_labels: Sequence[str]
) -> List[Labelled]:
    """Drop issues or pull requests carrying an excluded label."""
    kept = [item for item in items if not should_exclude_by_labels(item.labels, exclude_labels)]
    if len(kept) != len(items):
        logger.debug(
            "Excluded items by label",
            extra={"items_total": len(items), "items_kept": len(kept)},
        )
    return kept


def _elapsed_hours(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return round_one(hours_between(start, end))


def build_issue_cycle_time(issue: Issue, trace: ProductionMergeTrace) -> IssueCycleTime:
    """Combine an issue with its production-merge trace into a cycle time sample."""
    return IssueCycleTime(
        issue_number=issue.number,
        issue_title=issue.title,
        repository=issue.repository,
        issue_created_at=issue.created_at,
        production_merged_at=trace.production_merged_at,
        cycle_time_hours=_elapsed_hours(issue.created_at, trace.production_merged_at),
        pr_chain=trace.pr_chain,
    )


def build_issue_coding_time(issue: Issue, linked_prs: Sequence[PullRequest]) -> IssueCodingTime:
    """Compute coding time from issue creation to the earliest linked PR creation.

    An issue without linked PRs yields a sample with ``None`` timestamps and hours.
    """
    if not linked_prs:
        return IssueCodingTime(
            issue_number=issue.number,
            issue_title=issue.title,
            repository=issue.repository,
            issue_created_at=issue.created_at,
            pr_created_at=None,
            pr_number=None,
            coding_time_hours=None,
        )

    earliest = min(linked_prs, key=lambda pr: pr.created_at)
    return IssueCodingTime(
        issue_number=issue.number,
        issue_title=issue.title,
        repository=issue.repository,
        issue_created_at=issue.created_at,
        pr_created_at=earliest.created_at,
        pr_number=earliest.number,
        coding_time_hours=_elapsed_hours(issue.created_at, earliest.created_at),
    )


def count_additional_commits(commit_dates: Iterable[datetime], pr_created_at: datetime) -> int:
    """Count commits committed strictly after the pull request was opened."""
    return sum(1 for committed_at in commit_dates if committed_at > pr_created_at)


def build_rework_data(
    pr: PullRequest,
    commit_dates: Sequence[datetime],
    force_push_count: int,
) -> PRReworkData:
    return PRReworkData(
        pr_number=pr.number,
        title=pr.title,
        repository=pr.repository,
        created_at=pr.created_at,
        merged_at=pr.merged_at,
        additional_commits=count_additional_commits(commit_dates, pr.created_at),
        force_push_count=force_push_count,
        total_commits=len(commit_dates),
    )


def extract_ready_for_review_time(
    created_at: datetime,
    ready_for_review_events: Sequence[datetime],
) -> datetime:
    """Return the first ready-for-review time, or creation time for PRs never drafted."""
    if not ready_for_review_events:
        return created_at
    return min(ready_for_review_events)


def _submitted_reviews(reviews: Iterable[Review]) -> List[Review]:
    return sorted(
        (r for r in reviews if r.state != PENDING and r.submitted_at is not None),
        key=lambda r: r.submitted_at,
    )


def build_review_data(
    pr: PullRequest,
    reviews: Sequence[Review],
    ready_for_review_at: Optional[datetime] = None,
) -> PRReviewData:
    """Compute the four review phase durations for a pull request.

    Business logic:
    - Pending and unsubmitted reviews are ignored.
    - First review is the earliest submitted review; approval is the earliest
      ``APPROVED`` review.
    - Time to first review: ready-for-review to first review.
    - Review duration: first review to approval.
    - Time to merge: approval to merge.
    - Total time: ready-for-review to merge.

    Each phase is ``None`` when one of its endpoints is missing.
    """
    ready_at = ready_for_review_at or pr.created_at
    submitted = _submitted_reviews(reviews)
    first_review_at = submitted[0].submitted_at if submitted else None
    approved_at = next((r.submitted_at for r in submitted if r.state == APPROVED), None)

    return PRReviewData(
        pr_number=pr.number,
        title=pr.title,
        repository=pr.repository,
        created_at=pr.created_at,
        ready_for_review_at=ready_at,
        first_review_at=first_review_at,
        approved_at=approved_at,
        merged_at=pr.merged_at,
        time_to_first_review_hours=_elapsed_hours(ready_at, first_review_at),
        review_duration_hours=_elapsed_hours(first_review_at, approved_at),
        time_to_merge_hours=_elapsed_hours(approved_at, pr.merged_at),
        total_time_hours=_elapsed_hours(ready_at, pr.merged_at),
    )


def build_pr_size_data(pr: PullRequest) -> PRSizeData:
    additions = pr.additions or 0
    deletions = pr.deletions or 0
    return PRSizeData(
        pr_number=pr.number,
        title=pr.title,
        repository=pr.repository,
        created_at=pr.created_at,
        merged_at=pr.merged_at,
        additions=additions,
        deletions=deletions,
        lines_of_code=additions + deletions,
        files_changed=pr.changed_files or 0,
    )


def filter_pr_size_candidates(
    prs: Sequence[PullRequest],
    exclude_base_branches: Sequence[str],
) -> List[PullRequest]:
    """Drop PRs whose base branch contains any excluded name (release PRs, for example)."""
    if not exclude_base_branches:
        return list(prs)

    kept = [
        pr
        for pr in prs
        if not any(branch in pr.base_branch for branch in exclude_base_branches)
    ]
    logger.debug(
        "Filtered PR size candidates by base branch",
        extra={"prs_total": len(prs), "prs_kept": len(kept)},
    )
    return kept
