"""Per-repository collection of issue and pull request flow metrics.

Each issue is traced to production through its linked pull requests for
cycle time, and the earliest linked pull request gives coding time. Merged
pull requests are inspected for rework (commits and force pushes), review
phases and size. A failed lookup for one item is logged and that item's
sample degrades; it never aborts the repository.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from .config import MetricsSettings
from .errors import ApiError
from .extended import (
    calculate_coding_time,
    calculate_cycle_time,
    calculate_pr_size,
    calculate_review_efficiency,
    calculate_rework_rate,
)
from .github_client import GitHubClient, GitHubPullRequestFetcher
from .kpi import (
    build_issue_coding_time,
    build_issue_cycle_time,
    build_pr_size_data,
    build_review_data,
    build_rework_data,
    extract_ready_for_review_time,
    filter_pr_size_candidates,
)
from .models import (
    ExtendedMetrics,
    Issue,
    IssueCodingTime,
    IssueCycleTime,
    PRReviewData,
    PRReworkData,
    PRSizeData,
    PullRequest,
    PullRequestActivity,
    Review,
)
from .tracer import trace_issue

logger = logging.getLogger(__name__)


def format_period(since: datetime, until: datetime) -> str:
    return f"{since:%Y-%m-%d}..{until:%Y-%m-%d}"


def _linked_pull_requests(
    client: GitHubClient,
    repository: str,
    numbers: Sequence[int],
    known: Dict[int, PullRequest],
) -> List[PullRequest]:
    linked: List[PullRequest] = []
    for number in numbers:
        pr = known.get(number)
        if pr is None:
            try:
                pr = client.get_pull_request_details(repository, number)
            except ApiError as exc:
                logger.warning(
                    "Failed to fetch linked pull request",
                    extra={"repository": repository, "pr_number": number, "error": str(exc)},
                )
                continue
        linked.append(pr)
    return linked


def collect_issue_samples(
    client: GitHubClient,
    repository: str,
    issues: Sequence[Issue],
    known_prs: Sequence[PullRequest],
    settings: MetricsSettings = MetricsSettings(),
) -> Tuple[List[IssueCycleTime], List[IssueCodingTime]]:
    """Build cycle time and coding time samples for every issue."""
    fetcher = GitHubPullRequestFetcher(client, repository)
    known = {pr.number: pr for pr in known_prs}
    cycle_samples: List[IssueCycleTime] = []
    coding_samples: List[IssueCodingTime] = []

    for issue in issues:
        try:
            linked_numbers = client.list_linked_pull_requests(repository, issue.number)
        except ApiError as exc:
            logger.warning(
                "Failed to fetch linked pull requests; treating issue as unlinked",
                extra={"repository": repository, "issue_number": issue.number, "error": str(exc)},
            )
            linked_numbers = []

        trace = trace_issue(fetcher, linked_numbers, settings=settings)
        cycle_samples.append(build_issue_cycle_time(issue, trace))
        coding_samples.append(
            build_issue_coding_time(
                issue, _linked_pull_requests(client, repository, linked_numbers, known)
            )
        )

    return cycle_samples, coding_samples


def _pull_request_activity(
    client: GitHubClient, pr: PullRequest
) -> Tuple[List[datetime], PullRequestActivity, Optional[List[Review]]]:
    try:
        commit_dates = client.list_pull_request_commit_dates(pr.repository, pr.number)
    except ApiError as exc:
        logger.warning(
            "Failed to fetch commits for pull request",
            extra={"repository": pr.repository, "pr_number": pr.number, "error": str(exc)},
        )
        commit_dates = []

    try:
        activity = client.get_pull_request_activity(pr.repository, pr.number)
    except ApiError as exc:
        logger.warning(
            "Failed to fetch timeline for pull request",
            extra={"repository": pr.repository, "pr_number": pr.number, "error": str(exc)},
        )
        activity = PullRequestActivity(force_push_count=0)

    try:
        reviews: Optional[List[Review]] = client.list_reviews(pr.repository, pr.number)
    except ApiError as exc:
        logger.warning(
            "Failed to fetch reviews for pull request",
            extra={"repository": pr.repository, "pr_number": pr.number, "error": str(exc)},
        )
        reviews = None

    return commit_dates, activity, reviews


def collect_pull_request_samples(
    client: GitHubClient,
    prs: Sequence[PullRequest],
    settings: MetricsSettings = MetricsSettings(),
) -> Tuple[List[PRReworkData], List[PRReviewData], List[PRSizeData]]:
    """Build rework, review and size samples for merged pull requests.

    Size uses the detail endpoint and skips pull requests it cannot fetch or
    whose base branch is excluded from size metrics.
    """
    merged = [pr for pr in prs if pr.merged_at is not None]
    rework: List[PRReworkData] = []
    review: List[PRReviewData] = []
    size: List[PRSizeData] = []

    for pr in merged:
        commit_dates, activity, reviews = _pull_request_activity(client, pr)
        rework.append(build_rework_data(pr, commit_dates, activity.force_push_count))
        ready_at = extract_ready_for_review_time(pr.created_at, activity.ready_for_review_at)
        review.append(build_review_data(pr, reviews or [], ready_for_review_at=ready_at))

    for pr in filter_pr_size_candidates(merged, settings.exclude_pr_size_base_branches):
        try:
            detailed = client.get_pull_request_details(pr.repository, pr.number)
        except ApiError as exc:
            logger.warning(
                "Failed to fetch pull request details; skipping size sample",
                extra={"repository": pr.repository, "pr_number": pr.number, "error": str(exc)},
            )
            continue
        size.append(build_pr_size_data(detailed))

    return rework, review, size


def collect_extended_metrics(
    client: GitHubClient,
    repository: str,
    prs: Sequence[PullRequest],
    issues: Sequence[Issue],
    since: datetime,
    until: datetime,
    settings: MetricsSettings = MetricsSettings(),
) -> ExtendedMetrics:
    """Collect samples from GitHub and aggregate every flow metric for one repository."""
    period = format_period(since, until)
    logger.info(
        "Collecting flow metrics",
        extra={"repository": repository, "issues_total": len(issues), "prs_total": len(prs)},
    )

    cycle_samples, coding_samples = collect_issue_samples(
        client, repository, issues, prs, settings=settings
    )
    rework, review, size = collect_pull_request_samples(client, prs, settings=settings)

    return ExtendedMetrics(
        cycle_time=calculate_cycle_time(cycle_samples, period),
        coding_time=calculate_coding_time(coding_samples, period),
        rework_rate=calculate_rework_rate(rework, period),
        review_efficiency=calculate_review_efficiency(review, period),
        pr_size=calculate_pr_size(size, period),
    )
