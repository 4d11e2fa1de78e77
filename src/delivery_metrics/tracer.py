"""Production-merge chain tracing.

A change linked to an issue usually reaches production through several pull
requests, for example ``feature -> main -> staging -> production``. Starting
from one pull request, the tracer follows its merge commit into the next pull
request that contains it until a pull request targeting a production branch is
found, the chain breaks, or the depth bound is hit.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Protocol, Sequence

from .config import MetricsSettings
from .models import FetchResult, PRChainItem, ProductionMergeTrace, PullRequestRef

logger = logging.getLogger(__name__)

UNKNOWN_BRANCH = "unknown"


class PullRequestFetcher(Protocol):
    """Lookups the tracer needs from the fetch layer."""

    def get_pull_request(self, number: int) -> FetchResult[PullRequestRef]:
        ...

    def find_pull_requests_for_commit(
        self, commit_sha: str, exclude_number: int
    ) -> FetchResult[List[int]]:
        ...


def matches_production_branch(branch: Optional[str], pattern: str) -> bool:
    """Return True when ``branch`` contains ``pattern`` (case-insensitive)."""
    if not branch or not pattern:
        return False
    return pattern.lower() in branch.lower()


def _to_chain_item(pr: PullRequestRef) -> PRChainItem:
    return PRChainItem(
        pr_number=pr.number,
        base_branch=pr.base_branch or UNKNOWN_BRANCH,
        head_branch=pr.head_branch or UNKNOWN_BRANCH,
        merged_at=pr.merged_at,
    )


def trace_to_production(
    fetcher: PullRequestFetcher,
    initial_pr_number: int,
    settings: MetricsSettings = MetricsSettings(),
    log: Optional[logging.Logger] = None,
) -> ProductionMergeTrace:
    """Follow a pull request's change until it lands on a production branch.

    Each iteration fetches the current pull request and appends it to the
    chain. The trace resolves when a merged pull request targets a branch
    matching ``settings.production_branch_pattern``. It terminates unresolved
    when the pull request is not merged, a lookup fails, no pull request
    contains the merge commit, or ``settings.max_chain_depth`` hops were taken.

    When several pull requests contain the merge commit the first one in the
    fetcher's order is followed.

    Args:
        fetcher: Pull request lookups.
        initial_pr_number: Pull request to start from.
        settings: Production branch pattern and depth bound.
        log: Optional logger; defaults to this module's logger.

    Returns:
        ``ProductionMergeTrace`` with the production merge time (``None`` when
        unresolved) and the ordered chain of visited pull requests.
    """
    log = log or logger
    chain: List[PRChainItem] = []
    current_number = initial_pr_number

    for _ in range(settings.max_chain_depth):
        result = fetcher.get_pull_request(current_number)
        if not result.success or result.data is None:
            log.warning(
                "Failed to fetch pull request while tracing production merge",
                extra={"pr_number": current_number, "error": result.error},
            )
            return ProductionMergeTrace(production_merged_at=None, pr_chain=tuple(chain))

        pr = result.data
        chain.append(_to_chain_item(pr))

        if pr.merged_at is None:
            log.debug("Pull request is not merged", extra={"pr_number": pr.number})
            return ProductionMergeTrace(production_merged_at=None, pr_chain=tuple(chain))

        if matches_production_branch(pr.base_branch, settings.production_branch_pattern):
            log.info(
                "Found production merge",
                extra={
                    "pr_number": pr.number,
                    "base_branch": pr.base_branch,
                    "chain_length": len(chain),
                },
            )
            return ProductionMergeTrace(production_merged_at=pr.merged_at, pr_chain=tuple(chain))

        if not pr.merge_commit_sha:
            return ProductionMergeTrace(production_merged_at=None, pr_chain=tuple(chain))

        containing = fetcher.find_pull_requests_for_commit(pr.merge_commit_sha, pr.number)
        if not containing.success or not containing.data:
            log.debug(
                "No pull request contains merge commit",
                extra={"pr_number": pr.number, "merge_commit_sha": pr.merge_commit_sha},
            )
            return ProductionMergeTrace(production_merged_at=None, pr_chain=tuple(chain))

        if len(containing.data) > 1:
            log.warning(
                "Merge commit is contained in several pull requests; following the first",
                extra={
                    "pr_number": pr.number,
                    "merge_commit_sha": pr.merge_commit_sha,
                    "candidates": list(containing.data),
                },
            )

        current_number = containing.data[0]

    log.warning(
        "Production merge chain exceeded maximum depth",
        extra={"initial_pr_number": initial_pr_number, "max_chain_depth": settings.max_chain_depth},
    )
    return ProductionMergeTrace(production_merged_at=None, pr_chain=tuple(chain))


def select_best_trace(traces: Iterable[Optional[ProductionMergeTrace]]) -> ProductionMergeTrace:
    """Pick the earliest resolved trace, else the first unresolved one."""
    best: Optional[ProductionMergeTrace] = None

    for trace in traces:
        if trace is None:
            continue
        if trace.resolved:
            if best is None or not best.resolved or trace.production_merged_at < best.production_merged_at:
                best = trace
        elif best is None:
            best = trace

    return best or ProductionMergeTrace(production_merged_at=None)


def trace_issue(
    fetcher: PullRequestFetcher,
    linked_pr_numbers: Sequence[int],
    settings: MetricsSettings = MetricsSettings(),
    log: Optional[logging.Logger] = None,
) -> ProductionMergeTrace:
    """Trace every pull request linked to an issue and keep the best result."""
    return select_best_trace(
        trace_to_production(fetcher, number, settings=settings, log=log)
        for number in linked_pr_numbers
    )
