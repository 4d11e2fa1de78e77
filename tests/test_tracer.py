"""Tests for production-merge chain tracing with an in-memory fetcher."""

import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from delivery_metrics.config import MetricsSettings
from delivery_metrics.models import FetchResult, ProductionMergeTrace, PullRequestRef
from delivery_metrics.tracer import (
    matches_production_branch,
    select_best_trace,
    trace_issue,
    trace_to_production,
)

BASE = datetime(2025, 5, 1, 8, 0, tzinfo=timezone.utc)


class FakeFetcher:
    """Serves pull requests and commit lookups from dictionaries."""

    def __init__(self, prs, containing=None, failing=()):
        self.prs = {pr.number: pr for pr in prs}
        self.containing = containing or {}
        self.failing = set(failing)
        self.requested = []

    def get_pull_request(self, number):
        self.requested.append(number)
        if number in self.failing or number not in self.prs:
            return FetchResult.fail(f"PR #{number} not found")
        return FetchResult.ok(self.prs[number])

    def find_pull_requests_for_commit(self, commit_sha, exclude_number):
        numbers = [n for n in self.containing.get(commit_sha, []) if n != exclude_number]
        return FetchResult.ok(numbers)


def _ref(number, base, head, merged_hours=None, sha=None):
    return PullRequestRef(
        number=number,
        base_branch=base,
        head_branch=head,
        merged_at=BASE + timedelta(hours=merged_hours) if merged_hours is not None else None,
        merge_commit_sha=sha,
    )


def test_matches_production_branch_is_case_insensitive_substring():
    """Verify production branch detection uses case-insensitive substring matching."""
    assert matches_production_branch("Production", "production")
    assert matches_production_branch("release/production-eu", "production")
    assert not matches_production_branch("main", "production")
    assert not matches_production_branch(None, "production")


def test_trace_resolves_in_one_hop_for_production_base():
    """Verify a merged PR targeting production resolves immediately."""
    fetcher = FakeFetcher([_ref(10, "production", "main", merged_hours=5, sha="abc")])

    trace = trace_to_production(fetcher, 10)

    assert trace.resolved
    assert trace.production_merged_at == BASE + timedelta(hours=5)
    assert [item.pr_number for item in trace.pr_chain] == [10]


def test_trace_unmerged_pr_without_merge_commit_is_unresolved():
    """Verify an unmerged PR ends the trace unresolved with a chain of length 1."""
    fetcher = FakeFetcher([_ref(10, "main", "feature/x")])

    trace = trace_to_production(fetcher, 10)

    assert not trace.resolved
    assert trace.production_merged_at is None
    assert len(trace.pr_chain) == 1


def test_trace_follows_three_hop_chain():
    """Verify feature->main->staging->production yields a chain of 3 and the third merge time."""
    fetcher = FakeFetcher(
        [
            _ref(10, "main", "feature/login", merged_hours=1, sha="sha10"),
            _ref(20, "staging", "main", merged_hours=3, sha="sha20"),
            _ref(30, "production", "staging", merged_hours=7, sha="sha30"),
        ],
        containing={"sha10": [10, 20], "sha20": [30]},
    )

    trace = trace_to_production(fetcher, 10)

    assert len(trace.pr_chain) == 3
    assert [item.pr_number for item in trace.pr_chain] == [10, 20, 30]
    assert trace.production_merged_at == BASE + timedelta(hours=7)
    assert trace.pr_chain[0].head_branch == "feature/login"


def test_trace_missing_branch_names_become_unknown():
    """Verify absent branch names are recorded as 'unknown' in the chain."""
    fetcher = FakeFetcher([_ref(10, None, None)])

    trace = trace_to_production(fetcher, 10)

    assert trace.pr_chain[0].base_branch == "unknown"
    assert trace.pr_chain[0].head_branch == "unknown"


def test_trace_fetch_failure_keeps_partial_chain():
    """Verify a failed lookup mid-chain returns unresolved with the PRs visited so far."""
    fetcher = FakeFetcher(
        [_ref(10, "main", "feature/x", merged_hours=1, sha="sha10")],
        containing={"sha10": [20]},
        failing={20},
    )
    log = Mock(spec=logging.Logger)

    trace = trace_to_production(fetcher, 10, log=log)

    assert not trace.resolved
    assert [item.pr_number for item in trace.pr_chain] == [10]
    log.warning.assert_called_once()


def test_trace_without_containing_pr_is_unresolved():
    """Verify a merge commit no other PR contains ends the trace unresolved."""
    fetcher = FakeFetcher([_ref(10, "main", "feature/x", merged_hours=1, sha="sha10")])

    trace = trace_to_production(fetcher, 10)

    assert not trace.resolved
    assert len(trace.pr_chain) == 1


def test_trace_several_containing_prs_follows_first_and_warns():
    """Verify the first containing PR is followed and the ambiguity is logged."""
    fetcher = FakeFetcher(
        [
            _ref(10, "main", "feature/x", merged_hours=1, sha="sha10"),
            _ref(20, "production", "main", merged_hours=2, sha="sha20"),
            _ref(21, "production", "hotfix", merged_hours=9, sha="sha21"),
        ],
        containing={"sha10": [20, 21]},
    )
    log = Mock(spec=logging.Logger)

    trace = trace_to_production(fetcher, 10, log=log)

    assert trace.production_merged_at == BASE + timedelta(hours=2)
    assert fetcher.requested == [10, 20]
    log.warning.assert_called_once()


def test_trace_stops_at_max_chain_depth():
    """Verify a chain longer than the depth bound terminates unresolved."""
    prs = [
        _ref(n, "main", f"branch-{n}", merged_hours=n, sha=f"sha{n}")
        for n in range(1, 10)
    ]
    containing = {f"sha{n}": [n + 1] for n in range(1, 9)}
    fetcher = FakeFetcher(prs, containing=containing)

    trace = trace_to_production(fetcher, 1, settings=MetricsSettings(max_chain_depth=3))

    assert not trace.resolved
    assert len(trace.pr_chain) == 3
    assert fetcher.requested == [1, 2, 3]


def test_trace_uses_configured_production_pattern():
    """Verify the production pattern comes from the settings passed in."""
    fetcher = FakeFetcher([_ref(10, "release", "main", merged_hours=4, sha="s")])

    trace = trace_to_production(fetcher, 10, settings=MetricsSettings(production_branch_pattern="RELEASE"))

    assert trace.resolved


def test_select_best_trace_prefers_earliest_resolved():
    """Verify the earliest resolved trace wins over later and unresolved ones."""
    unresolved = ProductionMergeTrace(production_merged_at=None)
    late = ProductionMergeTrace(production_merged_at=BASE + timedelta(hours=9))
    early = ProductionMergeTrace(production_merged_at=BASE + timedelta(hours=2))

    assert select_best_trace([unresolved, late, None, early]) is early
    assert select_best_trace([unresolved]) is unresolved
    assert not select_best_trace([]).resolved


def test_trace_issue_traces_every_linked_pr():
    """Verify an issue's linked PRs are all traced and the earliest production merge kept."""
    fetcher = FakeFetcher(
        [
            _ref(1, "production", "main", merged_hours=10, sha="a"),
            _ref(2, "production", "main", merged_hours=4, sha="b"),
            _ref(3, "main", "feature"),
        ]
    )

    trace = trace_issue(fetcher, [3, 1, 2])

    assert trace.production_merged_at == BASE + timedelta(hours=4)
    assert sorted(fetcher.requested) == [1, 2, 3]
