"""Domain models for delivery metrics computation.

Input records are frozen snapshots normalized by the fetch layer; calculators
only read them. Result types are plain values that serialize with
``dataclasses.asdict``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")


class DeploymentStatus(str, Enum):
    """Latest known status of a deployment.

    ``UNKNOWN`` means the status was never fetched and is absent evidence: it
    is neither a success nor a failure.
    """

    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
    INACTIVE = "inactive"
    IN_PROGRESS = "in_progress"
    QUEUED = "queued"
    PENDING = "pending"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DeploymentStatus":
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_known(self) -> bool:
        return self is not DeploymentStatus.UNKNOWN

    @property
    def is_failure(self) -> bool:
        return self in (DeploymentStatus.FAILURE, DeploymentStatus.ERROR)


@dataclass(frozen=True, slots=True)
class PullRequest:
    """Pull request snapshot. ``merged_at`` alone decides whether it shipped."""

    number: int
    title: str
    state: str
    created_at: datetime
    merged_at: Optional[datetime]
    closed_at: Optional[datetime]
    author: str
    base_branch: str
    head_branch: str
    merge_commit_sha: Optional[str]
    repository: str
    additions: Optional[int] = None
    deletions: Optional[int] = None
    changed_files: Optional[int] = None
    labels: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Deployment:
    id: int
    sha: str
    environment: str
    created_at: datetime
    status: DeploymentStatus
    repository: str


@dataclass(frozen=True, slots=True)
class WorkflowRun:
    """CI workflow run, used only when deployment data is unavailable."""

    id: int
    name: str
    status: str
    conclusion: Optional[str]
    created_at: datetime
    repository: str


@dataclass(frozen=True, slots=True)
class Incident:
    """Issue-based proxy for an operational incident."""

    id: int
    number: int
    title: str
    state: str
    created_at: datetime
    closed_at: Optional[datetime]
    labels: Tuple[str, ...]
    repository: str


@dataclass(frozen=True, slots=True)
class Issue:
    """Issue whose creation marks the start of work on a change."""

    id: int
    number: int
    title: str
    state: str
    created_at: datetime
    closed_at: Optional[datetime]
    labels: Tuple[str, ...]
    repository: str


@dataclass(frozen=True, slots=True)
class Review:
    state: str
    submitted_at: Optional[datetime]


@dataclass(frozen=True, slots=True)
class PullRequestActivity:
    """Timeline facts about a pull request used for rework and review metrics."""

    force_push_count: int
    ready_for_review_at: Tuple[datetime, ...] = ()


@dataclass(frozen=True, slots=True)
class FetchResult(Generic[T]):
    """Uniform result shape returned by fetch collaborators."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: T) -> "FetchResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "FetchResult[T]":
        return cls(success=False, error=error)


# ---------------------------------------------------------------------------
# Production-merge tracing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PullRequestRef:
    """Minimal pull request data needed to follow a merge chain."""

    number: int
    base_branch: Optional[str]
    head_branch: Optional[str]
    merged_at: Optional[datetime]
    merge_commit_sha: Optional[str]


@dataclass(frozen=True, slots=True)
class PRChainItem:
    pr_number: int
    base_branch: str
    head_branch: str
    merged_at: Optional[datetime]


@dataclass(frozen=True, slots=True)
class ProductionMergeTrace:
    """Outcome of following a change towards a production branch."""

    production_merged_at: Optional[datetime]
    pr_chain: Tuple[PRChainItem, ...] = ()

    @property
    def resolved(self) -> bool:
        return self.production_merged_at is not None


# ---------------------------------------------------------------------------
# Per-item samples
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class IssueCycleTime:
    issue_number: int
    issue_title: str
    repository: str
    issue_created_at: datetime
    production_merged_at: Optional[datetime]
    cycle_time_hours: Optional[float]
    pr_chain: Tuple[PRChainItem, ...] = ()


@dataclass(frozen=True, slots=True)
class IssueCodingTime:
    issue_number: int
    issue_title: str
    repository: str
    issue_created_at: datetime
    pr_created_at: Optional[datetime]
    pr_number: Optional[int]
    coding_time_hours: Optional[float]


@dataclass(frozen=True, slots=True)
class PRReworkData:
    pr_number: int
    title: str
    repository: str
    created_at: datetime
    merged_at: Optional[datetime]
    additional_commits: int
    force_push_count: int
    total_commits: int


@dataclass(frozen=True, slots=True)
class PRReviewData:
    pr_number: int
    title: str
    repository: str
    created_at: datetime
    ready_for_review_at: datetime
    first_review_at: Optional[datetime]
    approved_at: Optional[datetime]
    merged_at: Optional[datetime]
    time_to_first_review_hours: Optional[float]
    review_duration_hours: Optional[float]
    time_to_merge_hours: Optional[float]
    total_time_hours: Optional[float]


@dataclass(frozen=True, slots=True)
class PRSizeData:
    pr_number: int
    title: str
    repository: str
    created_at: datetime
    merged_at: Optional[datetime]
    additions: int
    deletions: int
    lines_of_code: int
    files_changed: int


# ---------------------------------------------------------------------------
# Metric results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Stats:
    """Average, median, minimum and maximum of a sample, each ``None`` when empty."""

    avg: Optional[float] = None
    median: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass(frozen=True, slots=True)
class LeadTimeResult:
    hours: float
    merge_to_deploy_count: int
    create_to_merge_count: int


@dataclass(frozen=True, slots=True)
class DeploymentFrequencyResult:
    count: int
    frequency: str
    avg_per_day: float


@dataclass(frozen=True, slots=True)
class ChangeFailureRateResult:
    total: int
    failed: int
    rate: float


@dataclass(frozen=True, slots=True)
class IncidentMetrics:
    incident_count: int
    open_incidents: int
    mttr_hours: Optional[float]


@dataclass(slots=True)
class DevOpsMetrics:
    """DORA metrics for one repository over one date or period."""

    date: str
    repository: str
    deployment_count: int
    deployment_frequency: str
    lead_time_for_changes_hours: float
    merge_to_deploy_count: int
    create_to_merge_count: int
    total_deployments: int
    failed_deployments: int
    change_failure_rate: float
    mean_time_to_recovery_hours: Optional[float]
    incident_metrics: Optional[IncidentMetrics] = None


@dataclass(frozen=True, slots=True)
class IssueCycleTimeDetail:
    issue_number: int
    title: str
    repository: str
    issue_created_at: datetime
    production_merged_at: datetime
    cycle_time_hours: float
    pr_chain_summary: str


@dataclass(slots=True)
class CycleTimeMetrics:
    period: str
    completed_task_count: int
    avg_cycle_time_hours: Optional[float]
    median_cycle_time_hours: Optional[float]
    min_cycle_time_hours: Optional[float]
    max_cycle_time_hours: Optional[float]
    issue_details: List[IssueCycleTimeDetail] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class IssueCodingTimeDetail:
    issue_number: int
    title: str
    repository: str
    issue_created_at: datetime
    pr_created_at: datetime
    pr_number: int
    coding_time_hours: float


@dataclass(slots=True)
class CodingTimeMetrics:
    period: str
    issue_count: int
    avg_coding_time_hours: Optional[float]
    median_coding_time_hours: Optional[float]
    min_coding_time_hours: Optional[float]
    max_coding_time_hours: Optional[float]
    issue_details: List[IssueCodingTimeDetail] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class AdditionalCommitStats:
    total: int
    avg_per_pr: Optional[float]
    median: Optional[float]
    max: Optional[float]


@dataclass(frozen=True, slots=True)
class ForcePushStats:
    total: int
    avg_per_pr: Optional[float]
    prs_with_force_push: int
    force_push_rate: Optional[float]


@dataclass(slots=True)
class ReworkRateMetrics:
    period: str
    pr_count: int
    additional_commits: AdditionalCommitStats
    force_pushes: ForcePushStats
    pr_details: List[PRReworkData] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class TimeStatistics:
    avg_hours: Optional[float] = None
    median_hours: Optional[float] = None
    min_hours: Optional[float] = None
    max_hours: Optional[float] = None
    sample_count: int = 0


@dataclass(slots=True)
class ReviewEfficiencyMetrics:
    period: str
    pr_count: int
    time_to_first_review: TimeStatistics
    review_duration: TimeStatistics
    time_to_merge: TimeStatistics
    total_time: TimeStatistics
    pr_details: List[PRReviewData] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class NumericStatistics:
    total: int = 0
    avg: Optional[float] = None
    median: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass(slots=True)
class PRSizeMetrics:
    period: str
    pr_count: int
    additions: NumericStatistics
    deletions: NumericStatistics
    lines_of_code: NumericStatistics
    files_changed: NumericStatistics
    pr_details: List[PRSizeData] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RepositorySummary:
    repository: str
    data_point_count: int
    avg_deployment_count: float
    avg_lead_time_hours: float
    avg_change_failure_rate: float
    avg_mttr_hours: Optional[float]
    last_updated: str


@dataclass(frozen=True, slots=True)
class OverallSummary:
    total_repositories: int
    avg_deployment_count: float
    avg_lead_time_hours: float
    avg_change_failure_rate: float
    avg_mttr_hours: Optional[float]


@dataclass(slots=True)
class AggregatedSummary:
    repository_summaries: List[RepositorySummary]
    overall_summary: OverallSummary


@dataclass(slots=True)
class ExtendedMetrics:
    """Issue and pull request flow metrics for one repository over one period."""

    cycle_time: CycleTimeMetrics
    coding_time: CodingTimeMetrics
    rework_rate: ReworkRateMetrics
    review_efficiency: ReviewEfficiencyMetrics
    pr_size: PRSizeMetrics

