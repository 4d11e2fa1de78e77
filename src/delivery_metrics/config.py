"""Configuration parsing and validation for the delivery metrics engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from .errors import AuthenticationError, ConfigurationError

DEFAULT_LEAD_TIME_MATCH_THRESHOLD_HOURS = 24.0
DEFAULT_DEPLOY_WORKFLOW_PATTERNS: Tuple[str, ...] = ("deploy",)
DEFAULT_PRODUCTION_BRANCH_PATTERN = "production"
DEFAULT_MAX_CHAIN_DEPTH = 5
DEFAULT_EXCLUDE_METRICS_LABELS: Tuple[str, ...] = ("exclude-metrics",)
DEFAULT_INCIDENT_LABELS: Tuple[str, ...] = ("incident",)
DEFAULT_DEPLOYMENT_ENVIRONMENT = "production"


@dataclass(frozen=True)
class MetricsSettings:
    """Calculation settings handed explicitly to every calculator that needs one."""

    lead_time_match_threshold_hours: float = DEFAULT_LEAD_TIME_MATCH_THRESHOLD_HOURS
    deploy_workflow_patterns: Tuple[str, ...] = DEFAULT_DEPLOY_WORKFLOW_PATTERNS
    production_branch_pattern: str = DEFAULT_PRODUCTION_BRANCH_PATTERN
    max_chain_depth: int = DEFAULT_MAX_CHAIN_DEPTH
    exclude_metrics_labels: Tuple[str, ...] = DEFAULT_EXCLUDE_METRICS_LABELS
    incident_labels: Tuple[str, ...] = DEFAULT_INCIDENT_LABELS
    deployment_environment: str = DEFAULT_DEPLOYMENT_ENVIRONMENT
    exclude_pr_size_base_branches: Tuple[str, ...] = ()

    def is_deploy_workflow(self, name: str) -> bool:
        """Return True when a workflow name contains any deploy pattern (case-insensitive)."""
        lowered = name.lower()
        return any(pattern.lower() in lowered for pattern in self.deploy_workflow_patterns)


@dataclass(frozen=True)
class Config:
    """Validated runtime settings used by the metrics generator."""

    repositories: Tuple[str, ...]
    days: int
    token: str
    settings: MetricsSettings = field(default_factory=MetricsSettings)
    include_extended: bool = True


def _validate_repository(repository: str) -> str:
    normalized = repository.strip()
    owner, _, name = normalized.partition("/")
    if not owner or not name or "/" in name:
        raise ConfigurationError(
            f"Invalid repository '{repository}': expected the form 'owner/name'."
        )
    return normalized


def load_config(
    repositories: Sequence[str],
    days: int,
    production_branch_pattern: Optional[str] = None,
    deploy_workflow_patterns: Optional[Sequence[str]] = None,
    deployment_environment: Optional[str] = None,
    max_chain_depth: int = DEFAULT_MAX_CHAIN_DEPTH,
    include_extended: bool = True,
) -> Config:
    """Build and validate application configuration.

    Args:
        repositories: Repositories to analyze, each as ``owner/name``.
        days: Positive number of days of history to query.
        production_branch_pattern: Substring identifying production branches.
        deploy_workflow_patterns: Substrings identifying deploy workflow runs.
        deployment_environment: Deployment environment to fetch.
        max_chain_depth: Upper bound on production-merge chain hops.
        include_extended: Whether to collect issue and pull request flow metrics.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If any value is missing or out of range.
        AuthenticationError: If ``GITHUB_TOKEN`` is not configured.
    """
    if days <= 0:
        raise ConfigurationError("Invalid value for 'days': expected an integer greater than 0.")

    if not repositories:
        raise ConfigurationError("At least one repository must be specified.")

    if max_chain_depth < 1:
        raise ConfigurationError("Invalid value for 'max_chain_depth': expected at least 1.")

    validated = tuple(_validate_repository(repository) for repository in repositories)

    token: str = os.getenv("GITHUB_TOKEN", "").strip()
    if not token:
        raise AuthenticationError(
            "Missing required GitHub token. "
            "Set the 'GITHUB_TOKEN' environment variable before running the metrics generator."
        )

    settings = MetricsSettings(
        production_branch_pattern=production_branch_pattern or DEFAULT_PRODUCTION_BRANCH_PATTERN,
        deploy_workflow_patterns=tuple(deploy_workflow_patterns or DEFAULT_DEPLOY_WORKFLOW_PATTERNS),
        deployment_environment=deployment_environment or DEFAULT_DEPLOYMENT_ENVIRONMENT,
        max_chain_depth=max_chain_depth,
    )

    return Config(
        repositories=validated,
        days=days,
        token=token,
        settings=settings,
        include_extended=include_extended,
    )
