"""GitHub REST API client for delivery metrics data retrieval."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from .config import Config
from .errors import ApiError, AuthenticationError, DataValidationError
from .models import (
    Deployment,
    DeploymentStatus,
    FetchResult,
    Incident,
    Issue,
    PullRequest,
    PullRequestActivity,
    PullRequestRef,
    Review,
    WorkflowRun,
)

logger = logging.getLogger(__name__)


class GitHubClient:
    """Small, typed client for the GitHub REST endpoints the metrics need."""

    _BASE_URL = "https://api.github.com"
    _API_VERSION = "2022-11-28"
    _PAGE_SIZE = 100
    _MAX_PAGES = 10
    _MAX_RETRIES = 5
    _MAX_BACKOFF_SECONDS = 30

    def __init__(self, config: Config, timeout_seconds: int = 30) -> None:
        """Initialize an authenticated GitHub API client.

        Args:
            config: Validated runtime configuration including the token.
            timeout_seconds: Per-request timeout in seconds.
        """
        self._config = config
        self._timeout_seconds = timeout_seconds

        self._session = requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {config.token}",
                "X-GitHub-Api-Version": self._API_VERSION,
            }
        )

    def _build_url(self, path: str) -> str:
        return f"{self._BASE_URL}/{path.lstrip('/')}"

    def _format_datetime(self, value: datetime) -> str:
        """Format a datetime as UTC ISO8601 suitable for GitHub query params."""
        utc_value = value.astimezone(timezone.utc).replace(microsecond=0)
        return utc_value.isoformat().replace("+00:00", "Z")

    def _parse_datetime(self, value: Optional[str]) -> Optional[datetime]:
        """Parse GitHub ISO8601 timestamps into timezone-aware datetimes."""
        if not value:
            return None

        normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
        parsed = datetime.fromisoformat(normalized)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed

    def _require_datetime(self, value: Optional[str], context: str) -> datetime:
        parsed = self._parse_datetime(value)
        if parsed is None:
            raise DataValidationError(f"GitHub payload is missing a required timestamp: {context}")
        return parsed

    def _extract_backoff_seconds(self, response: requests.Response, attempt: int) -> int:
        """Compute exponential backoff seconds, honoring Retry-After when available."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                retry_after_seconds = int(retry_after_header)
                return min(self._MAX_BACKOFF_SECONDS, max(1, retry_after_seconds))
            except ValueError:
                pass

        return min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Execute a GET request with retry logic for 429/5xx responses.

        Raises:
            AuthenticationError: If GitHub rejects the token.
            ApiError: If the request repeatedly fails, returns HTTP >= 400,
                or does not return valid JSON.
        """
        url = self._build_url(path)
        last_error: Optional[Exception] = None

        for attempt in range(1, self._MAX_RETRIES + 1):
            try:
                response = self._session.get(url, params=params, timeout=self._timeout_seconds)
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self._MAX_RETRIES:
                    raise ApiError(f"GitHub request failed after retries: GET {url}") from exc
                time.sleep(min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1)))
                continue

            status_code = response.status_code
            is_retryable = status_code == 429 or 500 <= status_code <= 599

            if is_retryable and attempt < self._MAX_RETRIES:
                logger.debug(
                    "Retrying GitHub request",
                    extra={"url": url, "status_code": status_code, "attempt": attempt},
                )
                time.sleep(self._extract_backoff_seconds(response, attempt))
                continue

            if status_code == 401:
                raise AuthenticationError(f"GitHub rejected the configured token: GET {url}")

            if status_code >= 400:
                raise ApiError(
                    f"GitHub API request failed: GET {url} returned {status_code} - {response.text}"
                )

            try:
                return response.json()
            except ValueError as exc:
                raise ApiError(f"GitHub API returned invalid JSON: GET {url}") from exc

        raise ApiError(f"GitHub request failed after retries: GET {url}") from last_error

    def _get_paginated(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        items_key: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Collect items across pages until a short page or the page ceiling.

        ``items_key`` names the list inside an object payload (for example
        ``workflow_runs``); without it the payload itself must be a list.
        """
        items: List[Dict[str, Any]] = []

        for page in range(1, self._MAX_PAGES + 1):
            query = dict(params or {})
            query["per_page"] = self._PAGE_SIZE
            query["page"] = page

            payload = self._get_json(path, params=query)
            if items_key is not None:
                if not isinstance(payload, dict):
                    raise ApiError(f"GitHub API returned unexpected payload shape: GET {path}")
                page_items = payload.get(items_key, [])
            else:
                page_items = payload

            if not isinstance(page_items, list):
                raise ApiError(f"GitHub API returned unexpected payload shape: GET {path}")

            items.extend(page_items)
            if len(page_items) < self._PAGE_SIZE:
                break
        else:
            logger.warning(
                "Stopped paginating at page ceiling",
                extra={"path": path, "max_pages": self._MAX_PAGES},
            )

        return items

    def _parse_labels(self, item: Dict[str, Any]) -> Tuple[str, ...]:
        return tuple(
            str(label.get("name")) for label in item.get("labels") or [] if label.get("name")
        )

    def _parse_pull_request(self, item: Dict[str, Any], repository: str) -> PullRequest:
        """Build a ``PullRequest`` from a list or detail payload."""
        number = item.get("number")
        if number is None:
            raise DataValidationError(
                f"GitHub pull request payload is missing 'number': repository={repository}"
            )

        base = item.get("base") or {}
        head = item.get("head") or {}
        return PullRequest(
            number=int(number),
            title=str(item.get("title") or ""),
            state=str(item.get("state") or "open"),
            created_at=self._require_datetime(item.get("created_at"), f"{repository}#{number}"),
            merged_at=self._parse_datetime(item.get("merged_at")),
            closed_at=self._parse_datetime(item.get("closed_at")),
            author=str((item.get("user") or {}).get("login") or ""),
            base_branch=str(base.get("ref") or ""),
            head_branch=str(head.get("ref") or ""),
            merge_commit_sha=item.get("merge_commit_sha"),
            repository=repository,
            additions=item.get("additions"),
            deletions=item.get("deletions"),
            changed_files=item.get("changed_files"),
            labels=self._parse_labels(item),
        )

    def list_pull_requests(self, repository: str, since: Optional[datetime]) -> List[PullRequest]:
        """List pull requests created at or after ``since`` (all when ``None``).

        The list endpoint omits size fields; use :meth:`get_pull_request_details`
        for additions, deletions and changed files.
        """
        items = self._get_paginated(
            f"repos/{repository}/pulls",
            params={"state": "all", "sort": "created", "direction": "desc"},
        )
        pull_requests = [self._parse_pull_request(item, repository) for item in items]
        if since is None:
            return pull_requests
        return [pr for pr in pull_requests if pr.created_at >= since]

    def get_pull_request_details(self, repository: str, number: int) -> PullRequest:
        """Fetch a single pull request including its size fields."""
        payload = self._get_json(f"repos/{repository}/pulls/{number}")
        if not isinstance(payload, dict):
            raise ApiError(f"GitHub API returned unexpected payload shape for {repository}#{number}")
        return self._parse_pull_request(payload, repository)

    def list_issues(self, repository: str, since: Optional[datetime]) -> List[Issue]:
        """List issues (pull requests skipped) created at or after ``since``."""
        params: Dict[str, Any] = {"state": "all"}
        if since is not None:
            params["since"] = self._format_datetime(since)

        issues: List[Issue] = []
        for item in self._get_paginated(f"repos/{repository}/issues", params=params):
            if "pull_request" in item:
                continue
            issue_id = item.get("id")
            number = item.get("number")
            if issue_id is None or number is None:
                raise DataValidationError(
                    f"GitHub issue payload is missing 'id' or 'number': repository={repository}"
                )
            created_at = self._require_datetime(item.get("created_at"), f"{repository}#{number}")
            # ``since`` filters on update time upstream
            if since is not None and created_at < since:
                continue

            issues.append(
                Issue(
                    id=int(issue_id),
                    number=int(number),
                    title=str(item.get("title") or ""),
                    state=str(item.get("state") or "open"),
                    created_at=created_at,
                    closed_at=self._parse_datetime(item.get("closed_at")),
                    labels=self._parse_labels(item),
                    repository=repository,
                )
            )

        return issues

    def _list_timeline(self, repository: str, number: int) -> List[Dict[str, Any]]:
        return self._get_paginated(f"repos/{repository}/issues/{number}/timeline")

    def list_linked_pull_requests(self, repository: str, issue_number: int) -> List[int]:
        """List same-repository pull requests cross-referencing an issue, in timeline order."""
        numbers: List[int] = []

        for event in self._list_timeline(repository, issue_number):
            if event.get("event") != "cross-referenced":
                continue
            source_issue = (event.get("source") or {}).get("issue") or {}
            if not source_issue.get("pull_request"):
                continue
            source_repository = (source_issue.get("repository") or {}).get("full_name")
            number = source_issue.get("number")
            if source_repository == repository and number is not None and int(number) not in numbers:
                numbers.append(int(number))

        return numbers

    def list_pull_request_commit_dates(self, repository: str, number: int) -> List[datetime]:
        """List authored (else committed) timestamps of a pull request's commits."""
        dates: List[datetime] = []

        for item in self._get_paginated(f"repos/{repository}/pulls/{number}/commits"):
            commit = item.get("commit") or {}
            raw = (commit.get("author") or {}).get("date") or (commit.get("committer") or {}).get("date")
            parsed = self._parse_datetime(raw)
            if parsed is not None:
                dates.append(parsed)

        return dates

    def list_reviews(self, repository: str, number: int) -> List[Review]:
        """List reviews of a pull request."""
        return [
            Review(
                state=str(item.get("state") or ""),
                submitted_at=self._parse_datetime(item.get("submitted_at")),
            )
            for item in self._get_paginated(f"repos/{repository}/pulls/{number}/reviews")
        ]

    def get_pull_request_activity(self, repository: str, number: int) -> PullRequestActivity:
        """Read force pushes and ready-for-review events from a pull request's timeline."""
        force_push_count = 0
        ready_for_review_at: List[datetime] = []

        for event in self._list_timeline(repository, number):
            kind = event.get("event")
            if kind == "head_ref_force_pushed":
                force_push_count += 1
            elif kind == "ready_for_review":
                created_at = self._parse_datetime(event.get("created_at"))
                if created_at is not None:
                    ready_for_review_at.append(created_at)

        return PullRequestActivity(
            force_push_count=force_push_count,
            ready_for_review_at=tuple(ready_for_review_at),
        )

    def _latest_deployment_status(self, repository: str, deployment_id: int) -> DeploymentStatus:
        """Fetch the latest status of a deployment; UNKNOWN when it cannot be fetched."""
        try:
            payload = self._get_json(
                f"repos/{repository}/deployments/{deployment_id}/statuses",
                params={"per_page": 1},
            )
        except ApiError as exc:
            logger.warning(
                "Could not fetch deployment status; treating it as unknown",
                extra={"repository": repository, "deployment_id": deployment_id, "error": str(exc)},
            )
            return DeploymentStatus.UNKNOWN

        if not isinstance(payload, list) or not payload:
            return DeploymentStatus.UNKNOWN
        return DeploymentStatus.parse(payload[0].get("state"))

    def list_deployments(
        self,
        repository: str,
        environment: str,
        since: Optional[datetime],
    ) -> List[Deployment]:
        """List deployments to ``environment`` with their latest status."""
        items = self._get_paginated(
            f"repos/{repository}/deployments",
            params={"environment": environment},
        )
        deployments: List[Deployment] = []

        for item in items:
            deployment_id = item.get("id")
            if deployment_id is None:
                raise DataValidationError(
                    f"GitHub deployment payload is missing 'id': repository={repository}"
                )
            created_at = self._require_datetime(
                item.get("created_at"), f"{repository} deployment {deployment_id}"
            )
            if since is not None and created_at < since:
                continue

            deployments.append(
                Deployment(
                    id=int(deployment_id),
                    sha=str(item.get("sha") or ""),
                    environment=str(item.get("environment") or environment),
                    created_at=created_at,
                    status=self._latest_deployment_status(repository, int(deployment_id)),
                    repository=repository,
                )
            )

        return deployments

    def list_workflow_runs(self, repository: str, since: Optional[datetime]) -> List[WorkflowRun]:
        """List GitHub Actions workflow runs created at or after ``since``."""
        params: Dict[str, Any] = {}
        if since is not None:
            params["created"] = f">={self._format_datetime(since)}"

        items = self._get_paginated(
            f"repos/{repository}/actions/runs",
            params=params,
            items_key="workflow_runs",
        )
        runs: List[WorkflowRun] = []

        for item in items:
            run_id = item.get("id")
            if run_id is None:
                raise DataValidationError(
                    f"GitHub workflow run payload is missing 'id': repository={repository}"
                )
            runs.append(
                WorkflowRun(
                    id=int(run_id),
                    name=str(item.get("name") or ""),
                    status=str(item.get("status") or ""),
                    conclusion=item.get("conclusion"),
                    created_at=self._require_datetime(
                        item.get("created_at"), f"{repository} run {run_id}"
                    ),
                    repository=repository,
                )
            )

        return runs

    def list_incidents(
        self,
        repository: str,
        labels: Sequence[str],
        since: Optional[datetime],
    ) -> List[Incident]:
        """List issues carrying any incident label, created at or after ``since``.

        GitHub combines several ``labels`` values with AND, so each label is
        queried separately and the results are merged by issue id.
        """
        incidents: Dict[int, Incident] = {}

        for label in labels:
            items = self._get_paginated(
                f"repos/{repository}/issues",
                params={"state": "all", "labels": label},
            )
            for item in items:
                if "pull_request" in item:
                    continue
                issue_id = item.get("id")
                number = item.get("number")
                if issue_id is None or number is None:
                    raise DataValidationError(
                        f"GitHub issue payload is missing 'id' or 'number': repository={repository}"
                    )
                created_at = self._require_datetime(item.get("created_at"), f"{repository}#{number}")
                if since is not None and created_at < since:
                    continue

                incidents[int(issue_id)] = Incident(
                    id=int(issue_id),
                    number=int(number),
                    title=str(item.get("title") or ""),
                    state=str(item.get("state") or "open"),
                    created_at=created_at,
                    closed_at=self._parse_datetime(item.get("closed_at")),
                    labels=tuple(
                        str(entry.get("name")) for entry in item.get("labels") or [] if entry.get("name")
                    ),
                    repository=repository,
                )

        return sorted(incidents.values(), key=lambda incident: incident.created_at)

    def get_pull_request(self, repository: str, number: int) -> PullRequestRef:
        """Fetch branch, merge commit and merge time for a single pull request."""
        payload = self._get_json(f"repos/{repository}/pulls/{number}")
        if not isinstance(payload, dict):
            raise ApiError(f"GitHub API returned unexpected payload shape for {repository}#{number}")

        return PullRequestRef(
            number=int(payload.get("number", number)),
            base_branch=(payload.get("base") or {}).get("ref"),
            head_branch=(payload.get("head") or {}).get("ref"),
            merged_at=self._parse_datetime(payload.get("merged_at")),
            merge_commit_sha=payload.get("merge_commit_sha"),
        )

    def list_pull_requests_for_commit(self, repository: str, commit_sha: str) -> List[int]:
        """List numbers of pull requests containing a commit, in GitHub's order."""
        payload = self._get_json(f"repos/{repository}/commits/{commit_sha}/pulls")
        if not isinstance(payload, list):
            raise ApiError(
                f"GitHub API returned unexpected payload shape for commit {commit_sha} in {repository}"
            )
        return [int(item["number"]) for item in payload if item.get("number") is not None]


class GitHubPullRequestFetcher:
    """Adapts :class:`GitHubClient` to the tracer's fetch interface for one repository."""

    def __init__(self, client: GitHubClient, repository: str) -> None:
        self._client = client
        self._repository = repository

    def get_pull_request(self, number: int) -> FetchResult[PullRequestRef]:
        try:
            return FetchResult.ok(self._client.get_pull_request(self._repository, number))
        except ApiError as exc:
            return FetchResult.fail(str(exc))

    def find_pull_requests_for_commit(
        self, commit_sha: str, exclude_number: int
    ) -> FetchResult[List[int]]:
        try:
            numbers = self._client.list_pull_requests_for_commit(self._repository, commit_sha)
        except ApiError as exc:
            return FetchResult.fail(str(exc))
        return FetchResult.ok([number for number in numbers if number != exclude_number])
