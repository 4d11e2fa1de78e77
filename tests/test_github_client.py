"""Tests for GitHub API client behavior with mocked HTTP."""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import requests

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from delivery_metrics.config import Config
from delivery_metrics.errors import ApiError, AuthenticationError, DataValidationError
from delivery_metrics.github_client import GitHubClient, GitHubPullRequestFetcher
from delivery_metrics.models import DeploymentStatus, PullRequestActivity, PullRequestRef, Review

REPO = "acme/api"


def _build_client() -> GitHubClient:
    config = Config(repositories=(REPO,), days=30, token="gh-token")
    return GitHubClient(config=config)


def _response(status_code: int, payload=None, text: str = "", headers: dict | None = None):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    response.json.return_value = payload if payload is not None else {}
    return response


def _pr_item(number: int, created_at: str = "2026-01-10T00:00:00Z", merged_at=None) -> dict:
    return {
        "number": number,
        "title": f"PR {number}",
        "state": "closed" if merged_at else "open",
        "created_at": created_at,
        "merged_at": merged_at,
        "closed_at": merged_at,
        "user": {"login": "octocat"},
        "base": {"ref": "main"},
        "head": {"ref": f"feature/{number}"},
        "merge_commit_sha": f"sha{number}",
        "labels": [{"name": "backend"}],
    }


def _routes(table: dict):
    """Build a _get_json stand-in that answers by request path."""

    def fake_get_json(path, params=None):
        payload = table[path]
        if isinstance(payload, Exception):
            raise payload
        return payload

    return Mock(side_effect=fake_get_json)


def test_session_sends_bearer_token_and_github_media_type():
    """Verify the session is authenticated with the configured token."""
    client = _build_client()

    assert client._session.headers["Authorization"] == "Bearer gh-token"
    assert client._session.headers["Accept"] == "application/vnd.github+json"


def test_get_json_retries_on_429_and_succeeds():
    """Verify _get_json retries after HTTP 429 honoring Retry-After."""
    client = _build_client()
    first = _response(429, headers={"Retry-After": "1"})
    second = _response(200, payload=[{"id": 1}])
    client._session.get = Mock(side_effect=[first, second])

    with patch("delivery_metrics.github_client.time.sleep") as sleep_mock:
        payload = client._get_json("repos/acme/api/deployments")

    assert payload == [{"id": 1}]
    assert client._session.get.call_count == 2
    sleep_mock.assert_called_once_with(1)


def test_get_json_retries_on_5xx_and_raises_after_max_retries():
    """Verify _get_json retries server errors and raises ApiError after the limit."""
    client = _build_client()
    server_error = _response(503, text="service unavailable")
    client._session.get = Mock(side_effect=[server_error] * client._MAX_RETRIES)

    with patch("delivery_metrics.github_client.time.sleep") as sleep_mock:
        with pytest.raises(ApiError):
            client._get_json("repos/acme/api/pulls")

    assert client._session.get.call_count == client._MAX_RETRIES
    assert sleep_mock.call_count == client._MAX_RETRIES - 1


def test_get_json_retries_transport_errors():
    """Verify connection errors are retried before succeeding."""
    client = _build_client()
    client._session.get = Mock(
        side_effect=[requests.ConnectionError("reset"), _response(200, payload={"ok": True})]
    )

    with patch("delivery_metrics.github_client.time.sleep"):
        payload = client._get_json("repos/acme/api")

    assert payload == {"ok": True}


def test_get_json_unauthorized_raises_authentication_error():
    """Verify HTTP 401 is reported as an authentication failure without retrying."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(401, text="Bad credentials"))

    with pytest.raises(AuthenticationError):
        client._get_json("repos/acme/api/pulls")

    assert client._session.get.call_count == 1


def test_get_json_not_found_raises_api_error():
    """Verify client errors other than 401 and 429 raise ApiError."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(404, text="Not Found"))

    with pytest.raises(ApiError):
        client._get_json("repos/acme/missing/pulls")


def test_get_json_invalid_json_raises_api_error():
    """Verify an unparseable body raises ApiError."""
    client = _build_client()
    response = _response(200)
    response.json.side_effect = ValueError("no json")
    client._session.get = Mock(return_value=response)

    with pytest.raises(ApiError):
        client._get_json("repos/acme/api/pulls")


def test_list_pull_requests_paginates_until_final_partial_page():
    """Verify pull-request listing walks pages of 100 and aggregates them."""
    client = _build_client()
    first_page = [_pr_item(i) for i in range(1, 101)]
    second_page = [_pr_item(101), _pr_item(102, merged_at="2026-01-11T00:00:00Z")]
    client._get_json = Mock(side_effect=[first_page, second_page])

    prs = client.list_pull_requests(REPO, since=None)

    assert len(prs) == 102
    assert prs[0].number == 1
    assert prs[-1].merged_at == datetime(2026, 1, 11, tzinfo=timezone.utc)
    assert prs[0].labels == ("backend",)
    assert prs[0].repository == REPO

    first_call, second_call = client._get_json.call_args_list
    assert first_call.kwargs["params"]["page"] == 1
    assert first_call.kwargs["params"]["per_page"] == client._PAGE_SIZE
    assert first_call.kwargs["params"]["state"] == "all"
    assert second_call.kwargs["params"]["page"] == 2


def test_list_pull_requests_stops_at_page_ceiling():
    """Verify pagination never exceeds the page ceiling."""
    client = _build_client()
    full_page = [_pr_item(i) for i in range(client._PAGE_SIZE)]
    client._get_json = Mock(return_value=full_page)

    prs = client.list_pull_requests(REPO, since=None)

    assert client._get_json.call_count == client._MAX_PAGES
    assert len(prs) == client._PAGE_SIZE * client._MAX_PAGES


def test_list_pull_requests_filters_by_since():
    """Verify PRs created before the window are dropped."""
    client = _build_client()
    client._get_json = Mock(
        return_value=[
            _pr_item(1, created_at="2026-01-20T00:00:00Z"),
            _pr_item(2, created_at="2025-12-01T00:00:00Z"),
        ]
    )

    prs = client.list_pull_requests(REPO, since=datetime(2026, 1, 1, tzinfo=timezone.utc))

    assert [pr.number for pr in prs] == [1]


def test_list_pull_requests_missing_number_raises_data_validation_error():
    """Verify a pull request payload without a number is rejected."""
    client = _build_client()
    client._get_json = Mock(return_value=[{"created_at": "2026-01-01T00:00:00Z"}])

    with pytest.raises(DataValidationError):
        client.list_pull_requests(REPO, since=None)


def test_list_deployments_attaches_latest_status():
    """Verify each deployment gets its latest status, unknown when it cannot be fetched."""
    client = _build_client()
    client._get_json = _routes(
        {
            f"repos/{REPO}/deployments": [
                {"id": 1, "sha": "a", "environment": "production", "created_at": "2026-01-05T10:00:00Z"},
                {"id": 2, "sha": "b", "environment": "production", "created_at": "2026-01-06T10:00:00Z"},
                {"id": 3, "sha": "c", "environment": "production", "created_at": "2026-01-07T10:00:00Z"},
            ],
            f"repos/{REPO}/deployments/1/statuses": [{"state": "success"}, {"state": "in_progress"}],
            f"repos/{REPO}/deployments/2/statuses": ApiError("boom"),
            f"repos/{REPO}/deployments/3/statuses": [],
        }
    )

    deployments = client.list_deployments(REPO, environment="production", since=None)

    assert [d.status for d in deployments] == [
        DeploymentStatus.SUCCESS,
        DeploymentStatus.UNKNOWN,
        DeploymentStatus.UNKNOWN,
    ]
    assert deployments[0].created_at == datetime(2026, 1, 5, 10, tzinfo=timezone.utc)


def test_list_workflow_runs_reads_object_payload():
    """Verify workflow runs are read from the workflow_runs key with a created filter."""
    client = _build_client()
    client._get_json = Mock(
        return_value={
            "total_count": 1,
            "workflow_runs": [
                {
                    "id": 9,
                    "name": "Deploy",
                    "status": "completed",
                    "conclusion": "success",
                    "created_at": "2026-01-03T00:00:00Z",
                }
            ],
        }
    )

    runs = client.list_workflow_runs(REPO, since=datetime(2026, 1, 1, tzinfo=timezone.utc))

    assert len(runs) == 1
    assert runs[0].conclusion == "success"
    assert client._get_json.call_args.kwargs["params"]["created"] == ">=2026-01-01T00:00:00Z"


def test_list_incidents_skips_pull_requests_and_merges_labels():
    """Verify incidents exclude PRs and are deduplicated across label queries."""
    client = _build_client()
    issue = {
        "id": 500,
        "number": 5,
        "title": "API down",
        "state": "closed",
        "created_at": "2026-01-02T00:00:00Z",
        "closed_at": "2026-01-02T04:00:00Z",
        "labels": [{"name": "incident"}, {"name": "sev1"}],
    }
    pull = dict(issue, id=600, number=6, pull_request={"url": "..."})
    client._get_json = Mock(side_effect=[[issue, pull], [issue]])

    incidents = client.list_incidents(REPO, labels=("incident", "sev1"), since=None)

    assert len(incidents) == 1
    assert incidents[0].number == 5
    assert incidents[0].closed_at == datetime(2026, 1, 2, 4, tzinfo=timezone.utc)
    assert incidents[0].labels == ("incident", "sev1")


def test_get_pull_request_returns_reference():
    """Verify a single PR lookup returns the fields the tracer follows."""
    client = _build_client()
    client._get_json = Mock(return_value=_pr_item(12, merged_at="2026-01-04T00:00:00Z"))

    ref = client.get_pull_request(REPO, 12)

    assert ref == PullRequestRef(
        number=12,
        base_branch="main",
        head_branch="feature/12",
        merged_at=datetime(2026, 1, 4, tzinfo=timezone.utc),
        merge_commit_sha="sha12",
    )


def test_get_pull_request_details_reads_size_fields():
    """Verify the detail lookup carries additions, deletions and changed files."""
    client = _build_client()
    item = dict(_pr_item(12, merged_at="2026-01-04T00:00:00Z"), additions=40, deletions=8, changed_files=3)
    client._get_json = Mock(return_value=item)

    pr = client.get_pull_request_details(REPO, 12)

    assert (pr.additions, pr.deletions, pr.changed_files) == (40, 8, 3)
    assert pr.labels == ("backend",)
    client._get_json.assert_called_once_with("repos/acme/api/pulls/12")


def test_list_issues_skips_pull_requests_and_filters_by_creation():
    """Verify issues exclude PRs and drop items created before the window."""
    client = _build_client()
    recent = {
        "id": 700,
        "number": 7,
        "title": "Add export",
        "state": "closed",
        "created_at": "2026-01-05T00:00:00Z",
        "closed_at": "2026-01-08T00:00:00Z",
        "labels": [{"name": "feature"}],
    }
    old = dict(recent, id=701, number=8, created_at="2025-12-01T00:00:00Z")
    pull = dict(recent, id=702, number=9, pull_request={"url": "..."})
    client._get_json = Mock(return_value=[recent, old, pull])

    issues = client.list_issues(REPO, since=datetime(2026, 1, 1, tzinfo=timezone.utc))

    assert [issue.number for issue in issues] == [7]
    assert issues[0].labels == ("feature",)
    assert client._get_json.call_args.kwargs["params"]["state"] == "all"
    assert client._get_json.call_args.kwargs["params"]["since"] == "2026-01-01T00:00:00Z"


def test_list_linked_pull_requests_reads_same_repository_cross_references():
    """Verify only cross-referencing PRs of the same repository are listed once each."""
    client = _build_client()

    def reference(number, repository=REPO, pull_request=True):
        source_issue = {"number": number, "repository": {"full_name": repository}}
        if pull_request:
            source_issue["pull_request"] = {"url": "..."}
        return {"event": "cross-referenced", "source": {"issue": source_issue}}

    client._get_json = _routes(
        {
            "repos/acme/api/issues/7/timeline": [
                {"event": "labeled"},
                reference(20),
                reference(21, repository="acme/other"),
                reference(22, pull_request=False),
                reference(23),
                reference(20),
            ]
        }
    )

    assert client.list_linked_pull_requests(REPO, 7) == [20, 23]


def test_list_pull_request_commit_dates_prefers_author_date():
    """Verify commit timestamps use the author date and fall back to the committer date."""
    client = _build_client()
    client._get_json = _routes(
        {
            "repos/acme/api/pulls/12/commits": [
                {"commit": {"author": {"date": "2026-01-02T00:00:00Z"}}},
                {"commit": {"committer": {"date": "2026-01-03T00:00:00Z"}}},
                {"commit": {}},
            ]
        }
    )

    dates = client.list_pull_request_commit_dates(REPO, 12)

    assert dates == [
        datetime(2026, 1, 2, tzinfo=timezone.utc),
        datetime(2026, 1, 3, tzinfo=timezone.utc),
    ]


def test_list_reviews_parses_state_and_submission_time():
    """Verify reviews keep their state and tolerate a missing submission time."""
    client = _build_client()
    client._get_json = _routes(
        {
            "repos/acme/api/pulls/12/reviews": [
                {"state": "COMMENTED", "submitted_at": "2026-01-02T00:00:00Z"},
                {"state": "PENDING"},
            ]
        }
    )

    reviews = client.list_reviews(REPO, 12)

    assert reviews == [
        Review(state="COMMENTED", submitted_at=datetime(2026, 1, 2, tzinfo=timezone.utc)),
        Review(state="PENDING", submitted_at=None),
    ]


def test_get_pull_request_activity_counts_force_pushes_and_ready_events():
    """Verify timeline force pushes are counted and ready-for-review times collected."""
    client = _build_client()
    client._get_json = _routes(
        {
            "repos/acme/api/issues/12/timeline": [
                {"event": "head_ref_force_pushed", "created_at": "2026-01-02T00:00:00Z"},
                {"event": "ready_for_review", "created_at": "2026-01-03T00:00:00Z"},
                {"event": "head_ref_force_pushed", "created_at": "2026-01-04T00:00:00Z"},
                {"event": "commented", "created_at": "2026-01-05T00:00:00Z"},
            ]
        }
    )

    activity = client.get_pull_request_activity(REPO, 12)

    assert activity == PullRequestActivity(
        force_push_count=2,
        ready_for_review_at=(datetime(2026, 1, 3, tzinfo=timezone.utc),),
    )


def test_fetcher_wraps_api_errors_as_failed_results():
    """Verify the tracer adapter reports API failures as unsuccessful results."""
    client = Mock()
    client.get_pull_request.side_effect = ApiError("not found")
    fetcher = GitHubPullRequestFetcher(client, REPO)

    result = fetcher.get_pull_request(3)

    assert result.success is False
    assert "not found" in result.error


def test_fetcher_excludes_current_pull_request_from_commit_lookup():
    """Verify the PR being traced is never returned as its own successor."""
    client = Mock()
    client.list_pull_requests_for_commit.return_value = [10, 20, 30]
    fetcher = GitHubPullRequestFetcher(client, REPO)

    result = fetcher.find_pull_requests_for_commit("abc", exclude_number=10)

    assert result.success is True
    assert result.data == [20, 30]
    client.list_pull_requests_for_commit.assert_called_once_with(REPO, "abc")
