"""
Unit tests for SnykClient. The requests session is replaced by a mock so no
test touches the network, and time.sleep is patched out.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from snyk_project_pruner.client import MAX_RETRIES, RateLimiter, SnykClient
from snyk_project_pruner.exceptions import AuthError, DeletionError, NetworkError


def fake_response(status_code=200, payload=None, headers=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.headers = headers or {}
    response.text = text
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} error")
    return response


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("snyk_project_pruner.client.time.sleep") as sleep:
        yield sleep


@pytest.fixture
def client():
    client = SnykClient("secret", request_interval=0)
    client.session = MagicMock()
    return client


def test_session_headers_use_auth_scheme():
    client = SnykClient("abc", auth_scheme="bearer", region="SNYK-EU-01")
    assert client.session.headers["Authorization"] == "bearer abc"
    assert client.base_url == "https://api.eu.snyk.io"


def test_list_orgs_follows_pagination(client):
    client.session.request.side_effect = [
        fake_response(payload={
            "data": [{"id": "o1", "attributes": {"slug": "one", "name": "One"}}],
            "links": {"next": "/rest/orgs?version=2024-10-15&starting_after=abc"},
        }),
        fake_response(payload={"data": [{"id": "o2", "attributes": {"slug": "two", "name": "Two"}}], "links": {}}),
    ]

    orgs = client.list_orgs()

    assert [o.slug for o in orgs] == ["one", "two"]
    first, second = client.session.request.call_args_list
    assert first.args == ("GET", "https://api.snyk.io/rest/orgs")
    assert first.kwargs["params"] == {"version": "2024-10-15", "limit": 100}
    assert second.args == ("GET", "https://api.snyk.io/rest/orgs?version=2024-10-15&starting_after=abc")
    assert second.kwargs["params"] is None


def test_list_projects_deserializes_relationships(client):
    client.session.request.return_value = fake_response(payload={"data": [{
        "id": "p1",
        "attributes": {"name": "acme/api"},
        "meta": {"cli_monitored_at": "2024-01-02T10:00:00Z"},
        "relationships": {"target": {"data": {"id": "t1"}}},
    }]})

    projects = client.list_projects("org-1")

    assert projects[0].target_relationship_id == "t1"
    assert client.session.request.call_args.args[1] == "https://api.snyk.io/rest/orgs/org-1/projects"


def test_list_targets_includes_empty_ones(client):
    client.session.request.return_value = fake_response(payload={"data": []})

    client.list_targets("org-1", include_empty=True)

    assert client.session.request.call_args.kwargs["params"]["exclude_empty"] == "false"


def test_list_issue_refs(client):
    client.session.request.return_value = fake_response(payload={
        "SNYK-JS-1": [{"jiraIssue": {"id": "10001", "key": "SEC-1"}}],
    })

    refs = client.list_issue_refs("org-1", "p1")

    assert refs["SNYK-JS-1"][0].id == "10001"
    assert client.session.request.call_args.args[1] == "https://api.snyk.io/v1/org/org-1/project/p1/jira-issues"


def test_unauthorized_listing_raises_auth_error(client):
    client.session.request.return_value = fake_response(401)

    with pytest.raises(AuthError):
        client.list_orgs()
    assert client.session.request.call_count == 1


def test_unknown_region_falls_back_to_us():
    assert SnykClient("abc", region="nowhere").base_url == "https://api.snyk.io"


def test_non_json_body_raises_network_error(client):
    response = fake_response(200)
    response.json.side_effect = requests.exceptions.JSONDecodeError("Expecting value", "", 0)
    client.session.request.return_value = response

    with pytest.raises(NetworkError):
        client.list_issue_refs("org-1", "p1")


def test_reads_retry_transient_failures(client):
    client.session.request.side_effect = [
        requests.exceptions.ConnectionError("reset"),
        fake_response(502),
        fake_response(payload={"data": []}),
    ]

    assert client.list_orgs() == []
    assert client.session.request.call_count == 3


def test_reads_give_up_after_bounded_retries(client):
    client.session.request.side_effect = requests.exceptions.Timeout("slow")

    with pytest.raises(NetworkError):
        client.list_orgs()
    assert client.session.request.call_count == MAX_RETRIES


def test_rate_limited_read_waits_and_retries(client):
    client.rate_limiter.handle_429 = MagicMock()
    client.session.request.side_effect = [fake_response(429, headers={"Retry-After": "2"}), fake_response(payload={"data": []})]

    client.list_orgs()

    client.rate_limiter.handle_429.assert_called_once()


@pytest.mark.parametrize("status", [200, 204, 404])
def test_delete_project_success_statuses(client, status):
    client.session.request.return_value = fake_response(status)

    client.delete_project("org-1", "p1")

    client.session.request.assert_called_once_with(
        "DELETE", "https://api.snyk.io/rest/orgs/org-1/projects/p1",
        params={"version": "2024-10-15"}, timeout=30,
    )


def test_failed_delete_is_not_retried(client):
    client.session.request.return_value = fake_response(500, text="internal error")

    with pytest.raises(DeletionError) as excinfo:
        client.delete_target("org-1", "t1")

    assert excinfo.value.item_id == "t1"
    assert excinfo.value.status_code == 500
    assert client.session.request.call_count == 1


def test_delete_connection_error_is_not_retried(client):
    client.session.request.side_effect = requests.exceptions.ConnectionError("reset")

    with pytest.raises(DeletionError):
        client.delete_project("org-1", "p1")
    assert client.session.request.call_count == 1


def test_rate_limited_delete_is_resent(client):
    client.rate_limiter.handle_429 = MagicMock()
    client.session.request.side_effect = [fake_response(429), fake_response(204)]

    client.delete_target("org-1", "t1")

    assert client.session.request.call_count == 2


def test_rate_limiter_backoff_window(no_sleep):
    limiter = RateLimiter(backoff_seconds=60)

    limiter.handle_429("GET /orgs", retry_after="5")

    no_sleep.assert_called_once_with(5.0)
    assert limiter.is_in_backoff()
