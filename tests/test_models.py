"""
Unit tests for payload deserialization.
"""
import datetime

from snyk_project_pruner.models import DateBucket, JiraIssueRef, Org, ProjectInfo, TargetInfo, issue_ids, parse_timestamp
from tests.conftest import make_project

UTC = datetime.timezone.utc


def test_org_from_api():
    org = Org.from_api({"id": "abc", "attributes": {"slug": "acme", "name": "Acme"}})
    assert org == Org(id="abc", slug="acme", name="Acme")


def test_project_from_api_resolves_target_and_monitored_date():
    project = ProjectInfo.from_api({
        "id": "p1",
        "attributes": {"name": "acme/api:requirements.txt"},
        "meta": {"cli_monitored_at": "2024-01-02T10:15:00.000Z"},
        "relationships": {"target": {"data": {"id": "t1", "type": "target"}}},
    })

    assert project.target_relationship_id == "t1"
    assert project.monitored_at == datetime.datetime(2024, 1, 2, 10, 15, tzinfo=UTC)
    assert project.monitored_on(UTC) == datetime.date(2024, 1, 2)


def test_project_from_api_without_meta_or_target():
    project = ProjectInfo.from_api({"id": "p2", "attributes": {"name": "acme/web"}})

    assert project.monitored_at is None
    assert project.monitored_on() is None
    assert project.target_relationship_id is None


def test_target_from_api():
    target = TargetInfo.from_api({
        "id": "t1",
        "attributes": {"display_name": "acme/api", "created_at": "2023-05-01T12:00:00Z", "is_private": True},
    })

    assert target.display_name == "acme/api"
    assert target.created_at == datetime.datetime(2023, 5, 1, 12, 0, tzinfo=UTC)
    assert target.is_private is True


def test_parse_timestamp_blank():
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None


def test_issue_ids_flattens_and_deduplicates():
    refs = {
        "SNYK-PYTHON-1": [JiraIssueRef.from_api({"jiraIssue": {"id": "10001", "key": "SEC-1"}})],
        "SNYK-PYTHON-2": [JiraIssueRef(id="10001"), JiraIssueRef(id="10002")],
    }
    assert issue_ids(refs) == frozenset({"10001", "10002"})


def test_date_bucket_preview_is_capped_and_ascending():
    projects = tuple(make_project(f"p{i}", f"2024-01-01T{10 - i:02d}:00:00") for i in range(7))
    bucket = DateBucket(monitored_on=datetime.date(2024, 1, 1), projects=projects)

    assert bucket.count == 7
    assert bucket.hidden == 2
    assert [p.name for p in bucket.preview] == ["p6", "p5", "p4", "p3", "p2"]


def test_parse_timestamp_normalizes_fractional_seconds():
    assert parse_timestamp("2024-01-02T10:00:00.123456789Z") == datetime.datetime(2024, 1, 2, 10, 0, 0, 123456, tzinfo=UTC)
    assert parse_timestamp("2024-01-02T10:00:00.12Z").microsecond == 120000
