"""
Shared fixtures for the pruner tests.

The Snyk client is always a mock; prompts answer from a script so no test
ever waits on a terminal.
"""
import datetime
from unittest.mock import MagicMock

import pytest

from snyk_project_pruner.models import Org, ProjectInfo, TargetInfo

UTC = datetime.timezone.utc


def make_project(name, monitored=None, target_id=None, project_id=None):
    monitored_at = None
    if monitored is not None:
        monitored_at = datetime.datetime.fromisoformat(monitored).replace(tzinfo=UTC)
    return ProjectInfo(
        id=project_id or f"proj-{name}",
        name=name,
        monitored_at=monitored_at,
        target_relationship_id=target_id,
    )


def make_target(name, target_id=None, private=True):
    return TargetInfo(
        id=target_id or f"target-{name}",
        display_name=name,
        created_at=datetime.datetime(2023, 5, 1, 12, 0, tzinfo=UTC),
        is_private=private,
    )


class ScriptedPrompt:
    """Answers confirmations from a fixed list and remembers what was asked."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.asked = []

    def ask(self, text):
        self.asked.append(text)
        return self.answers.pop(0)


@pytest.fixture
def org():
    return Org(id="1b4e28ba-2fa1-11d2-883f-0016d3cca427", slug="acme-security", name="Acme Security")


@pytest.fixture
def mock_client(org):
    client = MagicMock()
    client.list_orgs.return_value = [org]
    client.list_projects.return_value = []
    client.list_issue_refs.return_value = {}
    client.list_targets.return_value = []
    return client


@pytest.fixture
def presenter():
    return MagicMock()
