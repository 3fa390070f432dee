"""
Typed records for the Snyk REST and v1 payloads the pruner works with.

Relationships are resolved when a payload is deserialized, so the rest of the
code never looks anything up by string key on a raw API dictionary.
"""

import datetime
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

MAX_PREVIEW = 5
FRACTION_PATTERN = re.compile(r'\.(\d+)')


def parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    """Parse an ISO-8601 timestamp from the API, returning None for blanks."""
    if not value:
        return None
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits
    value = FRACTION_PATTERN.sub(lambda m: '.' + (m.group(1) + '000000')[:6], value)
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


@dataclass(frozen=True)
class Org:
    id: str
    slug: str
    name: str

    @classmethod
    def from_api(cls, data: Dict) -> 'Org':
        attributes = data.get('attributes', {})
        return cls(
            id=data['id'],
            slug=attributes.get('slug', ''),
            name=attributes.get('name', 'Unknown'),
        )


@dataclass(frozen=True)
class ProjectInfo:
    id: str
    name: str
    monitored_at: Optional[datetime.datetime] = None
    target_relationship_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict) -> 'ProjectInfo':
        attributes = data.get('attributes', {})
        meta = data.get('meta') or {}
        target = (data.get('relationships') or {}).get('target') or {}
        return cls(
            id=data['id'],
            name=attributes.get('name', 'Unknown'),
            monitored_at=parse_timestamp(meta.get('cli_monitored_at')),
            target_relationship_id=(target.get('data') or {}).get('id'),
        )

    def monitored_on(self, tz: Optional[datetime.tzinfo] = None) -> Optional[datetime.date]:
        """Calendar date of the last CLI monitor in ``tz`` (local time when None)."""
        if self.monitored_at is None:
            return None
        return self.monitored_at.astimezone(tz).date()


@dataclass(frozen=True)
class TargetInfo:
    id: str
    display_name: str
    created_at: Optional[datetime.datetime]
    is_private: bool

    @classmethod
    def from_api(cls, data: Dict) -> 'TargetInfo':
        attributes = data.get('attributes', {})
        return cls(
            id=data['id'],
            display_name=attributes.get('display_name', 'Unknown'),
            created_at=parse_timestamp(attributes.get('created_at')),
            is_private=bool(attributes.get('is_private', False)),
        )


@dataclass(frozen=True)
class JiraIssueRef:
    id: str

    @classmethod
    def from_api(cls, data: Dict) -> 'JiraIssueRef':
        issue = data.get('jiraIssue', {})
        return cls(id=str(issue['id']))


@dataclass(frozen=True)
class DeletionPlan:
    """Projects selected for deletion at a cutoff date, plus the Jira issues they carry."""

    cutoff_date: datetime.date
    eligible_projects: Tuple[ProjectInfo, ...]
    linked_issue_refs: FrozenSet[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.eligible_projects


@dataclass(frozen=True)
class DateBucket:
    """Projects sharing the same last-monitored date."""

    monitored_on: Optional[datetime.date]
    projects: Tuple[ProjectInfo, ...]
    marked: bool = False
    preview: Tuple[ProjectInfo, ...] = field(init=False)

    def __post_init__(self):
        ordered = sorted(
            self.projects,
            key=lambda p: (p.monitored_at is None, p.monitored_at or datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)),
        )
        object.__setattr__(self, 'preview', tuple(ordered[:MAX_PREVIEW]))

    @property
    def count(self) -> int:
        return len(self.projects)

    @property
    def hidden(self) -> int:
        return max(self.count - MAX_PREVIEW, 0)


def issue_ids(refs_by_rule: Dict[str, List[JiraIssueRef]]) -> FrozenSet[str]:
    """Flatten a rule-id -> refs mapping into the set of Jira issue ids."""
    return frozenset(ref.id for refs in refs_by_rule.values() for ref in refs)
