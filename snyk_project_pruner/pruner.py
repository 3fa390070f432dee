"""
Project and target pruning for a single Snyk organization.

Every step runs in sequence against one snapshot of the inventory: resolve the
org, fetch its projects, select the ones not monitored since the cutoff, audit
the Jira issues hanging off them, confirm with the operator, then delete one
project at a time behind a short countdown. Orphan targets are audited
separately from a fresh fetch.

The prompt and presenter are injected. A prompt only needs ``ask(text) -> bool``.
"""

import datetime
import logging
import signal
import re
import threading
from contextlib import contextmanager
from dataclasses import replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import DELETE_COUNTDOWN
from .exceptions import DeletionError, OrgNotFound
from .models import DateBucket, DeletionPlan, Org, ProjectInfo, TargetInfo, issue_ids

logger = logging.getLogger(__name__)


def same_identifier(left: Optional[str], right: Optional[str]) -> bool:
    """Compare two Snyk identifiers ignoring case. A missing identifier never matches."""
    if left is None or right is None:
        return False
    return left.lower() == right.lower()


UUID_PATTERN = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)


def _is_uuid(value: str) -> bool:
    """Only the dashed 8-4-4-4-12 form is an id; anything else is a slug."""
    return UUID_PATTERN.match(value) is not None


def resolve_org(identifier: str, orgs: Iterable[Org]) -> Org:
    """Find the org whose id (for UUIDs) or slug (otherwise) matches ``identifier``."""
    match_id = _is_uuid(identifier)
    for org in orgs:
        if same_identifier(org.id if match_id else org.slug, identifier):
            return org
    raise OrgNotFound(identifier)


def _new_results() -> Dict[str, List[str]]:
    return {'successful': [], 'failed': [], 'skipped': []}


@contextmanager
def deferred_interrupt(cancel_event: threading.Event):
    """Hold Ctrl+C back until the block returns, then record it on ``cancel_event``."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    received = []

    def _record(signum, frame):
        received.append(signum)
        logger.warning("Interrupt received, waiting for the in-flight delete to finish")

    previous = signal.signal(signal.SIGINT, _record)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)
        if received:
            cancel_event.set()


class ProjectInventory:
    """Fetches an organization's projects and groups them by last-monitored date."""

    def __init__(self, client, tz: Optional[datetime.tzinfo] = None):
        self.client = client
        self.tz = tz

    def fetch(self, org_id: str) -> List[ProjectInfo]:
        return self.client.list_projects(org_id)

    def group(self, projects: Iterable[ProjectInfo], cutoff: Optional[datetime.date] = None) -> List[DateBucket]:
        """
        Bucket projects by the calendar date of ``monitored_at``.

        Buckets come newest first; projects never monitored form a single
        bucket placed last. With a cutoff, buckets dated on or before it are
        marked for deletion.
        """
        grouped: Dict[Optional[datetime.date], List[ProjectInfo]] = {}
        for project in projects:
            grouped.setdefault(project.monitored_on(self.tz), []).append(project)

        order: List[Optional[datetime.date]] = sorted((d for d in grouped if d is not None), reverse=True)
        if None in grouped:
            order.append(None)

        return [
            DateBucket(
                monitored_on=day,
                projects=tuple(grouped[day]),
                marked=day is not None and cutoff is not None and day <= cutoff,
            )
            for day in order
        ]


def is_eligible(project: ProjectInfo, cutoff: datetime.date, tz: Optional[datetime.tzinfo] = None) -> bool:
    monitored_on = project.monitored_on(tz)
    return monitored_on is not None and monitored_on <= cutoff


def plan_deletion(projects: Iterable[ProjectInfo], cutoff: datetime.date,
                  tz: Optional[datetime.tzinfo] = None) -> DeletionPlan:
    """Select the projects last monitored on or before ``cutoff``; never-monitored projects are kept."""
    eligible = sorted(
        (project for project in projects if is_eligible(project, cutoff, tz)),
        key=lambda p: (p.name, p.id),
    )
    logger.info(f"{len(eligible)} projects monitored on or before {cutoff} are eligible for deletion")
    return DeletionPlan(cutoff_date=cutoff, eligible_projects=tuple(eligible))


class GateState(Enum):
    PLANNED = "planned"
    FIRST_CONFIRMATION_PENDING = "first_confirmation_pending"
    SECOND_CONFIRMATION_PENDING = "second_confirmation_pending"
    READY_TO_EXECUTE = "ready_to_execute"
    ABORTED = "aborted"


class SafetyGate:
    """
    Two-stage operator confirmation for a deletion plan.

    The first prompt always follows the irreversibility warning. When any
    eligible project has Jira issues linked to it, those issue ids are shown
    and a second prompt is required, since the issues stay behind without
    their Snyk context.
    """

    def __init__(self, client, prompt, presenter):
        self.client = client
        self.prompt = prompt
        self.presenter = presenter
        self.state = GateState.PLANNED
        self.aborted_at: Optional[GateState] = None

    def attach_issue_refs(self, plan: DeletionPlan, org_id: str) -> DeletionPlan:
        """Return a copy of ``plan`` carrying the Jira issue ids of all eligible projects."""
        refs = set(plan.linked_issue_refs)
        for project in plan.eligible_projects:
            project_refs = issue_ids(self.client.list_issue_refs(org_id, project.id))
            if project_refs:
                logger.info(f"Project {project.name} ({project.id}) has {len(project_refs)} linked Jira issues")
            refs |= project_refs
        return replace(plan, linked_issue_refs=frozenset(refs))

    def _abort(self) -> bool:
        self.aborted_at = self.state
        self.state = GateState.ABORTED
        logger.info("Deletion declined by operator")
        return False

    def confirm(self, plan: DeletionPlan) -> bool:
        self.state = GateState.FIRST_CONFIRMATION_PENDING
        self.presenter.show_plan(plan)
        if not self.prompt.ask("Do you want to proceed?"):
            return self._abort()

        if plan.linked_issue_refs:
            self.state = GateState.SECOND_CONFIRMATION_PENDING
            self.presenter.show_linked_issues(plan.linked_issue_refs)
            if not self.prompt.ask("Are you absolutely sure you want to proceed?"):
                return self._abort()

        self.state = GateState.READY_TO_EXECUTE
        return True


class DeletionExecutor:
    """Deletes approved projects one by one, each behind a cancellable countdown."""

    def __init__(self, client, org_id: str, presenter, countdown: int = DELETE_COUNTDOWN, tick: float = 1.0,
                 cancel_event: Optional[threading.Event] = None, fail_fast: bool = False):
        self.client = client
        self.org_id = org_id
        self.presenter = presenter
        self.countdown = countdown
        self.tick = tick
        self.cancel_event = cancel_event or threading.Event()
        self.fail_fast = fail_fast

    def _run_countdown(self) -> bool:
        """Tick down before a delete; False once cancelled."""
        try:
            for remaining in range(self.countdown, 0, -1):
                if self.cancel_event.is_set():
                    return False
                self.presenter.countdown_tick(remaining)
                if self.cancel_event.wait(self.tick):
                    return False
        except KeyboardInterrupt:
            self.cancel_event.set()
            return False
        return not self.cancel_event.is_set()

    def execute(self, projects: Sequence[ProjectInfo]) -> Dict[str, List[str]]:
        ordered = sorted(projects, key=lambda p: (p.name, p.id))
        results = _new_results()
        padding = max((len(p.name) for p in ordered), default=0)

        for index, project in enumerate(ordered):
            self.presenter.deletion_started(project.name.ljust(padding))

            if not self._run_countdown():
                results['skipped'].extend(p.id for p in ordered[index:])
                logger.warning(f"Deletion cancelled, {len(results['skipped'])} projects left in place")
                self.presenter.deletion_cancelled(len(results['skipped']))
                break

            try:
                with deferred_interrupt(self.cancel_event):
                    self.client.delete_project(self.org_id, project.id)
            except DeletionError as e:
                results['failed'].append(project.id)
                logger.error(f"Failed to delete project {project.name} ({project.id}): {e}")
                self.presenter.item_failed(e)
                if self.fail_fast:
                    results['skipped'].extend(p.id for p in ordered[index + 1:])
                    break
                continue

            results['successful'].append(project.id)
            logger.info(f"Deleted project {project.name} ({project.id})")
            self.presenter.item_deleted()

        logger.info(f"Project deletion finished. Successful: {len(results['successful'])}, "
                    f"Failed: {len(results['failed'])}, Skipped: {len(results['skipped'])}")
        return results


def find_orphan_targets(projects: Iterable[ProjectInfo], targets: Iterable[TargetInfo]) -> Tuple[TargetInfo, ...]:
    """Targets no project points at, ordered by display name."""
    projects = list(projects)
    orphans = [
        target for target in targets
        if not any(same_identifier(project.target_relationship_id, target.id) for project in projects)
    ]
    return tuple(sorted(orphans, key=lambda t: (t.display_name, t.id)))


class TargetAuditor:
    """Finds targets that no longer produce any project and offers to delete them."""

    def __init__(self, client, prompt, presenter, cancel_event: Optional[threading.Event] = None,
                 fail_fast: bool = False):
        self.client = client
        self.prompt = prompt
        self.presenter = presenter
        self.cancel_event = cancel_event or threading.Event()
        self.fail_fast = fail_fast

    def audit(self, org_id: str) -> Tuple[TargetInfo, ...]:
        projects = self.client.list_projects(org_id)
        targets = self.client.list_targets(org_id, include_empty=True)
        self.presenter.notice(f"Got {len(projects)} projects and {len(targets)} targets.")
        orphans = find_orphan_targets(projects, targets)
        logger.info(f"{len(orphans)} of {len(targets)} targets in org {org_id} have no projects")
        return orphans

    def run(self, org_id: str, dry_run: bool = False) -> Dict[str, List[str]]:
        results = _new_results()
        orphans = self.audit(org_id)
        if not orphans:
            self.presenter.notice("No empty targets found.")
            return results

        self.presenter.show_orphans(orphans)
        if dry_run or not self.prompt.ask("Do you want to delete these targets?"):
            return results

        padding = max(len(t.display_name) for t in orphans)
        for index, target in enumerate(orphans):
            if self.cancel_event.is_set():
                results['skipped'].extend(t.id for t in orphans[index:])
                self.presenter.deletion_cancelled(len(results['skipped']))
                break

            self.presenter.deletion_started(target.display_name.ljust(padding))
            try:
                with deferred_interrupt(self.cancel_event):
                    self.client.delete_target(org_id, target.id)
            except DeletionError as e:
                results['failed'].append(target.id)
                logger.error(f"Failed to delete target {target.display_name} ({target.id}): {e}")
                self.presenter.item_failed(e)
                if self.fail_fast:
                    results['skipped'].extend(t.id for t in orphans[index + 1:])
                    break
                continue

            results['successful'].append(target.id)
            self.presenter.item_deleted()

        logger.info(f"Target deletion finished. Successful: {len(results['successful'])}, "
                    f"Failed: {len(results['failed'])}, Skipped: {len(results['skipped'])}")
        return results
