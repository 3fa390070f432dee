"""
Snyk Project Pruner

Lists the projects of a Snyk organization grouped by the date they were last
monitored from the CLI, deletes projects not monitored since a cutoff date,
and removes targets that no longer have any projects.

Usage:
    snyk-project-pruner                              # list orgs
    snyk-project-pruner my-org                       # list projects by monitored date
    snyk-project-pruner my-org --delete 2024-01-31   # delete projects monitored on or before the date
    snyk-project-pruner my-org --targets             # also remove empty targets

Safety Features:
    - Projects never monitored from the CLI are never deleted
    - Jira issues linked to doomed projects are listed and need a second confirmation
    - Every project deletion is preceded by a countdown (Control+C to stop)
    - Dry-run mode to preview changes
    - Comprehensive logging of all operations
"""

import argparse
import datetime
import logging
import sys
import threading
from pathlib import Path
from typing import Optional

from .client import SnykClient
from .config import DEFAULT_API_VERSION, DEFAULT_REGION, REGION_URLS, PrunerConfig, resolve_token
from .display import ConsolePresenter, ConsolePrompt
from .exceptions import AuthError, NetworkError, OrgNotFound, PrunerError
from .models import Org
from .pruner import (
    DeletionExecutor,
    GateState,
    ProjectInventory,
    SafetyGate,
    TargetAuditor,
    plan_deletion,
    resolve_org,
)

logger = logging.getLogger(__name__)


def setup_logging(log_dir: Path, verbose: bool = False) -> Path:
    """Log everything to a timestamped file; only warnings reach the console unless verbose."""
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"project_pruning_{timestamp}.log"

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.INFO if verbose else logging.WARNING)
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.INFO)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[file_handler, console],
        force=True,
    )
    logger.info(f"Logging initialized. Log file: {log_file}")
    return log_file


def _iso_date(value: str) -> datetime.date:
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not a date in YYYY-MM-DD format")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snyk-project-pruner",
        description="Delete stale Snyk projects and empty targets from an organization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List the organizations your credential can see
  snyk-project-pruner

  # Show projects grouped by the date they were last monitored
  snyk-project-pruner my-org

  # Preview what a cutoff would delete, including linked Jira issues
  snyk-project-pruner my-org --delete 2024-01-31 --dry-run

  # Delete projects monitored on or before 2024-01-31, then empty targets
  snyk-project-pruner my-org --delete 2024-01-31 --targets
        """
    )

    parser.add_argument('org', nargs='?', help='Organization ID or slug to work with')
    parser.add_argument('--token', help='Snyk API token (default: SNYK_TOKEN or the Snyk CLI configuration)')
    parser.add_argument('--delete', type=_iso_date, metavar='YYYY-MM-DD',
                        help='Delete projects last monitored on or before this date')
    parser.add_argument('--targets', action='store_true', help='Also delete targets that have no projects')
    parser.add_argument('--region', default=DEFAULT_REGION, choices=sorted(REGION_URLS),
                        help=f'Snyk region (default: {DEFAULT_REGION})')
    parser.add_argument('--api-version', default=DEFAULT_API_VERSION,
                        help=f'REST API version (default: {DEFAULT_API_VERSION})')
    parser.add_argument('--dry-run', action='store_true', help='Show what would be deleted without deleting')
    parser.add_argument('--fail-fast', action='store_true', help='Stop at the first failed deletion')
    parser.add_argument('--log-dir', type=Path, default=Path('logs'), help='Directory for log files (default: logs)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Show info logs on the console')
    return parser


def list_projects(client, org: Org, config: PrunerConfig, presenter) -> int:
    presenter.notice(f"Working with org: {org.slug} ({org.id})\n")
    inventory = ProjectInventory(client, config.tz)
    projects = inventory.fetch(org.id)
    presenter.notice(f"Got {len(projects)} projects.\n")
    presenter.show_buckets(inventory.group(projects))

    yesterday = datetime.date.today() - datetime.timedelta(days=1)
    presenter.notice(f"\nUse command line parameter '--delete' to delete projects monitored before a certain date. "
                     f"E.g., '--delete {yesterday}'")
    return 0


def prune_projects(client, org: Org, cutoff: datetime.date, config: PrunerConfig, prompt, presenter,
                   cancel_event: threading.Event) -> int:
    inventory = ProjectInventory(client, config.tz)
    presenter.notice("Fetching project list... ")
    projects = inventory.fetch(org.id)
    presenter.notice(f"Got {len(projects)} projects.\n")
    presenter.show_buckets(inventory.group(projects, cutoff))

    plan = plan_deletion(projects, cutoff, config.tz)
    if plan.is_empty:
        presenter.no_eligible_projects(cutoff)
        return 0

    gate = SafetyGate(client, prompt, presenter)
    plan = gate.attach_issue_refs(plan, org.id)

    if config.dry_run:
        presenter.show_plan(plan)
        if plan.linked_issue_refs:
            presenter.show_linked_issues(plan.linked_issue_refs)
        presenter.notice("\nDry run: nothing was deleted.")
        return 0

    if not gate.confirm(plan):
        presenter.notice("Deletion cancelled.")
        # Declining the linked-issues warning ends the whole run.
        if gate.aborted_at is GateState.SECOND_CONFIRMATION_PENDING:
            cancel_event.set()
        return 0

    presenter.notice("Deleting projects... (press Control+C to interrupt)")
    executor = DeletionExecutor(
        client, org.id, presenter,
        countdown=config.delete_countdown,
        tick=config.countdown_tick,
        cancel_event=cancel_event,
        fail_fast=config.fail_fast,
    )
    results = executor.execute(plan.eligible_projects)
    presenter.show_summary("projects", results)
    return 1 if results['failed'] else 0


def prune_targets(client, org: Org, config: PrunerConfig, prompt, presenter,
                  cancel_event: threading.Event) -> int:
    presenter.notice("\nFetching projects and targets... ")
    auditor = TargetAuditor(client, prompt, presenter, cancel_event=cancel_event, fail_fast=config.fail_fast)
    results = auditor.run(org.id, dry_run=config.dry_run)
    if results['successful'] or results['failed'] or results['skipped']:
        presenter.show_summary("targets", results)
    return 1 if results['failed'] else 0


def main(argv: Optional[list] = None, prompt=None, presenter=None) -> int:
    """Main function to run the pruning process."""
    args = build_parser().parse_args(argv)
    prompt = prompt or ConsolePrompt()
    presenter = presenter or ConsolePresenter()

    setup_logging(args.log_dir, args.verbose)

    if args.token is None:
        presenter.notice("Snyk API token was not provided, we will attempt to automatically pick it up "
                         "from the local configuration")
    try:
        token, auth_scheme = resolve_token(args.token)
    except AuthError as e:
        presenter.error(str(e))
        return 1

    config = PrunerConfig(
        token=token,
        auth_scheme=auth_scheme,
        region=args.region,
        api_version=args.api_version,
        fail_fast=args.fail_fast,
        dry_run=args.dry_run,
    )
    client = SnykClient.from_config(config)
    cancel_event = threading.Event()

    presenter.notice("Fetching Snyk org info... ")
    try:
        orgs = client.list_orgs()
    except (AuthError, NetworkError) as e:
        logger.error(f"Failed to list organizations: {e}")
        presenter.error(str(e))
        presenter.notice("We were not successful working with the Snyk API. The token may be invalid or expired.")
        presenter.notice("\nTry running 'snyk auth' (or pass a fresh --token), and run this tool again.\n")
        return 1
    presenter.notice(f"Got {len(orgs)} orgs.")

    if args.org is None:
        presenter.show_orgs(orgs)
        return 0

    try:
        org = resolve_org(args.org, orgs)
    except OrgNotFound as e:
        presenter.error(str(e))
        return 1

    try:
        if args.delete:
            exit_code = prune_projects(client, org, args.delete, config, prompt, presenter, cancel_event)
        else:
            exit_code = list_projects(client, org, config, presenter)

        if args.targets and not cancel_event.is_set():
            exit_code = max(exit_code, prune_targets(client, org, config, prompt, presenter, cancel_event))
    except PrunerError as e:
        logger.error(f"Aborting: {e}")
        presenter.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted by operator")
        presenter.notice("\nInterrupted.")
        return 130

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
