"""Console output and yes/no prompts for the pruner."""

from typing import Dict, Iterable, List, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from .models import DateBucket, DeletionPlan, Org, TargetInfo

PLACEHOLDER_BLANK = "--"
DELETED_MARK = "\U0001F480"  # skull
WILL_BE_DELETED = "[bold bright_red]WILL BE DELETED[/]\n\n"

# Shared console for all pruner output
console = Console(highlight=False)


class ConsolePrompt:
    """Asks yes/no questions on the terminal."""

    def __init__(self, out: Optional[Console] = None):
        self.console = out or console

    def ask(self, text: str) -> bool:
        try:
            return Confirm.ask(f"[bold]{escape(text)}[/]", default=False, console=self.console)
        except EOFError:
            return False


class ConsolePresenter:
    """Renders pruning state for a human operator."""

    def __init__(self, out: Optional[Console] = None):
        self.console = out or console

    def notice(self, text: str):
        self.console.print(text, markup=False)

    def error(self, text: str):
        self.console.print(f"[bright_red]Error: {escape(text)}[/]")

    def show_orgs(self, orgs: List[Org]):
        self.console.print("List of all Snyk orgs:\n")
        table = Table(show_header=True)
        table.add_column("ID", style="dim")
        table.add_column("Slug", style="cyan")
        table.add_column("Name")
        for org in orgs:
            table.add_row(escape(org.id), escape(org.slug), escape(org.name))
        self.console.print(table)
        if orgs:
            self.console.print(f"\n[bold]To select an org to work with, add its ID or slug to the command line. "
                               f"E.g., '{escape(orgs[0].slug)}'[/]")

    def bucket_table(self, buckets: List[DateBucket]) -> Table:
        """Marked buckets are red, other dated buckets green, never-monitored projects unstyled."""
        table = Table(show_header=True, show_lines=True)
        table.add_column("Monitored on")
        table.add_column("Projects count", justify="right")
        table.add_column("Latest projects")

        for bucket in buckets:
            prefix = WILL_BE_DELETED if bucket.marked else ""
            names = [escape(p.name) for p in bucket.preview]
            if bucket.hidden:
                names.append(f"... ({bucket.hidden} more) ...")
            day = bucket.monitored_on.isoformat() if bucket.monitored_on else PLACEHOLDER_BLANK

            style = None
            if bucket.monitored_on is not None:
                style = "red" if bucket.marked else "green"
            table.add_row(prefix + day, prefix + str(bucket.count), prefix + "\n".join(names), style=style)
        return table

    def show_buckets(self, buckets: List[DateBucket]):
        self.console.print(self.bucket_table(buckets))

    def show_plan(self, plan: DeletionPlan):
        self.console.print(f"[bold bright_red]WARNING! ALL {len(plan.eligible_projects)} PROJECTS MARKED IN RED "
                           f"(MONITORED ON OR BEFORE {plan.cutoff_date}) WILL BE DELETED! "
                           f"THIS ACTION CANNOT BE REVERTED![/]")

    def show_linked_issues(self, issue_ids: Iterable[str]):
        issue_ids = sorted(issue_ids)
        self.console.print(f"[bold bright_yellow]WARNING: There are {len(issue_ids)} Jira issues associated "
                           f"with the projects on the deletion list![/]")
        self.console.print("[italic bright_yellow]These issues will remain in place and require manual processing.[/]")
        self.console.print(f"JQL: id in ({', '.join(issue_ids)})", markup=False)

    def no_eligible_projects(self, cutoff):
        self.console.print(f"[yellow]There were no projects monitored on or before {cutoff}.[/]")

    def deletion_started(self, name: str):
        self.console.print(f"[yellow]Deleting [bright_yellow]{escape(name)}[/] [/]", end="")

    def countdown_tick(self, remaining: int):
        self.console.print(f"[yellow]{remaining}... [/]", end="")

    def item_deleted(self):
        self.console.print(DELETED_MARK)

    def item_failed(self, error: Exception):
        self.console.print(f"[bright_red]failed: {escape(str(error))}[/]")

    def deletion_cancelled(self, remaining: int):
        self.console.print(f"\n[yellow]Interrupted. {remaining} items were left in place.[/]")

    def orphan_table(self, targets: Sequence[TargetInfo]) -> Table:
        table = Table(show_header=True)
        table.add_column("Target", style="cyan")
        table.add_column("Created")
        table.add_column("Private?")
        table.add_column("ID", style="dim")
        for target in targets:
            created = target.created_at.astimezone().date().isoformat() if target.created_at else PLACEHOLDER_BLANK
            table.add_row(escape(target.display_name), created, str(target.is_private), escape(target.id))
        return table

    def show_orphans(self, targets: Sequence[TargetInfo]):
        self.console.print("\nEmpty targets detected:\n")
        self.console.print(self.orphan_table(targets))
        self.console.print(f"[bold bright_red]WARNING! Deleting these {len(targets)} targets cannot be reverted![/]")

    def show_summary(self, kind: str, results: Dict[str, List[str]]):
        self.console.print(f"\n[bold]Final Results ({kind}):[/]")
        self.console.print(f"  Successfully deleted: [green]{len(results['successful'])}[/]")
        self.console.print(f"  Failed to delete: [red]{len(results['failed'])}[/]")
        if results['skipped']:
            self.console.print(f"  Left in place: [yellow]{len(results['skipped'])}[/]")
        if results['failed']:
            self.console.print("\n[bright_red]Failed deletions:[/]")
            for item_id in results['failed']:
                self.console.print(f"  - {escape(item_id)}")
