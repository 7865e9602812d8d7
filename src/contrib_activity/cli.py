"""Command-line interface for contrib-activity."""

import logging
from pathlib import Path

import typer
from rich import print
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from contrib_activity import (
    ActivityAggregator,
    AggregationConfig,
    AggregationResult,
    Config,
    ConfigurationError,
    ContributorActivityError,
    ProgressEvent,
    TimestampPolicy,
)
from contrib_activity.models import (
    EventPayload,
    IssuePayload,
    PullRequestPayload,
    ReviewPayload,
)
from contrib_activity.progress import ProgressEventType

app = typer.Typer(
    name="contrib-activity",
    help="Aggregate a GitHub user's pull requests, issues, reviews and comments into one timeline",
    no_args_is_help=True,
)

console = Console()

KIND_STYLES = {
    "pr_opened": "green",
    "pr_closed": "red",
    "pr_merged": "magenta",
    "issue_opened": "yellow",
    "issue_closed": "red",
    "review_submitted": "cyan",
    "comment_created": "blue",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _validate_cli_params(
    repos: list[str],
    max_events: int | None,
    max_parents: int,
    timestamp_policy: str,
) -> None:
    """Validate CLI parameters before creating config.

    Raises:
        typer.BadParameter: If any parameter is invalid
    """
    errors = []

    for repo in repos:
        owner, _, name = repo.partition("/")
        if not owner or not name or "/" in name:
            errors.append(f"--repo must be 'owner/name', got: {repo}")

    if max_events is not None and max_events < 1:
        errors.append("--max-events must be positive")

    if max_parents < 1:
        errors.append("--max-parents must be positive")

    policies = [policy.value for policy in TimestampPolicy]
    if timestamp_policy not in policies:
        errors.append(
            f"Invalid --timestamp-policy: {timestamp_policy}. "
            f"Must be one of {', '.join(policies)}"
        )

    if errors:
        raise typer.BadParameter("\n".join(errors))


def _print_progress(event: ProgressEvent) -> None:
    style = "red" if event.event_type is ProgressEventType.ERROR else "dim"
    print(f"[{style}]{event.message}[/{style}]")


def _print_activity(result: AggregationResult) -> None:
    """Print the aggregated timeline and statistics to the console."""
    summary_text = (
        f"[bold cyan]Aggregation Complete![/bold cyan]\n\n"
        f"[white]User:[/white] [green]{result.login or 'unknown'}[/green]\n"
        f"[white]Events:[/white] [yellow]{result.total}[/yellow]"
    )
    if len(result.events) < result.total:
        summary_text += f" [dim](showing {len(result.events)} most recent)[/dim]"
    console.print(Panel.fit(summary_text, title="GitHub Activity"))

    if result.message:
        print(f"[yellow]{result.message}[/yellow]")

    if result.events:
        timeline = Table(title="Timeline", show_header=True, header_style="bold magenta")
        timeline.add_column("When", style="dim", no_wrap=True)
        timeline.add_column("Kind", no_wrap=True)
        timeline.add_column("Repository", style="cyan")
        timeline.add_column("Subject")

        for event in result.events:
            style = KIND_STYLES.get(event.kind.value, "white")
            timeline.add_row(
                event.timestamp.strftime("%Y-%m-%d %H:%M"),
                f"[{style}]{event.kind.value}[/{style}]",
                event.repository.full_name,
                _describe(event.payload),
            )
        console.print(timeline)

    summary = result.summary
    if summary and summary.total_events:
        stats_table = Table(
            title="Activity Statistics", show_header=True, header_style="bold magenta"
        )
        stats_table.add_column("Metric", style="cyan", no_wrap=True)
        stats_table.add_column("Value", style="green")

        stats_table.add_row("Open Pull Requests", str(summary.open_pull_requests))
        stats_table.add_row("Open Issues", str(summary.open_issues))
        stats_table.add_row("Reviews", str(summary.reviews))
        stats_table.add_row("Comments", str(summary.comments))
        stats_table.add_row("Repositories", str(summary.repositories_active))
        if summary.most_active_repository:
            stats_table.add_row("Most Active Repository", summary.most_active_repository)
        console.print(stats_table)

    diagnostics = result.diagnostics
    console.print(
        f"[dim]Processed {diagnostics.processed} records: "
        f"{diagnostics.skipped} skipped, {diagnostics.irrelevant} not yours, "
        f"{diagnostics.duplicates} duplicates, "
        f"{diagnostics.failed_requests} failed requests[/dim]"
    )
    if diagnostics.failed_repositories:
        print(
            "[red]Could not fetch: "
            f"{', '.join(diagnostics.failed_repositories)}[/red]"
        )


def _describe(payload: EventPayload) -> str:
    """One-line description of an event payload."""
    if isinstance(payload, PullRequestPayload):
        return f"PR #{payload.number} {payload.title or ''}".strip()
    if isinstance(payload, IssuePayload):
        return f"Issue #{payload.number} {payload.title or ''}".strip()
    if isinstance(payload, ReviewPayload):
        return f"{payload.state} on PR #{payload.pr_number}"
    target = payload.associated_with
    label = "PR" if target.type == "pr" else "Issue"
    return f"comment on {label} #{target.number}"


def _save_result_to_file(result: AggregationResult, output_path: str) -> None:
    """Save the aggregation result to a JSON file."""
    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(result.to_json(ensure_ascii=False), encoding="utf-8")


@app.command()
def version() -> None:
    """Show the version and exit."""
    from contrib_activity import __version__

    print(f"contrib-activity {__version__}")


@app.command()
def activity(
    repos: list[str] | None = typer.Option(
        None,
        "--repo",
        "-r",
        help="Repository to aggregate over as owner/name (repeatable)",
    ),
    login: str | None = typer.Option(
        None,
        "--login",
        "-l",
        help="GitHub login whose activity is collected (defaults to the token owner)",
    ),
    token: str | None = typer.Option(
        None,
        "--token",
        "-t",
        help="GitHub Personal Access Token (or set GITHUB_TOKEN env var)",
        envvar="GITHUB_TOKEN",
    ),
    output: str | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file (JSON format). If not specified, prints to stdout",
    ),
    max_events: int | None = typer.Option(
        None,
        "--max-events",
        help="Only return the N most recent events (the total is still reported)",
    ),
    max_parents: int = typer.Option(
        50,
        "--max-parents",
        help="Pull requests/issues per repository whose reviews and comments are fetched",
    ),
    no_activity_feed: bool = typer.Option(
        False,
        "--no-activity-feed",
        help="Skip the account activity feed and only read per-repository endpoints",
    ),
    timestamp_policy: str = typer.Option(
        TimestampPolicy.LIFECYCLE.value,
        "--timestamp-policy",
        help="Timestamp used for PR/issue events: lifecycle, updated or created",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug logging"
    ),
) -> None:
    """Aggregate a user's activity across repositories into one timeline."""
    _configure_logging(verbose)
    repos = repos or []
    _validate_cli_params(repos, max_events, max_parents, timestamp_policy)

    config = Config()

    # Get token from CLI arg, env var, or stored config
    if not token:
        token = config.get_token()

    if not token:
        print("[yellow]No GitHub token found.[/yellow]")
        print(
            "You can get a Personal Access Token from: https://github.com/settings/tokens"
        )

        if Confirm.ask("Would you like to enter a token now?"):
            token = Prompt.ask(
                "[cyan]Enter your GitHub Personal Access Token", password=True
            )

            if token and Confirm.ask("Save this token for future use?"):
                config.set_token(token)

        if not token:
            print("[red]Error: GitHub token is required to continue[/red]")
            raise typer.Exit(1)

    if not login:
        login = config.get_default_login()

    if not repos and no_activity_feed:
        print("[red]Error: nothing to aggregate without --repo or the activity feed[/red]")
        raise typer.Exit(1)

    try:
        builder = (
            AggregationConfig.builder()
            .max_parent_records(max_parents)
            .timestamp_policy(timestamp_policy)
        )
        if max_events:
            builder = builder.max_events(max_events)
        if no_activity_feed:
            builder = builder.without_activity_feed()

        aggregator = ActivityAggregator(token, builder.build())
        result = aggregator.aggregate(repos, login, _print_progress)

    except ConfigurationError as e:
        print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)
    except ContributorActivityError as e:
        print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        print("\n[yellow]Aggregation cancelled by user[/yellow]")
        raise typer.Exit(130)

    if not result.authenticated:
        print(f"[red]Not authenticated: {result.message}[/red]")
        print(
            "[yellow]Please check your token and try again, or run "
            "'contrib-activity auth' to set up a new token[/yellow]"
        )
        raise typer.Exit(1)

    if output:
        _save_result_to_file(result, output)
        print(f"[green]✓ {result.total} events saved to {output}[/green]")
    else:
        _print_activity(result)


@app.command()
def auth() -> None:
    """Manage GitHub authentication (interactive setup)."""
    config = Config()

    print("[bold cyan]GitHub Authentication Setup[/bold cyan]")
    print()
    print("To use contrib-activity, you need a GitHub Personal Access Token.")
    print("You can create one at: [link]https://github.com/settings/tokens[/link]")
    print()
    print("[dim]Required scopes: public_repo (or repo for private repos)[/dim]")
    print()

    current_token = config.get_token()
    if current_token:
        print("[green]✓[/green] You already have a token stored locally")

        if not Confirm.ask("Would you like to replace it with a new token?"):
            return

    token = Prompt.ask("[cyan]Enter your GitHub Personal Access Token", password=True)

    if not token:
        print("[red]No token provided[/red]")
        return

    config.set_token(token)

    default_login = Prompt.ask(
        "[cyan]Default GitHub login (leave empty to use the token owner)",
        default="",
        show_default=False,
    )
    if default_login:
        config.set_default_login(default_login)

    print("[green]✓[/green] Authentication setup complete!")
    print("You can now use contrib-activity without specifying a token.")


@app.command()
def auth_status() -> None:
    """Show current authentication status."""
    config = Config()
    info = config.get_config_info()

    table = Table(title="Authentication Status")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Config File", info["config_file"])
    table.add_row("GitHub Token", "✓ Yes" if info["has_token"] else "✗ No")
    table.add_row("Default Login", info["default_login"] or "(token owner)")

    if info["config_exists"]:
        table.add_row("File Permissions", info["config_file_permissions"] or "unknown")

    print(table)

    if not info["has_token"]:
        print()
        print(
            "[yellow]No GitHub token found. Run [bold]contrib-activity auth[/bold] to set up authentication.[/yellow]"
        )


@app.command()
def auth_remove() -> None:
    """Remove stored authentication token."""
    config = Config()

    if not config.get_token():
        print("[yellow]No token is currently stored[/yellow]")
        return

    if Confirm.ask("[red]Are you sure you want to remove the stored token?[/red]"):
        config.remove_token()
        print("[green]✓[/green] Token removed successfully")
    else:
        print("Token removal cancelled")


if __name__ == "__main__":
    app()
