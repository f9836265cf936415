"""CLI entry point for codeguard."""

from __future__ import annotations

import json
import logging
import secrets
import uuid
from pathlib import Path

import anthropic
import typer
from rich import print as rprint
from rich.logging import RichHandler
from rich.table import Table

from codeguard.alerts.engine import AlertRuleEngine
from codeguard.config import Config
from codeguard.detection.classifier import ClaudeClassifier
from codeguard.errors import CodeGuardError
from codeguard.github.client import GitHubClient
from codeguard.github.fetcher import Fetcher
from codeguard.github.webhooks import receive_webhook
from codeguard.models import ALERT_TRANSITIONS, SCAN_TYPES, Repository
from codeguard.scan.orchestrator import ScanOrchestrator
from codeguard.scoring.adoption import AdoptionMetrics, calculate_adoption_score
from codeguard.storage.db import get_connection
from codeguard.storage.store import Store

app = typer.Typer(help="Track AI-generated code and review governance across GitHub repositories.")

ZONE_COLORS = {"healthy": "green", "caution": "yellow", "critical": "red"}
SEVERITY_COLORS = {"high": "red", "medium": "yellow", "low": "blue"}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _load_config(need_github: bool = False) -> Config:
    """Load config and exit with the relevant issues if it is unusable."""
    config = Config.load()
    issues = [
        issue for issue in config.validate()
        if need_github or "CODEGUARD_GITHUB_TOKEN" not in issue
    ]
    if issues:
        for issue in issues:
            rprint(f"[red]Config error: {issue}[/red]")
        raise typer.Exit(1)
    return config


def _open_store(config: Config, db_path: str | None) -> Store:
    return Store(get_connection(Path(db_path) if db_path else config.db_path))


def _build_orchestrator(config: Config, store: Store) -> ScanOrchestrator:
    def source_factory(repo: Repository) -> Fetcher:
        return Fetcher(GitHubClient(config.github_token, repo.full_name), repo.default_branch)

    classifier = None
    if config.ml_enabled:
        classifier = ClaudeClassifier(anthropic.Anthropic(api_key=config.anthropic_api_key))

    return ScanOrchestrator(
        store,
        source_factory,
        classifier=classifier,
        alert_engine=AlertRuleEngine(
            store,
            score_drop_threshold=config.score_drop_threshold,
            ai_loc_alert_percentage=config.ai_loc_alert_percentage,
        ),
        scan_timeout_minutes=config.scan_timeout_minutes,
        max_files=config.max_files_per_scan,
        max_prs=config.max_prs_per_scan,
        requeue_stale_scans=config.requeue_timed_out_scans,
    )


@app.command()
def connect(
    full_name: str = typer.Argument(help="GitHub repository (owner/repo)"),
    webhook_secret: str = typer.Option(
        None, "--webhook-secret", help="Webhook secret (generated when omitted)"
    ),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Connect a GitHub repository to the configured company."""
    config = _load_config(need_github=True)
    client = GitHubClient(token=config.github_token, repo=full_name)
    store = _open_store(config, db_path)

    try:
        try:
            gh_repo = client.repo
        except CodeGuardError as e:
            rprint(f"[red]{e.message}[/red]")
            raise typer.Exit(1)

        found = store.find_repositories_by_github_id(
            gh_repo.id, company_id=config.company_id, active_only=False
        )
        existing = found[0] if found else None
        if existing and existing.is_active:
            rprint(f"[yellow]{full_name} is already connected as {existing.id}[/yellow]")
            return

        repo = Repository(
            id=existing.id if existing else str(uuid.uuid4()),
            company_id=config.company_id,
            github_id=gh_repo.id,
            full_name=gh_repo.full_name,
            default_branch=gh_repo.default_branch or "main",
            language=gh_repo.language,
            webhook_secret=webhook_secret or secrets.token_hex(20),
        )
        store.save_repository(repo)
        rprint(f"[green bold]Connected {repo.full_name}[/green bold] as {repo.id}")
        rprint(f"  Webhook secret: {repo.webhook_secret}")
        rprint("  Configure a GitHub webhook for push, pull_request and pull_request_review events.")
    finally:
        client.close()
        store.close()


@app.command()
def disconnect(
    repository_id: str = typer.Argument(help="Repository id"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Unlink a repository. Scan and score history is kept."""
    config = _load_config()
    store = _open_store(config, db_path)
    try:
        if not store.deactivate_repository(config.company_id, repository_id):
            rprint(f"[red]Repository {repository_id} not found[/red]")
            raise typer.Exit(1)
        rprint(f"Disconnected {repository_id}")
    finally:
        store.close()


@app.command()
def scan(
    repository_id: str = typer.Argument(None, help="Repository id (all active repositories when omitted)"),
    scan_type: str = typer.Option("full", "--type", "-t", help=f"Scan type: {', '.join(SCAN_TYPES)}"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Queue scans. Run 'codeguard process' to work through them."""
    config = _load_config()
    store = _open_store(config, db_path)
    try:
        orchestrator = _build_orchestrator(config, store)
        result = orchestrator.trigger_scans(
            config.company_id, repository_id, scan_type=scan_type, triggered_by="cli"
        )
        color = "green" if result.success else "red"
        rprint(f"[{color}]{result.message}[/{color}]")
        for scan_id in result.scan_ids:
            rprint(f"  {scan_id}")
        if not result.success:
            raise typer.Exit(1)
    finally:
        store.close()


@app.command()
def process(
    max_scans: int = typer.Option(None, "--max", help="Stop after this many scans"),
    all_companies: bool = typer.Option(False, "--all-companies", help="Work through every tenant's queue"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Process pending scans until the queue is empty."""
    config = _load_config(need_github=True)
    store = _open_store(config, db_path)
    try:
        orchestrator = _build_orchestrator(config, store)
        company_id = None if all_companies else config.company_id
        results = orchestrator.drain(company_id, max_scans=max_scans)

        if not results:
            rprint("No pending scans.")
            return
        failed = 0
        for result in results:
            if result.success:
                rprint(f"[green]{result.message}[/green]")
            else:
                failed += 1
                rprint(f"[red]{result.message}: {result.error} ({result.error_code})[/red]")
        rprint(f"\nProcessed [bold]{len(results)}[/bold] scan(s), {failed} failed")
        if failed:
            raise typer.Exit(1)
    finally:
        store.close()


@app.command()
def webhook(
    payload_file: Path = typer.Argument(help="JSON payload of the delivery", exists=True),
    event: str = typer.Option(..., "--event", "-e", help="X-GitHub-Event value"),
    signature: str = typer.Option(None, "--signature", help="X-Hub-Signature-256 value"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Replay a GitHub webhook delivery from a file."""
    config = Config.load()
    store = _open_store(config, db_path)
    try:
        headers = {"X-GitHub-Event": event}
        if signature:
            headers["X-Hub-Signature-256"] = signature
        response = receive_webhook(
            store, _build_orchestrator(config, store), headers, payload_file.read_bytes()
        )
        color = "green" if response.status_code < 400 else "red"
        rprint(f"[{color}]{response.status_code}: {response.message}[/{color}]")
        if response.status_code >= 400:
            raise typer.Exit(1)
    finally:
        store.close()


@app.command()
def scores(
    repository_id: str = typer.Option(None, "--repo", help="Repository id (company score when omitted)"),
    history: int = typer.Option(10, help="Number of snapshots to show"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show AI debt score history."""
    config = _load_config()
    store = _open_store(config, db_path)
    try:
        snapshots = store.debt_score_history(config.company_id, repository_id, limit=history)
        if format == "json":
            typer.echo(json.dumps([
                {
                    "score": s.score,
                    "risk_zone": s.risk_zone,
                    "breakdown": s.breakdown,
                    "calculated_at": s.calculated_at.isoformat(),
                }
                for s in snapshots
            ], indent=2))
            return
        if not snapshots:
            rprint("[yellow]No scores yet. Run a scan first.[/yellow]")
            return

        latest = snapshots[0]
        color = ZONE_COLORS[latest.risk_zone]
        rprint(f"[bold]AI debt score:[/bold] [{color}]{latest.score}/100 ({latest.risk_zone})[/{color}]")
        for name, value in latest.breakdown.items():
            if name != "weights":
                rprint(f"  {name}: {value}")

        if len(snapshots) > 1:
            table = Table("Calculated", "Score", "Zone")
            for s in snapshots:
                table.add_row(s.calculated_at.strftime("%Y-%m-%d %H:%M"), str(s.score), s.risk_zone)
            rprint(table)
    finally:
        store.close()


@app.command()
def alerts(
    status: str = typer.Option("active", help="Filter by status, or 'all'"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """List alerts."""
    config = _load_config()
    store = _open_store(config, db_path)
    try:
        found = store.list_alerts(config.company_id, status=None if status == "all" else status)
        if not found:
            rprint("No alerts.")
            return
        table = Table("Id", "Severity", "Category", "Status", "Title")
        for alert in found:
            color = SEVERITY_COLORS.get(alert.severity, "white")
            table.add_row(
                alert.id, f"[{color}]{alert.severity}[/{color}]", alert.category,
                alert.status, alert.title,
            )
        rprint(table)
    finally:
        store.close()


@app.command()
def alert(
    alert_id: str = typer.Argument(help="Alert id"),
    status: str = typer.Argument(help="New status: acknowledged, dismissed or resolved"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Acknowledge, dismiss or resolve an alert."""
    if status not in ALERT_TRANSITIONS:
        rprint(f"[red]Unknown alert status {status!r}[/red]")
        raise typer.Exit(1)

    config = _load_config()
    store = _open_store(config, db_path)
    try:
        updated = store.update_alert_status(config.company_id, alert_id, status)
    except CodeGuardError as e:
        rprint(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    finally:
        store.close()
    rprint(f"Alert {updated.id} is now [bold]{updated.status}[/bold]")


@app.command()
def team(
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show per-developer governance scores and team AI adoption."""
    config = _load_config()
    store = _open_store(config, db_path)
    try:
        members = store.current_team_scores(config.company_id)
        if not members:
            rprint("[yellow]No team scores yet. Run a scan first.[/yellow]")
            return

        table = Table("Developer", "Week", "AI usage", "Review", "Risk", "Governance")
        for m in members:
            table.add_row(
                m.github_username, m.period_start, m.ai_usage_level, m.review_quality,
                m.risk_index, str(m.governance_score),
            )
        rprint(table)

        company_score = store.latest_debt_score(config.company_id)
        review_coverage = company_score.breakdown.get("review_coverage", 1.0) if company_score else 1.0
        adoption = calculate_adoption_score(AdoptionMetrics(
            total_team_members=len(members),
            members_using_ai=sum(1 for m in members if m.ai_prs > 0),
            average_governance_score=sum(m.governance_score for m in members) / len(members),
            review_coverage=review_coverage,
        ))
        rprint(f"\n[bold]AI adoption score:[/bold] {adoption}/100")

        for m in members:
            for suggestion in m.coaching_suggestions:
                rprint(f"  [{suggestion['priority']}] {m.github_username}: {suggestion['message']}")
    finally:
        store.close()


if __name__ == "__main__":
    app()
