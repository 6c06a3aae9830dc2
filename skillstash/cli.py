"""Command line interface for Skillstash."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from skillstash import __version__
from skillstash.automation import (
    AutomationContext,
    FlowResult,
    IssueEvent,
    PullRequestEvent,
    ReadinessReport,
    WorkflowRunEvent,
    auto_merge_after_checks,
    author_skill_on_pull_request,
    check_merge_readiness,
    cleanup_research,
    create_skill_from_issue,
    load_event,
    load_label_definitions,
    review_gate,
    select_credentials,
    setup_labels,
)
from skillstash.config import (
    RuntimeSettings,
    StashConfig,
    WorkflowRole,
    load_config,
    resolve_config_path,
    save_config,
)
from skillstash.exceptions import SkillstashError
from skillstash.github import GitHubClient, GitRunner
from skillstash.logging import configure_logging, get_logger
from skillstash.skills import compose_prompt, normalize_skill_name, skill_file_path, write_skill_file
from skillstash.validation import ValidationReport, validate_skills
from skillstash.workflow import resolve_automation_mode, resolve_policy, resolve_workflow

log = get_logger(__name__)

app = typer.Typer(help="Skillstash - manage agent skill packages", no_args_is_help=True)
automation_app = typer.Typer(help="CI entry points driven by GitHub Actions events", no_args_is_help=True)
labels_app = typer.Typer(help="Repository label management", no_args_is_help=True)
app.add_typer(automation_app, name="automation")
app.add_typer(labels_app, name="labels")

RootOption = typer.Option(".", "-r", "--root", help="Repository root")


def _bootstrap(root: str) -> tuple[StashConfig, RuntimeSettings]:
    config = load_config(root)
    settings = RuntimeSettings()
    configure_logging(config.logging, settings.log_level)
    return config, settings


def print_validation_report(report: ValidationReport, console: Console | None = None) -> None:
    """Render the per-skill results and a summary."""
    console = console or Console(highlight=False)
    console.print("\n[bold]Skills Validation Report[/bold]\n")

    if not report.results:
        console.print(f"[dim]No skills found in {report.skills_dir}/[/dim]\n")
        return

    for result in report.results:
        has_issues = bool(result.errors or result.warnings)
        icon = "[red]✗[/red]" if has_issues else "[green]✓[/green]"
        console.print(f"{icon} [bold]{result.skill_name}[/bold]")
        for diagnostic in result.errors:
            console.print(f"  [red]ERROR[/red] {escape(diagnostic.message)}")
            console.print(f"  [dim]{escape(diagnostic.file)}[/dim]")
        for diagnostic in result.warnings:
            console.print(f"  [yellow]WARN[/yellow] {escape(diagnostic.message)}")
            console.print(f"  [dim]{escape(diagnostic.file)}[/dim]")
        if not has_issues:
            console.print("  [dim]All checks passed[/dim]")
        console.print("")

    console.print("[bold]Summary[/bold]")
    console.print(f"  Skills checked: {len(report.results)}")
    console.print(f"  Errors: {report.error_count}")
    console.print(f"  Warnings: {report.warning_count}\n")


def print_readiness_report(report: ReadinessReport, console: Console | None = None) -> None:
    console = console or Console(highlight=False)
    table = Table(title="Merge readiness")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")
    for check in report.checks:
        if check.passed:
            status = "[green]pass[/green]"
        elif check.blocking:
            status = "[red]fail[/red]"
        else:
            status = "[yellow]warn[/yellow]"
        table.add_row(check.name, status, check.message)
    console.print(table)
    console.print(f"Summary: {report.passed_count}/{len(report.checks)} passed")
    if report.warning_count:
        console.print(f"         {report.warning_count} warnings (non-blocking)")


@app.command()
def validate(
    root: str = RootOption,
    skills_dir: str = typer.Option("", "--skills-dir", help="Override the configured skills directory"),
    json_output: bool = typer.Option(False, "--json", help="Output the report as JSON"),
) -> None:
    """Validate every skill package; exit 1 when any package has an error."""
    config, _ = _bootstrap(root)
    if skills_dir:
        config = config.model_copy(update={"skills_dir": skills_dir})

    report = validate_skills(root, config)

    if json_output:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        print_validation_report(report)
    raise typer.Exit(code=report.exit_code)


@app.command()
def resolve(
    labels: list[str] = typer.Option([], "-l", "--label", help="Label attached to the issue or PR"),
    root: str = RootOption,
) -> None:
    """Print the effective policy for a set of labels."""
    config, settings = _bootstrap(root)
    policy = resolve_policy(labels, config)
    payload: dict[str, Any] = policy.to_dict()
    payload["workflow"] = [
        {"role": step.role.value, "agent": step.agent.value} for step in resolve_workflow(config)
    ]
    payload["automation_mode"] = resolve_automation_mode(config, bool(settings.app_token.strip())).value
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def new(
    name: str = typer.Argument(..., help="Skill name; normalized to kebab-case"),
    description: str = typer.Option(..., "-d", "--description", help="What the skill does"),
    sources: str = typer.Option("", "--sources", help="Sources to list in the skill"),
    spec: str = typer.Option("", "--spec", help="Additional spec text"),
    root: str = RootOption,
) -> None:
    """Create a new SKILL.md from a name and description."""
    config, _ = _bootstrap(root)
    normalized = normalize_skill_name(name)
    if not normalized.name:
        typer.echo("Error: unable to derive a kebab-case skill name.", err=True)
        raise typer.Exit(code=1)
    if not description.strip():
        typer.echo("Error: a description is required.", err=True)
        raise typer.Exit(code=1)
    if normalized.changed:
        typer.echo(f"Normalized skill name to {normalized.name}")
    if skill_file_path(normalized.name, root, config).exists():
        typer.echo(f"Error: skill {normalized.name} already exists.", err=True)
        raise typer.Exit(code=1)

    path = write_skill_file(
        root,
        config,
        normalized.name,
        description.strip(),
        sources=sources or None,
        spec=spec or None,
    )
    typer.echo(f"Created {path}")


@app.command("cleanup-research")
def cleanup_research_command(root: str = RootOption) -> None:
    """Remove .research folders from every skill."""
    config, _ = _bootstrap(root)
    for path in cleanup_research(root, config):
        typer.echo(f"Removed {path}")


@app.command()
def init(root: str = RootOption) -> None:
    """Write the default .skillstash/config.yml when none exists."""
    existing = resolve_config_path(root)
    if existing is not None:
        typer.echo(f"Config already exists: {existing}")
        return
    path = save_config(StashConfig(), root)
    typer.echo(f"Created {path}")


@app.command()
def prompt(
    role: WorkflowRole = typer.Argument(..., help="Workflow role whose instructions to load"),
    context: list[str] = typer.Option([], "-c", "--context", help="Context block appended to the prompt"),
    root: str = RootOption,
) -> None:
    """Print the agent prompt for a workflow role."""
    config, _ = _bootstrap(root)
    try:
        text = compose_prompt(role, root, config, context)
    except OSError as exc:
        typer.echo(f"Error: unable to read instructions for {role.value}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(text)


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"Skillstash v{__version__}")


@labels_app.command("setup")
def labels_setup(
    repo: str = typer.Option("", "--repo", help="owner/name (defaults to GITHUB_REPOSITORY)"),
    root: str = RootOption,
) -> None:
    """Create or update the label vocabulary on the repository."""
    config, settings = _bootstrap(root)
    target = repo or settings.github_repository
    if not target:
        typer.echo("Error: unable to determine repo. Pass --repo owner/repo.", err=True)
        raise typer.Exit(code=1)
    try:
        credentials = select_credentials(config, settings)
        definitions = load_label_definitions(root, config)
        with GitHubClient(target, credentials.token, settings.github_api_url) as github:
            count = setup_labels(github, definitions)
    except SkillstashError as exc:
        log.error("Label setup failed", repo=target, error=str(exc))
        raise typer.Exit(code=1) from exc
    typer.echo(f"Done. Ensured {count} labels on {target}.")


def _run_flow(
    root: str,
    event_model: type[IssueEvent] | type[PullRequestEvent] | type[WorkflowRunEvent],
    flow: Callable[[Any, AutomationContext], FlowResult],
) -> None:
    config, settings = _bootstrap(root)
    try:
        event = load_event(settings.github_event_path, event_model)
        credentials = select_credentials(config, settings)
        with GitHubClient(event.repository.slug, credentials.token, settings.github_api_url) as github:
            ctx = AutomationContext(
                root=Path(root).resolve(),
                config=config,
                github=github,
                git=GitRunner(root),
                credentials=credentials,
            )
            result = flow(event, ctx)
    except SkillstashError as exc:
        log.error("Automation step failed", error=str(exc))
        raise typer.Exit(code=1) from exc

    log.info("Automation step finished", status=result.status, detail=result.message)
    raise typer.Exit(code=result.exit_code)


@automation_app.command("issue-create-skill")
def issue_create_skill(root: str = RootOption) -> None:
    """Create a skill pull request from a skill request issue."""
    _run_flow(root, IssueEvent, create_skill_from_issue)


@automation_app.command("pr-author-skill")
def pr_author_skill(root: str = RootOption) -> None:
    """Author SKILL.md on the pull request branch."""
    _run_flow(root, PullRequestEvent, author_skill_on_pull_request)


@automation_app.command("pr-review")
def pr_review(root: str = RootOption) -> None:
    """Fail when the pull request requires manual review."""
    _run_flow(root, PullRequestEvent, review_gate)


@automation_app.command("pr-automerge")
def pr_automerge(root: str = RootOption) -> None:
    """Enable auto-merge once checks pass and review is not required."""
    _run_flow(root, WorkflowRunEvent, auto_merge_after_checks)


@automation_app.command("merge-readiness")
def merge_readiness(root: str = RootOption) -> None:
    """Check branch naming and repository merge settings for a skill PR."""
    config, settings = _bootstrap(root)
    try:
        event = load_event(settings.github_event_path, PullRequestEvent)
        credentials = select_credentials(config, settings)
        with GitHubClient(event.repository.slug, credentials.token, settings.github_api_url) as github:
            ctx = AutomationContext(
                root=Path(root).resolve(),
                config=config,
                github=github,
                git=GitRunner(root),
                credentials=credentials,
            )
            report = check_merge_readiness(event, ctx)
    except SkillstashError as exc:
        log.error("Merge readiness check failed", error=str(exc))
        raise typer.Exit(code=1) from exc

    print_readiness_report(report)
    raise typer.Exit(code=1 if report.blocking_failure else 0)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
