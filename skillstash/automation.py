"""CI entry points: GitHub events in, policy decisions and GitHub writes out."""

from __future__ import annotations

import json
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError

from skillstash.config import CONFIG_DIRNAME, ReviewMode, RuntimeSettings, StashConfig
from skillstash.exceptions import ConfigurationError, EventError, GitHubAPIError, MissingTokenError
from skillstash.github import GitHubClient, GitRunner
from skillstash.logging import get_logger
from skillstash.skills import (
    RESEARCH_DIRNAME,
    branch_name,
    normalize_skill_name,
    parse_skill_request,
    skill_file_path,
    skills_root,
    write_skill_file,
)
from skillstash.validation import find_skills, validate_skills
from skillstash.workflow import (
    AutomationMode,
    resolve_automation_mode,
    resolve_review_mode,
    should_auto_merge,
)

log = get_logger(__name__)

TRIGGER_LABEL = "skill:create"
VALID_BRANCH_PREFIXES = ("skill/add-", "skill/update-", "skill/remove-")
LABELS_FILENAME = "labels.json"

_LABEL_COLORS = {
    "skip_research": "c5def5",
    "skip_review": "fbca04",
    "skip_validation": "e99695",
    "deep_research": "0e8a16",
    "require_review": "b60205",
}
_LABEL_DESCRIPTIONS = {
    "skip_research": "Skip the research step",
    "skip_review": "Skip the review step",
    "skip_validation": "Skip skill validation",
    "deep_research": "Run deep research before authoring",
    "require_review": "Require manual review before merge",
}

EventT = TypeVar("EventT", bound=BaseModel)


# Event payloads


class Label(BaseModel):
    name: str


class Owner(BaseModel):
    login: str


class Repository(BaseModel):
    owner: Owner
    name: str
    full_name: str = ""

    @property
    def slug(self) -> str:
        return self.full_name or f"{self.owner.login}/{self.name}"


class Issue(BaseModel):
    number: int
    title: str = ""
    body: str | None = None
    labels: list[Label] = Field(default_factory=list)

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels]


class HeadRef(BaseModel):
    ref: str = ""


class PullRequest(BaseModel):
    number: int
    title: str = ""
    body: str | None = None
    head: HeadRef = Field(default_factory=HeadRef)
    labels: list[Label] = Field(default_factory=list)


class PullRequestRef(BaseModel):
    number: int


class WorkflowRun(BaseModel):
    pull_requests: list[PullRequestRef] = Field(default_factory=list)


class IssueEvent(BaseModel):
    issue: Issue
    repository: Repository


class PullRequestEvent(BaseModel):
    pull_request: PullRequest
    repository: Repository


class WorkflowRunEvent(BaseModel):
    workflow_run: WorkflowRun
    repository: Repository


def load_event(path: Path | str, model: type[EventT]) -> EventT:
    """Parse the JSON payload GitHub Actions writes to ``GITHUB_EVENT_PATH``."""
    if not path:
        raise EventError("GITHUB_EVENT_PATH is not set")
    event_path = Path(path)
    try:
        payload = json.loads(event_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise EventError(f"Unable to read event payload {event_path}: {exc}") from exc
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise EventError(f"Unexpected {model.__name__} payload: {exc}") from exc


# Credentials and context


@dataclass(frozen=True)
class Credentials:
    mode: AutomationMode
    token: str


def select_credentials(config: StashConfig, settings: RuntimeSettings) -> Credentials:
    """Pick the token for GitHub writes; falls back to the built-in token."""
    app_token = settings.app_token.strip()
    mode = resolve_automation_mode(config, bool(app_token))
    token = app_token if mode is AutomationMode.APP else settings.github_token.strip()
    if not token:
        raise MissingTokenError()
    log.info("Selected automation mode", mode=mode.value)
    return Credentials(mode=mode, token=token)


@dataclass
class AutomationContext:
    """Everything a flow needs besides the event."""

    root: Path
    config: StashConfig
    github: GitHubClient
    git: GitRunner
    credentials: Credentials
    base_branch: str = "main"


@dataclass
class FlowResult:
    status: str
    message: str = ""
    exit_code: int = 0
    pull_request: int | None = None


# Flows


def create_skill_from_issue(event: IssueEvent, ctx: AutomationContext) -> FlowResult:
    """Turn a skill request issue into a branch, a SKILL.md and a pull request."""
    issue = event.issue
    repo = event.repository.slug
    labels = issue.label_names
    request = parse_skill_request(issue.title, issue.body)
    normalized = normalize_skill_name(request.raw_name)

    if not normalized.name:
        ctx.github.comment_issue(
            issue.number,
            "Unable to determine a valid skill name from the issue. Please provide a kebab-case name.",
        )
        return FlowResult("skipped", "no usable skill name")

    if not request.description:
        ctx.github.comment_issue(
            issue.number,
            "Please provide a description for this skill. The issue template field "
            '"What should this skill do?" is required.',
        )
        return FlowResult("skipped", "missing description")

    if normalized.changed:
        ctx.github.comment_issue(issue.number, f"Normalized skill name to `{normalized.name}`.")

    if skill_file_path(normalized.name, ctx.root, ctx.config).exists():
        ctx.github.comment_issue(
            issue.number,
            f"Skill `{normalized.name}` already exists. No changes applied.",
        )
        return FlowResult("skipped", "skill already exists")

    skill_path = write_skill_file(
        ctx.root,
        ctx.config,
        normalized.name,
        request.description,
        sources=request.sources,
        spec=request.spec,
    )
    branch = branch_name(normalized.name)

    ctx.git.configure_bot_identity()
    ctx.git.run("checkout", "-b", branch)
    ctx.git.run("add", str(skill_path))
    ctx.git.run("commit", "-m", f"feat(skills): add {normalized.name}")
    ctx.git.set_push_remote(repo, ctx.credentials.token)
    ctx.git.run("push", "--set-upstream", "origin", branch)

    pr_number = ctx.github.create_pull_request(
        title=f"skill: {normalized.name}",
        body=f"Generated skill for {normalized.name}.\n\nCloses #{issue.number}.",
        head=branch,
        base=ctx.base_branch,
        labels=[label for label in labels if label != TRIGGER_LABEL],
    )

    # An app token triggers the PR workflows, which validate and merge.
    if ctx.credentials.mode is AutomationMode.BUILTIN:
        report = validate_skills(ctx.root, ctx.config)
        if report.has_errors:
            log.error("Generated skill failed validation", skill=normalized.name, errors=report.error_count)
            return FlowResult("invalid", "generated skill failed validation", 1, pr_number)

        if should_auto_merge(labels, ctx.config):
            try:
                ctx.github.merge_pull_request(pr_number)
                ctx.github.delete_branch(branch)
            except GitHubAPIError as exc:
                log.warning("Auto-merge failed", number=pr_number, error=str(exc))
                ctx.github.comment_issue(
                    issue.number,
                    "Auto-merge was attempted but failed (likely due to branch protection). "
                    "Please merge the PR manually.",
                )

    return FlowResult("created", f"opened pull request for {normalized.name}", 0, pr_number)


def author_skill_on_pull_request(event: PullRequestEvent, ctx: AutomationContext) -> FlowResult:
    """Write the requested SKILL.md onto an existing pull request branch."""
    pr = event.pull_request
    request = parse_skill_request(pr.title, pr.body, clean_sources=False)
    normalized = normalize_skill_name(request.raw_name)

    if not normalized.name:
        log.info("No skill name detected; skipping authoring", number=pr.number)
        return FlowResult("skipped", "no usable skill name")

    if not request.description:
        log.info("No description detected; skipping authoring", number=pr.number)
        return FlowResult("skipped", "missing description")

    if skill_file_path(normalized.name, ctx.root, ctx.config).exists():
        log.info("SKILL.md already exists; skipping authoring", skill=normalized.name)
        return FlowResult("skipped", "skill already exists")

    skill_path = write_skill_file(
        ctx.root,
        ctx.config,
        normalized.name,
        request.description,
        sources=request.sources,
        spec=request.spec,
    )

    ctx.git.configure_bot_identity()
    ctx.git.run("add", str(skill_path))
    ctx.git.run("commit", "-m", f"feat(skills): add {normalized.name}")
    ctx.git.set_push_remote(event.repository.slug, ctx.credentials.token)
    branch = pr.head.ref or branch_name(normalized.name)
    ctx.git.run("push", "origin", f"HEAD:{branch}")

    log.info("Authored skill", path=str(skill_path), branch=branch)
    return FlowResult("authored", str(skill_path), 0, pr.number)


def review_gate(event: PullRequestEvent, ctx: AutomationContext) -> FlowResult:
    """Fail the check when the pull request requires manual review."""
    number = event.pull_request.number
    labels = ctx.github.get_pull_request_labels(number)
    mode = resolve_review_mode(labels, ctx.config)

    if mode is not ReviewMode.REQUIRED:
        log.info("Review not required", number=number, mode=mode.value)
        return FlowResult("passed", f"review mode: {mode.value}")

    ctx.github.comment_issue(
        number,
        f"Manual review required before merge (label {ctx.config.labels.require_review}).",
    )
    return FlowResult("review-required", "manual review required", 1, number)


def auto_merge_after_checks(event: WorkflowRunEvent, ctx: AutomationContext) -> FlowResult:
    """Enable auto-merge for the pull request behind a finished workflow run."""
    if not event.workflow_run.pull_requests:
        log.info("No pull request associated with this workflow run")
        return FlowResult("skipped", "no pull request")

    number = event.workflow_run.pull_requests[0].number
    labels = ctx.github.get_pull_request_labels(number)

    if not should_auto_merge(labels, ctx.config):
        mode = resolve_review_mode(labels, ctx.config)
        log.info("Auto-merge disabled", number=number, review_mode=mode.value)
        return FlowResult("skipped", f"auto-merge disabled (review mode: {mode.value})", 0, number)

    ctx.github.enable_auto_merge(number)
    return FlowResult("auto-merge", "auto-merge enabled", 0, number)


# Merge readiness


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    message: str
    blocking: bool = False


@dataclass
class ReadinessReport:
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def blocking_failure(self) -> bool:
        return any(not check.passed and check.blocking for check in self.checks)

    @property
    def passed_count(self) -> int:
        return sum(1 for check in self.checks if check.passed)

    @property
    def warning_count(self) -> int:
        return sum(1 for check in self.checks if not check.passed and not check.blocking)


def check_branch_naming(branch: str) -> CheckResult:
    valid = branch.startswith(VALID_BRANCH_PREFIXES)
    return CheckResult(
        name="Branch naming",
        passed=valid,
        message=(
            f"Branch `{branch}` follows naming convention"
            if valid
            else f"Branch `{branch}` should start with: {', '.join(VALID_BRANCH_PREFIXES)}"
        ),
        blocking=True,
    )


def check_labels_exist(github: GitHubClient, config: StashConfig) -> CheckResult:
    try:
        existing = set(github.list_labels())
    except GitHubAPIError:
        return CheckResult("Labels configured", False, "Could not fetch repository labels")
    missing = [label for label in config.labels.vocabulary() if label not in existing]
    if not missing:
        return CheckResult("Labels configured", True, "All required labels are configured")
    return CheckResult(
        "Labels configured",
        False,
        f"Missing labels: {', '.join(missing)}. Run `skillstash labels setup`",
    )


def check_merge_settings(github: GitHubClient) -> list[CheckResult]:
    try:
        repository = github.get_repository()
    except GitHubAPIError:
        return [
            CheckResult("Auto-merge enabled", False, "Could not fetch repository settings"),
            CheckResult("Merge settings", False, "Could not fetch repository settings"),
        ]

    auto_merge = bool(repository.get("allow_auto_merge"))
    issues = []
    if not repository.get("allow_squash_merge"):
        issues.append("enable squash merging")
    if repository.get("allow_merge_commit"):
        issues.append("disable merge commits")

    return [
        CheckResult(
            "Auto-merge enabled",
            auto_merge,
            "Repository has auto-merge enabled"
            if auto_merge
            else "Enable auto-merge in Settings > General > Pull Requests",
        ),
        CheckResult(
            "Merge settings",
            not issues,
            "Merge settings are correctly configured" if not issues else f"Recommended: {', '.join(issues)}",
        ),
    ]


def check_branch_protection(github: GitHubClient, branch: str = "main") -> CheckResult:
    try:
        contexts = github.get_required_status_checks(branch)
    except GitHubAPIError:
        return CheckResult(
            "Branch protection",
            False,
            f"No branch protection on {branch}. Consider requiring the `validate` check.",
        )
    has_validate = any("validate" in context for context in contexts)
    return CheckResult(
        "Branch protection",
        has_validate,
        "Branch protection requires validation check"
        if has_validate
        else "Consider adding `validate` as a required status check",
    )


def check_merge_readiness(event: PullRequestEvent, ctx: AutomationContext) -> ReadinessReport:
    report = ReadinessReport()
    report.checks.append(check_branch_naming(event.pull_request.head.ref))
    report.checks.append(check_labels_exist(ctx.github, ctx.config))
    report.checks.extend(check_merge_settings(ctx.github))
    report.checks.append(check_branch_protection(ctx.github, ctx.base_branch))
    return report


# Repository maintenance


class LabelDefinition(BaseModel):
    name: str
    color: str
    description: str = ""


def default_label_definitions(config: StashConfig) -> list[LabelDefinition]:
    definitions = [
        LabelDefinition(name=TRIGGER_LABEL, color="1d76db", description="Create a skill from this issue"),
    ]
    for key, color in _LABEL_COLORS.items():
        definitions.append(
            LabelDefinition(
                name=getattr(config.labels, key),
                color=color,
                description=_LABEL_DESCRIPTIONS[key],
            )
        )
    return definitions


def load_label_definitions(root: Path | str, config: StashConfig) -> list[LabelDefinition]:
    """Read ``.skillstash/labels.json`` when present, else derive from config."""
    labels_path = Path(root) / CONFIG_DIRNAME / LABELS_FILENAME
    if not labels_path.is_file():
        return default_label_definitions(config)
    try:
        raw: Any = json.loads(labels_path.read_text(encoding="utf-8"))
        return [LabelDefinition.model_validate(item) for item in raw]
    except (json.JSONDecodeError, TypeError, ValidationError) as exc:
        raise ConfigurationError(f"Invalid label definitions in {labels_path}: {exc}") from exc


def setup_labels(github: GitHubClient, definitions: list[LabelDefinition]) -> int:
    for definition in definitions:
        github.ensure_label(definition.name, definition.color, definition.description)
    log.info("Ensured labels", repo=github.repo, count=len(definitions))
    return len(definitions)


def cleanup_research(root: Path | str, config: StashConfig) -> list[Path]:
    """Remove the ``.research`` scratch folder from every skill."""
    removed: list[Path] = []
    for skill_dir in find_skills(skills_root(root, config)):
        research_dir = skill_dir / RESEARCH_DIRNAME
        if research_dir.is_dir():
            shutil.rmtree(research_dir)
            removed.append(research_dir)
            log.info("Removed research folder", path=str(research_dir))
    return removed
