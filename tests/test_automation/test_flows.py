import json
from pathlib import Path

import pytest

from skillstash.automation import (
    AutomationContext,
    Credentials,
    IssueEvent,
    PullRequestEvent,
    WorkflowRunEvent,
    auto_merge_after_checks,
    author_skill_on_pull_request,
    check_branch_naming,
    check_merge_readiness,
    cleanup_research,
    create_skill_from_issue,
    default_label_definitions,
    load_event,
    load_label_definitions,
    review_gate,
    select_credentials,
    setup_labels,
)
from skillstash.config import RuntimeSettings, StashConfig
from skillstash.exceptions import ConfigurationError, EventError, GitHubAPIError, MissingTokenError
from skillstash.workflow import AutomationMode

REPOSITORY = {"owner": {"login": "acme"}, "name": "skills", "full_name": "acme/skills"}

ISSUE_BODY = (
    "### Skill name\n\nPDF Tools\n\n"
    "### What should this skill do?\n\nSplit and merge PDF files.\n\n"
    "### Sources to research (optional)\n\nhttps://example.com/pdf\n"
)


class FakeGitHub:
    def __init__(self, labels=None, fail_merge=False, repository=None, protection=None, repo_labels=None):
        self.repo = "acme/skills"
        self.calls: list[tuple] = []
        self.comments: list[tuple[int, str]] = []
        self._labels = labels or []
        self._fail_merge = fail_merge
        self._repository = repository or {}
        self._protection = protection
        self._repo_labels = repo_labels or []

    def comment_issue(self, number, body):
        self.comments.append((number, body))

    def create_pull_request(self, title, body, head, base="main", labels=None):
        self.calls.append(("create_pull_request", title, head, base, labels))
        return 42

    def merge_pull_request(self, number, method="squash"):
        self.calls.append(("merge_pull_request", number))
        if self._fail_merge:
            raise GitHubAPIError("Required status check is expected", status_code=405)

    def delete_branch(self, branch):
        self.calls.append(("delete_branch", branch))

    def get_pull_request_labels(self, number):
        return list(self._labels)

    def enable_auto_merge(self, number, method="SQUASH"):
        self.calls.append(("enable_auto_merge", number))

    def list_labels(self):
        return list(self._repo_labels)

    def get_repository(self):
        return self._repository

    def get_required_status_checks(self, branch="main"):
        if self._protection is None:
            raise GitHubAPIError("Branch not protected", status_code=404)
        return self._protection

    def ensure_label(self, name, color, description=""):
        self.calls.append(("ensure_label", name, color, description))


class FakeGit:
    def __init__(self):
        self.commands: list[tuple[str, ...]] = []

    def run(self, *args):
        self.commands.append(args)
        return ""

    def configure_bot_identity(self):
        self.commands.append(("identity",))

    def set_push_remote(self, repo, token):
        self.commands.append(("remote", repo, token))


def _ctx(tmp_path: Path, github=None, mode=AutomationMode.BUILTIN, config=None) -> AutomationContext:
    return AutomationContext(
        root=tmp_path,
        config=config or StashConfig(),
        github=github or FakeGitHub(),
        git=FakeGit(),
        credentials=Credentials(mode=mode, token="tok"),
    )


def _issue_event(body=ISSUE_BODY, title="skill: pdf tools", labels=("skill:create",)) -> IssueEvent:
    return IssueEvent.model_validate(
        {
            "issue": {
                "number": 7,
                "title": title,
                "body": body,
                "labels": [{"name": name} for name in labels],
            },
            "repository": REPOSITORY,
        }
    )


def _pr_event(title="skill: pdf-tools", body=ISSUE_BODY, ref="skill/add-pdf-tools") -> PullRequestEvent:
    return PullRequestEvent.model_validate(
        {
            "pull_request": {"number": 12, "title": title, "body": body, "head": {"ref": ref}},
            "repository": REPOSITORY,
        }
    )


def test_load_event_parses_payload(tmp_path: Path):
    path = tmp_path / "event.json"
    path.write_text(json.dumps({"issue": {"number": 3}, "repository": REPOSITORY, "action": "labeled"}))

    event = load_event(path, IssueEvent)

    assert event.issue.number == 3
    assert event.repository.slug == "acme/skills"


def test_load_event_errors(tmp_path: Path):
    with pytest.raises(EventError):
        load_event("", IssueEvent)
    with pytest.raises(EventError):
        load_event(tmp_path / "missing.json", IssueEvent)

    path = tmp_path / "event.json"
    path.write_text(json.dumps({"repository": REPOSITORY}))
    with pytest.raises(EventError):
        load_event(path, IssueEvent)


def test_select_credentials_prefers_app_token():
    settings = RuntimeSettings(app_token="app", github_token="builtin")

    credentials = select_credentials(StashConfig(), settings)

    assert credentials == Credentials(mode=AutomationMode.APP, token="app")


def test_select_credentials_respects_opt_out():
    settings = RuntimeSettings(app_token="app", github_token="builtin")
    cfg = StashConfig.model_validate({"github": {"automation_mode": "builtin"}})

    assert select_credentials(cfg, settings) == Credentials(mode=AutomationMode.BUILTIN, token="builtin")


def test_select_credentials_without_any_token():
    with pytest.raises(MissingTokenError):
        select_credentials(StashConfig(), RuntimeSettings(app_token="  ", github_token=""))


def test_issue_flow_creates_merges_and_cleans_up(tmp_path: Path):
    ctx = _ctx(tmp_path)

    result = create_skill_from_issue(_issue_event(), ctx)

    skill_md = tmp_path / "skills" / "pdf-tools" / "SKILL.md"
    assert result.status == "created"
    assert result.exit_code == 0
    assert result.pull_request == 42
    assert "## Sources\n\nhttps://example.com/pdf\n" in skill_md.read_text(encoding="utf-8")
    assert ctx.github.comments == [(7, "Normalized skill name to `pdf-tools`.")]
    assert ctx.github.calls == [
        ("create_pull_request", "skill: pdf-tools", "skill/add-pdf-tools", "main", []),
        ("merge_pull_request", 42),
        ("delete_branch", "skill/add-pdf-tools"),
    ]
    assert ("checkout", "-b", "skill/add-pdf-tools") in ctx.git.commands
    assert ctx.git.commands[-1] == ("push", "--set-upstream", "origin", "skill/add-pdf-tools")


def test_issue_flow_keeps_pr_open_when_review_required(tmp_path: Path):
    ctx = _ctx(tmp_path)

    result = create_skill_from_issue(_issue_event(labels=("skill:create", "review:required")), ctx)

    assert result.status == "created"
    assert ctx.github.calls == [
        ("create_pull_request", "skill: pdf-tools", "skill/add-pdf-tools", "main", ["review:required"]),
    ]


def test_issue_flow_leaves_merge_to_workflows_in_app_mode(tmp_path: Path):
    ctx = _ctx(tmp_path, mode=AutomationMode.APP)

    create_skill_from_issue(_issue_event(), ctx)

    assert [call[0] for call in ctx.github.calls] == ["create_pull_request"]


def test_issue_flow_comments_when_merge_fails(tmp_path: Path):
    ctx = _ctx(tmp_path, github=FakeGitHub(fail_merge=True))

    result = create_skill_from_issue(_issue_event(), ctx)

    assert result.status == "created"
    assert ctx.github.comments[-1][1].startswith("Auto-merge was attempted but failed")


def test_issue_flow_requires_description(tmp_path: Path):
    ctx = _ctx(tmp_path)

    result = create_skill_from_issue(_issue_event(body="### Skill name\n\npdf-tools\n"), ctx)

    assert result.status == "skipped"
    assert "description" in ctx.github.comments[0][1]
    assert not (tmp_path / "skills").exists()
    assert ctx.git.commands == []


def test_issue_flow_requires_usable_name(tmp_path: Path):
    ctx = _ctx(tmp_path)

    result = create_skill_from_issue(
        _issue_event(title="???", body="### What should this skill do?\n\nThings\n"),
        ctx,
    )

    assert result.status == "skipped"
    assert ctx.github.comments[0][1].startswith("Unable to determine a valid skill name")


def test_issue_flow_never_overwrites_existing_skill(tmp_path: Path):
    existing = tmp_path / "skills" / "pdf-tools" / "SKILL.md"
    existing.parent.mkdir(parents=True)
    existing.write_text("original\n", encoding="utf-8")
    ctx = _ctx(tmp_path)

    result = create_skill_from_issue(_issue_event(), ctx)

    assert result.status == "skipped"
    assert existing.read_text(encoding="utf-8") == "original\n"
    assert ctx.github.comments[-1] == (7, "Skill `pdf-tools` already exists. No changes applied.")


def test_issue_flow_reports_invalid_generated_skill(tmp_path: Path):
    cfg = StashConfig.model_validate({"validation": {"max_skill_lines": 5}})
    ctx = _ctx(tmp_path, config=cfg)

    result = create_skill_from_issue(_issue_event(), ctx)

    assert result.status == "invalid"
    assert result.exit_code == 1
    assert [call[0] for call in ctx.github.calls] == ["create_pull_request"]


def test_author_flow_pushes_to_pr_branch(tmp_path: Path):
    ctx = _ctx(tmp_path)

    result = author_skill_on_pull_request(_pr_event(), ctx)

    assert result.status == "authored"
    assert (tmp_path / "skills" / "pdf-tools" / "SKILL.md").is_file()
    assert ctx.git.commands[-1] == ("push", "origin", "HEAD:skill/add-pdf-tools")


def test_author_flow_skips_without_description(tmp_path: Path):
    ctx = _ctx(tmp_path)

    result = author_skill_on_pull_request(_pr_event(body=""), ctx)

    assert result.status == "skipped"
    assert ctx.git.commands == []


def test_review_gate_blocks_required_review(tmp_path: Path):
    ctx = _ctx(tmp_path, github=FakeGitHub(labels=["skip:review", "review:required"]))

    result = review_gate(_pr_event(), ctx)

    assert result.exit_code == 1
    assert ctx.github.comments[0][0] == 12


def test_review_gate_passes_by_default(tmp_path: Path):
    ctx = _ctx(tmp_path)

    result = review_gate(_pr_event(), ctx)

    assert result.exit_code == 0
    assert ctx.github.comments == []


def _run_event(numbers) -> WorkflowRunEvent:
    return WorkflowRunEvent.model_validate(
        {
            "workflow_run": {"pull_requests": [{"number": number} for number in numbers]},
            "repository": REPOSITORY,
        }
    )


def test_auto_merge_enabled_when_review_not_required(tmp_path: Path):
    ctx = _ctx(tmp_path)

    result = auto_merge_after_checks(_run_event([12]), ctx)

    assert result.status == "auto-merge"
    assert ctx.github.calls == [("enable_auto_merge", 12)]


def test_auto_merge_skipped_for_required_review(tmp_path: Path):
    ctx = _ctx(tmp_path, github=FakeGitHub(labels=["review:required"]))

    result = auto_merge_after_checks(_run_event([12]), ctx)

    assert result.status == "skipped"
    assert ctx.github.calls == []


def test_auto_merge_without_pull_request(tmp_path: Path):
    ctx = _ctx(tmp_path)

    assert auto_merge_after_checks(_run_event([]), ctx).status == "skipped"


def test_branch_naming_check():
    assert check_branch_naming("skill/update-pdf-tools").passed
    failing = check_branch_naming("feature/pdf")
    assert not failing.passed
    assert failing.blocking


def test_merge_readiness_report(tmp_path: Path):
    github = FakeGitHub(
        repository={"allow_auto_merge": True, "allow_squash_merge": True, "allow_merge_commit": True},
        repo_labels=StashConfig().labels.vocabulary(),
        protection=["validate / skills"],
    )
    ctx = _ctx(tmp_path, github=github)

    report = check_merge_readiness(_pr_event(), ctx)

    assert [check.name for check in report.checks] == [
        "Branch naming",
        "Labels configured",
        "Auto-merge enabled",
        "Merge settings",
        "Branch protection",
    ]
    assert not report.blocking_failure
    assert report.warning_count == 1
    assert report.checks[3].message == "Recommended: disable merge commits"


def test_merge_readiness_blocks_bad_branch(tmp_path: Path):
    ctx = _ctx(tmp_path)

    report = check_merge_readiness(_pr_event(ref="main"), ctx)

    assert report.blocking_failure
    assert "Missing labels" in report.checks[1].message


def test_label_definitions_follow_config(tmp_path: Path):
    cfg = StashConfig.model_validate({"labels": {"require_review": "needs-human"}})

    names = [definition.name for definition in load_label_definitions(tmp_path, cfg)]

    assert names == ["skill:create", "skip:research", "skip:review", "skip:validation", "research:deep", "needs-human"]
    assert names == [definition.name for definition in default_label_definitions(cfg)]


def test_label_definitions_from_file(tmp_path: Path):
    labels_json = tmp_path / ".skillstash" / "labels.json"
    labels_json.parent.mkdir()
    labels_json.write_text(json.dumps([{"name": "custom", "color": "ededed"}]), encoding="utf-8")
    github = FakeGitHub()

    count = setup_labels(github, load_label_definitions(tmp_path, StashConfig()))

    assert count == 1
    assert github.calls == [("ensure_label", "custom", "ededed", "")]


def test_invalid_label_file_raises(tmp_path: Path):
    labels_json = tmp_path / ".skillstash" / "labels.json"
    labels_json.parent.mkdir()
    labels_json.write_text('{"name": "not a list"', encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_label_definitions(tmp_path, StashConfig())


def test_cleanup_research_removes_only_research_dirs(tmp_path: Path):
    research = tmp_path / "skills" / "pdf-tools" / ".research"
    research.mkdir(parents=True)
    (research / "notes.md").write_text("notes\n", encoding="utf-8")
    (tmp_path / "skills" / "pdf-tools" / "SKILL.md").write_text("doc\n", encoding="utf-8")
    (tmp_path / "skills" / "other").mkdir()

    removed = cleanup_research(tmp_path, StashConfig())

    assert removed == [research]
    assert not research.exists()
    assert (tmp_path / "skills" / "pdf-tools" / "SKILL.md").exists()
