"""Label overrides, agent selection, and credential mode for one issue or PR."""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from skillstash.config import (
    DEFAULT_ROLE_AGENT,
    AgentName,
    ResearchDepth,
    ReviewMode,
    StashConfig,
    WorkflowRole,
)

CANONICAL_ROLES: tuple[WorkflowRole, ...] = (
    WorkflowRole.RESEARCH,
    WorkflowRole.AUTHOR,
    WorkflowRole.REVIEW,
)


class AutomationMode(StrEnum):
    """Credential used for GitHub writes."""

    APP = "app"
    BUILTIN = "builtin"


@dataclass(frozen=True)
class ResolvedStep:
    role: WorkflowRole
    agent: AgentName


@dataclass(frozen=True)
class ResolvedPolicy:
    """Effective policy for one issue or pull request."""

    review: ReviewMode
    research: ResearchDepth
    auto_merge: bool
    agents: dict[WorkflowRole, AgentName]

    def to_dict(self) -> dict[str, object]:
        return {
            "review": self.review.value,
            "research": self.research.value,
            "auto_merge": self.auto_merge,
            "agents": {role.value: agent.value for role, agent in self.agents.items()},
        }


def _as_label_set(labels: Iterable[str] | None) -> set[str]:
    if not labels:
        return set()
    return {label for label in labels if isinstance(label, str)}


def resolve_review_mode(labels: Iterable[str] | None, config: StashConfig) -> ReviewMode:
    """Return the effective review mode.

    The require-review label beats the skip-review label, even when both
    are applied at once.
    """
    present = _as_label_set(labels)
    if config.labels.require_review in present:
        return ReviewMode.REQUIRED
    if config.labels.skip_review in present:
        return ReviewMode.SKIP
    return config.defaults.review


def resolve_research_depth(labels: Iterable[str] | None, config: StashConfig) -> ResearchDepth:
    """Return the effective research depth; deep research beats skip."""
    present = _as_label_set(labels)
    if config.labels.deep_research in present:
        return ResearchDepth.DEEP
    if config.labels.skip_research in present:
        return ResearchDepth.NONE
    return config.defaults.research


def should_auto_merge(labels: Iterable[str] | None, config: StashConfig) -> bool:
    """Auto-merge is allowed whenever review is not required."""
    return resolve_review_mode(labels, config) is not ReviewMode.REQUIRED


def _recognized_agent(value: str | None) -> AgentName | None:
    if not isinstance(value, str):
        return None
    try:
        return AgentName(value.strip().lower())
    except ValueError:
        return None


def resolve_agent(
    config: StashConfig,
    role: WorkflowRole | str,
    override: str | None = None,
) -> AgentName:
    """Pick the agent for ``role``.

    Order: a recognized ``override``, then ``agents.roles[role]``, then
    ``agents.default``. Unrecognized values at either level fall through.
    """
    explicit = _recognized_agent(override)
    if explicit is not None:
        return explicit

    configured = config.agents.roles.for_role(WorkflowRole(role))
    if configured != DEFAULT_ROLE_AGENT:
        role_agent = _recognized_agent(configured)
        if role_agent is not None:
            return role_agent
    return config.agents.default


def resolve_workflow(config: StashConfig) -> list[ResolvedStep]:
    """Return the ordered steps to run, each with a concrete agent."""
    if config.workflow:
        return [
            ResolvedStep(role=step.role, agent=resolve_agent(config, step.role, step.agent))
            for step in config.workflow
        ]
    return [ResolvedStep(role=role, agent=resolve_agent(config, role)) for role in CANONICAL_ROLES]


def resolve_policy(labels: Iterable[str] | None, config: StashConfig) -> ResolvedPolicy:
    """Apply ``labels`` on top of ``config`` for a single issue or PR."""
    return ResolvedPolicy(
        review=resolve_review_mode(labels, config),
        research=resolve_research_depth(labels, config),
        auto_merge=should_auto_merge(labels, config),
        agents={role: resolve_agent(config, role) for role in CANONICAL_ROLES},
    )


def resolve_automation_mode(config: StashConfig, app_token_available: bool) -> AutomationMode:
    """Use the app token only when config allows it and one was supplied."""
    if config.github.allows_app_token and app_token_available:
        return AutomationMode.APP
    return AutomationMode.BUILTIN
