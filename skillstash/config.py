"""Configuration management for Skillstash."""

from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from skillstash.logging import get_logger

log = get_logger(__name__)

# Paths
CONFIG_DIRNAME = ".skillstash"
CONFIG_FILENAMES = ("config.yml", "config.yaml")
DEFAULT_SKILLS_DIR = "skills"
DEFAULT_INTERNAL_SKILLS_DIR = ".agents/skills"

# Role override sentinel meaning "use agents.default".
DEFAULT_ROLE_AGENT = "default"

# automation_mode values that opt out of the app token.
AUTOMATION_OPT_OUT_VALUES = frozenset({"builtin", "off", "disabled", "none", "false", "manual"})


class AgentName(StrEnum):
    """Agents that can run a workflow role."""

    CLAUDE = "claude"
    CODEX = "codex"

    @property
    def opposite(self) -> "AgentName":
        return AgentName.CODEX if self is AgentName.CLAUDE else AgentName.CLAUDE


class WorkflowRole(StrEnum):
    """Pipeline stages, in canonical order."""

    RESEARCH = "research"
    AUTHOR = "author"
    REVIEW = "review"


class ResearchDepth(StrEnum):
    NONE = "none"
    MINIMAL = "minimal"
    DEEP = "deep"


class ReviewMode(StrEnum):
    SKIP = "skip"
    OPTIONAL = "optional"
    REQUIRED = "required"


def normalize_default_agent(value: Any, fallback: AgentName = AgentName.CLAUDE) -> AgentName:
    """Accept ``claude``/``codex`` (any case, padded); anything else is the fallback."""
    if not isinstance(value, str):
        return fallback
    normalized = value.strip().lower()
    try:
        return AgentName(normalized)
    except ValueError:
        return fallback


def normalize_role_agent(value: Any) -> str:
    """Lowercase a per-role override; absent or blank means the ``default`` sentinel."""
    if not isinstance(value, str):
        return DEFAULT_ROLE_AGENT
    normalized = value.strip().lower()
    return normalized or DEFAULT_ROLE_AGENT


class _FallbackModel(BaseModel):
    """Base for config sections.

    A field whose raw value fails validation takes its declared default
    instead, so one bad key never discards the rest of the document.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("*", mode="wrap")
    @classmethod
    def _fallback_to_default(
        cls,
        value: Any,
        handler: ValidatorFunctionWrapHandler,
        info: ValidationInfo,
    ) -> Any:
        try:
            return handler(value)
        except ValidationError:
            field = cls.model_fields[info.field_name]
            return field.get_default(call_default_factory=True)


class DefaultsConfig(_FallbackModel):
    """Policy defaults applied when no label overrides them."""

    research: ResearchDepth = ResearchDepth.MINIMAL
    review: ReviewMode = ReviewMode.SKIP
    auto_proceed: StrictBool = True


class LabelsConfig(_FallbackModel):
    """Label strings that trigger each policy override."""

    skip_research: StrictStr = "skip:research"
    skip_review: StrictStr = "skip:review"
    skip_validation: StrictStr = "skip:validation"
    deep_research: StrictStr = "research:deep"
    require_review: StrictStr = "review:required"

    def vocabulary(self) -> list[str]:
        return [
            self.skip_research,
            self.skip_review,
            self.skip_validation,
            self.deep_research,
            self.require_review,
        ]


class ValidationConfig(_FallbackModel):
    """Structural rules for skill packages."""

    required_files: tuple[StrictStr, ...] = ("SKILL.md",)
    max_skill_lines: Annotated[StrictInt, Field(gt=0)] = 500
    enforce_kebab_case: StrictBool = True
    required_frontmatter: tuple[StrictStr, ...] = ("name", "description")


class RoleAgentsConfig(_FallbackModel):
    """Per-role agent overrides; ``default`` defers to ``agents.default``."""

    research: str = DEFAULT_ROLE_AGENT
    author: str = DEFAULT_ROLE_AGENT
    review: str = DEFAULT_ROLE_AGENT

    @field_validator("research", "author", "review", mode="before")
    @classmethod
    def _normalize_override(cls, value: Any) -> str:
        return normalize_role_agent(value)

    def for_role(self, role: WorkflowRole) -> str:
        return getattr(self, role.value)


class AgentsConfig(_FallbackModel):
    """Agent selection."""

    default: AgentName = AgentName.CLAUDE
    roles: RoleAgentsConfig = Field(default_factory=RoleAgentsConfig)
    alternate_review: StrictBool = False

    @model_validator(mode="before")
    @classmethod
    def _normalize_agents(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw_default = data.get("default")
        if not isinstance(raw_default, str):
            # Older configs named this key "provider".
            raw_default = data.get("provider")
        default_agent = normalize_default_agent(raw_default)
        data["default"] = default_agent

        if data.get("alternate_review") is True:
            roles = dict(data["roles"]) if isinstance(data.get("roles"), dict) else {}
            if normalize_role_agent(roles.get("review")) == DEFAULT_ROLE_AGENT:
                roles["review"] = default_agent.opposite.value
            data["roles"] = roles
        return data


class WorkflowStep(BaseModel):
    """One explicit pipeline step."""

    model_config = ConfigDict(frozen=True)

    role: WorkflowRole
    agent: str = DEFAULT_ROLE_AGENT


class GitHubConfig(_FallbackModel):
    """GitHub credential intent."""

    automation_mode: StrictStr = "auto"

    @field_validator("automation_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return "auto" if value else "builtin"
        if isinstance(value, str):
            return value.strip().lower() or "auto"
        return value

    @property
    def allows_app_token(self) -> bool:
        return self.automation_mode not in AUTOMATION_OPT_OUT_VALUES


class LoggingConfig(_FallbackModel):
    """Logging configuration."""

    level: StrictStr = "INFO"
    format: StrictStr = "console"


def _normalize_workflow(value: Any) -> list[dict[str, str]]:
    if not isinstance(value, list):
        return []
    steps: list[dict[str, str]] = []
    valid_roles = {role.value for role in WorkflowRole}
    for item in value:
        if not isinstance(item, dict):
            continue
        raw_role = item.get("role")
        role = raw_role.strip().lower() if isinstance(raw_role, str) else ""
        if role not in valid_roles:
            continue
        steps.append({"role": role, "agent": normalize_role_agent(item.get("agent"))})
    return steps


class StashConfig(_FallbackModel):
    """Main configuration for Skillstash, loaded from ``.skillstash/config.yml``."""

    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    labels: LabelsConfig = Field(default_factory=LabelsConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    skills_dir: str = DEFAULT_SKILLS_DIR
    internal_skills_dir: str = DEFAULT_INTERNAL_SKILLS_DIR
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    workflow: tuple[WorkflowStep, ...] = ()
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("skills_dir", "internal_skills_dir", mode="before")
    @classmethod
    def _non_blank_dir(cls, value: Any, info: ValidationInfo) -> str:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return cls.model_fields[info.field_name].default

    @field_validator("workflow", mode="before")
    @classmethod
    def _filter_workflow(cls, value: Any) -> list[dict[str, str]]:
        return _normalize_workflow(value)


class RuntimeSettings(BaseSettings):
    """Per-run values supplied by the CI environment."""

    app_token: str = ""
    github_token: str = ""
    github_event_path: str = ""
    github_repository: str = ""
    github_api_url: str = "https://api.github.com"
    log_level: str = Field(default="", validation_alias="SKILLSTASH_LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )


def resolve_config_path(root: Path | str | None = None) -> Path | None:
    """Return the first existing config file under ``<root>/.skillstash``."""
    base = Path(root).expanduser() if root is not None else Path.cwd()
    for filename in CONFIG_FILENAMES:
        candidate = base / CONFIG_DIRNAME / filename
        if candidate.is_file():
            return candidate
    return None


def load_config(root: Path | str | None = None) -> StashConfig:
    """Load configuration for the repository at ``root``.

    Never fails: a missing or unreadable file, invalid YAML, or a
    non-mapping document yields the default configuration. Individual
    bad fields fall back to their own defaults.
    """
    config_path = resolve_config_path(root)
    if config_path is None:
        return StashConfig()

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError, yaml.YAMLError) as exc:
        log.warning("Config unreadable, using defaults", path=str(config_path), error=str(exc))
        return StashConfig()

    if not isinstance(data, dict):
        if data is not None:
            log.warning("Config is not a mapping, using defaults", path=str(config_path))
        return StashConfig()

    return StashConfig.model_validate(data)


def save_config(config: StashConfig, root: Path | str | None = None) -> Path:
    """Save configuration to ``<root>/.skillstash/config.yml``."""
    base = Path(root).expanduser() if root is not None else Path.cwd()
    config_path = base / CONFIG_DIRNAME / CONFIG_FILENAMES[0]
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(mode="json")

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    return config_path
