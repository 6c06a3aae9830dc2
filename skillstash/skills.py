"""Skill naming, issue-form parsing, SKILL.md synthesis, and skill paths."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from skillstash.config import DEFAULT_SKILLS_DIR, StashConfig, WorkflowRole

SKILL_FILENAME = "SKILL.md"
RESEARCH_DIRNAME = ".research"

BranchAction = Literal["add", "update", "remove"]
BRANCH_ACTIONS: tuple[str, ...] = ("add", "update", "remove")

# Issue-form headings, as rendered by GitHub into the issue body.
FIELD_SKILL_NAME = "Skill name"
FIELD_DESCRIPTION = "What should this skill do?"
FIELD_SOURCES = "Sources to research (optional)"
FIELD_SPEC = "Additional spec (optional)"

_KEBAB_RE = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
_DISALLOWED_CHARS_RE = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE_RE = re.compile(r"\s+")
_HYPHEN_RUN_RE = re.compile(r"-+")
_TITLE_NAME_RE = re.compile(r"skill:\s*(.+)", re.IGNORECASE)

_INTERNAL_ROLE_SKILL = {
    WorkflowRole.RESEARCH: "skillstash-research",
    WorkflowRole.AUTHOR: "skillstash-author",
    WorkflowRole.REVIEW: "skillstash-review",
}


@dataclass(frozen=True)
class NormalizedName:
    name: str
    changed: bool


@dataclass(frozen=True)
class SkillRequest:
    """Fields pulled out of an issue or PR that asks for a new skill."""

    raw_name: str
    description: str
    sources: str | None = None
    spec: str | None = None


def is_kebab_case(name: str) -> bool:
    return bool(_KEBAB_RE.fullmatch(name))


def normalize_skill_name(raw: str) -> NormalizedName:
    """Turn free text into a kebab-case skill name.

    ``changed`` reports whether the result differs from the trimmed input.
    An empty ``name`` means no usable name was supplied.
    """
    trimmed = raw.strip()
    normalized = _DISALLOWED_CHARS_RE.sub("", trimmed.lower())
    normalized = _WHITESPACE_RE.sub("-", normalized)
    normalized = _HYPHEN_RUN_RE.sub("-", normalized)
    normalized = normalized.strip("-")
    return NormalizedName(name=normalized, changed=normalized != trimmed)


def extract_field(body: str, label: str) -> str | None:
    """Return the text under a ``### <label>`` heading.

    The heading must start a line and matches case-insensitively; the
    value runs to the next line starting with ``### `` or the end of the
    body. This mirrors GitHub issue-form rendering, not Markdown in
    general. A missing heading and an empty value both return ``None``.
    """
    pattern = re.compile(
        rf"^###[ \t]+{re.escape(label)}[ \t]*(?:\r?\n|\Z)(.*?)(?=^###\s|\Z)",
        re.IGNORECASE | re.DOTALL | re.MULTILINE,
    )
    match = pattern.search(body or "")
    if not match:
        return None
    value = match.group(1).strip()
    return value or None


def issue_title_to_name(title: str) -> str | None:
    match = _TITLE_NAME_RE.search(title or "")
    return match.group(1).strip() if match else None


def sanitize_lines(value: str) -> str:
    """Drop blank lines and surrounding whitespace from each line."""
    lines = (line.strip() for line in re.split(r"\r?\n", value))
    return "\n".join(line for line in lines if line)


def title_from_kebab(name: str) -> str:
    return " ".join(part[0].upper() + part[1:] for part in name.split("-") if part)


def build_skill_markdown(
    name: str,
    description: str,
    sources: str | None = None,
    spec: str | None = None,
) -> str:
    """Render a new SKILL.md.

    Section order is fixed; the optional sections appear only when their
    input is non-empty.
    """
    lines = [
        "---",
        f"name: {name}",
        f"description: {description}",
        "---",
        "",
        f"# {title_from_kebab(name)}",
        "",
        description,
        "",
        "## When this skill activates",
        "",
        f"- When a user asks for {name} by name",
        f"- When a request aligns with: {description}",
        "",
        "## What this skill does",
        "",
        f"- Provides guidance and workflows related to {description}",
    ]

    if spec and spec.strip():
        lines.extend(["", "## Additional spec", "", spec.strip()])

    if sources and sources.strip():
        lines.extend(["", "## Sources", "", sources.strip()])

    lines.append("")
    return "\n".join(lines)


def parse_skill_request(title: str, body: str | None, clean_sources: bool = True) -> SkillRequest:
    """Read the issue-form fields, falling back to the title for the name."""
    text = body or ""
    raw_name = extract_field(text, FIELD_SKILL_NAME) or issue_title_to_name(title) or title or ""
    description = extract_field(text, FIELD_DESCRIPTION) or ""
    sources = extract_field(text, FIELD_SOURCES)
    spec = extract_field(text, FIELD_SPEC)
    if sources and clean_sources:
        sources = sanitize_lines(sources)
    return SkillRequest(
        raw_name=raw_name.strip(),
        description=description.strip(),
        sources=sources.strip() if sources else None,
        spec=spec.strip() if spec else None,
    )


def branch_name(name: str, action: BranchAction = "add") -> str:
    if action not in BRANCH_ACTIONS:
        raise ValueError(f"Unknown branch action: {action}")
    return f"skill/{action}-{name}"


def skills_root(root: Path | str, config: StashConfig | None = None) -> Path:
    skills_dir = config.skills_dir if config else DEFAULT_SKILLS_DIR
    return Path(root) / skills_dir


def skill_directory(name: str, root: Path | str, config: StashConfig | None = None) -> Path:
    return skills_root(root, config) / name


def skill_file_path(name: str, root: Path | str, config: StashConfig | None = None) -> Path:
    return skill_directory(name, root, config) / SKILL_FILENAME


def internal_skill_path(role: WorkflowRole, root: Path | str, config: StashConfig) -> Path:
    """Path of the bundled instructions an agent follows for ``role``."""
    return Path(root) / config.internal_skills_dir / _INTERNAL_ROLE_SKILL[role] / SKILL_FILENAME


def compose_prompt(
    role: WorkflowRole,
    root: Path | str,
    config: StashConfig,
    context_blocks: list[str] | None = None,
) -> str:
    """Internal role skill followed by the non-empty context blocks."""
    skill = internal_skill_path(role, root, config).read_text(encoding="utf-8")
    parts = [skill.strip()]
    parts.extend(block.strip() for block in context_blocks or [] if block.strip())
    return "\n\n".join(parts)


def write_skill_file(
    root: Path | str,
    config: StashConfig,
    name: str,
    description: str,
    sources: str | None = None,
    spec: str | None = None,
) -> Path:
    """Create ``<skills_dir>/<name>/SKILL.md``; an existing file is never overwritten."""
    if not name:
        raise ValueError("Skill name is empty after normalization.")
    skill_path = skill_file_path(name, root, config)
    if skill_path.exists():
        raise FileExistsError(f"Skill already exists: {skill_path}")
    skill_path.parent.mkdir(parents=True, exist_ok=True)
    skill_path.write_text(
        build_skill_markdown(name, description, sources=sources, spec=spec),
        encoding="utf-8",
    )
    return skill_path
