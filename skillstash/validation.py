"""Structural validation of skill packages under the skills root."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml

from skillstash.config import StashConfig, ValidationConfig
from skillstash.logging import get_logger
from skillstash.skills import SKILL_FILENAME, is_kebab_case, skills_root

log = get_logger(__name__)

Severity = Literal["error", "warning"]

_FRONTMATTER_RE = re.compile(r"^---\s*\r?\n(.*?)\r?\n---\s*(?:\r?\n|\Z)", re.DOTALL)


@dataclass(frozen=True)
class Diagnostic:
    file: str
    message: str
    severity: Severity = "error"


@dataclass
class SkillValidation:
    """Result for one skill package."""

    skill_path: str
    skill_name: str
    errors: list[Diagnostic] = field(default_factory=list)
    warnings: list[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def error(self, file: Path | str, message: str) -> None:
        self.errors.append(Diagnostic(file=str(file), message=message, severity="error"))

    def warning(self, file: Path | str, message: str) -> None:
        self.warnings.append(Diagnostic(file=str(file), message=message, severity="warning"))


@dataclass
class ValidationReport:
    """Results for every skill package in one run."""

    skills_dir: str
    results: list[SkillValidation] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(len(result.errors) for result in self.results)

    @property
    def warning_count(self) -> int:
        return sum(len(result.warnings) for result in self.results)

    @property
    def has_errors(self) -> bool:
        return any(result.errors for result in self.results)

    @property
    def exit_code(self) -> int:
        return 1 if self.has_errors else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "skills_dir": self.skills_dir,
            "errors": self.error_count,
            "warnings": self.warning_count,
            "skills": [
                {
                    "name": result.skill_name,
                    "path": result.skill_path,
                    "errors": [{"file": d.file, "message": d.message} for d in result.errors],
                    "warnings": [{"file": d.file, "message": d.message} for d in result.warnings],
                }
                for result in self.results
            ],
        }


def count_lines(content: str) -> int:
    """Count newline-delimited lines; a trailing newline adds an empty line."""
    return len(content.split("\n"))


def extract_frontmatter(content: str) -> tuple[dict[str, Any] | None, str | None]:
    """Parse the leading ``---`` block.

    Returns ``(frontmatter, None)`` on success or ``(None, error)``.
    """
    match = _FRONTMATTER_RE.match(content)
    if not match:
        return None, "No YAML frontmatter found (must start with --- and end with ---)"
    try:
        parsed = yaml.safe_load(match.group(1))
    except (ValueError, yaml.YAMLError) as exc:
        return None, f"Invalid YAML in frontmatter: {exc}"
    if not isinstance(parsed, dict):
        return None, "Frontmatter must be a YAML mapping of key: value pairs"
    return parsed, None


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def _check_document(skill_md: Path, result: SkillValidation, rules: ValidationConfig) -> None:
    try:
        content = skill_md.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        result.error(skill_md, f"Failed to read {SKILL_FILENAME}: {exc}")
        return

    line_count = count_lines(content)
    if line_count > rules.max_skill_lines:
        result.error(
            skill_md,
            f"{SKILL_FILENAME} has {line_count} lines (max: {rules.max_skill_lines})",
        )

    frontmatter, parse_error = extract_frontmatter(content)
    if parse_error:
        result.error(skill_md, parse_error)
        return

    for field_name in rules.required_frontmatter:
        if _is_blank(frontmatter.get(field_name)):
            result.error(skill_md, f"Missing or empty required frontmatter field: '{field_name}'")

    declared_name = frontmatter.get("name")
    if not _is_blank(declared_name) and declared_name != result.skill_name:
        result.error(
            skill_md,
            f"Frontmatter 'name' field ('{declared_name}') must match directory name "
            f"('{result.skill_name}')",
        )


def validate_skill(skill_path: Path | str, config: StashConfig) -> SkillValidation:
    """Validate one skill package directory. Reads only; never mutates."""
    path = Path(skill_path)
    rules = config.validation
    result = SkillValidation(skill_path=str(path), skill_name=path.name)

    if rules.enforce_kebab_case and not is_kebab_case(path.name):
        result.error(
            path,
            f"Skill directory name '{path.name}' must be kebab-case (lowercase with hyphens)",
        )

    for required_file in rules.required_files:
        if not (path / required_file).exists():
            result.error(path, f"Missing required file: {required_file}")

    skill_md = path / SKILL_FILENAME
    if skill_md.exists():
        _check_document(skill_md, result, rules)

    return result


def find_skills(skills_dir: Path | str) -> list[Path]:
    """Immediate, non-hidden subdirectories of the skills root."""
    root = Path(skills_dir)
    if not root.is_dir():
        return []
    return sorted(
        entry for entry in root.iterdir() if entry.is_dir() and not entry.name.startswith(".")
    )


def validate_skills(root: Path | str, config: StashConfig) -> ValidationReport:
    """Validate every skill package under ``<root>/<skills_dir>``."""
    skills_dir = skills_root(root, config)
    report = ValidationReport(skills_dir=config.skills_dir)
    for skill_path in find_skills(skills_dir):
        result = validate_skill(skill_path, config)
        if result.errors:
            log.debug("Skill failed validation", skill=result.skill_name, errors=len(result.errors))
        report.results.append(result)
    return report
