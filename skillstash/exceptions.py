"""Custom exceptions for Skillstash."""


class SkillstashError(Exception):
    """Base exception for Skillstash."""

    pass


class ConfigurationError(SkillstashError):
    """Configuration-related errors."""

    pass


class EventError(SkillstashError):
    """GitHub event payload is missing or malformed."""

    pass


class MissingTokenError(SkillstashError):
    """Neither an app token nor the built-in token is available."""

    def __init__(self, message: str = "No GitHub token available"):
        super().__init__(message)


class CommandError(SkillstashError):
    """External command exited with a non-zero status."""

    def __init__(self, command: list[str], exit_code: int, details: str = ""):
        rendered = " ".join(command)
        message = f"{rendered} failed with exit code {exit_code}"
        if details:
            message = f"{message}: {details}"
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code


class GitHubAPIError(SkillstashError):
    """GitHub API errors (auth, missing resource, branch protection, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
