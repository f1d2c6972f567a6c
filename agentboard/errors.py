from typing import Any, Dict, Optional


class AgentboardError(RuntimeError):
    """
    Base error for pipeline components. Carries metadata for structured logging
    and tells the worker runtime whether a failed job may be retried.
    """

    category: str = "runtime"
    retryable: bool = True

    def __init__(self, message: str, *, metadata: Optional[Dict[str, Any]] = None, retryable: Optional[bool] = None) -> None:
        super().__init__(message)
        self.metadata = metadata or {}
        if retryable is not None:
            self.retryable = retryable


class ValidationError(AgentboardError):
    """Raised when input validation fails (bad payloads, broken task invariants)."""

    category = "validation"
    retryable = False


class ConfigError(AgentboardError):
    """Raised when configuration is invalid or missing."""

    category = "config"
    retryable = False


class NotFoundError(AgentboardError):
    """A record the job depends on does not exist; retrying cannot fix it."""

    category = "not_found"
    retryable = False


class ProjectNotFoundError(NotFoundError):
    pass


class AgentNotFoundError(NotFoundError):
    pass


class TaskNotFoundError(NotFoundError):
    pass


class ResponderError(AgentboardError):
    """Raised when the language model call behind an agent reply fails."""

    category = "llm"


class RepositoryCommitError(AgentboardError):
    """Raised when committing to the bound repository fails."""

    category = "github"
