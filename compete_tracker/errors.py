"""Error types for Compete Tracker."""

from typing import Optional


class TrackerError(Exception):
    """Base class for all tracker errors."""


# ============================================================================
# Remote agent errors
# ============================================================================


class AgentError(TrackerError):
    """Failure while talking to the remote browsing agent."""


class AgentNotConfigured(AgentError):
    """Agent base URL or API key is missing."""


class NetworkError(AgentError):
    """Transport failure reaching the agent."""

    def __init__(self, url: str, cause: Exception):
        self.url = url
        self.cause = cause
        super().__init__(f"Agent network error calling {url}: {cause}")


class ProviderError(AgentError):
    """Non-success status, malformed JSON or failed task reported by the agent."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        detail = message
        if status_code is not None:
            detail = f"{detail} (status {status_code})"
        super().__init__(detail)


class AgentTimeoutError(AgentError):
    """Task did not reach a terminal status within the polling bounds."""

    def __init__(self, task_id: str, elapsed: float, attempts: int):
        self.task_id = task_id
        self.elapsed = elapsed
        self.attempts = attempts
        super().__init__(
            f"Agent task {task_id} still running after {attempts} polls ({elapsed:.1f}s)"
        )


class TaskCancelled(AgentError):
    """Caller cancelled the operation."""


# ============================================================================
# Refresh errors
# ============================================================================


class RefreshError(TrackerError):
    """A tracked-entity refresh could not be completed."""


class MissingIdentity(RefreshError):
    """Entity lacks the URL needed to scrape it."""


class EntityNotFound(RefreshError):
    """No stored entity matches the requested identity."""


class EmptyScrapeError(RefreshError):
    """Scrape finished but produced no metric values."""


class BlockedOrUnavailable(RefreshError):
    """Scrape target refused access (bot check, CAPTCHA, region block)."""

    def __init__(self, reason: str, url: Optional[str] = None):
        self.reason = reason
        self.url = url
        message = f"Scrape blocked: {reason}"
        if url:
            message = f"{message} ({url})"
        super().__init__(message)
