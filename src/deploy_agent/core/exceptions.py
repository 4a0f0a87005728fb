"""Custom exceptions for the deploy agent."""

from typing import Optional


class DeployAgentError(Exception):
    """Base exception for all agent errors.

    ``status_code`` is the HTTP status the trigger endpoint answers with when
    the error escapes an update attempt.
    """

    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code or self.__class__.__name__


class UnauthorizedError(DeployAgentError):
    """Trigger request did not carry the configured secret."""

    status_code = 401


class BusyError(DeployAgentError):
    """Another update attempt holds the update slot."""
    pass


class ConfigError(DeployAgentError):
    """Credential directory could not be read or is invalid."""
    pass


class FetchError(DeployAgentError):
    """Deployment tree could not be replaced from the source server."""
    pass


class AuthError(FetchError):
    """Source server rejected the request (non-OK status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, code="FetchError")
        self.upstream_status = status_code


class StreamError(FetchError):
    """Archive stream broke off or could not be written to disk."""

    def __init__(self, message: str):
        super().__init__(message, code="FetchError")


class UnsafeEntryError(FetchError):
    """Archive entry resolves outside the destination directory."""

    def __init__(self, message: str, entry_name: str):
        super().__init__(message, code="FetchError")
        self.entry_name = entry_name


class CommandError(DeployAgentError):
    """External container CLI invocation failed."""

    def __init__(self, message: str, exit_code: Optional[int] = None, output: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output

    def __str__(self) -> str:
        message = super().__str__()
        if self.output:
            return f"{message}: {self.output}"
        return message


class DeployError(CommandError):
    """Rebuild and restart of the stack failed."""
    pass


class PruneError(CommandError):
    """Pruning unused images failed after a successful deployment."""
    pass
