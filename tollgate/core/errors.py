"""
Exception taxonomy for the reconciliation engine.

Every failure inside a reconciliation pass is one of these. The engine turns
them into status conditions; only the command-line entry points ever turn
them into exit codes.
"""
from typing import Optional


class TollgateError(Exception):
    """Base exception for all operator errors."""
    pass


class InvalidDurationError(TollgateError):
    """
    A duration string on the request or its template could not be parsed.
    Terminal until someone edits the offending object.
    """
    def __init__(self, field_name: str, value: str, detail: str):
        self.field_name = field_name
        self.value = value
        super().__init__(f"{field_name} error: {detail}")


class TemplateNotFoundError(TollgateError):
    """The request references a template that does not exist (yet)."""
    pass


class BuilderError(TollgateError):
    """Base exception for provisioning and readiness failures."""
    pass


class TargetNotFoundError(BuilderError):
    """No usable target could be selected. Retried by later passes."""
    pass


class TargetNotReadyError(BuilderError):
    """The assigned target exists but is not usable right now."""
    pass


class AccessCommandError(BuilderError):
    """The template's access command pattern could not be rendered."""
    pass


class KubeAPIError(TollgateError):
    """
    Raised when the Kubernetes API rejects a call or cannot be reached.
    Carries the HTTP status so callers can branch without parsing messages.
    """
    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class KubeNotFoundError(KubeAPIError):
    """HTTP 404 from the API server."""
    pass


class KubeConflictError(KubeAPIError):
    """HTTP 409 from the API server (stale resourceVersion or name taken)."""
    pass


class StatusConflictError(TollgateError):
    """
    A status write lost an optimistic-concurrency race.
    The current pass is abandoned; the next pass re-derives from a fresh read.
    """
    pass
