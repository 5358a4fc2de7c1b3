"""Domain exceptions for the generation pipeline.

Only ValidationError is raised synchronously to API callers. Everything else
happens inside a detached job and surfaces through the progress snapshot's
``error`` field.
"""

from __future__ import annotations


class TrailmapError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(TrailmapError):
    """Required request input is missing or malformed.

    Raised before a job is created, so the caller sees it directly.
    """


# -- Auth ---------------------------------------------------------------------


class AuthError(TrailmapError):
    """Problem obtaining a usable Google access token."""


class NotAuthenticatedError(AuthError):
    """No credential has ever been stored; the OAuth consent flow must run."""


class ReauthRequiredError(AuthError):
    """The stored credential cannot be renewed and must be re-issued out of band.

    Attributes:
        reason: Short machine-readable reason (``no_refresh_token``,
            ``invalid_grant``, ``expired_refresh_failed``,
            ``oauth_not_configured``).
    """

    def __init__(self, message: str, reason: str) -> None:
        self.reason = reason
        super().__init__(message)


# -- Upstream collaborators ---------------------------------------------------


class UpstreamError(TrailmapError):
    """A collaborator call failed and will not be retried.

    Attributes:
        service: Name of the upstream service.
        status_code: HTTP status if the failure came from a response.
    """

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


class UpstreamRateLimited(UpstreamError):
    """The upstream answered 429. Retried with exponential backoff."""

    def __init__(self, service: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(service, "rate limited", status_code=429)


# -- Persistence ---------------------------------------------------------------


class PersistenceError(TrailmapError):
    """Writing to or deleting from the history store failed.

    Logged and swallowed by the pipeline; never fails a job.
    """


# -- Pipeline -------------------------------------------------------------------


class StageError(TrailmapError):
    """A required pipeline step raised.

    Attributes:
        step_index: Position of the step in the job's step list.
        step_name: Human-readable step name.
        original_error: The underlying exception.
    """

    def __init__(
        self,
        step_index: int,
        step_name: str,
        original_error: BaseException,
    ) -> None:
        self.step_index = step_index
        self.step_name = step_name
        self.original_error = original_error
        super().__init__(f"{step_name} failed: {original_error}")
