"""Exceptions raised by the client.

Conflicts during resource creation are not exceptions. See
`ocean.reconcile.ConflictedWith`.
"""
from datetime import datetime


class OceanError(Exception):
    """Base class for all errors reported by the server."""


class ResourceNotFoundError(OceanError):
    def __init__(self, resource_id, message: str = ""):
        self.resource_id = resource_id
        super().__init__(message or f"resource not found: {resource_id!r}")


class AccessDeniedError(OceanError):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TooManyRequestsError(OceanError):
    """The account exceeded its API rate limit.

    Inputs:
        message: str
            Server supplied explanation.
        limit: int | None
            Number of requests permitted per hour (`ratelimit-limit` header).
        reset_at: datetime | None
            Time at which the oldest request expires (`ratelimit-reset`).
        retry_after: int | None
            Seconds the server asks us to wait (`retry-after` header).

    """

    def __init__(
        self,
        message: str,
        limit: int | None = None,
        reset_at: datetime | None = None,
        retry_after: int | None = None,
    ):
        self.message = message
        self.limit = limit
        self.reset_at = reset_at
        self.retry_after = retry_after
        super().__init__(message)


class WaitTimeoutError(OceanError, TimeoutError):
    def __init__(self, what: str, timeout: float):
        self.what = what
        self.timeout = timeout
        super().__init__(f"{what}: operation failed after {timeout}s")


class ResponseParseError(OceanError):
    """The server returned a body that is not valid JSON."""


class UnexpectedResponseError(AssertionError):
    """The server violated the API contract.

    Indicates either a change in the API or a bug in this library.
    """

    def __init__(self, message: str, status_code: int = -1):
        self.status_code = status_code
        super().__init__(message)


class ImmutableFieldError(ValueError):
    """The desired state changes a field the server cannot update.

    Call `copy_unchangeable_properties_from(live)` on the builder first.
    """

    def __init__(self, field: str, current, wanted):
        self.field = field
        self.current = current
        self.wanted = wanted
        super().__init__(
            f"<{field}> cannot be changed after creation "
            f"(current: {current!r}, wanted: {wanted!r})"
        )


class ClientClosedError(RuntimeError):
    def __init__(self):
        super().__init__("client was closed")


class ActionFailedError(OceanError):
    """An asynchronous server action, eg renaming a droplet, ended in `errored`."""

    def __init__(self, action_id: int, kind: str):
        self.action_id = action_id
        self.kind = kind
        super().__init__(f"action {action_id} <{kind}> failed")
