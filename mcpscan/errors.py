"""Exception types shared by the coordinator and the agent runtime."""

from __future__ import annotations

from typing import Optional


class NotFoundError(LookupError):
    """A referenced agent, scan request or scan result does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(ValueError):
    """A status change is not allowed from the request's current status."""

    def __init__(self, request_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Scan request {request_id} cannot move from {current} to {requested}"
        )
        self.request_id = request_id
        self.current = current
        self.requested = requested


class InvalidStatusError(ValueError):
    """A status value is unknown, or not allowed where it was given."""


class TransportError(RuntimeError):
    """Network, timeout or non-2xx failure while talking to the coordinator."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FetchError(TransportError):
    """The repository could not be cloned or copied."""


class AdapterError(RuntimeError):
    """A scanner adapter's tool or rule pass failed."""


class PipelineError(RuntimeError):
    """The clone -> scan -> submit pipeline failed for one scan request."""

    def __init__(self, request_id: str, cause: BaseException) -> None:
        super().__init__(f"Scan {request_id} failed: {cause}")
        self.request_id = request_id
        self.cause = cause
