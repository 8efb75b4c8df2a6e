"""Custom exception hierarchy for icewatch."""

from __future__ import annotations


class IcewatchError(Exception):
    """Base exception for all icewatch errors."""


class IcewatchConfigError(IcewatchError):
    """Invalid or missing configuration."""


class IcewatchTransportError(IcewatchError):
    """HTTP-level failure (network, unexpected status, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class IcewatchBackendError(IcewatchTransportError):
    """The backend rejected a request with a structured error body.

    PostgREST answers failed reads and writes with a JSON object carrying
    ``code``, ``message``, ``details`` and ``hint``.  The ``code`` is a
    Postgres SQLSTATE (e.g. ``23505`` for a duplicate ``sensor_id``) or a
    ``PGRST`` code.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.code = code
        super().__init__(message, status_code=status_code, endpoint=endpoint)


class IcewatchSubscriptionError(IcewatchError):
    """A change-feed subscription could not be established.

    Raised when the realtime socket cannot be opened, when the backend
    rejects the channel join, or when the join is not acknowledged within
    ``IcewatchConfig.join_timeout``.
    """

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)
