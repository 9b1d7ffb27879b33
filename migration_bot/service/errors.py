"""Error taxonomy shared by the service client, reconciler, and CLI."""

from __future__ import annotations


class MigrationBotError(RuntimeError):
    def __init__(self, message: str, reason_code: str) -> None:
        super().__init__(message)
        self.reason_code = reason_code


class PreconditionError(MigrationBotError):
    """Raised before any network call when the invocation itself is unusable."""

    def __init__(self, message: str, reason_code: str = "precondition_failed") -> None:
        super().__init__(message, reason_code=reason_code)


class RemoteRejectionError(MigrationBotError):
    """The change-management service answered with an error payload."""

    def __init__(
        self,
        message: str,
        code: int | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, reason_code="remote_rejected")
        self.code = code
        self.status_code = status_code


class ReconcileError(MigrationBotError):
    pass


__all__ = [
    "MigrationBotError",
    "PreconditionError",
    "ReconcileError",
    "RemoteRejectionError",
]
