# src/openapi_snapshot/errors.py
from __future__ import annotations


class SnapshotActionError(RuntimeError):
    pass


class ConfigurationError(SnapshotActionError):
    """Missing required input or unusable schema file. Raised before any submission."""


class CredentialError(SnapshotActionError):
    """No credential could be produced for the outbound request."""


class RemoteRejectionError(SnapshotActionError):
    """
    The snapshot service answered with a non-2xx status.

    Carries the numeric status and the verbatim response text so the failure can be
    diagnosed without repeating the request.
    """

    def __init__(self, status_code: int, body: str):
        super().__init__(f"API request failed with status {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class ReportingError(SnapshotActionError):
    """Writing the result to the pull request conversation failed."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SnapshotStageError(RuntimeError):
    def __init__(self, stage: str, inner: Exception):
        super().__init__(str(inner))
        self.stage = stage
        self.inner = inner
