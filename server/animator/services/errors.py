"""Terminal failure kinds raised by the video job client."""
from __future__ import annotations

from typing import Optional

# Upstream phrasing for a rejected API key. If Google rewords this message the
# rejection surfaces as a plain UpstreamError instead.
CREDENTIAL_REJECTION_MARKER = "entity was not found"


class JobError(RuntimeError):
    """Base class for every terminal generation failure."""

    kind = "job_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CredentialInvalidError(JobError):
    """Upstream rejected the API key; the caller should prompt for a new one."""

    kind = "credential_invalid"


class MissingArtifactError(JobError):
    kind = "missing_artifact"

    def __init__(self, message: str = "Failed to retrieve generated video URL.") -> None:
        super().__init__(message)


class DownloadFailedError(JobError):
    kind = "download_failed"

    def __init__(
        self,
        message: str = "Failed to fetch the video data.",
        *,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamError(JobError):
    """Any other submit/poll failure, message kept verbatim."""

    kind = "upstream"


class JobTimeoutError(JobError):
    kind = "timeout"


class JobCancelledError(JobError):
    kind = "cancelled"

    def __init__(self, message: str = "Video generation was cancelled.") -> None:
        super().__init__(message)


def is_credential_rejection(message: Optional[str]) -> bool:
    """Return whether an upstream error message means the API key was rejected."""

    return bool(message) and CREDENTIAL_REJECTION_MARKER in message


def classify_upstream_error(message: str) -> JobError:
    if is_credential_rejection(message):
        return CredentialInvalidError(message)
    return UpstreamError(message)
