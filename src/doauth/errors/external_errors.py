"""Errors raised by external collaborators: blob store and decrypt oracle."""

from __future__ import annotations

from doauth.errors.doauth_errors import DOAuthError

_CONNECTIVITY_HINT = (
    "Check network connectivity, firewall rules for outbound connections and DNS resolution."
)


class NetworkError(DOAuthError):
    """External collaborator unreachable."""

    def __init__(self, message: str, *, status_code: int = 503) -> None:
        super().__init__(
            message,
            status_code=status_code,
            code="network-error",
            retryable=True,
            hint=_CONNECTIVITY_HINT,
        )


class ExternalTimeoutError(DOAuthError):
    """External call did not finish within its deadline."""

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(
            f"{operation} timed out after {timeout:g}s",
            status_code=504,
            code="timeout",
            retryable=True,
            hint=_CONNECTIVITY_HINT,
        )
        self.operation = operation
        self.timeout = timeout


class BlobNotFoundError(DOAuthError):
    """Blob is unknown to the store, or not yet distributed after a write."""

    def __init__(self, blob_ref: str) -> None:
        super().__init__(
            f"blob {blob_ref} not found",
            status_code=404,
            code="blob-not-found",
            retryable=True,
            hint="If the data was recently uploaded, wait a few moments and try again.",
        )
        self.blob_ref = blob_ref


class NotEnoughReplicasError(DOAuthError):
    """Blob exists but too few storage nodes answered."""

    def __init__(self, blob_ref: str) -> None:
        super().__init__(
            f"not enough replicas available for blob {blob_ref}",
            status_code=503,
            code="not-enough-replicas",
            retryable=True,
            hint="Data is temporarily unavailable; try again later.",
        )
        self.blob_ref = blob_ref


class InsufficientSharesError(DOAuthError):
    """Too few key servers returned a decryption share."""

    def __init__(self, message: str = "not enough key server shares to decrypt") -> None:
        super().__init__(
            message,
            status_code=503,
            code="insufficient-shares",
            retryable=True,
            hint=(
                "Data is temporarily unavailable; key servers may be unreachable. "
                "Try again later."
            ),
        )


class InvalidArtifactError(DOAuthError):
    """The decrypt oracle rejected the decryption-authorization artifact."""

    def __init__(self, message: str = "decryption authorization rejected") -> None:
        super().__init__(message, status_code=403, code="invalid-artifact")


class KeyServerError(DOAuthError):
    """Unexpected response from a key server."""

    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message, status_code=status_code, code="keyserver-error")


class BlobStoreError(DOAuthError):
    """Unexpected response from the blob store."""

    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message, status_code=status_code, code="blobstore-error")
