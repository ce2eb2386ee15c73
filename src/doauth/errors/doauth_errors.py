"""DOAuthError: base exception class and the control-plane error taxonomy."""

from __future__ import annotations

from typing import Any


class DOAuthError(Exception):
    """Base error for all DOAuth operations.

    Attributes:
        message: Human-readable error description.
        status_code: Suggested HTTP status code.
        code: Machine-readable error code string.
        retryable: Whether the caller may retry the same request unchanged.
        hint: Optional remediation hint shown to the user.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        code: str = "doauth-error",
        retryable: bool = False,
        hint: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.retryable = retryable
        self.hint = hint

    def details(self) -> dict[str, Any]:
        """Structured details for API error bodies."""
        details: dict[str, Any] = {"retryable": self.retryable}
        if self.hint:
            details["suggestion"] = self.hint
        return details


class UnauthorizedError(DOAuthError):
    """Presented capability (or authentication) does not match the target."""

    def __init__(self, message: str = "unauthorized", *, status_code: int = 403) -> None:
        super().__init__(message, status_code=status_code, code="unauthorized")


class ValidationError(DOAuthError):
    """Malformed or out-of-range input."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=400, code="invalid-input")


class InvalidExpiryError(DOAuthError):
    """Expiry is not strictly in the future of ledger time."""

    def __init__(self, expires_at: int, now: int) -> None:
        super().__init__(
            f"expiry {expires_at} is not after ledger time {now}",
            status_code=400,
            code="invalid-expiry",
        )
        self.expires_at = expires_at
        self.now = now


class NoCapabilityForVaultError(DOAuthError):
    """Grant issuance referenced a vault the caller holds no capability for."""

    def __init__(self, vault_id: str) -> None:
        super().__init__(
            f"no capability held for vault {vault_id}",
            status_code=403,
            code="no-capability-for-vault",
        )
        self.vault_id = vault_id


class AccessDeniedError(DOAuthError):
    """The access decision was DENY; ``reason`` carries the decision reason."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"access denied: {reason}", status_code=403, code="access-denied")
        self.reason = reason

    def details(self) -> dict[str, Any]:
        details = super().details()
        details["reason"] = self.reason
        return details


class InvalidCredentialError(DOAuthError):
    """Session credential is expired, unsigned, or improperly signed."""

    def __init__(self, message: str = "invalid session credential") -> None:
        super().__init__(
            message,
            status_code=401,
            code="invalid-credential",
            hint="Create and sign a new session credential.",
        )


class DanglingReferenceError(DOAuthError):
    """A ledger record references a missing or inconsistent record."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=500, code="dangling-reference")


class NotFoundError(DOAuthError):
    """A ledger record does not exist."""

    def __init__(self, message: str, *, code: str = "not-found") -> None:
        super().__init__(message, status_code=404, code=code)


class VaultNotEmptyError(DOAuthError):
    """Attempted deletion of a vault that still lists items."""

    def __init__(self, vault_id: str, item_count: int) -> None:
        super().__init__(
            f"vault {vault_id} still holds {item_count} item(s)",
            status_code=409,
            code="vault-not-empty",
            hint="Delete the vault's items first.",
        )
        self.vault_id = vault_id
