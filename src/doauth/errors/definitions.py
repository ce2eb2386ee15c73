"""Pre-built error instances for constant-message failures."""

from __future__ import annotations

from doauth.errors.doauth_errors import (
    InvalidCredentialError,
    NotFoundError,
    UnauthorizedError,
)

# -- Authentication --------------------------------------------------------

ErrUnauthenticated = UnauthorizedError("request authentication required", status_code=401)
ErrBadRequestSignature = UnauthorizedError("invalid request signature", status_code=401)

# -- Capabilities ----------------------------------------------------------

ErrCapabilityMismatch = UnauthorizedError("capability does not authorize this target")
ErrCapabilityNotHeld = UnauthorizedError("capability is not held by the caller")
ErrNotGrantAuthorizer = UnauthorizedError("only the authorizing user may revoke this grant")

# -- Not Found -------------------------------------------------------------

ErrVaultNotFound = NotFoundError("vault not found", code="vault-not-found")
ErrItemNotFound = NotFoundError("item not found", code="item-not-found")
ErrServiceNotFound = NotFoundError("oauth service not found", code="service-not-found")
ErrGrantNotFound = NotFoundError("oauth grant not found", code="grant-not-found")

# -- Credentials -----------------------------------------------------------

ErrCredentialExpired = InvalidCredentialError("session credential has expired")
ErrCredentialUnsigned = InvalidCredentialError("session credential is not signed")
ErrCredentialMalformed = InvalidCredentialError("session credential could not be decoded")
ErrCredentialAddressMismatch = InvalidCredentialError(
    "requester address does not match the credential"
)
