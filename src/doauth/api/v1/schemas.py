"""V1 API request/response Pydantic schemas.

These are the *API-layer* schemas that define the HTTP contract. They do not
inherit from the ORM records; route code maps between the two. Binary
payloads travel base64-encoded, nonces and keys hex-encoded.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Generic
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Standard error body: ``{"code", "error", "details"}``."""

    code: str
    error: str
    details: dict[str, Any] = Field(default_factory=dict)


class CountResponse(BaseModel):
    """Number of records affected by a bulk operation."""

    count: int


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------


class VaultCreateRequest(BaseModel):
    """POST /api/v1/vaults: create a vault and its capability."""

    group_name: str


class VaultResponse(BaseModel):
    """Serialised vault."""

    id: str
    owner: str
    group_name: str
    item_ids: list[str] = Field(default_factory=list)
    created_at: int = 0
    capability_id: str | None = None


class CapabilityResponse(BaseModel):
    """Serialised vault or service capability."""

    id: str
    target_id: str
    holder: str


class VaultCreateResponse(BaseModel):
    vault: VaultResponse
    capability: CapabilityResponse


class VaultTransferRequest(BaseModel):
    """POST /api/v1/vaults/{vault_id}/transfer: hand the capability over."""

    cap_id: str
    new_holder: str


# ---------------------------------------------------------------------------
# Item
# ---------------------------------------------------------------------------


class ItemCreateRequest(BaseModel):
    """POST /api/v1/vaults/{vault_id}/items: encrypt and store a payload."""

    cap_id: str
    name: str
    data: str  # base64 plaintext
    access_kind: int = 0
    confirm: bool = False


class ItemContentRequest(BaseModel):
    """PUT /api/v1/vaults/{vault_id}/items/{item_id}: replace the payload."""

    cap_id: str
    data: str  # base64 plaintext
    confirm: bool = False


class ItemResponse(BaseModel):
    """Serialised item (never includes plaintext)."""

    id: str
    vault_id: str
    name: str
    access_kind: int
    ciphertext_ref: str
    nonce: str  # hex
    created_at: int = 0


# ---------------------------------------------------------------------------
# Allow-list
# ---------------------------------------------------------------------------


class AccessGrantRequest(BaseModel):
    """POST /api/v1/vaults/{vault_id}/access: add an allow-list entry."""

    cap_id: str
    address: str
    access_kind: int
    expires_at: int
    item_id: str | None = None


class AccessRevokeRequest(BaseModel):
    """POST /api/v1/vaults/{vault_id}/access/revoke: remove matching entries."""

    cap_id: str
    address: str
    access_kind: int
    item_id: str | None = None


class CapabilityRequest(BaseModel):
    """Body carrying only the presented capability."""

    cap_id: str


class AccessEntryResponse(BaseModel):
    """Serialised allow-list entry."""

    id: int
    vault_id: str | None = None
    item_id: str | None = None
    address: str
    access_kind: int
    expires_at: int
    active: bool


# ---------------------------------------------------------------------------
# OAuth services
# ---------------------------------------------------------------------------


class ServiceCreateRequest(BaseModel):
    """POST /api/v1/services: register an OAuth service."""

    client_id: str
    redirect_url: str
    resource_kinds: list[int]


class ServiceUpdateRequest(BaseModel):
    """PATCH /api/v1/services/{service_id}."""

    cap_id: str
    redirect_url: str | None = None
    resource_kinds: list[int] | None = None


class ServiceResponse(BaseModel):
    """Serialised OAuth service."""

    id: str
    client_id: str
    owner: str
    redirect_url: str
    resource_kinds: list[int]
    created_at: int = 0


class ServiceCreateResponse(BaseModel):
    service: ServiceResponse
    capability: CapabilityResponse


# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------


class AuthorizationResponse(BaseModel):
    """GET /api/v1/services/{service_id}/authorize: selection view."""

    service: ServiceResponse
    user_address: str
    status: str
    items: list[ItemResponse]


class GrantCreateRequest(BaseModel):
    """POST /api/v1/grants: authorize a service for the selected items.

    ``selection`` is either a list of item ids (View access) or a mapping
    of item id to access kind.
    """

    service_id: str
    selection: dict[str, int] | list[str]
    ttl_ms: int | None = None


class GrantResponse(BaseModel):
    """Serialised grant. ``bearer_token`` is only shown to its two parties."""

    id: str
    service_id: str
    client_id: str
    user_address: str
    owner_address: str
    resource_ids: list[str]
    access_kinds: dict[str, int] = Field(default_factory=dict)
    expires_at: int
    revoked_at: int | None = None
    status: str
    created_at: int = 0
    bearer_token: str | None = None


class GrantExchangeRequest(BaseModel):
    """POST /api/v1/grants/{grant_id}/exchange: trade token + credential."""

    bearer_token: str
    credential: str  # exported session credential
    public_key: str | None = None  # hex, when the signature is attached here
    signature: str | None = None  # hex DER

    model_config = {"populate_by_name": True}


class GrantExchangeResponse(BaseModel):
    access_token: str = Field(alias="accessToken")

    model_config = {"populate_by_name": True}


# ---------------------------------------------------------------------------
# Data (front-end boundary)
# ---------------------------------------------------------------------------


class UserDataRequest(BaseModel):
    """POST /api/v1/data/get-user-data."""

    access_token: str = Field(alias="accessToken")
    vault_id: str = Field(alias="vaultId")
    item_id: str = Field(alias="itemId")

    model_config = {"populate_by_name": True}


class UserDataResponse(BaseModel):
    decrypted_data: str = Field(alias="decryptedData")  # base64
    size: int

    model_config = {"populate_by_name": True}
