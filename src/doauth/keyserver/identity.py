"""Encryption identity derivation strategies.

Two schemes exist and a deployment picks exactly one:

* ``policy``: every item shares one fixed identity (the policy id bytes).
* ``per_item``: identity = vault id bytes || item nonce.

Ciphertext written under one scheme cannot be decrypted under the other, so
switching schemes on a populated deployment is unsupported.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from doauth.config.settings import IdentityScheme
from doauth.utils.crypto import object_id_bytes

if TYPE_CHECKING:
    from doauth.config.settings import IdentityConfig


class IdentityStrategy(Protocol):
    """Maps an item's location and nonce to the identity it is encrypted under."""

    scheme: IdentityScheme

    def identity_for(self, vault_id: str, nonce: bytes) -> bytes: ...


class PolicyIdentity:
    scheme = IdentityScheme.POLICY

    def __init__(self, policy_id: str) -> None:
        if not policy_id:
            msg = "policy_id must not be empty"
            raise ValueError(msg)
        self._identity = policy_id.encode("utf-8")

    def identity_for(self, vault_id: str, nonce: bytes) -> bytes:  # noqa: ARG002
        return self._identity


class PerItemIdentity:
    scheme = IdentityScheme.PER_ITEM

    def identity_for(self, vault_id: str, nonce: bytes) -> bytes:
        if not nonce:
            msg = "per-item identities need a non-empty nonce"
            raise ValueError(msg)
        return object_id_bytes(vault_id) + nonce


def identity_strategy_from_config(config: IdentityConfig) -> IdentityStrategy:
    """Build the strategy selected by ``DOAUTH_IDENTITY__SCHEME``."""
    if config.scheme == IdentityScheme.PER_ITEM:
        return PerItemIdentity()
    return PolicyIdentity(config.policy_id)
