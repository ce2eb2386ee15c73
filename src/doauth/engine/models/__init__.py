"""Ledger record models (SQLAlchemy ORM).

Import :data:`ALL_MODELS` for migration and table creation.
"""

from doauth.engine.models.access_entry import AccessEntry, AccessKind
from doauth.engine.models.base import Base, LedgerTimeMixin
from doauth.engine.models.item import Item
from doauth.engine.models.oauth import OAuthGrant, OAuthService, ServiceCapability
from doauth.engine.models.vault import Vault, VaultCapability

ALL_MODELS: list[type[Base]] = [
    Vault,
    VaultCapability,
    Item,
    AccessEntry,
    OAuthService,
    ServiceCapability,
    OAuthGrant,
]

__all__ = [
    "ALL_MODELS",
    "AccessEntry",
    "AccessKind",
    "Base",
    "Item",
    "LedgerTimeMixin",
    "OAuthGrant",
    "OAuthService",
    "ServiceCapability",
    "Vault",
    "VaultCapability",
]
