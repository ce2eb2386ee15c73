"""Vault and VaultCapability records."""

from __future__ import annotations

from sqlalchemy import JSON, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from doauth.engine.models.base import Base, LedgerTimeMixin


class Vault(Base, LedgerTimeMixin):
    """A named group of encrypted items controlled through a VaultCapability.

    ``item_ids`` keeps insertion order. Reassign the list (never mutate it in
    place) so the change is flushed.
    """

    __tablename__ = "vaults"

    id: Mapped[str] = mapped_column(String(66), primary_key=True)
    owner: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    group_name: Mapped[str] = mapped_column(Text, nullable=False)
    item_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<Vault id={self.id[:18]}... owner={self.owner[:18]}... items={len(self.item_ids)}>"


class VaultCapability(Base, LedgerTimeMixin):
    """Unforgeable capability bound 1:1 to a vault.

    Holding it is necessary and sufficient to mutate the vault.
    """

    __tablename__ = "vault_capabilities"

    id: Mapped[str] = mapped_column(String(66), primary_key=True)
    vault_id: Mapped[str] = mapped_column(
        String(66), ForeignKey("vaults.id"), nullable=False, unique=True
    )
    holder: Mapped[str] = mapped_column(String(66), nullable=False, index=True)

    def authorizes(self, vault_id: str) -> bool:
        """True iff this capability targets *vault_id*."""
        return self.vault_id == vault_id

    def __repr__(self) -> str:
        return f"<VaultCapability id={self.id[:18]}... vault={self.vault_id[:18]}...>"
