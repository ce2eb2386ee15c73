"""Item record: one encrypted data entry in a vault."""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from doauth.engine.models.base import Base, LedgerTimeMixin


class Item(Base, LedgerTimeMixin):
    """Encrypted data item.

    ``vault_id`` is a back-reference: the vault's ``item_ids`` must list this
    item. ``nonce`` and ``access_kind`` never change after creation.
    """

    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(66), primary_key=True)
    vault_id: Mapped[str] = mapped_column(
        String(66), ForeignKey("vaults.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    access_kind: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ciphertext_ref: Mapped[str] = mapped_column(Text, nullable=False)
    nonce: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    def __repr__(self) -> str:
        return f"<Item id={self.id[:18]}... vault={self.vault_id[:18]}... name={self.name!r}>"
