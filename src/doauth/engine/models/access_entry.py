"""AccessEntry record: one standing grant of an access kind to an address."""

from __future__ import annotations

import enum

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from doauth.engine.models.base import Base, LedgerTimeMixin


class AccessKind(enum.IntEnum):
    """Flat access kinds. ``EDIT`` does not imply ``VIEW``."""

    VIEW = 0
    EDIT = 1
    DELETE = 2

    @classmethod
    def parse(cls, value: object) -> AccessKind | None:
        """Parse a stored value, returning None for anything unrecognised."""
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class AccessEntry(Base, LedgerTimeMixin):
    """Allow-list entry attached to exactly one vault or one item.

    The entry is active while ``now < expires_at`` (epoch millis).
    """

    __tablename__ = "access_entries"
    __table_args__ = (
        CheckConstraint(
            "(vault_id IS NULL) != (item_id IS NULL)",
            name="ck_access_entries_single_scope",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vault_id: Mapped[str | None] = mapped_column(
        String(66), ForeignKey("vaults.id"), nullable=True, index=True
    )
    item_id: Mapped[str | None] = mapped_column(
        String(66), ForeignKey("items.id"), nullable=True, index=True
    )
    address: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    access_kind: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def is_active(self, now: int) -> bool:
        """True while ledger time is strictly before the expiry."""
        return now < self.expires_at

    def __repr__(self) -> str:
        scope = f"vault={self.vault_id}" if self.vault_id else f"item={self.item_id}"
        return (
            f"<AccessEntry {scope} address={self.address} "
            f"kind={self.access_kind} expires_at={self.expires_at}>"
        )
