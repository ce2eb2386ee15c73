"""Declarative base and shared columns for ledger records."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, BigInteger
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all ledger records."""

    type_annotation_map = {  # noqa: RUF012
        dict[str, Any]: JSON,
    }


class LedgerTimeMixin:
    """Creation time in ledger epoch milliseconds, stamped by the ledger transaction."""

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
