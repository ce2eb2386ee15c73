"""OAuthService, ServiceCapability and OAuthGrant records."""

from __future__ import annotations

from sqlalchemy import JSON, BigInteger, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from doauth.engine.models.base import Base, LedgerTimeMixin


class OAuthService(Base, LedgerTimeMixin):
    """Third-party service registered by its operator.

    ``client_id`` is not guaranteed unique; the record id is.
    """

    __tablename__ = "oauth_services"

    id: Mapped[str] = mapped_column(String(66), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    owner: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    redirect_url: Mapped[str] = mapped_column(Text, nullable=False)
    resource_kinds: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<OAuthService id={self.id[:18]}... client_id={self.client_id!r}>"


class ServiceCapability(Base, LedgerTimeMixin):
    """Capability proving control over an OAuthService record."""

    __tablename__ = "service_capabilities"

    id: Mapped[str] = mapped_column(String(66), primary_key=True)
    service_id: Mapped[str] = mapped_column(
        String(66), ForeignKey("oauth_services.id"), nullable=False, unique=True
    )
    holder: Mapped[str] = mapped_column(String(66), nullable=False, index=True)

    def authorizes(self, service_id: str) -> bool:
        """True iff this capability targets *service_id*."""
        return self.service_id == service_id


class OAuthGrant(Base, LedgerTimeMixin):
    """Grant of scoped, time-limited access to a service, issued by a user.

    ``user_address`` authorized the grant; ``owner_address`` is the service-side
    recipient placed on allow-lists. ``access_kinds`` maps each resource id to
    the kind it was disclosed with. Never mutated after creation except for
    ``revoked_at``.
    """

    __tablename__ = "oauth_grants"

    id: Mapped[str] = mapped_column(String(66), primary_key=True)
    service_id: Mapped[str] = mapped_column(
        String(66), ForeignKey("oauth_services.id"), nullable=False, index=True
    )
    client_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_address: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    owner_address: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    resource_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    access_kinds: Mapped[dict[str, int]] = mapped_column(JSON, nullable=False, default=dict)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    bearer_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    revoked_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True, default=None)

    def __repr__(self) -> str:
        return (
            f"<OAuthGrant id={self.id[:18]}... client_id={self.client_id!r} "
            f"resources={len(self.resource_ids)} expires_at={self.expires_at}>"
        )
