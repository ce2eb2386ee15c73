"""OAuth service registry: third-party services and their capabilities."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from sqlalchemy import select

from doauth.engine.models import OAuthService, ServiceCapability
from doauth.engine.services.vault_service import parse_access_kind
from doauth.errors.definitions import (
    ErrCapabilityMismatch,
    ErrCapabilityNotHeld,
    ErrServiceNotFound,
)
from doauth.errors.doauth_errors import ValidationError
from doauth.utils.crypto import new_object_id

if TYPE_CHECKING:
    from collections.abc import Iterable

    from doauth.engine.client import DOAuthEngine
    from doauth.engine.models import AccessKind

logger = logging.getLogger(__name__)


def _validate_redirect_url(url: str) -> str:
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        msg = f"redirect_url must be an absolute http(s) URL: {url!r}"
        raise ValidationError(msg)
    return url


def _normalize_kinds(kinds: Iterable[int | AccessKind]) -> list[int]:
    normalized = sorted({int(parse_access_kind(k)) for k in kinds})
    if not normalized:
        msg = "resource_kinds must declare at least one access kind"
        raise ValidationError(msg)
    return normalized


class ServiceRegistry:
    """Registration and maintenance of OAuth services by their operators."""

    def __init__(self, engine: DOAuthEngine) -> None:
        self._engine = engine

    async def register_service(
        self,
        operator: str,
        client_id: str,
        redirect_url: str,
        resource_kinds: Iterable[int | AccessKind],
    ) -> tuple[OAuthService, ServiceCapability]:
        """Create a service record and its capability, delivered to *operator*."""
        client_id = (client_id or "").strip()
        if not client_id:
            msg = "client_id must not be empty"
            raise ValidationError(msg)
        redirect_url = _validate_redirect_url(redirect_url)
        kinds = _normalize_kinds(resource_kinds)

        async with self._engine.ledger.transaction() as tx:
            service = await tx.add(
                OAuthService(
                    id=new_object_id(),
                    client_id=client_id,
                    owner=operator,
                    redirect_url=redirect_url,
                    resource_kinds=kinds,
                )
            )
            cap = await tx.add(
                ServiceCapability(id=new_object_id(), service_id=service.id, holder=operator)
            )
        logger.info("OAuth service %s registered (client_id=%s)", service.id, client_id)
        return service, cap

    async def update_service(
        self,
        caller: str,
        cap_id: str,
        service_id: str,
        *,
        redirect_url: str | None = None,
        resource_kinds: Iterable[int | AccessKind] | None = None,
    ) -> OAuthService:
        """Change a service's redirect URL and/or declared kinds.

        Grants already issued keep the kinds they were issued with.
        """
        async with self._engine.ledger.transaction() as tx:
            cap = await tx.get(ServiceCapability, cap_id)
            if cap is None or not cap.authorizes(service_id):
                raise ErrCapabilityMismatch
            if cap.holder != caller:
                raise ErrCapabilityNotHeld
            service = await tx.require(OAuthService, service_id, ErrServiceNotFound)
            if redirect_url is not None:
                service.redirect_url = _validate_redirect_url(redirect_url)
            if resource_kinds is not None:
                service.resource_kinds = _normalize_kinds(resource_kinds)
            await tx.flush()
        logger.info("OAuth service %s updated", service_id)
        return service

    async def get_service(self, service_id: str) -> OAuthService:
        async with self._engine.ledger.view() as view:
            return await view.require(OAuthService, service_id, ErrServiceNotFound)

    async def find_services(self, client_id: str) -> list[OAuthService]:
        """All services registered under *client_id* (not unique), oldest first."""
        async with self._engine.ledger.view() as view:
            services = await view.scalars(
                select(OAuthService)
                .where(OAuthService.client_id == client_id)
                .order_by(OAuthService.created_at, OAuthService.id)
            )
        return list(services)

    async def list_services_for(self, operator: str) -> list[OAuthService]:
        """Services whose capability *operator* holds."""
        async with self._engine.ledger.view() as view:
            services = await view.scalars(
                select(OAuthService)
                .join(ServiceCapability, ServiceCapability.service_id == OAuthService.id)
                .where(ServiceCapability.holder == operator)
                .order_by(OAuthService.created_at, OAuthService.id)
            )
        return list(services)
