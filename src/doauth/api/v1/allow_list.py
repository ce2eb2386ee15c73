"""V1 allow-list endpoints (vault- and item-scoped access entries)."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from doauth.api.dependencies import get_engine, require_caller
from doauth.api.middleware.auth import CallerContext  # noqa: TC001
from doauth.api.v1.schemas import (
    AccessEntryResponse,
    AccessGrantRequest,
    AccessRevokeRequest,
    CapabilityRequest,
    CountResponse,
)
from doauth.engine.client import DOAuthEngine  # noqa: TC001
from doauth.engine.models import AccessEntry  # noqa: TC001

router = APIRouter(tags=["allow_list"])


def _entry_resp(entry: AccessEntry, now: int) -> dict:
    return AccessEntryResponse(
        id=entry.id,
        vault_id=entry.vault_id,
        item_id=entry.item_id,
        address=entry.address,
        access_kind=entry.access_kind,
        expires_at=entry.expires_at,
        active=entry.is_active(now),
    ).model_dump(mode="json")


@router.post("/vaults/{vault_id}/access", status_code=201)
async def grant_access(
    vault_id: str,
    body: AccessGrantRequest,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    """Add (or extend) an allow-list entry."""
    entry = await engine.allow_list_service.grant_access(
        caller.address,
        body.cap_id,
        vault_id,
        body.address,
        body.access_kind,
        body.expires_at,
        item_id=body.item_id,
    )
    return _entry_resp(entry, engine.ledger.now())


@router.post("/vaults/{vault_id}/access/revoke")
async def revoke_access(
    vault_id: str,
    body: AccessRevokeRequest,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    removed = await engine.allow_list_service.revoke_access(
        caller.address,
        body.cap_id,
        vault_id,
        body.address,
        body.access_kind,
        item_id=body.item_id,
    )
    return CountResponse(count=removed).model_dump(mode="json")


@router.get("/vaults/{vault_id}/access")
async def list_access(
    vault_id: str,
    _caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
    item_id: Annotated[str | None, Query()] = None,
) -> list[dict]:
    """Entries on the vault, or on one of its items with ``?item_id=``."""
    entries = await engine.allow_list_service.list_access(vault_id, item_id=item_id)
    now = engine.ledger.now()
    return [_entry_resp(e, now) for e in entries]


@router.post("/vaults/{vault_id}/access/prune")
async def prune_expired(
    vault_id: str,
    body: CapabilityRequest,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    removed = await engine.allow_list_service.prune_expired(caller.address, body.cap_id, vault_id)
    return CountResponse(count=removed).model_dump(mode="json")
