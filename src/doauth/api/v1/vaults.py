"""V1 vault endpoints.

Create, list, inspect, delete and transfer vaults. Mutations present the
vault capability id; the caller must hold it.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from doauth.api.dependencies import get_engine, require_caller
from doauth.api.middleware.auth import CallerContext  # noqa: TC001
from doauth.api.v1.schemas import (
    CapabilityResponse,
    VaultCreateRequest,
    VaultCreateResponse,
    VaultResponse,
    VaultTransferRequest,
)
from doauth.engine.client import DOAuthEngine  # noqa: TC001
from doauth.engine.models import Vault, VaultCapability  # noqa: TC001
from doauth.errors.definitions import ErrCapabilityMismatch

router = APIRouter(tags=["vault"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _vault(vault: Vault, *, capability_id: str | None = None) -> VaultResponse:
    return VaultResponse(
        id=vault.id,
        owner=vault.owner,
        group_name=vault.group_name,
        item_ids=list(vault.item_ids),
        created_at=vault.created_at,
        capability_id=capability_id,
    )


def _cap(cap: VaultCapability) -> CapabilityResponse:
    return CapabilityResponse(id=cap.id, target_id=cap.vault_id, holder=cap.holder)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/vaults", status_code=201)
async def create_vault(
    body: VaultCreateRequest,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    """Create a vault owned by the caller and return its capability."""
    vault, cap = await engine.vault_service.create_vault(caller.address, body.group_name)
    return VaultCreateResponse(
        vault=_vault(vault, capability_id=cap.id),
        capability=_cap(cap),
    ).model_dump(mode="json")


@router.get("/vaults")
async def list_vaults(
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> list[dict]:
    """Vaults whose capability the caller holds."""
    caps = await engine.vault_service.list_vault_capabilities(caller.address)
    cap_ids = {cap.vault_id: cap.id for cap in caps}
    vaults = await engine.vault_service.list_vaults_for(caller.address)
    return [_vault(v, capability_id=cap_ids.get(v.id)).model_dump(mode="json") for v in vaults]


@router.get("/vaults/{vault_id}")
async def get_vault(
    vault_id: str,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    vault = await engine.vault_service.get_vault(vault_id)
    cap = await engine.vault_service.find_vault_capability(caller.address, vault_id)
    return _vault(vault, capability_id=cap.id if cap else None).model_dump(mode="json")


@router.delete("/vaults/{vault_id}", status_code=204)
async def delete_vault(
    vault_id: str,
    cap_id: Annotated[str, Query()],
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> None:
    """Delete an empty vault together with its capability."""
    await engine.vault_service.delete_vault(caller.address, cap_id, vault_id)


@router.post("/vaults/{vault_id}/transfer")
async def transfer_vault(
    vault_id: str,
    body: VaultTransferRequest,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    """Move the vault capability (and ownership) to another address."""
    presented = await engine.vault_service.get_vault_capability(body.cap_id)
    if presented is None or not presented.authorizes(vault_id):
        raise ErrCapabilityMismatch
    cap = await engine.vault_service.transfer_vault_capability(
        caller.address, body.cap_id, body.new_holder
    )
    return _cap(cap).model_dump(mode="json")
