"""V1 item endpoints.

Plaintext is accepted base64-encoded, encrypted under the deployment's
identity scheme and written to the blob store; only the ciphertext
reference is kept on the ledger.
"""

from __future__ import annotations

import base64
import binascii
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from doauth.api.dependencies import get_engine, require_caller
from doauth.api.middleware.auth import CallerContext  # noqa: TC001
from doauth.api.v1.schemas import ItemContentRequest, ItemCreateRequest, ItemResponse
from doauth.engine.client import DOAuthEngine  # noqa: TC001
from doauth.engine.models import Item  # noqa: TC001
from doauth.errors.doauth_errors import ValidationError

router = APIRouter(tags=["item"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def item_resp(item: Item) -> ItemResponse:
    return ItemResponse(
        id=item.id,
        vault_id=item.vault_id,
        name=item.name,
        access_kind=item.access_kind,
        ciphertext_ref=item.ciphertext_ref,
        nonce=item.nonce.hex(),
        created_at=item.created_at,
    )


def _decode_data(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        msg = "data must be base64-encoded"
        raise ValidationError(msg) from exc


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/vaults/{vault_id}/items", status_code=201)
async def create_item(
    vault_id: str,
    body: ItemCreateRequest,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    """Encrypt and store a payload as a new item of the vault."""
    item = await engine.content_service.store_item(
        caller.address,
        body.cap_id,
        vault_id,
        name=body.name,
        plaintext=_decode_data(body.data),
        access_kind=body.access_kind,
        confirm=body.confirm,
    )
    return item_resp(item).model_dump(mode="json")


@router.get("/vaults/{vault_id}/items")
async def list_items(
    vault_id: str,
    _caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> list[dict]:
    items = await engine.vault_service.list_items(vault_id)
    return [item_resp(i).model_dump(mode="json") for i in items]


@router.get("/items/{item_id}")
async def get_item(
    item_id: str,
    _caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    item = await engine.vault_service.get_item(item_id)
    return item_resp(item).model_dump(mode="json")


@router.put("/vaults/{vault_id}/items/{item_id}")
async def replace_item_content(
    vault_id: str,
    item_id: str,
    body: ItemContentRequest,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    """Re-encrypt the item under its existing identity with new content."""
    item = await engine.content_service.replace_item_content(
        caller.address,
        body.cap_id,
        vault_id,
        item_id,
        _decode_data(body.data),
        confirm=body.confirm,
    )
    return item_resp(item).model_dump(mode="json")


@router.delete("/vaults/{vault_id}/items/{item_id}", status_code=204)
async def delete_item(
    vault_id: str,
    item_id: str,
    cap_id: Annotated[str, Query()],
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> None:
    await engine.vault_service.delete_item(caller.address, cap_id, vault_id, item_id)
