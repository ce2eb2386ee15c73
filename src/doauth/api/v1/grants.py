"""V1 grant endpoints.

The authorizing user issues and revokes grants; the service operator lists
what it received and trades a grant's bearer token plus a signed session
credential for an access token.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from doauth.api.dependencies import get_engine, require_caller
from doauth.api.middleware.auth import CallerContext  # noqa: TC001
from doauth.api.v1.schemas import (
    GrantCreateRequest,
    GrantExchangeRequest,
    GrantExchangeResponse,
    GrantResponse,
)
from doauth.engine.client import DOAuthEngine  # noqa: TC001
from doauth.engine.models import OAuthGrant  # noqa: TC001
from doauth.engine.services.grant_service import grant_status
from doauth.errors.doauth_errors import UnauthorizedError, ValidationError
from doauth.session.credential import SessionCredential

router = APIRouter(tags=["grant"])


def _grant_resp(grant: OAuthGrant, now: int, *, viewer: str | None = None) -> dict:
    parties = (grant.user_address, grant.owner_address)
    return GrantResponse(
        id=grant.id,
        service_id=grant.service_id,
        client_id=grant.client_id,
        user_address=grant.user_address,
        owner_address=grant.owner_address,
        resource_ids=list(grant.resource_ids),
        access_kinds=dict(grant.access_kinds),
        expires_at=grant.expires_at,
        revoked_at=grant.revoked_at,
        status=grant_status(grant, now).value,
        created_at=grant.created_at,
        bearer_token=grant.bearer_token if viewer in parties else None,
    ).model_dump(mode="json")


def _decode_hex(value: str, field: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError as exc:
        msg = f"{field} must be hex-encoded"
        raise ValidationError(msg) from exc


@router.post("/grants", status_code=201)
async def issue_grant(
    body: GrantCreateRequest,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    """Authorize a service for the selected items in one atomic step."""
    grant = await engine.grant_service.issue_grant(
        caller.address, body.service_id, body.selection, ttl_ms=body.ttl_ms
    )
    return _grant_resp(grant, engine.ledger.now(), viewer=caller.address)


@router.get("/grants")
async def list_issued_grants(
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> list[dict]:
    """Grants the caller authorized, newest first."""
    grants = await engine.grant_service.list_grants_for_user(caller.address)
    now = engine.ledger.now()
    return [_grant_resp(g, now, viewer=caller.address) for g in grants]


@router.get("/grants/received")
async def list_received_grants(
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> list[dict]:
    """Grants naming the caller as recipient, newest first."""
    grants = await engine.grant_service.list_grants_for_recipient(caller.address)
    now = engine.ledger.now()
    return [_grant_resp(g, now, viewer=caller.address) for g in grants]


@router.get("/grants/{grant_id}")
async def get_grant(
    grant_id: str,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    grant = await engine.grant_service.get_grant(grant_id)
    if caller.address not in (grant.user_address, grant.owner_address):
        msg = "grant is not visible to the caller"
        raise UnauthorizedError(msg)
    return _grant_resp(grant, engine.ledger.now(), viewer=caller.address)


@router.post("/grants/{grant_id}/revoke")
async def revoke_grant(
    grant_id: str,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    grant = await engine.grant_service.revoke_grant(caller.address, grant_id)
    return _grant_resp(grant, engine.ledger.now(), viewer=caller.address)


@router.post("/grants/{grant_id}/exchange")
async def exchange_grant(
    grant_id: str,
    body: GrantExchangeRequest,
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    """Trade the bearer token and a grant-bound credential for an access token.

    Authenticated by the bearer token and the credential signature, not by
    request signature.
    """
    credential = SessionCredential.import_(body.credential)
    public_key = _decode_hex(body.public_key, "public_key") if body.public_key else None
    signature = _decode_hex(body.signature, "signature") if body.signature else None
    token = await engine.grant_service.exchange_for_session_credential(
        grant_id,
        body.bearer_token,
        credential,
        public_key=public_key,
        signature=signature,
    )
    return GrantExchangeResponse(access_token=token).model_dump(mode="json", by_alias=True)
