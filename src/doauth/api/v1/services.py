"""V1 OAuth service endpoints.

Operators register services, declaring the access kinds they will request,
and receive the service capability needed to update them.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from doauth.api.dependencies import get_engine, require_caller
from doauth.api.middleware.auth import CallerContext  # noqa: TC001
from doauth.api.v1.items import item_resp
from doauth.api.v1.schemas import (
    AuthorizationResponse,
    CapabilityResponse,
    ServiceCreateRequest,
    ServiceCreateResponse,
    ServiceResponse,
    ServiceUpdateRequest,
)
from doauth.engine.client import DOAuthEngine  # noqa: TC001
from doauth.engine.models import OAuthService  # noqa: TC001

router = APIRouter(tags=["service"])


def service_resp(service: OAuthService) -> ServiceResponse:
    return ServiceResponse(
        id=service.id,
        client_id=service.client_id,
        owner=service.owner,
        redirect_url=service.redirect_url,
        resource_kinds=list(service.resource_kinds),
        created_at=service.created_at,
    )


@router.post("/services", status_code=201)
async def register_service(
    body: ServiceCreateRequest,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    service, cap = await engine.service_registry.register_service(
        caller.address, body.client_id, body.redirect_url, body.resource_kinds
    )
    return ServiceCreateResponse(
        service=service_resp(service),
        capability=CapabilityResponse(id=cap.id, target_id=cap.service_id, holder=cap.holder),
    ).model_dump(mode="json")


@router.get("/services")
async def list_services(
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
    client_id: Annotated[str | None, Query()] = None,
) -> list[dict]:
    """Services registered under ``?client_id=``, else those the caller operates."""
    if client_id is not None:
        services = await engine.service_registry.find_services(client_id)
    else:
        services = await engine.service_registry.list_services_for(caller.address)
    return [service_resp(s).model_dump(mode="json") for s in services]


@router.get("/services/{service_id}")
async def get_service(
    service_id: str,
    _caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    service = await engine.service_registry.get_service(service_id)
    return service_resp(service).model_dump(mode="json")


@router.patch("/services/{service_id}")
async def update_service(
    service_id: str,
    body: ServiceUpdateRequest,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    service = await engine.service_registry.update_service(
        caller.address,
        body.cap_id,
        service_id,
        redirect_url=body.redirect_url,
        resource_kinds=body.resource_kinds,
    )
    return service_resp(service).model_dump(mode="json")


@router.get("/services/{service_id}/authorize")
async def begin_authorization(
    service_id: str,
    caller: Annotated[CallerContext, Depends(require_caller)],
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    """Selection view: the service plus every item the caller can grant."""
    request = await engine.grant_service.begin_authorization(service_id, caller.address)
    return AuthorizationResponse(
        service=service_resp(request.service),
        user_address=request.user_address,
        status=request.status.value,
        items=[item_resp(i) for i in request.selectable()],
    ).model_dump(mode="json")
