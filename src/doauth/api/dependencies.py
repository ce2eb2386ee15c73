"""FastAPI dependency injection helpers.

Usage in a route::

    @router.get("/vaults")
    async def list_vaults(
        caller: Annotated[CallerContext, Depends(require_caller)],
        engine: Annotated[DOAuthEngine, Depends(get_engine)],
    ) -> ...:
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Request

from doauth.api.middleware.auth import (
    AUTH_HEADER_PUBKEY,
    AUTH_HEADER_SIGNATURE,
    AUTH_HEADER_TIME,
    CallerContext,
    authenticate_request,
)
from doauth.engine.client import DOAuthEngine  # noqa: TC001
from doauth.errors.doauth_errors import DOAuthError


def get_engine(request: Request) -> DOAuthEngine:
    """Retrieve the engine stored on ``app.state`` during lifespan startup.

    Raises:
        DOAuthError: 503 if the engine is not available.
    """
    engine: DOAuthEngine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        msg = "engine not initialized"
        raise DOAuthError(msg, status_code=503, code="engine-unavailable", retryable=True)
    return engine


async def require_caller(
    request: Request,
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
    x_auth_pubkey: Annotated[str, Header(alias=AUTH_HEADER_PUBKEY)] = "",
    x_auth_time: Annotated[str, Header(alias=AUTH_HEADER_TIME)] = "",
    x_auth_signature: Annotated[str, Header(alias=AUTH_HEADER_SIGNATURE)] = "",
) -> CallerContext:
    """Authenticate the request signature and return the caller context."""
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    return authenticate_request(
        now_ms=engine.ledger.now(),
        method=request.method,
        target=target,
        body=await request.body(),
        pubkey_header=x_auth_pubkey,
        time_header=x_auth_time,
        signature_header=x_auth_signature,
    )
