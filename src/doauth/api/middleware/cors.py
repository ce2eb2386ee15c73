"""Cross-origin access for browser front ends.

Owner routes are authenticated by the signed ``x-auth-*`` headers rather
than cookies, so credentials are never allowed across origins. The three
headers must be listed explicitly for the pre-flight to accept them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware

from doauth.api.middleware.auth import (
    AUTH_HEADER_PUBKEY,
    AUTH_HEADER_SIGNATURE,
    AUTH_HEADER_TIME,
)

if TYPE_CHECKING:
    from fastapi import FastAPI

    from doauth.config.settings import ServerConfig

SIGNED_REQUEST_HEADERS = (AUTH_HEADER_PUBKEY, AUTH_HEADER_TIME, AUTH_HEADER_SIGNATURE)


def setup_cors(app: FastAPI, server: ServerConfig) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(server.allowed_origins),
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["content-type", "authorization", *SIGNED_REQUEST_HEADERS],
    )
