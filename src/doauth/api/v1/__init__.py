"""V1 REST API routes.

Combines all sub-routers under the ``/api/v1`` prefix.
"""

from fastapi import APIRouter

from doauth.api.v1.allow_list import router as allow_list_router
from doauth.api.v1.data import router as data_router
from doauth.api.v1.grants import router as grants_router
from doauth.api.v1.items import router as items_router
from doauth.api.v1.services import router as services_router
from doauth.api.v1.vaults import router as vaults_router

v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(vaults_router)
v1_router.include_router(items_router)
v1_router.include_router(allow_list_router)
v1_router.include_router(services_router)
v1_router.include_router(grants_router)
v1_router.include_router(data_router)

__all__ = ["v1_router"]
