"""V1 data endpoint: the front-end decrypt boundary.

``POST /api/v1/data/get-user-data`` takes a base64 session credential as
``accessToken`` and returns the decrypted item, base64-encoded. Denials and
transport failures surface as distinct error codes.
"""

from __future__ import annotations

import base64
import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from doauth.api.dependencies import get_engine
from doauth.api.v1.schemas import UserDataRequest, UserDataResponse
from doauth.engine.client import DOAuthEngine  # noqa: TC001

logger = logging.getLogger(__name__)

router = APIRouter(tags=["data"])


@router.post("/data/get-user-data")
async def get_user_data(
    body: UserDataRequest,
    engine: Annotated[DOAuthEngine, Depends(get_engine)],
) -> dict:
    result = await engine.fetch_user_data(body.access_token, body.vault_id, body.item_id)
    logger.debug("Served item %s (%d bytes)", result.item_id, result.size)
    return UserDataResponse(
        decrypted_data=base64.b64encode(result.data).decode("ascii"),
        size=result.size,
    ).model_dump(mode="json", by_alias=True)
