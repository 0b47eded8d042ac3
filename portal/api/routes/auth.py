"""Auth Route — login bookkeeping for an identity the gateway already verified."""

import logging

from fastapi import APIRouter, Depends, Header

from portal.api.dependencies import get_kv, ok
from portal.config import get_settings
from portal.core.errors import UnauthorizedError
from portal.infrastructure.kv_store import KVStore
from portal.schemas.system import UserLogin
from portal.services.auth_service import AuthService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/user-login")
async def user_login(
    body: UserLogin | None = None,
    x_user_id: str | None = Header(None),
    x_user_email: str | None = Header(None),
    x_user_name: str | None = Header(None),
    kv: KVStore = Depends(get_kv),
):
    """Create or refresh the caller's user record and return their permissions."""
    if not x_user_id or not x_user_email:
        raise UnauthorizedError("Missing authentication headers")
    body = body or UserLogin()
    result = await AuthService(kv, get_settings()).login(
        x_user_id, x_user_email, body.name or x_user_name, body.avatar_url,
    )
    message = result.pop("message")
    return ok(result, message=message)
