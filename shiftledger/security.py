from __future__ import annotations

import hmac
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from shiftledger.errors import ApiError
from shiftledger.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    expected = get_settings().admin_api_token
    if credentials is None or not credentials.credentials:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")
    if not expected or not hmac.compare_digest(credentials.credentials.encode(), expected.encode()):
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Invalid bearer token.")

    request.state.actor = "admin"
    request.state.actor_id = "admin"
    return {"sub": "admin"}
