from __future__ import annotations

import secrets

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from agent_engine.api.dependencies import AppSettings, Auth
from agent_engine.api.middleware.exception_handlers import AuthenticationError
from agent_engine.api.middleware.request_context import update_request_context
from agent_engine.models.api_models import UserInfo
from agent_engine.models.error_models import ErrorCode

bearer_scheme = HTTPBearer(auto_error=False)

Credentials = Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)]


async def get_current_user(
    request: Request,
    credentials: Credentials,
    auth: Auth,
    settings: AppSettings,
) -> UserInfo:
    """Resolve the caller from a bearer token or the session cookie."""
    token = credentials.credentials if credentials else request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise AuthenticationError(code=ErrorCode.AUTH_REQUIRED)

    user = await auth.resolve_user(token)
    if user is None:
        raise AuthenticationError(code=ErrorCode.AUTH_INVALID_TOKEN)

    update_request_context(user_id=user.id)
    return user


async def verify_cron_secret(credentials: Credentials, settings: AppSettings) -> None:
    """Require ``Authorization: Bearer <CRON_SECRET>`` when a cron secret is configured."""
    if settings.cron_secret is None:
        return
    if credentials is None or not secrets.compare_digest(
        credentials.credentials.encode(), settings.cron_secret.encode()
    ):
        raise AuthenticationError(code=ErrorCode.AUTH_INVALID_CRON_SECRET)


CurrentUser = Annotated[UserInfo, Depends(get_current_user)]
CronAuthorized = Depends(verify_cron_secret)
