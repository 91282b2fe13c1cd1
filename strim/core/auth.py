"""Bearer-token check for batch-trigger (cron) endpoints."""

import hmac
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from strim.context import AppContext, get_context

logger = logging.getLogger(__name__)

# Optional bearer token scheme - won't reject missing tokens,
# allowing the dependency to return a clear 401 instead of 403.
_bearer_scheme = HTTPBearer(auto_error=False)


async def require_cron_secret(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    context: AppContext = Depends(get_context),
) -> None:
    """
    Dependency guarding cron endpoints.

    With CRON_SECRET unset the endpoints are open (local development and
    trusted networks). With it set, the client must send:
        Authorization: Bearer <CRON_SECRET>
    """
    secret = context.settings.cron_secret
    if not secret:
        return

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Cron secret required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Use constant-time comparison to prevent timing attacks
    if not hmac.compare_digest(
        credentials.credentials.encode("utf-8"),
        secret.encode("utf-8"),
    ):
        client_ip = request.client.host if request.client else "unknown"
        logger.warning("Failed cron auth attempt from %s", client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
            headers={"WWW-Authenticate": "Bearer"},
        )
