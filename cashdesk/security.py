import hmac

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from cashdesk.config import settings

cashier_bearer = HTTPBearer(auto_error=False, description="Cashier terminal token")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def require_bearer_token(credentials: HTTPAuthorizationCredentials | None = Depends(cashier_bearer)):
    """Gate cashier routes on the terminal token. Routes stay open when no token is configured."""
    if not settings.bearer_token:
        return
    if credentials is None:
        raise _unauthorized("Missing cashier token")
    if not hmac.compare_digest(credentials.credentials.encode(), settings.bearer_token.encode()):
        raise _unauthorized("Invalid cashier token")
