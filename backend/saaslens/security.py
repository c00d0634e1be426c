from fastapi import Depends, Header, HTTPException, Request, status

from . import config


async def require_api_auth(request: Request) -> None:
    """
    Lightweight guard for all API endpoints.

    - If SAASLENS_API_TOKEN is set, require `Authorization: Bearer <token>`.
    - If no token is set, allow requests only from loopback addresses
      (localhost / 127.0.0.1 / ::1) so a default install is not reachable
      from the LAN.
    """
    client_host = request.client.host if request.client else ""

    if config.API_TOKEN:
        auth_header = request.headers.get("Authorization", "")
        prefix = "Bearer "
        if not auth_header.startswith(prefix) or auth_header[len(prefix):].strip() != config.API_TOKEN:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing API token.",
            )
        return

    # No token configured: loopback only.
    if client_host not in ("127.0.0.1", "::1", "localhost"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Remote access requires SAASLENS_API_TOKEN.",
        )


def get_user_id(x_user_id: str = Header(default="", alias="X-User-Id")) -> str:
    """Caller identity; every row a request touches is scoped to it."""
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    if len(user_id) > 100:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-User-Id too long.")
    return user_id


RequireAPIAuth = Depends(require_api_auth)
