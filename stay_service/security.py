import os
from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

bearer = HTTPBearer(auto_error=False)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.PyJWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}")


def get_principal(
    creds: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer)],
) -> dict:
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    principal = decode_token(creds.credentials)
    if not principal.get("sub"):
        raise HTTPException(status_code=401, detail="Token has no subject")
    return principal


def require_roles(*allowed_roles: str):
    allowed = set(allowed_roles)

    def _dep(principal: Annotated[dict, Depends(get_principal)]) -> dict:
        role = principal.get("role")
        if role not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return principal

    return _dep


def acting_owner_id(principal: dict, requested_owner_id: str | None) -> str:
    """
    Merchant id the inventory call acts for.

    Merchants always act as themselves; an admin may act for any merchant by
    naming it explicitly.
    """
    sub = str(principal.get("sub"))
    if not requested_owner_id or requested_owner_id == sub:
        return sub
    if principal.get("role") == "admin":
        return requested_owner_id
    raise HTTPException(status_code=403, detail="owner_id does not match the authenticated merchant")
