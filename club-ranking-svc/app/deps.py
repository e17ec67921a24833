from __future__ import annotations
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict

import httpx
import jwt
from fastapi import Depends, Header, HTTPException, status

from .db import get_session
from .core.config import get_settings

settings = get_settings()
_JWKS: Dict[str, Any] | None = None
_JWKS_TS = 0.0
_JWKS_TTL = 3600

@dataclass(frozen=True)
class CallerIdentity:
    """Who is asking, as established by the transport layer."""
    member_id: uuid.UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"

async def fetch_jwks():
    global _JWKS, _JWKS_TS
    now = time.time()
    if _JWKS is None or (now - _JWKS_TS) > _JWKS_TTL:
        async with httpx.AsyncClient() as client:
            r = await client.get(settings.auth_jwks_url, timeout=5.0)
            r.raise_for_status()
            _JWKS = r.json()
            _JWKS_TS = now
    return _JWKS

async def get_signing_key():
    from jwt.algorithms import RSAAlgorithm
    jwks = await fetch_jwks()
    return RSAAlgorithm.from_jwk(jwks["keys"][0])

async def get_caller(authorization: str | None = Header(default=None)) -> CallerIdentity:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    token = authorization.split(" ", 1)[1].strip()
    key = await get_signing_key()
    try:
        payload = jwt.decode(
            token, key=key, algorithms=["RS256"], issuer=settings.token_issuer, options={"verify_aud": False}
        )
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    try:
        member_id = uuid.UUID(str(payload["sub"]))
        role = str(payload["role"]).upper()
    except (KeyError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return CallerIdentity(member_id=member_id, role=role)

async def require_admin(caller: CallerIdentity = Depends(get_caller)) -> CallerIdentity:
    if not caller.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return caller

# alias for DB dependency use
get_db = get_session
