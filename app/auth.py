"""HS256 bearer tokens.

Claims are laid out as ``{"payload": {...}, "exp": <unix seconds | null>}``,
the format issued by the account service.
"""

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional

from fastapi import Header

from app.config import settings
from app.errors import AuthError


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _sign(secret: str, signing_input: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256).digest()
    return _b64url_encode(digest)


def sign_token(payload: Dict[str, Any], secret: str, expires_in: Optional[int] = None) -> str:
    header = _b64url_encode(json.dumps({"alg": "HS256", "typ": "JWT"}).encode("utf-8"))
    exp = int(time.time()) + expires_in if expires_in else None
    body = _b64url_encode(json.dumps({"payload": payload, "exp": exp}).encode("utf-8"))
    return f"{header}.{body}.{_sign(secret, f'{header}.{body}')}"


def verify_token(token: str, secret: str) -> Optional[Dict[str, Any]]:
    """Return the payload of a valid, unexpired token, else None."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    header, body, signature = parts
    if not hmac.compare_digest(signature, _sign(secret, f"{header}.{body}")):
        return None
    try:
        claims = json.loads(_b64url_decode(body))
    except ValueError:
        return None
    exp = claims.get("exp")
    if exp and exp < time.time():
        return None
    return claims.get("payload")


async def get_current_user(authorization: str = Header(None)) -> str:
    """FastAPI dependency: the username of the bearer token's owner."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Invalid token")

    payload = verify_token(authorization[len("Bearer "):], settings.JWT_SECRET)
    if not payload or not payload.get("username"):
        raise AuthError("Invalid token")
    return payload["username"]
