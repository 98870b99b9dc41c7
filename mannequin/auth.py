import secrets
from typing import Optional, Tuple

import jwt
from passlib.context import CryptContext

from .config import get_settings

# pbkdf2_sha256 for new hashes; hex_sha256 still verifies accounts created with
# the old unsalted SHA-256 scheme and gets upgraded on their next login
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "hex_sha256"], deprecated="auto")

ALGORITHM = "HS256"
TOKEN_BYTES = 32


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def verify_and_upgrade(plain: str, hashed: str) -> Tuple[bool, Optional[str]]:
    """Verify a password; the second item is a replacement hash when the stored one is deprecated."""
    return pwd_context.verify_and_update(plain, hashed)


def new_session_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def wrap_token(session_token: str, user_id: int) -> str:
    """Wrap an opaque session token for client-side storage.

    The wrapping key is shared with clients, so this guards against tampering
    but not disclosure. No expiry claim is set; sessions end on logout.
    """
    payload = {"sid": session_token, "sub": str(user_id)}
    return jwt.encode(payload, get_settings().encryption_key, algorithm=ALGORITHM)


def unwrap_token(token: str) -> str:
    try:
        payload = jwt.decode(token, get_settings().encryption_key, algorithms=[ALGORITHM])
    except jwt.PyJWTError as e:
        raise ValueError("invalid token") from e
    sid = payload.get("sid")
    if not isinstance(sid, str) or not sid:
        raise ValueError("invalid token")
    return sid
