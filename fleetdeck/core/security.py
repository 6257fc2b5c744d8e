import base64
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from jose import jwt, JWTError
from fleetdeck.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
UNKNOWN_ACTOR = "unknown"


# --- Encryption Utilities ---

def get_fernet() -> Fernet:
    """Derives a Fernet key from the SECRET_KEY and returns a Fernet instance.

    Fernet requires a 32-byte url-safe base64-encoded key, so the
    application's SECRET_KEY is hashed down to one.
    """
    key_bytes = settings.SECRET_KEY.encode()
    hash_object = hashlib.sha256(key_bytes)
    key_32 = base64.urlsafe_b64encode(hash_object.digest())
    return Fernet(key_32)


def encrypt_secret(plain_text: str) -> str:
    """Encrypts a string using Fernet symmetric encryption.

    Args:
        plain_text: The sensitive data to encrypt (e.g. an SSH private key).

    Returns:
        The encrypted token as a string.
    """
    if not plain_text:
        return ""
    f = get_fernet()
    return f.encrypt(plain_text.encode()).decode()


def decrypt_secret(cipher_text: str) -> str:
    """Decrypts a Fernet token back to its original string.

    Values that are not Fernet tokens (keys stored before encryption was
    enabled) are returned unchanged.

    Args:
        cipher_text: The encrypted token.

    Returns:
        The original plain-text string.
    """
    if not cipher_text:
        return ""
    try:
        f = get_fernet()
        return f.decrypt(cipher_text.encode()).decode()
    except (InvalidToken, ValueError):
        return cipher_text


# --- Actor Context ---

@dataclass(frozen=True)
class ActorContext:
    """Who triggered an operation and from where. Used for audit attribution only."""
    username: str = UNKNOWN_ACTOR
    user_id: Optional[str] = None
    ip_address: str = ""
    user_agent: str = ""

    @property
    def display_name(self) -> str:
        name = (self.username or "").strip()
        return name or UNKNOWN_ACTOR


SYSTEM_ACTOR = ActorContext(username="scheduler", user_agent="fleetdeck-scheduler")


def get_user_from_token(token: str) -> Optional[dict]:
    """Decodes a JWT token and extracts user info."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        username: str = payload.get("sub")
        if username is None:
            return None
        uid = payload.get("uid")
        return {"username": username, "user_id": str(uid) if uid is not None else None}
    except JWTError:
        return None


def create_access_token(username: str, user_id: Optional[str] = None) -> str:
    """Signs a token in the format :func:`get_user_from_token` reads. Used by tooling and tests."""
    payload = {"sub": username}
    if user_id is not None:
        payload["uid"] = user_id
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def actor_from_token(
    token: Optional[str],
    ip_address: str = "",
    user_agent: str = ""
) -> ActorContext:
    """Builds an ActorContext, falling back to the unknown actor on a missing or bad token."""
    user_data = None
    if token:
        if token.startswith("Bearer "):
            token = token[7:]
        user_data = get_user_from_token(token)
        if user_data is None:
            logger.debug("Could not resolve actor from token, recording as unknown")

    if not user_data:
        return ActorContext(ip_address=ip_address, user_agent=user_agent)
    return ActorContext(
        username=user_data["username"],
        user_id=user_data["user_id"],
        ip_address=ip_address,
        user_agent=user_agent,
    )
