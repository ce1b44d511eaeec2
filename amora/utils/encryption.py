import json
import os

from cryptography.exceptions import InvalidKey
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

_SCRYPT_N = 2 ** 14
_SCRYPT_R = 8
_SCRYPT_P = 1
_KEY_LENGTH = 32


def get_fernet(key: str | bytes) -> Fernet:
    return Fernet(key.encode() if isinstance(key, str) else key)


def _scrypt(salt: bytes) -> Scrypt:
    return Scrypt(salt=salt, length=_KEY_LENGTH, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)


def hash_password(password: str, salt: bytes | None = None) -> tuple[bytes, bytes]:
    """Derive a Scrypt hash for *password*. Returns ``(hash, salt)``."""
    salt = salt or os.urandom(16)
    return _scrypt(salt).derive(password.encode("utf-8")), salt


def verify_password(password: str, salt: bytes, expected: bytes) -> bool:
    """Constant-time check of *password* against a stored Scrypt hash."""
    try:
        _scrypt(salt).verify(password.encode("utf-8"), expected)
    except InvalidKey:
        return False
    return True


def encrypt_token(fernet: Fernet, payload: dict) -> str:
    """Encrypt a session payload dict into a URL-safe Fernet token."""
    return fernet.encrypt(json.dumps(payload).encode("utf-8")).decode("ascii")


def decrypt_token(fernet: Fernet, token: str, ttl_seconds: int) -> dict | None:
    """Decrypt a session token; None when it is forged, malformed, or expired."""
    try:
        decrypted = fernet.decrypt(token.encode("ascii"), ttl=ttl_seconds)
    except (InvalidToken, UnicodeEncodeError):
        return None
    payload = json.loads(decrypted.decode("utf-8"))
    return payload if isinstance(payload, dict) else None
