from __future__ import annotations

import base64
import hashlib
from typing import Any, Dict

from cryptography.fernet import Fernet, InvalidToken

from .config import encryption_key
from .errors import SecretsConfigError


def _fernet() -> Fernet:
    raw = encryption_key()
    if not raw:
        raise SecretsConfigError("Missing SPECFORGE_ENCRYPTION_KEY")
    try:
        return Fernet(raw.encode("utf-8"))
    except ValueError:
        # Arbitrary passphrases are stretched into a valid Fernet key.
        digest = hashlib.sha256(raw.encode("utf-8")).digest()
        return Fernet(base64.urlsafe_b64encode(digest))


def require_encryption_key() -> None:
    _fernet()


def encrypt_api_key(api_key: str) -> str:
    value = str(api_key or "").strip()
    if not value:
        raise SecretsConfigError("api_key is required", status_code=400)
    return _fernet().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_api_key(ciphertext: str) -> str:
    value = str(ciphertext or "").strip()
    if not value:
        return ""
    try:
        return _fernet().decrypt(value.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise SecretsConfigError("Credential decryption failed") from exc


def mask_secret(secret: str) -> Dict[str, Any]:
    value = str(secret or "")
    if not value:
        return {"has_value": False, "last4": None}
    return {"has_value": True, "last4": value[-4:]}
