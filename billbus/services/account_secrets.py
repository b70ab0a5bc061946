from __future__ import annotations

from base64 import urlsafe_b64encode
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from billbus.core.config import get_settings
from billbus.core.errors import ConfigNotFoundError


ENCRYPTED_PREFIX = "enc:"


class AccountSecretError(ConfigNotFoundError):
    """Raised when an encrypted account password cannot be decrypted."""


def _build_fernet(source: str | None = None) -> Fernet:
    key = (source if source is not None else get_settings().account_secret_key or "").strip()
    if not key:
        raise AccountSecretError("ACCOUNT_SECRET_KEY is required to decrypt account passwords")
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return Fernet(urlsafe_b64encode(digest))


def encrypt_password(plain: str, *, key: str | None = None) -> str:
    token = _build_fernet(key).encrypt(plain.encode("utf-8"))
    return ENCRYPTED_PREFIX + token.decode("utf-8")


def reveal_password(value: str | None, *, key: str | None = None) -> str | None:
    # Plain passwords pass through; only `enc:` values touch the key.
    if value is None or not value.startswith(ENCRYPTED_PREFIX):
        return value
    try:
        return _build_fernet(key).decrypt(value[len(ENCRYPTED_PREFIX):].encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise AccountSecretError("account password could not be decrypted") from exc
