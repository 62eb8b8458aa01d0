"""
Identifiers, webhook signing and encryption of sensitive data.

Sensitive values (merchant webhook secrets, custodial wallet keys) are stored
with Fernet authenticated symmetric encryption. The key comes from
configuration; a process-local key is generated outside production. Wallet
backups are sealed under a key stretched from the owner's passphrase.
"""

import base64
import hashlib
import hmac
import logging
import secrets
import uuid
from typing import Optional, Tuple, Union

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import ValidationError

logger = logging.getLogger(__name__)


def generate_id(prefix: str) -> str:
    """Generate a prefixed unique identifier, e.g. ``pay_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def generate_webhook_secret() -> str:
    return secrets.token_hex(32)


def generate_encryption_key() -> str:
    return Fernet.generate_key().decode("utf-8")


def create_hmac_signature(payload: Union[str, bytes], secret: str) -> str:
    """Hex HMAC-SHA256 of the payload."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_hmac_signature(payload: Union[str, bytes], signature: str, secret: str) -> bool:
    if not signature:
        return False
    expected = create_hmac_signature(payload, secret)
    return hmac.compare_digest(expected, signature)


class SensitiveDataCipher:
    """Encrypt and decrypt sensitive strings at rest."""

    def __init__(self, encryption_key: Optional[Union[str, bytes]] = None, livemode: bool = False):
        if not encryption_key:
            if livemode:
                raise RuntimeError(
                    "ENCRYPTION_KEY is required in production. "
                    "Generate one with core.crypto.generate_encryption_key()"
                )
            logger.warning("No encryption key configured; using an ephemeral development key")
            encryption_key = Fernet.generate_key()

        if isinstance(encryption_key, str):
            encryption_key = encryption_key.encode("utf-8")
        self._fernet = Fernet(encryption_key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as e:
            raise ValidationError("Encrypted value is corrupt or was sealed with another key") from e


def _passphrase_fernet(passphrase: str, salt: bytes, iterations: int) -> Fernet:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)
    return Fernet(base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8"))))


def seal_with_passphrase(plaintext: str, passphrase: str, iterations: int) -> Tuple[str, str]:
    """Encrypt under a PBKDF2-SHA256 key. Returns (salt, token), both base64 text."""
    salt = secrets.token_bytes(16)
    token = _passphrase_fernet(passphrase, salt, iterations).encrypt(plaintext.encode("utf-8"))
    return base64.urlsafe_b64encode(salt).decode("ascii"), token.decode("ascii")


def open_with_passphrase(token: str, salt: str, passphrase: str, iterations: int) -> str:
    try:
        raw_salt = base64.urlsafe_b64decode(salt.encode("ascii"))
        fernet = _passphrase_fernet(passphrase, raw_salt, iterations)
        return fernet.decrypt(token.encode("ascii")).decode("utf-8")
    except (InvalidToken, ValueError) as e:
        raise ValidationError("Wrong passphrase or corrupt backup") from e
