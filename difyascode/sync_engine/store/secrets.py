"""At-rest encryption for account passwords.

Passwords are stored as Fernet tokens in each account's ``.secrets.yml``.
The Fernet key is derived from ``DIFY_SECRET_KEY`` when set, otherwise from
a random key file generated once under the tree root.
"""

from __future__ import annotations

import base64
import hashlib
import os
import secrets
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

from difyascode.sync_engine.errors import InvalidRecordError


def derive_cipher_key(key_material: str) -> bytes:
    return base64.urlsafe_b64encode(hashlib.sha256(key_material.encode()).digest())


def load_key_material(key_file: Path) -> str:
    """Read the key file, generating it on first use.

    Blocking; call from a worker thread.
    """
    if key_file.exists():
        material = key_file.read_text(encoding="utf-8").strip()
        if material:
            return material

    material = secrets.token_urlsafe(64)
    key_file.parent.mkdir(parents=True, exist_ok=True)
    key_file.write_text(material, encoding="utf-8")
    os.chmod(key_file, 0o600)
    logger.info("Generated new secret key at {}", key_file)
    return material


class SecretCipher:
    """Symmetric encrypt / decrypt of short secrets."""

    def __init__(self, key_material: str) -> None:
        self._fernet = Fernet(derive_cipher_key(key_material))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str, source: Path | str = "<secret>") -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise InvalidRecordError(source, "secret cannot be decrypted with the configured key") from exc
