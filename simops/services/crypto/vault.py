from __future__ import annotations

import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from simops.core.config import get_settings
from simops.core.errors import AuthenticationFailure, MalformedCiphertext


_NONCE_BYTES = 12
_TAG_BYTES = 16


def _resolve_key(key: bytes | None) -> bytes:
    if key is not None:
        return key
    return get_settings().encryption_key_bytes()


def encrypt_secret(secret: str, *, key: bytes | None = None) -> str:
    """Encrypt a tenant client secret as ``nonce.ciphertext.tag`` (hex parts)."""
    nonce = os.urandom(_NONCE_BYTES)
    aesgcm = AESGCM(_resolve_key(key))
    ciphertext_with_tag = aesgcm.encrypt(nonce, secret.encode("utf-8"), None)
    cipher_text = ciphertext_with_tag[:-_TAG_BYTES]
    tag = ciphertext_with_tag[-_TAG_BYTES:]
    return f"{nonce.hex()}.{cipher_text.hex()}.{tag.hex()}"


def decrypt_secret(record: str, *, key: bytes | None = None) -> str:
    parts = record.split(".") if record else []
    if len(parts) != 3 or not all(parts):
        raise MalformedCiphertext("Encrypted payload is malformed")
    try:
        nonce, cipher_text, tag = (bytes.fromhex(part) for part in parts)
    except (ValueError, binascii.Error) as exc:
        raise MalformedCiphertext("Encrypted payload is malformed") from exc
    if len(nonce) != _NONCE_BYTES or len(tag) != _TAG_BYTES:
        raise MalformedCiphertext("Encrypted payload is malformed")

    aesgcm = AESGCM(_resolve_key(key))
    try:
        plaintext = aesgcm.decrypt(nonce, cipher_text + tag, None)
    except InvalidTag as exc:
        raise AuthenticationFailure("Encrypted payload failed authentication") from exc
    return plaintext.decode("utf-8")
