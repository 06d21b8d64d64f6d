from __future__ import annotations

import asyncio
import base64
import binascii

from cryptography.exceptions import InvalidTag

from chatroom.crypto.aead import NONCE_LEN, TAG_LEN, encrypt_aesgcm, decrypt_aesgcm
from chatroom.crypto.kdf import KdfParams, default_params, derive_key, new_salt


SALT_LEN = 16
MIN_BLOB_LEN = SALT_LEN + NONCE_LEN + TAG_LEN

# Returned for every decrypt failure. Callers cannot tell a wrong passphrase
# from a tampered or malformed blob.
DECRYPT_FAILED = "🔒 Unable to decrypt (wrong passphrase)"


def encrypt_message(plaintext: str, passphrase: str, params: KdfParams | None = None) -> str:
    """
    Encrypt a chat message for the room.

    Salt and nonce are fresh on every call, so encrypting the same text twice
    with the same passphrase gives two different blobs.

    Returns:
        base64(salt[16] || nonce[12] || ciphertext||tag)
    """
    params = params or default_params()
    if params.salt_len != SALT_LEN:
        raise ValueError("Wire format requires a 16-byte salt")
    salt = new_salt(params)
    key = derive_key(passphrase, salt, params)
    nonce, ct = encrypt_aesgcm(key, plaintext.encode("utf-8"))
    return base64.b64encode(salt + nonce + ct).decode("ascii")


def decrypt_message(blob: str, passphrase: str, params: KdfParams | None = None) -> str:
    """Decrypt a blob produced by encrypt_message, or return DECRYPT_FAILED."""
    try:
        packed = base64.b64decode(blob, validate=True)
        if len(packed) < MIN_BLOB_LEN:
            return DECRYPT_FAILED
        salt = packed[:SALT_LEN]
        nonce = packed[SALT_LEN:SALT_LEN + NONCE_LEN]
        ct = packed[SALT_LEN + NONCE_LEN:]
        key = derive_key(passphrase, salt, params)
        return decrypt_aesgcm(key, nonce, ct).decode("utf-8")
    except (InvalidTag, ValueError, TypeError, binascii.Error):
        return DECRYPT_FAILED


def looks_like_blob(payload: str) -> bool:
    """Structural check only: valid base64 and long enough to hold salt, nonce and tag."""
    try:
        return len(base64.b64decode(payload, validate=True)) >= MIN_BLOB_LEN
    except (ValueError, TypeError, binascii.Error):
        return False


async def aencrypt_message(plaintext: str, passphrase: str, params: KdfParams | None = None) -> str:
    return await asyncio.to_thread(encrypt_message, plaintext, passphrase, params)


async def adecrypt_message(blob: str, passphrase: str, params: KdfParams | None = None) -> str:
    return await asyncio.to_thread(decrypt_message, blob, passphrase, params)
