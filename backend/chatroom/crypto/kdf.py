# backend/chatroom/crypto/kdf.py
import os
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from chatroom.core.config import settings

@dataclass(frozen=True)
class KdfParams:
    iterations: int = 100_000
    hash_len: int = 32  # AES-256
    salt_len: int = 16

def default_params() -> KdfParams:
    return KdfParams(iterations=settings.kdf_iterations)

def new_salt(params: KdfParams) -> bytes:
    return os.urandom(params.salt_len)

def derive_key(passphrase: str, salt: bytes, params: KdfParams | None = None) -> bytes:
    """
    Derive a symmetric key from a shared room passphrase.

    Same passphrase + salt + params always gives the same key. Nothing is
    cached: callers derive per encrypt/decrypt call and drop the key after.
    """
    if not isinstance(passphrase, str) or not passphrase:
        raise ValueError("Passphrase required")
    params = params or default_params()
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=params.hash_len,
        salt=salt,
        iterations=params.iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))
