# backend/chatroom/crypto/aead.py
import os
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_LEN = 32
NONCE_LEN = 12
TAG_LEN = 16

def encrypt_aesgcm(key: bytes, plaintext: bytes, aad: bytes | None = None) -> tuple[bytes, bytes]:
    """Returns (nonce, ciphertext||tag) under a fresh random nonce."""
    if len(key) != KEY_LEN:
        raise ValueError("AES-256-GCM requires 32-byte key")
    nonce = os.urandom(NONCE_LEN)
    ct = AESGCM(key).encrypt(nonce, plaintext, aad)
    return nonce, ct

def decrypt_aesgcm(key: bytes, nonce: bytes, ct: bytes, aad: bytes | None = None) -> bytes:
    if len(key) != KEY_LEN:
        raise ValueError("AES-256-GCM requires 32-byte key")
    if len(nonce) != NONCE_LEN:
        raise ValueError("Invalid nonce length")
    if len(ct) < TAG_LEN:
        raise ValueError("Invalid ciphertext blob")
    return AESGCM(key).decrypt(nonce, ct, aad)
