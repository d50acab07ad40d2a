"""
Authenticated encryption for everything that crosses the relay.

Uses NaCl (PyNaCl) SecretBox (XSalsa20-Poly1305):
- a fresh random 24-byte nonce per seal, drawn from the OS CSPRNG
- blob layout: nonce (24) | ciphertext | Poly1305 tag (16)
- the tag covers the ciphertext and, through the key stream, the nonce

The relay never sees plaintext, only these blobs. Opening fails with a
single DecryptFailed for every cause (wrong key, tampering, truncation),
so callers cannot tell a bad key from a modified message.
"""

from nacl.exceptions import CryptoError
from nacl.secret import SecretBox
from nacl.utils import random as nacl_random

from sentinel.errors import DecryptFailed

NONCE_SIZE = SecretBox.NONCE_SIZE   # 24 bytes
TAG_SIZE = SecretBox.MACBYTES       # 16 bytes
OVERHEAD = NONCE_SIZE + TAG_SIZE


def seal(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt plaintext under the shared key. Returns nonce | ciphertext | tag."""
    nonce = nacl_random(NONCE_SIZE)
    return bytes(SecretBox(key).encrypt(plaintext, nonce))


def open(blob: bytes, key: bytes) -> bytes:
    """Verify and decrypt a sealed blob, or raise DecryptFailed."""
    if len(blob) < OVERHEAD:
        raise DecryptFailed()
    try:
        return SecretBox(key).decrypt(blob)
    except CryptoError:
        raise DecryptFailed() from None
