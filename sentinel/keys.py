"""
Long-term identity keys and pairwise key agreement.

X25519 via PyNaCl: the shared key is the Box precomputation
(scalar multiplication followed by HSalsa20), so both parties
arrive at the same 32-byte SecretBox key.
"""

import base64
from dataclasses import dataclass, field

from nacl.exceptions import CryptoError
from nacl.public import Box, PrivateKey, PublicKey
from nacl.secret import SecretBox

from sentinel.config import KEY_PUBLIC, KEY_SECRET
from sentinel.errors import InvalidPeerKey, KeyGenFailure, StorageError

KEY_SIZE = PublicKey.SIZE           # 32 bytes
SHARED_KEY_SIZE = SecretBox.KEY_SIZE  # 32 bytes


@dataclass(frozen=True)
class Identity:
    public_key: bytes
    secret_key: bytes = field(repr=False)

    @property
    def public_key_b64(self) -> str:
        return encode_key(self.public_key)

    def to_record(self) -> dict[str, str]:
        return {KEY_PUBLIC: encode_key(self.public_key), KEY_SECRET: encode_key(self.secret_key)}

    @classmethod
    def from_record(cls, pub_b64: str, sec_b64: str) -> "Identity":
        """Rebuild a stored identity, checking the halves belong together."""
        try:
            sk = PrivateKey(base64.b64decode(sec_b64, validate=True))
            pub = base64.b64decode(pub_b64, validate=True)
        except (ValueError, TypeError, CryptoError) as exc:
            raise StorageError("stored identity does not decode") from exc
        if sk.public_key.encode() != pub:
            raise StorageError("stored public key does not match secret key")
        return cls(public_key=pub, secret_key=sk.encode())


def generate_keypair() -> Identity:
    try:
        sk = PrivateKey.generate()
    except Exception as exc:
        raise KeyGenFailure(f"could not generate keypair: {exc}") from exc
    return Identity(public_key=sk.public_key.encode(), secret_key=sk.encode())


def encode_key(raw: bytes) -> str:
    return base64.b64encode(raw).decode()


def decode_key(text: str) -> bytes:
    """Decode a pasted base64 public key. Surrounding whitespace is ignored."""
    try:
        raw = base64.b64decode(text.strip(), validate=True)
    except (ValueError, AttributeError) as exc:
        raise InvalidPeerKey("peer public key is not valid base64") from exc
    if len(raw) != KEY_SIZE:
        raise InvalidPeerKey(f"peer public key must be {KEY_SIZE} bytes, got {len(raw)}")
    return raw


def derive_shared_key(own_secret_key: bytes, peer_public_key: bytes) -> bytes:
    """
    Derive the symmetric key shared with a peer.

    Pure function of the two keys: derive_shared_key(a_sec, b_pub) equals
    derive_shared_key(b_sec, a_pub).
    """
    try:
        peer = PublicKey(peer_public_key)
    except CryptoError as exc:
        raise InvalidPeerKey("peer public key is not a valid curve point") from exc
    try:
        return Box(PrivateKey(own_secret_key), peer).shared_key()
    except CryptoError as exc:
        # libsodium rejects low-order points (all-zero shared secret)
        raise InvalidPeerKey("peer public key is not a valid curve point") from exc
