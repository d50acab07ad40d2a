import pytest

from sentinel import envelope
from sentinel.errors import DecryptFailed
from sentinel.keys import derive_shared_key, generate_keypair


@pytest.fixture
def key():
    alice, bob = generate_keypair(), generate_keypair()
    return derive_shared_key(alice.secret_key, bob.public_key)


@pytest.fixture
def other_key():
    carol, dave = generate_keypair(), generate_keypair()
    return derive_shared_key(carol.secret_key, dave.public_key)


@pytest.mark.parametrize("plaintext", [
    b"",
    b"hello",
    "prêt à partir \U0001f512".encode(),
    bytes(range(256)) * 40,
])
def test_seal_open_roundtrip(key, plaintext):
    assert envelope.open(envelope.seal(plaintext, key), key) == plaintext


def test_blob_layout_size(key):
    blob = envelope.seal(b"abc", key)
    assert len(blob) == envelope.NONCE_SIZE + 3 + envelope.TAG_SIZE


def test_ciphertext_does_not_contain_plaintext(key):
    blob = envelope.seal(b"attack at dawn", key)
    assert b"attack at dawn" not in blob


def test_every_single_bit_flip_fails(key):
    blob = envelope.seal(b"hello", key)
    for i in range(len(blob)):
        for bit in range(8):
            mutated = bytearray(blob)
            mutated[i] ^= 1 << bit
            with pytest.raises(DecryptFailed):
                envelope.open(bytes(mutated), key)


def test_wrong_key_fails(key, other_key):
    blob = envelope.seal(b"hello", key)
    with pytest.raises(DecryptFailed):
        envelope.open(blob, other_key)


def test_wrong_key_and_tampering_look_the_same(key, other_key):
    blob = envelope.seal(b"hello", key)
    tampered = blob[:-1] + bytes([blob[-1] ^ 1])
    with pytest.raises(DecryptFailed) as wrong:
        envelope.open(blob, other_key)
    with pytest.raises(DecryptFailed) as modified:
        envelope.open(tampered, key)
    assert str(wrong.value) == str(modified.value)


@pytest.mark.parametrize("cut", [0, 1, 10, envelope.OVERHEAD - 1])
def test_truncated_blob_fails(key, cut):
    blob = envelope.seal(b"hello", key)
    with pytest.raises(DecryptFailed):
        envelope.open(blob[:cut], key)


def test_dropping_last_byte_fails(key):
    blob = envelope.seal(b"hello", key)
    with pytest.raises(DecryptFailed):
        envelope.open(blob[:-1], key)


def test_malformed_key_fails_on_open(key):
    blob = envelope.seal(b"hello", key)
    with pytest.raises(DecryptFailed):
        envelope.open(blob, key[:16])


def test_nonces_are_unique(key):
    nonces = {envelope.seal(b"same", key)[:envelope.NONCE_SIZE] for _ in range(2000)}
    assert len(nonces) == 2000


def test_same_plaintext_seals_differently(key):
    assert envelope.seal(b"same", key) != envelope.seal(b"same", key)
