"""
Failure taxonomy.

Fatal: KeyGenFailure, StorageError. Everything else degrades a single
message or connection attempt and never the session.
"""


class SentinelError(Exception):
    """Base exception for sentinel errors."""
    pass


class KeyGenFailure(SentinelError):
    """Raised when the entropy source cannot produce a keypair."""
    pass


class StorageError(SentinelError):
    """Raised when the key-value store cannot be read or written."""
    pass


class InvalidPeerKey(SentinelError):
    """Raised when a peer public key does not decode to a usable curve point."""
    pass


class DecryptFailed(SentinelError):
    """Raised when an envelope does not authenticate under the given key."""

    def __init__(self):
        super().__init__("decrypt failed")


class LocalValidationFailure(SentinelError):
    """Raised when a send is rejected before touching the network."""
    pass


class FrameError(SentinelError):
    """Raised when a relay frame cannot be parsed."""
    pass


class RelayError(SentinelError):
    """Base exception for relay transport errors."""
    pass


class NotConnected(RelayError):
    """Raised when the relay connection is down."""
    pass


class RegistrationFailed(RelayError):
    """Raised when the relay refuses or never acknowledges registration.

    relay_error holds the relay's own err text, verbatim, when there was one.
    """

    def __init__(self, message: str, relay_error: str = None):
        super().__init__(message)
        self.relay_error = relay_error
