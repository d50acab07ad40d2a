"""
Session orchestration: identity, peer key, shared key and message routing.

The controller owns three pieces of state:
- identity: loaded or created once, lives for the whole process
- peer reference (recipient id + peer public key): changed by the user at any time
- shared key: derived from the two above, held in a single slot and nowhere else

set_peer_public_key() empties the slot before deriving the new key, and
seal/open read the slot exactly once per call, so a message is always
handled entirely under the old key or entirely under the new one.

User-facing lines go to the notices queue as (kind, text) tuples.
"""

import logging
from dataclasses import dataclass
from queue import Queue
from typing import Optional

from sentinel import envelope
from sentinel.config import KEY_PEER_ID, KEY_PEER_PUBLIC, KEY_PUBLIC, KEY_SECRET, KEY_USER_ID
from sentinel.errors import (
    DecryptFailed,
    FrameError,
    InvalidPeerKey,
    LocalValidationFailure,
    NotConnected,
    RegistrationFailed,
    RelayError,
)
from sentinel.frames import Ack, Err, Frame, Msg
from sentinel.keys import Identity, decode_key, derive_shared_key, generate_keypair
from sentinel.link import RelayLink
from sentinel.store import KeyValueStore

logger = logging.getLogger(__name__)

OK = "ok"
UNDECRYPTABLE = "undecryptable"
DECRYPT_FAILED = "decrypt_failed"


@dataclass
class Inbound:
    sender: str
    text: Optional[str]
    status: str   # OK | UNDECRYPTABLE | DECRYPT_FAILED

    @property
    def ok(self) -> bool:
        return self.status == OK


class SessionController:
    def __init__(self, store: KeyValueStore, notices: Optional[Queue] = None):
        self.store = store
        self.notices: Queue = notices if notices is not None else Queue()
        self.identity: Optional[Identity] = None
        self.peer_id = ""
        self.peer_public_key_b64 = ""
        self.link: Optional[RelayLink] = None
        self._shared_key: Optional[bytes] = None

    def _notify(self, kind: str, text: str):
        self.notices.put((kind, text))

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def load_identity(self) -> Identity:
        """Load the stored keypair, generating and persisting one if absent."""
        if self.identity is not None:
            return self.identity

        pub = self.store.get(KEY_PUBLIC)
        sec = self.store.get(KEY_SECRET)
        if pub and sec:
            identity = Identity.from_record(pub, sec)
        else:
            identity = generate_keypair()
            for key, value in identity.to_record().items():
                self.store.set(key, value)
            logger.info("generated a new identity")
        self.identity = identity

        self.peer_id = self.store.get(KEY_PEER_ID) or ""
        self.peer_public_key_b64 = self.store.get(KEY_PEER_PUBLIC) or ""
        self._recompute()
        return identity

    @property
    def public_key_b64(self) -> str:
        if self.identity is None:
            raise RuntimeError("identity not loaded; call load_identity() first")
        return self.identity.public_key_b64

    @property
    def user_id(self) -> str:
        return self.store.get(KEY_USER_ID) or ""

    def set_user_id(self, value: str):
        self.store.set(KEY_USER_ID, value.strip())

    # ------------------------------------------------------------------
    # Peer reference and shared key
    # ------------------------------------------------------------------

    def set_peer_id(self, value: str):
        self.peer_id = value
        self.store.set(KEY_PEER_ID, value)

    def set_peer_public_key(self, value: str) -> bool:
        """
        Replace the peer public key and rederive the shared key.

        Returns True if a shared key is now available. An empty value just
        clears it; an undecodable one clears it and raises a key_error notice.
        """
        self._shared_key = None
        self.peer_public_key_b64 = value
        self.store.set(KEY_PEER_PUBLIC, value)
        return self._recompute()

    @property
    def has_shared_key(self) -> bool:
        return self._shared_key is not None

    def _recompute(self) -> bool:
        self._shared_key = None
        value = self.peer_public_key_b64.strip()
        if not value or self.identity is None:
            return False
        try:
            key = derive_shared_key(self.identity.secret_key, decode_key(value))
        except InvalidPeerKey as exc:
            logger.warning("peer public key rejected: %s", exc)
            self._notify("key_error", f"[key] invalid peer public key: {exc}")
            return False
        self._shared_key = key
        return True

    # ------------------------------------------------------------------
    # Relay
    # ------------------------------------------------------------------

    async def connect(self, url: str, **link_kwargs) -> RelayLink:
        """
        Register with the relay under the stored user id.

        A failed first attempt is reported and raised, and the link keeps
        retrying in the background until close() or the next connect().
        """
        user_id = self.user_id
        if not user_id:
            raise LocalValidationFailure("set a user id before connecting")
        await self.close()
        link = RelayLink(url, user_id, self.handle_frame, **link_kwargs)
        self.link = link
        try:
            await link.open(retry=True)
        except RegistrationFailed as exc:
            if exc.relay_error is not None:
                self._notify("relay_error", f"[relay:err] {exc.relay_error}")
            else:
                self._notify("relay_error", f"[relay] registration failed: {exc}")
            raise
        except RelayError as exc:
            self._notify("relay_error", f"[relay] {exc}")
            raise
        return link

    async def close(self):
        link, self.link = self.link, None
        if link is not None:
            await link.close()

    def handle_frame(self, frame: Frame) -> Optional[Inbound]:
        if isinstance(frame, Ack):
            self._notify("relay", f"[relay] connected as {frame.user_id}")
        elif isinstance(frame, Err):
            logger.warning("relay reported: %s", frame.error)
            self._notify("relay_error", f"[relay:err] {frame.error}")
        elif isinstance(frame, Msg):
            return self.receive(frame)
        else:
            logger.debug("ignoring %s frame from relay", type(frame).__name__)
        return None

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def receive(self, frame: Msg) -> Inbound:
        """Open one inbound message. Every outcome is final; nothing is retried."""
        key = self._shared_key
        if key is None:
            self._notify(UNDECRYPTABLE, f"[from {frame.sender}] <cannot decrypt; set peer key>")
            return Inbound(frame.sender, None, UNDECRYPTABLE)
        try:
            text = envelope.open(frame.blob(), key).decode()
        except (FrameError, DecryptFailed, UnicodeDecodeError):
            logger.warning("message from %s failed to decrypt", frame.sender)
            self._notify(DECRYPT_FAILED, f"[from {frame.sender}] <decrypt failed>")
            return Inbound(frame.sender, None, DECRYPT_FAILED)
        self._notify("message", f"[from {frame.sender}] {text}")
        return Inbound(frame.sender, text, OK)

    async def send(self, text: str) -> bytes:
        """
        Seal text for the current peer and hand it to the relay.

        Raises LocalValidationFailure or NotConnected before anything is
        sealed or sent. Returns the sealed blob.
        """
        recipient = self.peer_id.strip()
        if not recipient:
            self._notify("invalid", "[ui] set recipient ID")
            raise LocalValidationFailure("set recipient ID")
        key = self._shared_key
        if key is None:
            self._notify("invalid", "[ui] set valid peer public key")
            raise LocalValidationFailure("set valid peer public key")
        link = self.link
        if link is None or not link.is_registered:
            self._notify("relay_error", "[relay] not connected")
            raise NotConnected("not connected to relay")

        blob = envelope.seal(text.encode(), key)
        try:
            await link.send(recipient, blob)
        except NotConnected:
            self._notify("relay_error", "[relay] not connected")
            raise
        self._notify("sent", f"[to {recipient}] {text}")
        return blob
