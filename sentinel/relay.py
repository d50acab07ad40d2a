"""
Websocket relay that routes sealed envelopes by recipient user id.

PRIVACY GUARANTEES:
- The relay only ever handles base64 envelopes; it holds no keys.
- Zero message storage, not even in memory. Offline recipients get nothing.
- The relay does see who sends to whom, and when.

HARDENING:
- Max 500 concurrent registered users.
- 64KB max frame size.
- Per-connection rate limit (10 frames/sec).
- A user id can be registered by one connection at a time.

Run with: sentinel relay
"""

import asyncio
import logging
import os
import time
from typing import Optional

from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from sentinel.config import (
    DEFAULT_PORT,
    MAX_FRAME_BYTES,
    MAX_PEERS,
    RATE_LIMIT_PER_SEC,
    RATE_LIMIT_WINDOW,
)
from sentinel.errors import FrameError
from sentinel.frames import Ack, Err, Msg, Register, Send, decode_frame, encode_frame

logger = logging.getLogger(__name__)


class _RateLimiter:
    __slots__ = ("_timestamps", "_limit", "_window")

    def __init__(self, limit: int = RATE_LIMIT_PER_SEC, window: float = RATE_LIMIT_WINDOW):
        self._timestamps: list[float] = []
        self._limit = limit
        self._window = window

    def allow(self) -> bool:
        now = time.monotonic()
        self._timestamps = [t for t in self._timestamps if now - t < self._window]
        if len(self._timestamps) >= self._limit:
            return False
        self._timestamps.append(now)
        return True


class Relay:
    def __init__(self, max_peers: int = MAX_PEERS, rate_limit: int = RATE_LIMIT_PER_SEC):
        self.max_peers = max_peers
        self.rate_limit = rate_limit
        self.clients: dict[str, object] = {}
        self.stats = {
            "total_messages": 0,
            "total_connections": 0,
            "start_time": time.time(),
        }

    async def _reply(self, ws, frame):
        try:
            await ws.send(encode_frame(frame))
        except ConnectionClosed:
            pass

    async def handler(self, ws):
        if len(self.clients) >= self.max_peers:
            await ws.close(1013, "relay full")
            return

        user_id: Optional[str] = None
        self.stats["total_connections"] += 1
        limiter = _RateLimiter(limit=self.rate_limit)

        try:
            async for raw in ws:
                if len(raw) > MAX_FRAME_BYTES:
                    continue
                if not limiter.allow():
                    continue
                try:
                    frame = decode_frame(raw)
                except FrameError:
                    continue

                if isinstance(frame, Register):
                    if user_id is not None:
                        await self._reply(ws, Err(f"already registered as {user_id}"))
                        continue
                    proposed = frame.user_id.strip()
                    if not proposed:
                        await self._reply(ws, Err("user id must not be empty"))
                        continue
                    if proposed in self.clients:
                        await self._reply(ws, Err(f"user id {proposed} is already connected"))
                        continue
                    user_id = proposed
                    self.clients[user_id] = ws
                    logger.info("registered %s (%d online)", user_id, len(self.clients))
                    await self._reply(ws, Ack(user_id))
                    continue

                if user_id is None:
                    await self._reply(ws, Err("register before sending"))
                    continue

                if isinstance(frame, Send):
                    target = self.clients.get(frame.to)
                    if target is None:
                        await self._reply(ws, Err(f"recipient {frame.to} is not connected"))
                        continue
                    self.stats["total_messages"] += 1
                    await self._reply(target, Msg(sender=user_id, data=frame.data))

        except ConnectionClosed:
            pass
        finally:
            if user_id is not None and self.clients.get(user_id) is ws:
                del self.clients[user_id]
                logger.info("%s left (%d online)", user_id, len(self.clients))

    async def kick(self, user_id: str) -> bool:
        """Drop a registered user's connection."""
        ws = self.clients.get(user_id)
        if ws is None:
            return False
        await ws.close(1001, "kicked")
        return True


async def run_relay(host: str = "0.0.0.0", port: Optional[int] = None):
    if port is None:
        port = int(os.environ.get("PORT", DEFAULT_PORT))
    relay = Relay()
    print()
    print("  sentinel relay")
    print("  " + "-" * 14)
    print(f"  listening on ws://{host}:{port}")
    print()
    print("  this relay is a dumb pipe:")
    print("    + messages are end-to-end encrypted")
    print("    + no message content stored or logged")
    print("    - sender, recipient and timing are visible here")
    print()
    print(f"  limits: {MAX_PEERS} users, {MAX_FRAME_BYTES // 1024}KB max frame, {RATE_LIMIT_PER_SEC} frames/s per user")
    print()

    async with serve(relay.handler, host, port, max_size=MAX_FRAME_BYTES):
        while True:
            await asyncio.sleep(30)
            logger.info(
                "%d users | %d msgs forwarded | %d connections | up %ds",
                len(relay.clients),
                relay.stats["total_messages"],
                relay.stats["total_connections"],
                time.time() - relay.stats["start_time"],
            )


def main(port: Optional[int] = None):
    asyncio.run(run_relay(port=port))


if __name__ == "__main__":
    main()
