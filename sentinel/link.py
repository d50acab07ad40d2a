"""
Client side of the relay: one websocket per local user id.

    DISCONNECTED -> CONNECTING -> REGISTERED <-> RECONNECTING
                                      |
                  close() from any state -> DISCONNECTED

Only an ack for our own user id counts as registration. Inbound frames
reach the callback one at a time, in the order the socket delivered them.
"""

import asyncio
import base64
import inspect
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from sentinel.config import (
    ACK_TIMEOUT,
    MAX_FRAME_BYTES,
    RECONNECT_BASE_DELAY,
    RECONNECT_MAX_DELAY,
)
from sentinel.errors import FrameError, NotConnected, RegistrationFailed, RelayError
from sentinel.frames import Ack, Err, Frame, Register, Send, decode_frame, encode_frame

logger = logging.getLogger(__name__)

FrameCallback = Callable[[Frame], Union[None, Awaitable[object]]]


class LinkState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    REGISTERED = "registered"
    RECONNECTING = "reconnecting"


class RelayLink:
    def __init__(
        self,
        url: str,
        user_id: str,
        on_frame: FrameCallback,
        ack_timeout: float = ACK_TIMEOUT,
        reconnect_base: float = RECONNECT_BASE_DELAY,
        reconnect_max: float = RECONNECT_MAX_DELAY,
    ):
        self.url = url
        self.user_id = user_id
        self.on_frame = on_frame
        self.ack_timeout = ack_timeout
        self.reconnect_base = reconnect_base
        self.reconnect_max = reconnect_max

        self.state = LinkState.DISCONNECTED
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_registered(self) -> bool:
        return self.state is LinkState.REGISTERED and self._ws is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, retry: bool = False):
        """
        Connect and register. Raises NotConnected or RegistrationFailed.

        With retry=True a failed first attempt is still raised, but the link
        stays in RECONNECTING and keeps trying with backoff until close().
        """
        if self._running:
            return
        self._running = True
        self.state = LinkState.CONNECTING
        try:
            ws, ack = await self._register()
        except RelayError:
            if retry:
                self.state = LinkState.RECONNECTING
                self._task = asyncio.create_task(self._run())
            else:
                self._running = False
                self.state = LinkState.DISCONNECTED
            raise
        except BaseException:
            self._running = False
            self.state = LinkState.DISCONNECTED
            raise
        self._ws = ws
        self.state = LinkState.REGISTERED
        logger.info("registered with %s as %s", self.url, self.user_id)
        await self._deliver(ack)
        self._task = asyncio.create_task(self._run())

    async def close(self):
        self._running = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        self.state = LinkState.DISCONNECTED

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(self, recipient_id: str, blob: bytes):
        """Fire-and-forget. No delivery acknowledgment, no retry."""
        ws = self._ws
        if not self.is_registered or ws is None:
            raise NotConnected("not connected to relay")
        frame = Send(to=recipient_id, data=base64.b64encode(blob).decode())
        try:
            await ws.send(encode_frame(frame))
        except ConnectionClosed as exc:
            raise NotConnected("relay connection closed") from exc

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def _register(self):
        try:
            ws = await ws_connect(self.url, max_size=MAX_FRAME_BYTES, open_timeout=self.ack_timeout)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise NotConnected(f"relay unreachable at {self.url}: {exc}") from exc

        try:
            await ws.send(encode_frame(Register(self.user_id)))
            frame = await asyncio.wait_for(self._first_reply(ws), timeout=self.ack_timeout)
        except asyncio.TimeoutError:
            await ws.close()
            raise RegistrationFailed(f"no ack from relay within {self.ack_timeout:g}s") from None
        except ConnectionClosed as exc:
            raise NotConnected("relay closed the connection during registration") from exc
        except BaseException:
            await ws.close()
            raise

        if isinstance(frame, Err):
            await ws.close()
            raise RegistrationFailed(frame.error, relay_error=frame.error)
        if frame.user_id != self.user_id:
            await ws.close()
            raise RegistrationFailed(f"relay acknowledged {frame.user_id!r}, expected {self.user_id!r}")
        return ws, frame

    async def _first_reply(self, ws) -> Union[Ack, Err]:
        while True:
            raw = await ws.recv()
            try:
                frame = decode_frame(raw)
            except FrameError as exc:
                logger.debug("dropping malformed frame during registration: %s", exc)
                continue
            if isinstance(frame, (Ack, Err)):
                return frame
            logger.debug("dropping %s frame received before ack", type(frame).__name__)

    # ------------------------------------------------------------------
    # Inbound loop and reconnection
    # ------------------------------------------------------------------

    async def _run(self):
        while self._running:
            ws = self._ws
            if ws is None:
                await self._reconnect()
                continue
            try:
                async for raw in ws:
                    try:
                        frame = decode_frame(raw)
                    except FrameError as exc:
                        logger.debug("dropping malformed frame: %s", exc)
                        continue
                    await self._deliver(frame)
            except ConnectionClosed:
                pass
            if not self._running:
                break
            self._ws = None
            self.state = LinkState.RECONNECTING
            logger.warning("lost connection to %s, reconnecting", self.url)

    async def _reconnect(self):
        delay = self.reconnect_base
        while self._running:
            await asyncio.sleep(delay)
            try:
                ws, ack = await self._register()
            except RelayError as exc:
                if isinstance(exc, RegistrationFailed) and exc.relay_error is not None:
                    await self._deliver(Err(exc.relay_error))
                delay = min(delay * 2, self.reconnect_max)
                logger.warning("reconnect to %s failed: %s (next try in %gs)", self.url, exc, delay)
                continue
            self._ws = ws
            self.state = LinkState.REGISTERED
            logger.info("re-registered with %s as %s", self.url, self.user_id)
            await self._deliver(ack)
            return

    async def _deliver(self, frame: Frame):
        try:
            result = self.on_frame(frame)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("frame callback failed on %s frame", type(frame).__name__)


async def connect(url: str, user_id: str, on_frame: FrameCallback, **kwargs) -> RelayLink:
    """Open a registered link to the relay."""
    link = RelayLink(url, user_id, on_frame, **kwargs)
    await link.open()
    return link
