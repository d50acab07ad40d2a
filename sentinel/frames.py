"""
Relay wire protocol.

JSON text frames, one per websocket message, discriminated by "t":

    client -> relay   {"t": "register", "userId": ...}
                      {"t": "send", "to": ..., "data": <base64 blob>}
    relay -> client   {"t": "ack", "userId": ...}
                      {"t": "err", "error": ...}
                      {"t": "msg", "from": ..., "data": <base64 blob>}

The relay treats "data" as opaque text.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Union

from sentinel.errors import FrameError


@dataclass
class Register:
    user_id: str

    def to_dict(self) -> dict:
        return {"t": "register", "userId": self.user_id}

    @classmethod
    def from_dict(cls, d: dict) -> "Register":
        return cls(user_id=_field(d, "userId"))


@dataclass
class Send:
    to: str
    data: str

    def to_dict(self) -> dict:
        return {"t": "send", "to": self.to, "data": self.data}

    @classmethod
    def from_dict(cls, d: dict) -> "Send":
        return cls(to=_field(d, "to"), data=_field(d, "data"))


@dataclass
class Ack:
    user_id: str

    def to_dict(self) -> dict:
        return {"t": "ack", "userId": self.user_id}

    @classmethod
    def from_dict(cls, d: dict) -> "Ack":
        return cls(user_id=_field(d, "userId"))


@dataclass
class Err:
    error: str

    def to_dict(self) -> dict:
        return {"t": "err", "error": self.error}

    @classmethod
    def from_dict(cls, d: dict) -> "Err":
        return cls(error=_field(d, "error"))


@dataclass
class Msg:
    sender: str
    data: str

    def to_dict(self) -> dict:
        return {"t": "msg", "from": self.sender, "data": self.data}

    @classmethod
    def from_dict(cls, d: dict) -> "Msg":
        return cls(sender=_field(d, "from"), data=_field(d, "data"))

    def blob(self) -> bytes:
        """The sealed envelope carried by this frame."""
        try:
            return base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise FrameError("msg data is not base64") from exc


Frame = Union[Register, Send, Ack, Err, Msg]

_KINDS = {
    "register": Register,
    "send": Send,
    "ack": Ack,
    "err": Err,
    "msg": Msg,
}


def _field(d: dict, name: str) -> str:
    value = d.get(name)
    if not isinstance(value, str):
        raise FrameError(f"frame field {name!r} missing or not a string")
    return value


def encode_frame(frame: Frame) -> str:
    return json.dumps(frame.to_dict())


def decode_frame(raw) -> Frame:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode()
        except UnicodeDecodeError as exc:
            raise FrameError("frame is not UTF-8") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FrameError("frame is not JSON") from exc
    if not isinstance(data, dict):
        raise FrameError("frame is not a JSON object")
    t = data.get("t")
    kind = _KINDS.get(t) if isinstance(t, str) else None
    if kind is None:
        raise FrameError(f"unknown frame kind {t!r}")
    return kind.from_dict(data)
