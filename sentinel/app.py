import argparse
import asyncio
import logging
import queue
import sys
import uuid
from pathlib import Path

from sentinel.config import RELAY_URL, STORE_FILE, USER_ID_LENGTH, VERSION
from sentinel.errors import (
    KeyGenFailure,
    LocalValidationFailure,
    RelayError,
    StorageError,
)
from sentinel.session import SessionController
from sentinel.store import JsonFileStore


# ------------------------------------------------------------------
# Pretty CLI helpers
# ------------------------------------------------------------------

def _ok(msg: str):
    print(f"  {msg}")


def _fail(msg: str):
    print(f"  ERROR: {msg}", file=sys.stderr)


HELP = """\
  /to <user id>      set the recipient
  /key <public key>  set the recipient's public key (verify it out-of-band!)
  /user <user id>    change your own user id and reconnect
  /connect           retry the relay connection now
  /me                show your user id and public key
  /help              this text
  /quit              leave
  anything else is encrypted and sent to the recipient"""


# ------------------------------------------------------------------
# Session setup
# ------------------------------------------------------------------

def _open_session(store_path: Path, user_id: str | None = None) -> SessionController:
    """Load or create the identity. Key and storage failures are fatal."""
    try:
        session = SessionController(JsonFileStore(store_path))
        session.load_identity()
        if user_id:
            session.set_user_id(user_id)
        elif not session.user_id:
            session.set_user_id(uuid.uuid4().hex[:USER_ID_LENGTH])
    except (KeyGenFailure, StorageError) as exc:
        _fail(str(exc))
        sys.exit(1)
    return session


def _show_identity(session: SessionController):
    _ok(f"user id:    {session.user_id}")
    _ok(f"public key: {session.public_key_b64}")
    _ok("share both with your peer; compare keys out-of-band.")


# ------------------------------------------------------------------
# Chat loop
# ------------------------------------------------------------------

def _drain(notices: queue.Queue):
    while True:
        try:
            _kind, text = notices.get_nowait()
        except queue.Empty:
            return
        print(f"  {text}")


async def _pump_notices(notices: queue.Queue):
    while True:
        _drain(notices)
        await asyncio.sleep(0.1)


async def _connect(session: SessionController, url: str):
    try:
        await session.connect(url)
    except RelayError:
        # already on the notice queue; the link keeps retrying
        pass


async def _chat(session: SessionController, url: str):
    print()
    print(f"  sentinel {VERSION}  (type /help for commands)")
    print("  -----------------")
    _show_identity(session)
    if session.peer_id:
        _ok(f"recipient:  {session.peer_id}")
    if not session.has_shared_key:
        _ok("no usable peer key yet; set one with /key")
    print()

    pump = asyncio.create_task(_pump_notices(session.notices))
    await _connect(session, url)
    loop = asyncio.get_running_loop()
    try:
        while True:
            try:
                line = await loop.run_in_executor(None, input)
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue
            if line in ("/quit", "/exit"):
                break
            if line == "/help":
                print(HELP)
            elif line == "/me":
                _show_identity(session)
            elif line == "/connect":
                await _connect(session, url)
            elif line.startswith("/user "):
                session.set_user_id(line[6:])
                _ok(f"user id set to {session.user_id}")
                await _connect(session, url)
            elif line.startswith("/to "):
                session.set_peer_id(line[4:].strip())
                _ok(f"recipient set to {session.peer_id}")
            elif line.startswith("/key "):
                if session.set_peer_public_key(line[5:]):
                    _ok("peer key set; messages are now end-to-end encrypted")
            elif line.startswith("/"):
                _ok("unknown command, try /help")
            else:
                try:
                    await session.send(line)
                except (LocalValidationFailure, RelayError):
                    # reported through the notice queue
                    pass
    finally:
        await session.close()
        pump.cancel()
        _drain(session.notices)


# ------------------------------------------------------------------
# CLI entry point
# ------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(
        prog="sentinel",
        description="sentinel: end-to-end encrypted chat over an untrusted relay",
    )
    parser.add_argument("-v", "--version", action="version", version=f"sentinel {VERSION}")
    parser.add_argument("command", nargs="?", default="chat",
                        help="chat | keys | reset | relay [port]")
    parser.add_argument("address", nargs="?", default=None)
    parser.add_argument("--relay", default=RELAY_URL, help="relay websocket URL")
    parser.add_argument("--user", default=None, help="user id to register as")
    parser.add_argument("--store", type=Path, default=STORE_FILE,
                        help="where identity and settings are kept")
    parser.add_argument("--verbose", action="store_true", help="debug logging")

    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.WARNING
    if args.command == "relay":
        level = min(level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.command == "relay":
        from sentinel.relay import main as relay_main
        relay_main(port=int(args.address) if args.address else None)
        return

    if args.command == "reset":
        if args.store.exists():
            args.store.unlink()
            print("Identity reset.")
        else:
            print("No identity to reset.")
        return

    session = _open_session(args.store, args.user)

    if args.command == "keys":
        _show_identity(session)
        return

    if args.command != "chat":
        parser.error(f"unknown command {args.command!r}")

    try:
        asyncio.run(_chat(session, args.relay))
    except KeyboardInterrupt:
        print()


if __name__ == "__main__":
    main()
