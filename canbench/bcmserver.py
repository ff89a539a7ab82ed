"""TCP server that turns ASCII commands into broadcast manager (BCM) jobs.

Clients send ``< interface command ival_s ival_us can_id can_dlc [data]* >``
where only ``can_id`` and the data bytes are hexadecimal.  Transmit
commands are 'A'dd, 'U'pdate, 'D'elete and 'S'end; receive commands are
'R'eceive setup, 'F'ilter id setup and 'X' for delete.  Frames picked up
by receive filters are sent back as ``< interface can_id can_dlc [data]* >``
followed by a NUL byte.
"""

from __future__ import annotations

import re
import select
import socket
import struct
import sys
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass

from .frame import CAN_MAX_DLEN, CAN_MTU, CanFrame

MAXLEN = 100
PORT = 28600
IFNAMSIZ = 16

TX_SETUP = 1
TX_DELETE = 2
TX_READ = 3
TX_SEND = 4
RX_SETUP = 5
RX_DELETE = 6
RX_READ = 7

SETTIMER = 0x0001
STARTTIMER = 0x0002
RX_FILTER_ID = 0x0020

# command letter -> (opcode, flags)
_COMMANDS = {
    "S": (TX_SEND, 0),
    "A": (TX_SETUP, SETTIMER | STARTTIMER),
    "U": (TX_SETUP, 0),
    "D": (TX_DELETE, 0),
    "R": (RX_SETUP, SETTIMER),
    "F": (RX_SETUP, RX_FILTER_ID | SETTIMER),
    "X": (RX_DELETE, 0),
}

# struct bcm_msg_head: opcode, flags, count, ival1, ival2, can_id, nframes
_HEAD = struct.Struct("@IIIllllII")
# the frames following the header are 8 byte aligned
_FRAME_OFFSET = (_HEAD.size + 7) & ~7
MSG_SIZE = _FRAME_OFFSET + CAN_MTU

_LONG_BITS = struct.calcsize("l") * 8

_WS = re.compile(r"\s*")
_NAME = re.compile(r"\S{1,%d}" % (IFNAMSIZ - 1))
_DEC = re.compile(r"[+-]?\d+")
_HEX = re.compile(r"[+-]?(?:0[xX](?=[0-9a-fA-F]))?[0-9a-fA-F]+")
_NUMBERS = (_DEC, _DEC, _HEX, _DEC) + (_HEX,) * CAN_MAX_DLEN


def _to_long(value: int) -> int:
    value %= 1 << _LONG_BITS
    if value >= 1 << (_LONG_BITS - 1):
        value -= 1 << _LONG_BITS
    return value


def _scan(text: str) -> list:
    """Items converted from a command line, stopping at the first mismatch."""
    values: list = []
    if not text.startswith("<"):
        return values
    pos = _WS.match(text, 1).end()
    match = _NAME.match(text, pos)
    if not match:
        return values
    values.append(match.group())
    pos = _WS.match(text, match.end()).end()
    if pos >= len(text):
        return values
    values.append(text[pos])
    pos += 1
    for pattern in _NUMBERS:
        pos = _WS.match(text, pos).end()
        match = pattern.match(text, pos)
        if not match:
            break
        values.append(int(match.group(), 16 if pattern is _HEX else 10))
        pos = match.end()
    return values


@dataclass(frozen=True)
class BcmCommand:
    """One parsed client command."""

    ifname: str
    command: str
    ival_sec: int
    ival_usec: int
    can_id: int
    data: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", bytes(self.data))
        if self.command not in _COMMANDS:
            raise ValueError(f"unknown command '{self.command}'.")
        if len(self.data) > CAN_MAX_DLEN:
            raise ValueError(f"data length {len(self.data)} exceeds {CAN_MAX_DLEN}")

    @property
    def opcode(self) -> int:
        """The BCM opcode of the command."""
        return _COMMANDS[self.command][0]

    @property
    def flags(self) -> int:
        """The BCM flags of the command."""
        return _COMMANDS[self.command][1]

    def pack(self) -> bytes:
        """Encode as a BCM message head followed by one CAN frame."""
        head = _HEAD.pack(
            self.opcode, self.flags, 0,
            0, 0,
            _to_long(self.ival_sec), _to_long(self.ival_usec),
            self.can_id & 0xFFFFFFFF, 1,
        )
        frame = CanFrame(self.can_id & 0xFFFFFFFF, self.data).pack()
        return head.ljust(_FRAME_OFFSET, b"\0") + frame


def parse_command(text: str) -> BcmCommand:
    """Parse ``< ifname cmd ival_s ival_us can_id dlc [data]* >``.

    Raises ValueError for malformed commands and unknown command letters.
    """
    values = _scan(text)
    if len(values) < 6:
        raise ValueError(f"incomplete command '{text}'")
    ifname, command, sec, usec, can_id, dlc, *data = values
    dlc &= 0xFF
    if dlc > CAN_MAX_DLEN:
        raise ValueError(f"invalid data length code {dlc}")
    if len(values) != 6 + dlc:
        raise ValueError(f"data length code {dlc} does not match the data given")
    return BcmCommand(
        ifname,
        command,
        _to_long(sec),
        _to_long(usec),
        can_id & 0xFFFFFFFF,
        bytes(b & 0xFF for b in data),
    )


class CommandAssembler:
    """Collects ``<...>`` commands from a byte stream."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def feed(self, data: bytes) -> list[str]:
        """Consume ``data`` and return the commands completed by it."""
        commands: list[str] = []
        for byte in bytes(data):
            if not self._buf:
                if byte == ord("<"):
                    self._buf.append(byte)
                continue
            if len(self._buf) > MAXLEN - 2:
                # overlong command: drop it and wait for the next '<'
                self._buf.clear()
                continue
            self._buf.append(byte)
            if byte != ord(">"):
                continue
            commands.append(self._buf.decode("latin-1"))
            self._buf.clear()
        return commands


def format_rx(ifname: str, can_id: int, data: bytes) -> str:
    """The line reporting a received frame (sent followed by a NUL byte)."""
    payload = "".join(f"{b:02X} " for b in data)
    return f"< {ifname} {can_id & 0xFFFFFFFF:03X} {len(data)} {payload}>"


def _unpack_rx(raw: bytes) -> tuple[int, bytes]:
    """CAN id of the message head and frame payload of a BCM message."""
    raw = bytes(raw).ljust(MSG_SIZE, b"\0")
    can_id = _HEAD.unpack_from(raw, 0)[7]
    frame = raw[_FRAME_OFFSET:_FRAME_OFFSET + CAN_MTU]
    dlc = min(frame[4], CAN_MAX_DLEN)
    return can_id, frame[8:8 + dlc]


def handle_client(conn: socket.socket) -> None:
    """Serve one client connection until it closes or sends a bad command.

    Raises OSError when the BCM socket cannot be opened.
    """
    with socket.socket(socket.AF_CAN, socket.SOCK_DGRAM, socket.CAN_BCM) as bcm:
        # interface index 0: any device, chosen per message with sendto()
        bcm.connect(("",))
        assembler = CommandAssembler()
        while True:
            readable, _, _ = select.select([bcm, conn], [], [])

            if bcm in readable:
                raw, addr = bcm.recvfrom(MSG_SIZE)
                can_id, data = _unpack_rx(raw)
                ifname = addr[0] if addr else ""
                # NUL delimiter for XML socket clients
                conn.sendall(format_rx(ifname, can_id, data).encode("latin-1") + b"\0")

            if conn in readable:
                chunk = conn.recv(MAXLEN)
                if not chunk:
                    return
                for text in assembler.feed(chunk):
                    try:
                        command = parse_command(text)
                    except ValueError as exc:
                        if str(exc).startswith("unknown command"):
                            print(exc, flush=True)
                        return
                    try:
                        bcm.sendto(command.pack(), (command.ifname,))
                    except OSError:
                        # unknown interface: the command is ignored
                        pass


def _serve_client(conn: socket.socket) -> None:
    with conn:
        try:
            handle_client(conn)
        except OSError as exc:
            sys.stderr.write(f"bcmsocket: {exc.strerror or exc}\n")


def serve(port: int = PORT) -> None:
    """Accept clients on ``port`` forever, each served in its own thread."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    with listener:
        while True:
            try:
                listener.bind(("", port))
                break
            except OSError:
                print(".", end="", flush=True)
                time.sleep(0.1)
        listener.listen(3)
        while True:
            conn, _addr = listener.accept()
            threading.Thread(target=_serve_client, args=(conn,), daemon=True).start()


def main(argv: Sequence[str] | None = None) -> int:
    """Command line entry point; returns the exit status."""
    if not hasattr(socket, "CAN_BCM"):
        sys.stderr.write("bcmsocket: CAN sockets are not supported on this system\n")
        return 1
    try:
        serve(PORT)
    except KeyboardInterrupt:
        return 0
    except OSError as exc:
        sys.stderr.write(f"accept: {exc.strerror or exc}\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())