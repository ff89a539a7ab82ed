"""CAN frame representation and the SocketCAN wire layout."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

CAN_EFF_FLAG = 0x80000000
CAN_RTR_FLAG = 0x40000000
CAN_ERR_FLAG = 0x20000000
CAN_INV_FILTER = 0x20000000

CAN_SFF_MASK = 0x000007FF
CAN_EFF_MASK = 0x1FFFFFFF
CAN_ERR_MASK = 0x1FFFFFFF

CAN_MAX_DLEN = 8
CANFD_MAX_DLEN = 64
CAN_MTU = 16
CANFD_MTU = 72

CANFD_BRS = 0x01
CANFD_ESI = 0x02

_CLASSIC = struct.Struct("=IBBBB8s")
_FD = struct.Struct("=IBBBB64s")


class CflMode(enum.IntEnum):
    """How stuffed bits are accounted for in frame length calculations."""

    NO_BITSTUFFING = 0
    WORSTCASE = 1
    EXACT = 2


@dataclass(frozen=True)
class CanFrame:
    """A classic CAN or CAN FD frame."""

    can_id: int
    data: bytes = b""
    flags: int = 0
    fd: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", bytes(self.data))
        if not 0 <= self.can_id <= 0xFFFFFFFF:
            raise ValueError(f"CAN identifier out of range: {self.can_id:#x}")
        limit = CANFD_MAX_DLEN if self.fd else CAN_MAX_DLEN
        if len(self.data) > limit:
            raise ValueError(f"payload of {len(self.data)} bytes exceeds {limit}")
        if not 0 <= self.flags <= 0xFF:
            raise ValueError(f"frame flags out of range: {self.flags:#x}")

    def is_extended(self) -> bool:
        """Return True for a frame with a 29 bit identifier."""
        return bool(self.can_id & CAN_EFF_FLAG)

    def is_remote(self) -> bool:
        """Return True for a remote transmission request."""
        return bool(self.can_id & CAN_RTR_FLAG)

    def pack(self) -> bytes:
        """Encode the frame as a SocketCAN struct (16 or 72 bytes)."""
        if self.fd:
            return _FD.pack(self.can_id, len(self.data), self.flags, 0, 0, self.data)
        return _CLASSIC.pack(self.can_id, len(self.data), 0, 0, 0, self.data)

    @classmethod
    def unpack(cls, data: bytes) -> CanFrame:
        """Decode a SocketCAN struct of CAN_MTU or CANFD_MTU bytes."""
        raw = bytes(data)
        if len(raw) == CAN_MTU:
            can_id, length, _pad, _res0, _res1, payload = _CLASSIC.unpack(raw)
            if length > CAN_MAX_DLEN:
                raise ValueError(f"invalid data length code {length}")
            return cls(can_id, payload[:length])
        if len(raw) == CANFD_MTU:
            can_id, length, flags, _res0, _res1, payload = _FD.unpack(raw)
            if length > CANFD_MAX_DLEN:
                raise ValueError(f"invalid CAN FD length {length}")
            return cls(can_id, payload[:length], flags, fd=True)
        raise ValueError(f"incomplete CAN frame of {len(raw)} bytes")