"""Number of bits a CAN frame occupies on the bus."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from itertools import islice

from .frame import (
    CAN_EFF_MASK,
    CAN_MTU,
    CAN_SFF_MASK,
    CanFrame,
    CflMode,
)

CRC15_POLY = 0x4599

# CRC delimiter, ACK slot, ACK delimiter, end of frame and interframe space
_TRAILER_BITS = 3 + 7 + 3


def _bits_of(data: bytes) -> Iterator[int]:
    for byte in data:
        for shift in range(7, -1, -1):
            yield (byte >> shift) & 1


def _int_bits(value: int, width: int) -> list[int]:
    return [(value >> shift) & 1 for shift in range(width - 1, -1, -1)]


def _crc15_bits(bits: Iterable[int]) -> int:
    crc = 0
    for bit in bits:
        feedback = ((crc >> 14) & 1) ^ bit
        crc = (crc << 1) & 0x7FFF
        if feedback:
            crc ^= CRC15_POLY
    return crc


def crc15(data: bytes, bits: int | None = None) -> int:
    """CAN CRC-15 over the first ``bits`` bits of ``data`` (all of it by default)."""
    data = bytes(data)
    total = len(data) * 8
    if bits is None:
        bits = total
    if not 0 <= bits <= total:
        raise ValueError(f"bit count {bits} outside 0..{total}")
    return _crc15_bits(islice(_bits_of(data), bits))


def _count_stuff_bits(bits: Iterable[int]) -> int:
    stuffed = 0
    previous = None
    run = 0
    for bit in bits:
        if bit == previous:
            run += 1
        else:
            previous, run = bit, 1
        if run == 5:
            stuffed += 1
            # the complementary stuff bit starts the next run
            previous, run = 1 - bit, 1
    return stuffed


def exact_frame_length(frame: CanFrame) -> int:
    """Bits on the wire for a classic frame, with stuff bits counted exactly."""
    if frame.fd:
        raise ValueError("exact length is only defined for classic CAN frames")
    rtr = 1 if frame.is_remote() else 0
    bits = [0]  # start of frame
    if frame.is_extended():
        ident = frame.can_id & CAN_EFF_MASK
        bits += _int_bits(ident >> 18, 11)
        bits += [1, 1]  # SRR, IDE
        bits += _int_bits(ident & 0x3FFFF, 18)
        bits += [rtr, 0, 0]  # RTR, r1, r0
    else:
        bits += _int_bits(frame.can_id & CAN_SFF_MASK, 11)
        bits += [rtr, 0, 0]  # RTR, IDE, r0
    bits += _int_bits(len(frame.data) & 0xF, 4)
    bits += _bits_of(frame.data)
    bits += _int_bits(_crc15_bits(bits), 15)
    return len(bits) + _count_stuff_bits(bits) + _TRAILER_BITS


def can_frame_length(
    frame: CanFrame, mode: CflMode | int = CflMode.WORSTCASE, mtu: int = CAN_MTU
) -> int:
    """Bits a frame needs on the wire including interframe space.

    Returns 0 for CAN FD sizes and for unknown modes.
    """
    if mtu != CAN_MTU:
        return 0
    try:
        mode = CflMode(mode)
    except ValueError:
        return 0
    extended = frame.is_extended()
    length = len(frame.data)
    if mode is CflMode.NO_BITSTUFFING:
        return (67 if extended else 47) + length * 8
    if mode is CflMode.WORSTCASE:
        return (80 if extended else 55) + length * 10
    return exact_frame_length(frame)