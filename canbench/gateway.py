"""Manage the CAN gateway through rtnetlink: rule parsing, requests and listings."""

from __future__ import annotations

import enum
import getopt
import os
import re
import socket
import struct
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace

from .frame import CAN_INV_FILTER

AF_CAN = 29
AF_NETLINK = 16
NETLINK_ROUTE = 0

NLM_F_REQUEST = 0x001
NLM_F_ACK = 0x004
NLM_F_DUMP = 0x300

NLMSG_ERROR = 2
NLMSG_DONE = 3

RTM_NEWROUTE = 24
RTM_DELROUTE = 25
RTM_GETROUTE = 26

CGW_TYPE_CAN_CAN = 1

CGW_MOD_AND = 1
CGW_MOD_OR = 2
CGW_MOD_XOR = 3
CGW_MOD_SET = 4
CGW_CS_XOR = 5
CGW_CS_CRC8 = 6
CGW_HANDLED = 7
CGW_DROPPED = 8
CGW_SRC_IF = 9
CGW_DST_IF = 10
CGW_FILTER = 11
CGW_DELETED = 12
CGW_LIM_HOPS = 13
CGW_MOD_UID = 14

CGW_FLAGS_CAN_ECHO = 0x01
CGW_FLAGS_CAN_SRC_TSTAMP = 0x02
CGW_FLAGS_CAN_IIF_TX_OK = 0x04

CGW_MOD_FUNCS = 4
CGW_MOD_ID = 0x01
CGW_MOD_DLC = 0x02
CGW_MOD_DATA = 0x04

CGW_CRC8PRF_UNSPEC = 0
CGW_CRC8PRF_1U8 = 1
CGW_CRC8PRF_16U8 = 2
CGW_CRC8PRF_SFFID_XOR = 3

_NLMSGHDR = struct.Struct("=IHHII")
_RTCANMSG = struct.Struct("=BBH")
_RTATTR = struct.Struct("=HH")
_MODATTR = struct.Struct("=IB3x8sBB")
_CSUM_XOR = struct.Struct("=bbbB")
_CSUM_CRC8 = struct.Struct("=bbbBB256sB20s")
_FILTER = struct.Struct("=II")
_U32 = struct.Struct("=I")
_S32 = struct.Struct("=i")

CGW_MODATTR_LEN = _MODATTR.size
REQUEST_SIZE = _NLMSGHDR.size + _RTCANMSG.size + 600
RXBUF_SIZE = 8192

_MOD_NAMES = {
    CGW_MOD_AND: "AND",
    CGW_MOD_OR: "OR",
    CGW_MOD_XOR: "XOR",
    CGW_MOD_SET: "SET",
}


class GatewayError(Exception):
    """A gateway definition or request is invalid."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class Command(enum.IntEnum):
    """What the gateway request asks the kernel to do."""

    UNSPEC = 0
    ADD = 1
    DEL = 2
    FLUSH = 3
    LIST = 4


def _align(length: int) -> int:
    return (length + 3) & ~3


def _u32(value: int) -> int:
    return value & 0xFFFFFFFF


def _s32(value: int) -> int:
    value = _u32(value)
    return value - (1 << 32) if value & 0x80000000 else value


def _s8(value: int) -> int:
    return ((value & 0xFF) ^ 0x80) - 0x80


_FMT_PART = re.compile(r"%(\d*)([dxs])|(\s+)|(.)", re.DOTALL)
_CONVERSIONS = {
    "d": re.compile(r"[+-]?\d+"),
    "x": re.compile(r"[+-]?(?:0[xX](?=[0-9a-fA-F]))?[0-9a-fA-F]+"),
    "s": re.compile(r"\S+"),
}


def _sscanf(text: str, fmt: str) -> list:
    """Values converted from ``text`` by a small subset of scanf formats."""
    values: list = []
    pos = 0
    for part in _FMT_PART.finditer(fmt):
        width, conv, space, literal = part.groups()
        if space:
            while pos < len(text) and text[pos].isspace():
                pos += 1
            continue
        if literal is not None:
            if pos < len(text) and text[pos] == literal:
                pos += 1
                continue
            break
        while pos < len(text) and text[pos].isspace():
            pos += 1
        end = min(len(text), pos + int(width)) if width else len(text)
        match = _CONVERSIONS[conv].match(text[pos:end])
        if not match:
            break
        field = match.group()
        pos += len(field)
        if conv == "s":
            values.append(field)
        else:
            values.append(int(field, 16 if conv == "x" else 10))
    return values


def hex_bytes(text: str, length: int) -> bytes:
    """Decode ``length`` bytes given as two-character hex pairs."""
    out = bytearray()
    for i in range(length):
        values = _sscanf(text[2 * i:], "%2x")
        if not values:
            raise GatewayError(f"invalid hex data '{text}'")
        out.append(values[0] & 0xFF)
    return bytes(out)


@dataclass(frozen=True)
class CanFilter:
    """A CAN identifier filter: value and mask."""

    can_id: int
    can_mask: int

    def pack(self) -> bytes:
        """Encode as struct can_filter."""
        return _FILTER.pack(_u32(self.can_id), _u32(self.can_mask))

    def describe(self) -> str:
        """The command line option that creates this filter."""
        if self.can_id & CAN_INV_FILTER:
            return f"-f {self.can_id & ~CAN_INV_FILTER & 0xFFFFFFFF:03X}~{self.can_mask:X} "
        return f"-f {self.can_id:03X}:{self.can_mask:X} "

    @classmethod
    def _from_bytes(cls, data: bytes) -> CanFilter:
        return cls(*_FILTER.unpack(data[:_FILTER.size].ljust(_FILTER.size, b"\0")))


def parse_filter(text: str) -> CanFilter:
    """Parse ``<can_id>:<can_mask>`` or the inverted ``<can_id>~<can_mask>``."""
    values = _sscanf(text, "%x:%x")
    if len(values) == 2:
        return CanFilter(_u32(values[0]), _u32(values[1]))
    values = _sscanf(text, "%x~%x")
    if len(values) == 2:
        return CanFilter(_u32(values[0]) | CAN_INV_FILTER, _u32(values[1]))
    raise GatewayError(f"Bad filter definition '{text}'.")


@dataclass(frozen=True)
class ModAttr:
    """A frame modification: instruction, affected elements and operand frame."""

    instruction: int
    modtype: int
    can_id: int
    dlc: int
    data: bytes = bytes(8)

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", bytes(self.data))
        if len(self.data) != 8:
            raise ValueError("modification data must be eight bytes")

    def pack(self) -> bytes:
        """Encode as the gateway modification attribute payload."""
        return _MODATTR.pack(
            _u32(self.can_id), self.dlc & 0xFF, self.data,
            self.modtype & 0xFF, self.instruction & 0xFF,
        )

    def describe(self, name: str) -> str:
        """The command line option that creates this modification."""
        elements = "".join(
            letter for flag, letter in
            ((CGW_MOD_ID, "I"), (CGW_MOD_DLC, "L"), (CGW_MOD_DATA, "D"))
            if self.modtype & flag
        )
        return (
            f"-m {name}:{elements}:{self.can_id:03X}.{self.dlc:X}."
            f"{self.data.hex().upper()} "
        )

    @classmethod
    def _from_bytes(cls, data: bytes) -> ModAttr:
        raw = data[:CGW_MODATTR_LEN].ljust(CGW_MODATTR_LEN, b"\0")
        can_id, dlc, payload, modtype, instruction = _MODATTR.unpack(raw)
        return cls(instruction, modtype, can_id, dlc, payload)


def parse_mod(text: str) -> ModAttr:
    """Parse ``<instruction>:<elements>:<can_id>.<can_dlc>.<can_data>``.

    Raises GatewayError whose ``code`` tells which part is wrong.
    """

    def fail(code: int) -> GatewayError:
        return GatewayError(
            f"Problem {code} with modification definition '{text}'.", code
        )

    sep = text.find(":")
    if sep <= 0 or sep > 3:
        raise fail(1)

    if text.startswith("AND"):
        instruction = CGW_MOD_AND
    elif text.startswith("OR"):
        instruction = CGW_MOD_OR
    elif text.startswith("XOR"):
        instruction = CGW_MOD_XOR
    elif text.startswith("SET"):
        instruction = CGW_MOD_SET
    else:
        raise fail(2)

    start = sep + 1
    sep = text.find(":", start)
    if sep < 0 or sep - start > 3 or sep == start:
        raise fail(3)

    modtype = 0
    for letter in text[start:sep]:
        if letter == "I":
            modtype |= CGW_MOD_ID
        elif letter == "L":
            modtype |= CGW_MOD_DLC
        elif letter == "D":
            modtype |= CGW_MOD_DATA
        else:
            raise fail(4)

    values = _sscanf(text[sep + 1:], "%x.%x.%16s")
    if len(values) != 3:
        raise fail(5)
    can_id, dlc, hexdata = _u32(values[0]), values[1] & 0xFF, values[2]

    if dlc > 0xF:
        raise fail(6)
    if instruction == CGW_MOD_SET and dlc > 8:
        raise fail(7)
    if len(hexdata) != 16:
        raise fail(8)
    try:
        data = hex_bytes(hexdata, 8)
    except GatewayError:
        raise fail(9) from None

    return ModAttr(instruction, modtype, can_id, dlc, data)


@dataclass(frozen=True)
class CsumXor:
    """XOR checksum over a range of data bytes."""

    from_idx: int
    to_idx: int
    result_idx: int
    init_xor_val: int

    def pack(self) -> bytes:
        """Encode as struct cgw_csum_xor."""
        return _CSUM_XOR.pack(
            _s8(self.from_idx), _s8(self.to_idx), _s8(self.result_idx),
            self.init_xor_val & 0xFF,
        )

    def describe(self) -> str:
        """The command line option that creates this checksum."""
        return (
            f"-x {self.from_idx}:{self.to_idx}:{self.result_idx}:"
            f"{self.init_xor_val:02X} "
        )

    @classmethod
    def _from_bytes(cls, data: bytes) -> CsumXor:
        return cls(*_CSUM_XOR.unpack(data[:_CSUM_XOR.size].ljust(_CSUM_XOR.size, b"\0")))


def parse_cs_xor(text: str) -> CsumXor:
    """Parse ``<from_idx>:<to_idx>:<result_idx>:<init_xor_val>``."""
    values = _sscanf(text, "%d:%d:%d:%x")
    if len(values) != 4:
        raise GatewayError(f"Bad XOR checksum definition '{text}'.")
    return CsumXor(_s8(values[0]), _s8(values[1]), _s8(values[2]), values[3] & 0xFF)


@dataclass(frozen=True)
class CsumCrc8:
    """CRC8 checksum with its table and optional profile."""

    from_idx: int = 0
    to_idx: int = 0
    result_idx: int = 0
    init_crc_val: int = 0
    final_xor_val: int = 0
    crctab: bytes = bytes(256)
    profile: int = CGW_CRC8PRF_UNSPEC
    profile_data: bytes = bytes(20)

    def __post_init__(self) -> None:
        object.__setattr__(self, "crctab", bytes(self.crctab))
        object.__setattr__(self, "profile_data", bytes(self.profile_data))
        if len(self.crctab) != 256:
            raise ValueError("CRC8 table must hold 256 bytes")
        if len(self.profile_data) != 20:
            raise ValueError("CRC8 profile data must hold 20 bytes")

    def pack(self) -> bytes:
        """Encode as struct cgw_csum_crc8."""
        return _CSUM_CRC8.pack(
            _s8(self.from_idx), _s8(self.to_idx), _s8(self.result_idx),
            self.init_crc_val & 0xFF, self.final_xor_val & 0xFF,
            self.crctab, self.profile & 0xFF, self.profile_data,
        )

    def _describe_profile(self) -> str:
        text = f"-p {self.profile}:"
        if self.profile == CGW_CRC8PRF_1U8:
            text += f"{self.profile_data[0]:02X}"
        elif self.profile == CGW_CRC8PRF_16U8:
            text += self.profile_data[:16].hex().upper()
        elif self.profile != CGW_CRC8PRF_SFFID_XOR:
            text += f"<unknown profile #{self.profile}>"
        return text + " "

    def describe(self) -> str:
        """The command line options that create this checksum."""
        text = (
            f"-c {self.from_idx}:{self.to_idx}:{self.result_idx}:"
            f"{self.init_crc_val:02X}:{self.final_xor_val:02X}:"
            f"{self.crctab.hex().upper()} "
        )
        if self.profile != CGW_CRC8PRF_UNSPEC:
            text += self._describe_profile()
        return text

    @classmethod
    def _from_bytes(cls, data: bytes) -> CsumCrc8:
        raw = data[:_CSUM_CRC8.size].ljust(_CSUM_CRC8.size, b"\0")
        return cls(*_CSUM_CRC8.unpack(raw))


def parse_cs_crc8(text: str) -> CsumCrc8:
    """Parse ``<from>:<to>:<result>:<init_val>:<xor_val>:<crctab[256]>``."""
    values = _sscanf(text, "%d:%d:%d:%x:%x:%512s")
    if len(values) != 6 or len(values[5]) != 512:
        raise GatewayError(f"Bad CRC8 checksum definition '{text}'.")
    try:
        table = hex_bytes(values[5], 256)
    except GatewayError:
        raise GatewayError(f"Bad CRC8 checksum definition '{text}'.") from None
    return CsumCrc8(
        _s8(values[0]), _s8(values[1]), _s8(values[2]),
        values[3] & 0xFF, values[4] & 0xFF, table,
    )


def parse_crc8_profile(text: str, crc8: CsumCrc8) -> CsumCrc8:
    """Return ``crc8`` with the profile ``<profile>:[<profile_data>]`` applied."""
    bad = GatewayError(f"Bad CRC8 profile definition '{text}'.")
    values = _sscanf(text, "%d:")
    if not values:
        raise bad
    profile = values[0] & 0xFF

    if profile == CGW_CRC8PRF_1U8:
        values = _sscanf(text, "%d:%2x")
        if len(values) != 2:
            raise bad
        data = bytes([values[1] & 0xFF]) + crc8.profile_data[1:]
        return replace(crc8, profile=profile, profile_data=data)

    if profile == CGW_CRC8PRF_16U8:
        sep = text.find(":")
        if sep < 0 or len(text) - sep != len(":00112233445566778899AABBCCDDEEFF"):
            raise bad
        try:
            table = hex_bytes(text[sep + 1:], 16)
        except GatewayError:
            raise bad from None
        return replace(crc8, profile=profile, profile_data=table + crc8.profile_data[16:])

    if profile == CGW_CRC8PRF_SFFID_XOR:
        return replace(crc8, profile=profile)

    raise bad


def add_attr(buf: bytes, maxlen: int, attr_type: int, data: bytes) -> bytes:
    """Return the netlink message ``buf`` with one attribute appended."""
    data = bytes(data)
    current = _U32.unpack_from(buf, 0)[0]
    length = _RTATTR.size + len(data)
    new_len = _align(current) + _align(length)
    if new_len > maxlen:
        raise GatewayError(f"addattr_l: message exceeded bound of {maxlen}")
    out = bytearray(bytes(buf[:current]).ljust(_align(current), b"\0"))
    out += _RTATTR.pack(length, attr_type)
    out += data
    out += bytes(new_len - len(out))
    _U32.pack_into(out, 0, new_len)
    return bytes(out)


def build_request(
    command: Command | int,
    src_ifindex: int = 0,
    dst_ifindex: int = 0,
    flags: int = 0,
    filter: CanFilter | None = None,
    cs_crc8: CsumCrc8 | None = None,
    cs_xor: CsumXor | None = None,
    uid: int = 0,
    limit_hops: int = 0,
    mods: Sequence[ModAttr] = (),
) -> bytes:
    """Build the rtnetlink request for a gateway command."""
    command = Command(command)
    if command in (Command.ADD, Command.DEL) and (not src_ifindex or not dst_ifindex):
        raise GatewayError("source and destination interface are required")
    if not mods and (cs_crc8 is not None or cs_xor is not None):
        raise GatewayError("-c or -x can only be used in conjunction with -m")

    if command is Command.ADD:
        nl_flags, nl_type = NLM_F_REQUEST | NLM_F_ACK, RTM_NEWROUTE
    elif command is Command.DEL:
        nl_flags, nl_type = NLM_F_REQUEST | NLM_F_ACK, RTM_DELROUTE
    elif command is Command.FLUSH:
        nl_flags, nl_type = NLM_F_REQUEST | NLM_F_ACK, RTM_DELROUTE
        # interface index 0 removes all entries
        src_ifindex = dst_ifindex = 0
    elif command is Command.LIST:
        nl_flags, nl_type = NLM_F_REQUEST | NLM_F_DUMP, RTM_GETROUTE
    else:
        raise GatewayError("This function is not yet implemented.")

    header_len = _NLMSGHDR.size + _RTCANMSG.size
    req = _NLMSGHDR.pack(header_len, nl_type, nl_flags, 0, 0)
    req += _RTCANMSG.pack(AF_CAN, CGW_TYPE_CAN_CAN, flags & 0xFFFF)

    req = add_attr(req, REQUEST_SIZE, CGW_SRC_IF, _U32.pack(_u32(src_ifindex)))
    req = add_attr(req, REQUEST_SIZE, CGW_DST_IF, _U32.pack(_u32(dst_ifindex)))
    if filter is not None:
        req = add_attr(req, REQUEST_SIZE, CGW_FILTER, filter.pack())
    if cs_crc8 is not None:
        req = add_attr(req, REQUEST_SIZE, CGW_CS_CRC8, cs_crc8.pack())
    if cs_xor is not None:
        req = add_attr(req, REQUEST_SIZE, CGW_CS_XOR, cs_xor.pack())
    if uid:
        req = add_attr(req, REQUEST_SIZE, CGW_MOD_UID, _U32.pack(_u32(uid)))
    if limit_hops:
        req = add_attr(req, REQUEST_SIZE, CGW_LIM_HOPS, bytes([limit_hops & 0xFF]))
    for mod in mods:
        req = add_attr(req, REQUEST_SIZE, mod.instruction, mod.pack())
    return req


def _if_indextoname(index: int) -> str | None:
    try:
        return socket.if_indextoname(index)
    except (OSError, OverflowError, ValueError):
        return None


def _if_nametoindex(name: str) -> int:
    try:
        return socket.if_nametoindex(name)
    except (OSError, ValueError):
        return 0


def _iter_attrs(buf: bytes, start: int, length: int):
    while length >= _RTATTR.size:
        rta_len, rta_type = _RTATTR.unpack_from(buf, start)
        if rta_len < _RTATTR.size or rta_len > length:
            return
        yield rta_type, buf[start + _RTATTR.size:start + rta_len]
        step = _align(rta_len)
        start += step
        length -= step


def _read_u32(payload: bytes) -> int:
    return _U32.unpack(payload[:4].ljust(4, b"\0"))[0]


_FIRST_PASS_SKIP = {
    CGW_FILTER, CGW_MOD_AND, CGW_MOD_OR, CGW_MOD_XOR, CGW_MOD_SET,
    CGW_MOD_UID, CGW_LIM_HOPS, CGW_CS_XOR, CGW_CS_CRC8,
}
_COUNTERS = {CGW_SRC_IF, CGW_DST_IF, CGW_HANDLED, CGW_DROPPED, CGW_DELETED}


def format_rule_list(
    prgname: str,
    data: bytes,
    ifname_lookup: Callable[[int], str | None] | None = None,
) -> tuple[str, bool]:
    """Render the gateway rules of a netlink dump buffer as command lines.

    Returns the text and whether the listing has finished (done marker,
    error message or an unexpected entry).
    """
    lookup = ifname_lookup if ifname_lookup is not None else _if_indextoname
    data = bytes(data)
    out: list[str] = []
    offset = 0
    remaining = len(data)
    prg = os.path.basename(prgname)

    while True:
        if remaining < _NLMSGHDR.size:
            return "".join(out), False
        nl_len, nl_type, _flags, _seq, _pid = _NLMSGHDR.unpack_from(data, offset)
        if nl_len < _NLMSGHDR.size or nl_len > remaining:
            return "".join(out), False

        if nl_type == NLMSG_ERROR:
            out.append("NLMSG_ERROR\n")
            return "".join(out), True
        if nl_type == NLMSG_DONE:
            return "".join(out), True

        body_start = _NLMSGHDR.size + _RTCANMSG.size
        msg = data[offset:offset + nl_len].ljust(body_start, b"\0")
        family, gwtype, rt_flags = _RTCANMSG.unpack_from(msg, _NLMSGHDR.size)
        if family != AF_CAN:
            out.append(f"received msg from unknown family {family}\n")
            return "".join(out), True
        if gwtype != CGW_TYPE_CAN_CAN:
            out.append(f"received msg with unknown gwtype {gwtype}\n")
            return "".join(out), True

        attrs = list(_iter_attrs(msg, body_start, nl_len - body_start))
        counters = dict.fromkeys(_COUNTERS, 0)

        out.append(f"{prg} -A ")
        for rta_type, payload in attrs:
            if rta_type in _COUNTERS:
                counters[rta_type] = _read_u32(payload)
            elif rta_type not in _FIRST_PASS_SKIP:
                out.append(f"Unknown attribute {rta_type}!")
                return "".join(out), True

        for key, option in ((CGW_SRC_IF, "-s"), (CGW_DST_IF, "-d")):
            name = lookup(counters[key])
            out.append(f"{option} {name if name is not None else '(null)'} ")

        if rt_flags & CGW_FLAGS_CAN_ECHO:
            out.append("-e ")
        if rt_flags & CGW_FLAGS_CAN_SRC_TSTAMP:
            out.append("-t ")
        if rt_flags & CGW_FLAGS_CAN_IIF_TX_OK:
            out.append("-i ")

        for rta_type, payload in attrs:
            if rta_type == CGW_FILTER:
                out.append(CanFilter._from_bytes(payload).describe())
            elif rta_type in _MOD_NAMES:
                out.append(ModAttr._from_bytes(payload).describe(_MOD_NAMES[rta_type]))
            elif rta_type == CGW_MOD_UID:
                out.append(f"-u {_read_u32(payload):X} ")
            elif rta_type == CGW_LIM_HOPS:
                out.append(f"-l {payload[0] if payload else 0} ")
            elif rta_type == CGW_CS_XOR:
                out.append(CsumXor._from_bytes(payload).describe())
            elif rta_type == CGW_CS_CRC8:
                out.append(CsumCrc8._from_bytes(payload).describe())

        out.append(
            f"# {_s32(counters[CGW_HANDLED])} handled "
            f"{_s32(counters[CGW_DROPPED])} dropped "
            f"{_s32(counters[CGW_DELETED])} deleted\n"
        )

        step = _align(nl_len)
        offset += step
        remaining -= step


def _usage(prg: str) -> str:
    return (
        f"\nUsage: {prg} [options]\n\n"
        "Commands:  -A (add a new rule)\n"
        "           -D (delete a rule)\n"
        "           -F (flush / delete all rules)\n"
        "           -L (list all rules)\n"
        "Mandatory: -s <src_dev>  (source netdevice)\n"
        "           -d <dst_dev>  (destination netdevice)\n"
        "Options:   -t (preserve src_dev rx timestamp)\n"
        "           -e (echo sent frames - recommended on vcanx)\n"
        "           -i (allow to route to incoming interface)\n"
        "           -u <uid> (user defined modification identifier)\n"
        "           -l <hops> (limit the number of frame hops / routings)\n"
        "           -f <filter> (set CAN filter)\n"
        "           -m <mod> (set frame modifications)\n"
        "           -x <from_idx>:<to_idx>:<result_idx>:<init_xor_val> (XOR checksum)\n"
        "           -c <from>:<to>:<result>:<init_val>:<xor_val>:<crctab[256]> (CRC8 cs)\n"
        "           -p <profile>:[<profile_data>] (CRC8 checksum profile & parameters)\n"
        "\nValues are given and expected in hexadecimal values. Leading 0s can be omitted.\n"
        "\n"
        "<filter> is a <value><mask> CAN identifier filter\n"
        "   <can_id>:<can_mask> (matches when <received_can_id> & mask == can_id & mask)\n"
        "   <can_id>~<can_mask> (matches when <received_can_id> & mask != can_id & mask)\n"
        "\n"
        "<mod> is a CAN frame modification instruction consisting of\n"
        "<instruction>:<can_frame-elements>:<can_id>.<can_dlc>.<can_data>\n"
        " - <instruction> is one of 'AND' 'OR' 'XOR' 'SET'\n"
        " - <can_frame-elements> is _one_ or _more_ of 'I'dentifier 'L'ength 'D'ata\n"
        " - <can_id> is an u32 value containing the CAN Identifier\n"
        " - <can_dlc> is an u8 value containing the data length code (0 .. 8)\n"
        " - <can_data> is always eight(!) u8 values containing the CAN frames data\n"
        "The max. four modifications are performed in the order AND -> OR -> XOR -> SET\n"
        "\n"
        "Example:\n"
        f"{prg} -A -s can0 -d vcan3 -e -f 123:C00007FF -m SET:IL:333.4.1122334455667788\n"
        "\n"
        "Supported CRC 8 profiles:\n"
        f"Profile '{CGW_CRC8PRF_1U8}' (1U8)       - add one additional u8 value\n"
        f"Profile '{CGW_CRC8PRF_16U8}' (16U8)      - add u8 value from table[16] "
        "indexed by (data[1] & 0xF)\n"
        f"Profile '{CGW_CRC8PRF_SFFID_XOR}' (SFFID_XOR) - add u8 value "
        "(can_id & 0xFF) ^ (can_id >> 8 & 0xFF)\n"
        "\n"
    )


def _exchange(sock: socket.socket, command: Command, request: bytes, prg: str, out) -> int:
    try:
        sock.sendto(request, (0, 0))
    except OSError as exc:
        sys.stderr.write(f"netlink sendto: {exc.strerror or exc}\n")
        return -1

    if command is not Command.LIST:
        try:
            answer = sock.recv(RXBUF_SIZE)
        except OSError as exc:
            sys.stderr.write(f"netlink recv: {exc.strerror or exc}\n")
            return -1
        answer = answer.ljust(_NLMSGHDR.size + 4, b"\0")
        nl_type = _NLMSGHDR.unpack_from(answer, 0)[1]
        if nl_type != NLMSG_ERROR:
            sys.stderr.write(f"unexpected netlink answer of type {nl_type}\n")
            return -22
        err = _S32.unpack_from(answer, _NLMSGHDR.size)[0]
        if err < 0:
            sys.stderr.write(f"netlink error {err} ({os.strerror(abs(err))})\n")
        return err

    while True:
        try:
            chunk = sock.recv(RXBUF_SIZE)
        except OSError as exc:
            sys.stderr.write(f"netlink recv: {exc.strerror or exc}\n")
            return -1
        text, done = format_rule_list(prg, chunk)
        out.write(text)
        out.flush()
        if done:
            return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Command line entry point; returns the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    prg = "cangw"
    out = sys.stdout

    try:
        opts, rest = getopt.gnu_getopt(args, "ADFLs:d:teiu:l:f:c:p:x:m:?")
    except getopt.GetoptError:
        sys.stderr.write(_usage(prg))
        return 0

    command = Command.UNSPEC
    src_ifindex = dst_ifindex = 0
    flags = 0
    uid = 0
    limit_hops = 0
    filter_: CanFilter | None = None
    cs_xor: CsumXor | None = None
    have_crc8 = False
    cs_crc8 = CsumCrc8()
    mods: list[ModAttr] = []
    commands = {"-A": Command.ADD, "-D": Command.DEL, "-F": Command.FLUSH, "-L": Command.LIST}

    try:
        for opt, value in opts:
            if opt in commands:
                if command is Command.UNSPEC:
                    command = commands[opt]
            elif opt == "-s":
                src_ifindex = _if_nametoindex(value)
            elif opt == "-d":
                dst_ifindex = _if_nametoindex(value)
            elif opt == "-t":
                flags |= CGW_FLAGS_CAN_SRC_TSTAMP
            elif opt == "-e":
                flags |= CGW_FLAGS_CAN_ECHO
            elif opt == "-i":
                flags |= CGW_FLAGS_CAN_IIF_TX_OK
            elif opt == "-u":
                values = _sscanf(value, "%x")
                uid = _u32(values[0]) if values else 0
            elif opt == "-l":
                values = _sscanf(value, "%d")
                limit_hops = values[0] & 0xFF if values else 0
                if not limit_hops:
                    raise GatewayError(f"Bad hop limit definition '{value}'.")
            elif opt == "-f":
                filter_ = parse_filter(value)
            elif opt == "-x":
                cs_xor = parse_cs_xor(value)
            elif opt == "-c":
                parsed = parse_cs_crc8(value)
                cs_crc8 = replace(parsed, profile=cs_crc8.profile,
                                  profile_data=cs_crc8.profile_data)
                have_crc8 = True
            elif opt == "-p":
                cs_crc8 = parse_crc8_profile(value, cs_crc8)
            elif opt == "-m":
                if len(mods) < CGW_MOD_FUNCS:
                    mods.append(parse_mod(value))
            elif opt == "-?":
                sys.stderr.write(_usage(prg))
                return 0
    except GatewayError as exc:
        out.write(f"{exc}\n")
        return 1

    if rest or command is Command.UNSPEC:
        sys.stderr.write(_usage(prg))
        return 1

    if command in (Command.ADD, Command.DEL) and (not src_ifindex or not dst_ifindex):
        sys.stderr.write(_usage(prg))
        return 1

    try:
        request = build_request(
            command, src_ifindex, dst_ifindex, flags, filter_,
            cs_crc8 if have_crc8 else None, cs_xor, uid, limit_hops, mods,
        )
    except GatewayError as exc:
        out.write(f"{exc}\n")
        return 1

    if not hasattr(socket, "AF_NETLINK"):
        sys.stderr.write("socket: netlink sockets are not supported on this system\n")
        return 1

    try:
        sock = socket.socket(socket.AF_NETLINK, socket.SOCK_RAW, NETLINK_ROUTE)
    except OSError as exc:
        sys.stderr.write(f"socket: {exc.strerror or exc}\n")
        return 1

    with sock:
        return _exchange(sock, command, request, prg, out)


if __name__ == "__main__":
    sys.exit(main())