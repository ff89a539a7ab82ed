import struct

import pytest

from canbench.bcmserver import (
    MAXLEN,
    MSG_SIZE,
    RX_DELETE,
    RX_FILTER_ID,
    RX_SETUP,
    SETTIMER,
    STARTTIMER,
    TX_DELETE,
    TX_SEND,
    TX_SETUP,
    BcmCommand,
    CommandAssembler,
    _unpack_rx,
    format_rx,
    parse_command,
)


def test_parse_add_cyclic_job():
    cmd = parse_command("< vcan1 A 1 0 123 8 11 22 33 44 55 66 77 88 >")
    assert cmd.ifname == "vcan1"
    assert cmd.command == "A"
    assert (cmd.ival_sec, cmd.ival_usec) == (1, 0)
    assert cmd.can_id == 0x123
    assert cmd.data == bytes([0x11, 0x22, 0x33, 0x44, 0x55, 0x66, 0x77, 0x88])
    assert cmd.opcode == TX_SETUP
    assert cmd.flags == SETTIMER | STARTTIMER


def test_parse_update_has_no_timer_flags():
    cmd = parse_command("< vcan1 U 0 0 123 3 11 22 33 >")
    assert cmd.opcode == TX_SETUP
    assert cmd.flags == 0
    assert cmd.data == bytes([0x11, 0x22, 0x33])


def test_parse_delete_without_data():
    cmd = parse_command("< vcan1 D 0 0 123 0 >")
    assert cmd.opcode == TX_DELETE
    assert cmd.data == b""


def test_parse_single_send():
    cmd = parse_command("< can0 S 0 0 123 0 >")
    assert cmd.opcode == TX_SEND
    assert cmd.ifname == "can0"


def test_parse_receive_with_throttle():
    cmd = parse_command("< vcan1 R 1 500000 123 8 FF 00 F8 00 00 00 00 00 >")
    assert cmd.opcode == RX_SETUP
    assert cmd.flags == SETTIMER
    assert cmd.ival_usec == 500000
    assert cmd.data[:3] == bytes([0xFF, 0x00, 0xF8])


def test_parse_filter_and_delete_receive():
    assert parse_command("< vcan1 F 0 0 123 0 >").flags == RX_FILTER_ID | SETTIMER
    assert parse_command("< vcan1 X 0 0 123 0 >").opcode == RX_DELETE


def test_parse_rejects_unknown_command():
    with pytest.raises(ValueError, match="unknown command 'Q'"):
        parse_command("< vcan1 Q 0 0 123 0 >")


@pytest.mark.parametrize(
    "text",
    [
        "< vcan1 A 0 0 >",
        "< vcan1 A 0 0 123 9 1 2 3 4 5 6 7 8 >",
        "< vcan1 A 0 0 123 2 11 >",
        "< vcan1 A 0 0 123 2 11 22 33 >",
        "vcan1 A 0 0 123 0 >",
    ],
)
def test_parse_rejects_malformed(text):
    with pytest.raises(ValueError):
        parse_command(text)


def test_assembler_skips_noise_and_joins_chunks():
    assembler = CommandAssembler()
    assert assembler.feed(b"junk< vcan1 D 0 ") == []
    assert assembler.feed(b"0 123 0 >tail") == ["< vcan1 D 0 0 123 0 >"]


def test_assembler_returns_several_commands():
    assembler = CommandAssembler()
    first = "< can0 S 0 0 123 0 >"
    second = "< vcan1 X 0 0 123 0 >"
    assert assembler.feed((first + second).encode()) == [first, second]


def test_assembler_drops_overlong_command():
    assembler = CommandAssembler()
    long_text = b"<" + b"a" * (MAXLEN + 10) + b">"
    assert assembler.feed(long_text) == []
    assert assembler.feed(b"< can0 S 0 0 123 0 >") == ["< can0 S 0 0 123 0 >"]


def test_format_rx_matches_documented_example():
    text = format_rx("vcan1", 0x123, bytes([0x11, 0x22, 0x33, 0x44]))
    assert text == "< vcan1 123 4 11 22 33 44 >"


def test_format_rx_without_data():
    assert format_rx("can0", 0x7, b"") == "< can0 007 0 >"


def test_pack_layout_round_trip():
    cmd = parse_command("< vcan1 A 0 20000 123 4 42 42 42 42 >")
    packed = cmd.pack()
    assert len(packed) == MSG_SIZE
    opcode, flags, count = struct.unpack_from("@III", packed, 0)
    assert (opcode, flags, count) == (TX_SETUP, SETTIMER | STARTTIMER, 0)
    assert _unpack_rx(packed) == (cmd.can_id, cmd.data)


def test_command_rejects_oversized_data():
    with pytest.raises(ValueError):
        BcmCommand("can0", "S", 0, 0, 0x123, bytes(9))


def test_parse_then_format_round_trip():
    cmd = parse_command("< vcan1 S 0 0 1AB 2 0A FF >")
    assert format_rx(cmd.ifname, cmd.can_id, cmd.data) == "< vcan1 1AB 2 0A FF >"