import pytest

from canbench.frame import (
    CAN_EFF_FLAG,
    CAN_RTR_FLAG,
    CANFD_MTU,
    CAN_MTU,
    CanFrame,
    CflMode,
)
from canbench.framelen import can_frame_length, crc15, exact_frame_length


def test_crc15_matches_table_entries():
    assert crc15(b"\x01") == 0x4599
    assert crc15(b"\x02") == 0x4EAB
    assert crc15(b"\xff") == 0x0095


def test_crc15_single_bit():
    assert crc15(b"\x80", 1) == 0x4599
    assert crc15(b"\x80", 0) == 0


def test_crc15_of_zeros_is_zero():
    assert crc15(b"\x00" * 10) == 0


def test_crc15_check_value():
    assert crc15(b"123456789") == 0x059E


def test_crc15_bits_out_of_range():
    with pytest.raises(ValueError):
        crc15(b"\x00", 9)
    with pytest.raises(ValueError):
        crc15(b"\x00", -1)


def test_crc15_partial_bits_ignore_trailing_bits():
    assert crc15(b"\xa0", 3) == crc15(b"\xbf", 3)


def test_no_bitstuffing_base_lengths():
    assert can_frame_length(CanFrame(0x123), CflMode.NO_BITSTUFFING, CAN_MTU) == 47
    eff = CanFrame(CAN_EFF_FLAG | 0x123)
    assert can_frame_length(eff, CflMode.NO_BITSTUFFING, CAN_MTU) == 67


def test_worstcase_base_lengths():
    assert can_frame_length(CanFrame(0x123), CflMode.WORSTCASE, CAN_MTU) == 55
    eff = CanFrame(CAN_EFF_FLAG | 0x123)
    assert can_frame_length(eff, CflMode.WORSTCASE, CAN_MTU) == 80


@pytest.mark.parametrize("n", range(9))
def test_payload_scaling(n):
    empty = CanFrame(0x10)
    full = CanFrame(0x10, b"\xaa" * n)
    assert (
        can_frame_length(full, CflMode.NO_BITSTUFFING, CAN_MTU)
        - can_frame_length(empty, CflMode.NO_BITSTUFFING, CAN_MTU)
        == 8 * n
    )
    assert (
        can_frame_length(full, CflMode.WORSTCASE, CAN_MTU)
        - can_frame_length(empty, CflMode.WORSTCASE, CAN_MTU)
        == 10 * n
    )


def test_fd_mtu_not_supported():
    frame = CanFrame(0x10, b"\x01")
    assert can_frame_length(frame, CflMode.WORSTCASE, CANFD_MTU) == 0


def test_unknown_mode_gives_zero():
    assert can_frame_length(CanFrame(0x10), 7, CAN_MTU) == 0


def test_integer_mode_accepted():
    frame = CanFrame(0x3A5, b"\x12\x34")
    assert can_frame_length(frame, 2, CAN_MTU) == exact_frame_length(frame)


def test_exact_all_zero_frame():
    assert exact_frame_length(CanFrame(0)) == 53


@pytest.mark.parametrize(
    "frame",
    [
        CanFrame(0),
        CanFrame(0x7FF, b"\xff" * 8),
        CanFrame(0x123, b"\x11\x22\x33\x44\x55\x66\x77\x88"),
        CanFrame(0x555, b"\x55\xaa"),
        CanFrame(CAN_RTR_FLAG | 0x42),
        CanFrame(CAN_EFF_FLAG | 0x1FFFFFFF, b"\xff" * 8),
        CanFrame(CAN_EFF_FLAG, b"\x00" * 8),
        CanFrame(CAN_EFF_FLAG | CAN_RTR_FLAG | 0x12345),
    ],
)
def test_exact_between_bounds(frame):
    exact = can_frame_length(frame, CflMode.EXACT, CAN_MTU)
    low = can_frame_length(frame, CflMode.NO_BITSTUFFING, CAN_MTU)
    high = can_frame_length(frame, CflMode.WORSTCASE, CAN_MTU)
    assert low <= exact <= high


def test_exact_rejects_fd_frame():
    with pytest.raises(ValueError):
        exact_frame_length(CanFrame(0x1, b"\x00" * 12, fd=True))


def test_exact_depends_on_content():
    zeros = exact_frame_length(CanFrame(0x0, b"\x00" * 8))
    alternating = exact_frame_length(CanFrame(0x0, b"\x55" * 8))
    assert zeros > alternating