from datetime import datetime

import pytest

from canbench.busload import (
    BusLoadMonitor,
    InterfaceStats,
    main,
    parse_interface_spec,
)
from canbench.frame import CanFrame, CflMode
from canbench.framelen import can_frame_length
from canbench.terminal import ATTRESET, CSR_HOME, FGBLUE, FGRED


def _frame():
    return CanFrame(0x123, bytes(range(8)))


def test_parse_interface_spec():
    stats = parse_interface_spec("can0@500000")
    assert stats.devname == "can0"
    assert stats.bitrate == 500000
    assert stats.bitrate_width == len("500000")
    assert stats.recv_frames == 0


@pytest.mark.parametrize(
    "spec",
    [
        "can0",
        "can0@0",
        "can0@1000001",
        "can0@abc",
        "averyveryverylongname@500000",
        "x" * 40 + "@500000",
    ],
)
def test_parse_interface_spec_rejects(spec):
    with pytest.raises(ValueError):
        parse_interface_spec(spec)


def test_record_accumulates_and_reset():
    stats = InterfaceStats("can0", 500000)
    frame = _frame()
    stats.record(frame, CflMode.WORSTCASE)
    stats.record(frame, CflMode.WORSTCASE)
    assert stats.recv_frames == 2
    assert stats.recv_bits_payload == 2 * 64
    assert stats.recv_bits_total == 2 * can_frame_length(frame, CflMode.WORSTCASE)
    stats.reset()
    assert (stats.recv_frames, stats.recv_bits_total, stats.recv_bits_payload) == (0, 0, 0)


def test_record_respects_mode():
    frame = _frame()
    for mode in CflMode:
        stats = InterfaceStats("can0", 500000)
        stats.record(frame, mode)
        assert stats.recv_bits_total == can_frame_length(frame, mode)


def test_percent():
    frame = _frame()
    bits = can_frame_length(frame, CflMode.WORSTCASE)
    stats = InterfaceStats("can0", bits * 2)
    stats.record(frame)
    assert stats.percent() == 50
    assert InterfaceStats("can0", 0).percent() == 0


def _example_monitor(**kwargs):
    specs = ["can0@100000", "can1@500000", "can2@500000", "can3@500000"]
    return BusLoadMonitor([parse_interface_spec(s) for s in specs], **kwargs)


def test_report_matches_documented_layout():
    monitor = _example_monitor(bargraph=True)
    text = monitor.report()
    assert " can2@500000     0       0      0   0% |....................|\n" in text
    assert text.endswith("\n\n")
    assert len(text.splitlines()) == 5


def test_report_timestamp_line():
    monitor = _example_monitor(timestamp=True)
    text = monitor.report(datetime(2014, 2, 1, 21, 13, 16))
    assert text.startswith("canbusload 2014-02-01 21:13:16 (worst case bitstuffing)\n")


def test_report_mode_labels():
    monitor = _example_monitor(timestamp=True, mode=CflMode.EXACT)
    assert "(exact bitstuffing)" in monitor.report(datetime(2014, 2, 1))
    monitor.mode = CflMode.NO_BITSTUFFING
    assert "(ignore bitstuffing)" in monitor.report(datetime(2014, 2, 1))


def test_report_resets_counters():
    monitor = _example_monitor()
    monitor.record(0, _frame())
    assert monitor.interfaces[0].recv_frames == 1
    first = monitor.report()
    second = monitor.report()
    assert first != second
    assert monitor.interfaces[0].recv_frames == 0


def test_report_bargraph_capped():
    monitor = BusLoadMonitor([InterfaceStats("can0", 1)], bargraph=True)
    monitor.record(0, _frame())
    assert "|" + "X" * 20 + "|" in monitor.report()


def test_report_color_and_redraw():
    monitor = _example_monitor(color=True, redraw=True)
    lines = monitor.report().split("\n")
    assert lines[0].startswith(CSR_HOME + FGBLUE)
    assert lines[1].startswith(FGRED)
    assert lines[2].startswith(FGBLUE)
    assert all(line.endswith(ATTRESET) for line in lines[:4])


def test_main_without_interfaces(capsys):
    assert main([]) == 0
    assert "Usage: canbusload" in capsys.readouterr().err


def test_main_bad_option(capsys):
    assert main(["-z"]) == 1
    assert "Usage" in capsys.readouterr().err


def test_main_invalid_bitrate(capsys):
    assert main(["can0@0"]) == 1
    assert "invalid bitrate for CAN device 'can0@0'!" in capsys.readouterr().out


def test_main_too_many_interfaces(capsys):
    assert main([f"can{i}@500000" for i in range(17)]) == 1
    assert "More than 16 CAN devices" in capsys.readouterr().out