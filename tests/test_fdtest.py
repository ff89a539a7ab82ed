import errno
import io
from collections import deque

import pytest

from canbench.fdtest import (
    CAN_MSG_ID,
    FrameMismatch,
    compare_frames,
    echo_response,
    format_frame,
    main,
    run_dut,
    run_generator,
)
from canbench.frame import CAN_RTR_FLAG, CanFrame


class FeedSocket:
    """Returns queued frames, records what is sent."""

    def __init__(self, frames=(), fail_first_send=False):
        self.incoming = deque(f.pack() for f in frames)
        self.sent = []
        self.fail_first_send = fail_first_send

    def recv(self, size):
        return self.incoming.popleft() if self.incoming else b""

    def send(self, data):
        if self.fail_first_send:
            self.fail_first_send = False
            raise OSError(errno.ENOBUFS, "No buffer space available")
        self.sent.append(CanFrame.unpack(data))
        return len(data)


class LoopbackBus:
    """Loops back own frames and answers them like a device under test."""

    def __init__(self, responder=echo_response, loopback=True):
        self.incoming = deque()
        self.responder = responder
        self.loopback = loopback

    def recv(self, size):
        return self.incoming.popleft() if self.incoming else b""

    def send(self, data):
        frame = CanFrame.unpack(data)
        if self.loopback:
            self.incoming.append(data)
        self.incoming.append(self.responder(frame).pack())
        return len(data)


def test_format_frame():
    frame = CanFrame(0x77, bytes(range(8)))
    assert format_frame(frame, 0) == "0077: [8] 00 01 02 03 04 05 06 07"
    assert format_frame(frame, 1) == "0078: [8] 01 02 03 04 05 06 07 08"


def test_format_remote_frame():
    frame = CanFrame(0x123 | CAN_RTR_FLAG)
    assert format_frame(frame).endswith("remote request")


def test_echo_response_wraps_bytes():
    frame = CanFrame(0x77, bytes([0xFF, 0x00, 0x10]))
    reply = echo_response(frame)
    assert reply.can_id == 0x78
    assert reply.data == bytes([0x00, 0x01, 0x11])
    compare_frames(frame, reply, 1)
    with pytest.raises(FrameMismatch):
        compare_frames(frame, reply, 0)


def test_compare_id_mismatch():
    with pytest.raises(FrameMismatch, match="Message ID mismatch!"):
        compare_frames(CanFrame(0x77, b"\x01"), CanFrame(0x79, b"\x02"), 1)


def test_compare_length_mismatch():
    with pytest.raises(FrameMismatch, match="Message length mismatch!"):
        compare_frames(CanFrame(0x77, b"\x01\x02"), CanFrame(0x77, b"\x01"), 0)


def test_compare_data_mismatch_reports_each_byte():
    with pytest.raises(FrameMismatch) as info:
        compare_frames(CanFrame(0x77, b"\x01\x02\x03"), CanFrame(0x77, b"\x09\x02\x09"), 0)
    text = str(info.value)
    assert "Databyte 0 mismatch !" in text
    assert "Databyte 2 mismatch !" in text
    assert "Databyte 1 mismatch" not in text


def test_run_dut_echoes_frames():
    frames = [CanFrame(0x77, bytes([i] * 8)) for i in range(3)]
    sock = FeedSocket(frames)
    out = io.StringIO()
    assert run_dut(sock, 2, out) == 3
    assert sock.sent == [echo_response(f) for f in frames]
    assert out.getvalue().splitlines() == [format_frame(f) for f in frames]


def test_run_dut_retries_on_enobufs():
    frame = CanFrame(0x77, b"\x01")
    sock = FeedSocket([frame], fail_first_send=True)
    out = io.StringIO()
    assert run_dut(sock, 1, out) == 1
    assert sock.sent == [echo_response(frame)]
    assert "N" in out.getvalue()


def test_run_dut_rejects_short_read():
    class ShortSocket(FeedSocket):
        def recv(self, size):
            return b"\x00\x01"

    with pytest.raises(OSError):
        run_dut(ShortSocket(), 0, io.StringIO())


def test_run_generator_counts_loops():
    bus = LoopbackBus()
    out = io.StringIO()
    assert run_generator(bus, 0, 10, out) == 10
    assert out.getvalue().endswith("Test messages sent and received: 10\n")


def test_run_generator_detects_bad_reply():
    def broken(frame):
        return CanFrame(frame.can_id + 1, bytes(len(frame.data)))

    out = io.StringIO()
    with pytest.raises(FrameMismatch, match="mismatch"):
        run_generator(LoopbackBus(broken), 0, 10, out)
    assert "Test messages sent and received: 1" in out.getvalue()


def test_run_generator_rx_before_tx():
    out = io.StringIO()
    with pytest.raises(FrameMismatch, match="RX before TX!"):
        run_generator(LoopbackBus(loopback=False), 0, 5, out)


def test_run_generator_sends_documented_frames():
    sent = []

    class Recording(LoopbackBus):
        def send(self, data):
            sent.append(CanFrame.unpack(data))
            return super().send(data)

    out = io.StringIO()
    assert run_generator(Recording(), 0, 1, out) == 1
    assert out.getvalue().endswith("Test messages sent and received: 1\n")
    assert len(sent) >= 2
    assert all(f.can_id == CAN_MSG_ID for f in sent)
    assert sent[0].data == bytes(range(8))
    assert sent[1].data == bytes(range(1, 9))


def test_main_requires_interface(capsys):
    assert main([]) == 1
    assert "Usage: canfdtest" in capsys.readouterr().err


def test_main_bad_option(capsys):
    assert main(["-x", "can0"]) == 1
    assert "Usage" in capsys.readouterr().err