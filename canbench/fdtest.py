"""Full-duplex CAN test: echo device under test and checking generator."""

from __future__ import annotations

import errno
import getopt
import os
import re
import signal
import socket
import sys
import time
from collections.abc import Sequence
from typing import TextIO

from .frame import CAN_MTU, CanFrame

CAN_MSG_ID = 0x77
CAN_MSG_LEN = 8
CAN_MSG_COUNT = 50
CAN_MSG_WAIT = 27


class FrameMismatch(Exception):
    """A received frame differs from what was expected."""


def format_frame(frame: CanFrame, inc: int = 0) -> str:
    """One line describing ``frame`` with ``inc`` added to id and data."""
    text = f"{(frame.can_id + inc) & 0xFFFFFFFF:04x}: "
    if frame.is_remote():
        return text + "remote request"
    return text + f"[{len(frame.data)}]" + "".join(f" {b + inc:02x}" for b in frame.data)


def _compare_text(expected: CanFrame, received: CanFrame, inc: int) -> str:
    return (
        f"expected: {format_frame(expected, inc)}\n"
        f"received: {format_frame(received, 0)}\n"
    )


def compare_frames(expected: CanFrame, received: CanFrame, inc: int = 0) -> None:
    """Raise FrameMismatch unless ``received`` is ``expected`` plus ``inc``."""
    problems: list[str] = []
    if received.can_id != (expected.can_id + inc) & 0xFFFFFFFF:
        problems.append("Message ID mismatch!\n" + _compare_text(expected, received, inc))
    elif len(received.data) != len(expected.data):
        problems.append("Message length mismatch!\n" + _compare_text(expected, received, inc))
    else:
        for i, (exp, rec) in enumerate(zip(expected.data, received.data)):
            if rec != (exp + inc) & 0xFF:
                problems.append(
                    f"Databyte {i:x} mismatch !\n" + _compare_text(expected, received, inc)
                )
    if problems:
        raise FrameMismatch("".join(problems))


def echo_response(frame: CanFrame) -> CanFrame:
    """The frame a device under test sends back: id and data bytes incremented."""
    return CanFrame(
        (frame.can_id + 1) & 0xFFFFFFFF,
        bytes((b + 1) & 0xFF for b in frame.data),
        frame.flags,
        frame.fd,
    )


def _echo_progress(value: int, out: TextIO) -> None:
    if value == 0xFF:
        out.write(".")
        out.flush()


def _recv_frame(sock) -> CanFrame | None:
    data = sock.recv(CAN_MTU)
    if not data:
        return None
    if len(data) != CAN_MTU:
        raise OSError(f"recv returned {len(data)}")
    return CanFrame.unpack(data)


def _send_frame(sock, frame: CanFrame, verbose: int, out: TextIO) -> None:
    packed = frame.pack()
    while True:
        try:
            sent = sock.send(packed)
        except OSError as exc:
            if exc.errno != errno.ENOBUFS:
                raise
            if verbose:
                out.write("N")
                out.flush()
            continue
        if sent != len(packed):
            raise OSError(f"send returned {sent}")
        return


def run_dut(sock, verbose: int = 0, out: TextIO | None = None) -> int:
    """Echo every received frame incremented until the socket yields no more.

    Returns the number of frames echoed.
    """
    out = sys.stdout if out is None else out
    total = 0
    batch = 0
    while True:
        frame = _recv_frame(sock)
        if frame is None:
            return total
        total += 1
        batch += 1
        if verbose == 1:
            _echo_progress(frame.data[0] if frame.data else 0, out)
        elif verbose > 1:
            out.write(format_frame(frame, 0) + "\n")
        _send_frame(sock, echo_response(frame), verbose, out)

        # force interlacing of the frames sent by both sides
        if batch == CAN_MSG_WAIT:
            batch = 0
            time.sleep(0.003)


def run_generator(
    sock, verbose: int = 0, loops: int = 0, out: TextIO | None = None
) -> int:
    """Send test frames and check both their loopback and the echoed replies.

    Stops after ``loops`` replies (0 means until the socket yields no more)
    and returns the number of replies checked. Raises FrameMismatch when a
    received frame is wrong.
    """
    out = sys.stdout if out is None else out
    tx_frames: list[CanFrame | None] = [None] * CAN_MSG_COUNT
    recv_tx = [False] * CAN_MSG_COUNT
    counter = 0
    send_pos = recv_rx_pos = recv_tx_pos = unprocessed = done = 0
    failure: FrameMismatch | None = None

    while True:
        if unprocessed < CAN_MSG_COUNT:
            frame = CanFrame(
                CAN_MSG_ID, bytes((counter + i) & 0xFF for i in range(CAN_MSG_LEN))
            )
            tx_frames[send_pos] = frame
            recv_tx[send_pos] = False
            _send_frame(sock, frame, verbose, out)
            send_pos = (send_pos + 1) % CAN_MSG_COUNT
            unprocessed += 1
            if verbose == 1:
                _echo_progress(counter, out)
            counter = (counter + 1) & 0xFF
            time.sleep(0.003 if counter % 33 == 0 else 0.001)
            continue

        rx_frame = _recv_frame(sock)
        if rx_frame is None:
            break
        if verbose > 1:
            out.write(format_frame(rx_frame, 0) + "\n")

        if rx_frame.can_id == CAN_MSG_ID:
            try:
                compare_frames(tx_frames[recv_tx_pos], rx_frame, 0)
            except FrameMismatch as exc:
                failure = exc
            recv_tx[recv_tx_pos] = True
            recv_tx_pos = (recv_tx_pos + 1) % CAN_MSG_COUNT
            if failure:
                out.write(str(failure))
                break
            continue

        problems: list[str] = []
        if not recv_tx[recv_rx_pos]:
            problems.append("RX before TX!\n")
        try:
            compare_frames(tx_frames[recv_rx_pos], rx_frame, 1)
        except FrameMismatch as exc:
            problems.append(str(exc))
        recv_rx_pos = (recv_rx_pos + 1) % CAN_MSG_COUNT

        done += 1
        if problems:
            failure = FrameMismatch("".join(problems))
            out.write(str(failure))
            break
        if loops and done >= loops:
            break
        unprocessed -= 1

    out.write(f"\nTest messages sent and received: {done}\n")
    if failure:
        raise failure
    return done


def _usage(prg: str) -> str:
    return (
        f"Usage: {prg} [options] <can-interface>\n"
        "\n"
        "Options: -v       (low verbosity)\n"
        "         -vv      (high verbosity)\n"
        "         -g       (generate messages)\n"
        "         -l COUNT (test loop count)\n"
        "\n"
        "With the option '-g' CAN messages are generated and checked\n"
        "on <can-interface>, otherwise all messages received on the\n"
        "<can-interface> are sent back incrementing the CAN id and\n"
        "all data bytes. The program can be aborted with ^C.\n"
        "\n"
        "Example:\n"
        f"\ton DUT : {prg} -v can0\n"
        f"\ton Host: {prg} -g -v can2\n"
    )


_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _atoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def main(argv: Sequence[str] | None = None) -> int:
    """Command line entry point; returns the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    prg = "canfdtest"
    out = sys.stdout

    try:
        opts, rest = getopt.gnu_getopt(args, "gl:v")
    except getopt.GetoptError:
        sys.stderr.write(_usage(prg))
        return 1

    verbose = 0
    loops = 0
    generate = False
    for opt, value in opts:
        if opt == "-v":
            verbose += 1
        elif opt == "-l":
            loops = _atoi(value)
        elif opt == "-g":
            generate = True

    if len(rest) != 1:
        sys.stderr.write(_usage(prg))
        return 1
    ifname = rest[0]

    if not hasattr(socket, "AF_CAN"):
        sys.stderr.write("socket: CAN sockets are not supported on this system\n")
        return 1

    out.write(
        f"interface = {ifname}, family = {int(socket.AF_CAN)}, "
        f"type = {int(socket.SOCK_RAW)}, proto = {int(socket.CAN_RAW)}\n"
    )

    try:
        sock = socket.socket(socket.AF_CAN, socket.SOCK_RAW, socket.CAN_RAW)
    except OSError as exc:
        sys.stderr.write(f"socket: {exc.strerror or exc}\n")
        return 1

    if generate:
        try:
            sock.setsockopt(socket.SOL_CAN_RAW, socket.CAN_RAW_RECV_OWN_MSGS, 1)
        except OSError as exc:
            sys.stderr.write(f"setsockopt: {exc.strerror or exc}\n")
            sock.close()
            return 1

    try:
        sock.bind((ifname,))
    except OSError as exc:
        sys.stderr.write(f"bind: {exc.strerror or exc}\n")
        sock.close()
        return 1

    exit_sig: list[int] = []

    def _on_signal(signo, _frame):
        sock.close()
        exit_sig.append(signo)

    handlers = {}
    for name in ("SIGTERM", "SIGHUP", "SIGINT"):
        signo = getattr(signal, name, None)
        if signo is not None:
            handlers[signo] = signal.signal(signo, _on_signal)

    err = 0
    try:
        if generate:
            run_generator(sock, verbose, loops, out)
        else:
            run_dut(sock, verbose, out)
    except FrameMismatch:
        err = 1
    except OSError as exc:
        if not exit_sig:
            sys.stderr.write(f"transfer failed: {exc.strerror or exc}\n")
            err = 1
    finally:
        for signo, handler in handlers.items():
            signal.signal(signo, handler)

    if verbose:
        out.write("Exiting...\n")
    out.flush()
    sock.close()

    if exit_sig:
        signal.signal(exit_sig[0], signal.SIG_DFL)
        os.kill(os.getpid(), exit_sig[0])

    return err


if __name__ == "__main__":
    sys.exit(main())