"""Bus load statistics for one or more CAN interfaces."""

from __future__ import annotations

import getopt
import re
import select
import signal
import socket
import sys
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from .frame import CAN_MTU, CanFrame, CflMode
from .framelen import can_frame_length
from .terminal import ATTRESET, CLR_SCREEN, CSR_HOME, FGBLUE, FGRED

MAXSOCK = 16  # max. number of CAN interfaces given on the command line
IFNAMSIZ = 16
MAX_BITRATE = 1000000

PERCENTRES = 5  # resolution in percent for the bar graph
NUMBAR = 100 // PERCENTRES

_MODE_LABELS = {
    CflMode.NO_BITSTUFFING: "(ignore bitstuffing)",
    CflMode.WORSTCASE: "(worst case bitstuffing)",
    CflMode.EXACT: "(exact bitstuffing)",
}

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _atoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


@dataclass
class InterfaceStats:
    """Counters for one interface within the current reporting interval."""

    devname: str
    bitrate: int
    bitrate_width: int = 0
    recv_frames: int = 0
    recv_bits_total: int = 0
    recv_bits_payload: int = 0

    def __post_init__(self) -> None:
        if not self.bitrate_width:
            self.bitrate_width = len(str(self.bitrate))

    def record(self, frame: CanFrame, mode: CflMode | int = CflMode.WORSTCASE) -> None:
        """Account for one received frame."""
        self.recv_frames += 1
        self.recv_bits_payload += len(frame.data) * 8
        self.recv_bits_total += can_frame_length(frame, mode, CAN_MTU)

    def percent(self) -> int:
        """Bus load of the interval in percent of the bitrate."""
        if not self.bitrate:
            return 0
        return (self.recv_bits_total * 100) // self.bitrate

    def reset(self) -> None:
        """Start a new interval."""
        self.recv_frames = 0
        self.recv_bits_total = 0
        self.recv_bits_payload = 0


def parse_interface_spec(spec: str) -> InterfaceStats:
    """Parse ``<ifname>@<bitrate>`` into fresh interface statistics."""
    if len(spec) >= IFNAMSIZ + len("@1000000") + 2:
        raise ValueError(f"name of CAN device '{spec}' is too long!")
    name, sep, rate_text = spec.partition("@")
    if not sep:
        raise ValueError(f"missing bitrate for CAN device '{spec}'!")
    if len(name) >= IFNAMSIZ:
        raise ValueError(f"name of CAN device '{spec}' is too long!")
    bitrate = _atoi(rate_text)
    if not 0 < bitrate <= MAX_BITRATE:
        raise ValueError(f"invalid bitrate for CAN device '{spec}'!")
    return InterfaceStats(name, bitrate, bitrate_width=len(rate_text))


@dataclass
class BusLoadMonitor:
    """Collects frames per interface and renders periodic reports."""

    interfaces: list[InterfaceStats]
    mode: CflMode = CflMode.WORSTCASE
    redraw: bool = False
    timestamp: bool = False
    color: bool = False
    bargraph: bool = False
    prg: str = "canbusload"
    _unused: list = field(default_factory=list, repr=False)

    def record(self, index: int, frame: CanFrame) -> None:
        """Account for a frame received on interface number ``index``."""
        self.interfaces[index].record(frame, self.mode)

    def report(self, now: datetime | None = None) -> str:
        """Render the statistics of the interval and reset the counters."""
        parts: list[str] = []
        if self.redraw:
            parts.append(CSR_HOME)

        if self.timestamp:
            when = now if now is not None else datetime.now()
            label = _MODE_LABELS.get(self.mode, "(unknown bitstuffing)")
            parts.append(f"{self.prg} {when:%Y-%m-%d %H:%M:%S} {label}\n")

        name_width = max((len(s.devname) for s in self.interfaces), default=0)
        rate_width = max((s.bitrate_width for s in self.interfaces), default=0)

        for i, stats in enumerate(self.interfaces):
            if self.color:
                parts.append(FGRED if i % 2 else FGBLUE)

            percent = stats.percent()
            bitrate = f"{stats.bitrate:<{rate_width}d}"
            parts.append(
                f" {stats.devname:>{name_width}}@{bitrate} "
                f"{stats.recv_frames:5d} {stats.recv_bits_total:7d} "
                f"{stats.recv_bits_payload:6d} {percent:3d}%"
            )

            if self.bargraph:
                filled = min(percent, 100) // PERCENTRES
                parts.append(" |" + "X" * filled + "." * (NUMBAR - filled) + "|")

            if self.color:
                parts.append(ATTRESET)
            parts.append("\n")
            stats.reset()

        parts.append("\n")
        return "".join(parts)


def _usage(prg: str) -> str:
    return (
        f"\nUsage: {prg} [options] <CAN interface>+\n"
        f"  (use CTRL-C to terminate {prg})\n\n"
        "Options: -t (show current time on the first line)\n"
        "         -c (colorize lines)\n"
        f"         -b (show bargraph in {PERCENTRES}% resolution)\n"
        "         -r (redraw the terminal - similar to top)\n"
        "         -i (ignore bitstuffing in bandwidth calculation)\n"
        "         -e (exact calculation of stuffed bits)\n"
        "\n"
        f"Up to {MAXSOCK} CAN interfaces with mandatory bitrate can be specified on the \n"
        "commandline in the form: <ifname>@<bitrate>\n\n"
        "The bitrate is mandatory as it is needed to know the CAN bus bitrate to\n"
        "calcultate the bus load percentage based on the received CAN frames.\n"
        "Due to the bitstuffing estimation the calculated busload may exceed 100%.\n"
        "For each given interface the data is presented in one line which contains:\n\n"
        "(interface) (received CAN frames) (used bits total) (used bits for payload)\n"
        "\nExample:\n"
        "\nuser$> canbusload can0@100000 can1@500000 can2@500000 can3@500000 -r -t -b -c\n\n"
        f"{prg} 2014-02-01 21:13:16 (worst case bitstuffing)\n"
        " can0@100000   805   74491  36656  74% |XXXXXXXXXXXXXX......|\n"
        " can1@500000   796   75140  37728  15% |XXX.................|\n"
        " can2@500000     0       0      0   0% |....................|\n"
        " can3@500000    47    4633   2424   0% |....................|\n"
        "\n"
    )


class _Terminate(Exception):
    pass


def _terminate(signo, _frame):
    raise _Terminate(signo)


def _run(monitor: BusLoadMonitor, socks: list[socket.socket], out) -> int:
    index_of = {sock: i for i, sock in enumerate(socks)}
    if monitor.redraw:
        out.write(CLR_SCREEN)
    next_report = time.monotonic() + 1.0
    while True:
        timeout = max(0.0, next_report - time.monotonic())
        readable, _, _ = select.select(socks, [], [], timeout)
        for sock in readable:
            data = sock.recv(CAN_MTU)
            if len(data) < CAN_MTU:
                sys.stderr.write("read: incomplete CAN frame\n")
                return 1
            monitor.record(index_of[sock], CanFrame.unpack(data))
        if time.monotonic() >= next_report:
            out.write(monitor.report(datetime.now()))
            out.flush()
            next_report += 1.0


def main(argv: Sequence[str] | None = None) -> int:
    """Command line entry point; returns the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    prg = "canbusload"
    out = sys.stdout

    try:
        opts, rest = getopt.gnu_getopt(args, "rtbcieh?")
    except getopt.GetoptError:
        sys.stderr.write(_usage(prg))
        return 1

    monitor = BusLoadMonitor([], prg=prg)
    for opt, _value in opts:
        if opt == "-r":
            monitor.redraw = True
        elif opt == "-t":
            monitor.timestamp = True
        elif opt == "-b":
            monitor.bargraph = True
        elif opt == "-c":
            monitor.color = True
        elif opt == "-i":
            monitor.mode = CflMode.NO_BITSTUFFING
        elif opt == "-e":
            monitor.mode = CflMode.EXACT
        else:
            sys.stderr.write(_usage(prg))
            return 1

    if not rest:
        sys.stderr.write(_usage(prg))
        return 0

    if len(rest) > MAXSOCK:
        out.write(f"More than {MAXSOCK} CAN devices given on commandline!\n")
        return 1

    for spec in rest:
        if "@" not in spec and len(spec) < IFNAMSIZ + len("@1000000") + 2:
            sys.stderr.write(_usage(prg))
            return 1
        try:
            monitor.interfaces.append(parse_interface_spec(spec))
        except ValueError as exc:
            out.write(f"{exc}\n")
            return 1

    if not hasattr(socket, "AF_CAN"):
        sys.stderr.write("socket: CAN sockets are not supported on this system\n")
        return 1

    socks: list[socket.socket] = []
    handlers = {}
    try:
        for stats in monitor.interfaces:
            sock = socket.socket(socket.AF_CAN, socket.SOCK_RAW, socket.CAN_RAW)
            socks.append(sock)
            try:
                sock.bind((stats.devname,))
            except OSError as exc:
                sys.stderr.write(f"bind: {exc.strerror or exc}\n")
                return 1

        for name in ("SIGTERM", "SIGHUP", "SIGINT"):
            signo = getattr(signal, name, None)
            if signo is not None:
                handlers[signo] = signal.signal(signo, _terminate)

        try:
            return _run(monitor, socks, out)
        except _Terminate:
            return 0
    except OSError as exc:
        sys.stderr.write(f"socket: {exc.strerror or exc}\n")
        return 1
    finally:
        for signo, handler in handlers.items():
            signal.signal(signo, handler)
        for sock in socks:
            sock.close()


if __name__ == "__main__":
    sys.exit(main())