"""CAN bit timing calculation for common CAN controllers."""

from __future__ import annotations

import getopt
import re
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass

UINT_MAX = 0xFFFFFFFF

CAN_CALC_MAX_ERROR = 50  # in one-tenth of a percent
CAN_CALC_SYNC_SEG = 1

COMMON_BITRATES = (
    1000000,
    800000,
    500000,
    250000,
    125000,
    100000,
    50000,
    20000,
    10000,
)


def _u32(value: int) -> int:
    return value & UINT_MAX


def _s32(value: int) -> int:
    value = _u32(value)
    return value - (1 << 32) if value & 0x80000000 else value


@dataclass(frozen=True)
class RefClock:
    """A reference clock a controller is commonly run with."""

    clk: int
    name: str | None = None


@dataclass(frozen=True)
class BitTimingConst:
    """Hardware limits of a controller's bit timing registers."""

    name: str
    tseg1_min: int
    tseg1_max: int
    tseg2_min: int
    tseg2_max: int
    sjw_max: int
    brp_min: int
    brp_max: int
    brp_inc: int


@dataclass(frozen=True)
class BitTiming:
    """Calculated bit timing parameters."""

    bitrate: int
    sample_point: int
    tq: int
    prop_seg: int
    phase_seg1: int
    phase_seg2: int
    sjw: int
    brp: int


def btr_sja1000(bt: BitTiming) -> str:
    """Register values BTR0 and BTR1 of the SJA1000."""
    btr0 = (((bt.brp - 1) & 0x3F) | (((bt.sjw - 1) & 0x3) << 6)) & 0xFF
    btr1 = (((bt.prop_seg + bt.phase_seg1 - 1) & 0xF)
            | (((bt.phase_seg2 - 1) & 0x7) << 4)) & 0xFF
    return f"0x{btr0:02x} 0x{btr1:02x}"


def btr_at91(bt: BitTiming) -> str:
    """Register value CAN_BR of the AT91."""
    br = _u32((bt.phase_seg2 - 1)
              | ((bt.phase_seg1 - 1) << 4)
              | ((bt.prop_seg - 1) << 8)
              | ((bt.sjw - 1) << 12)
              | ((bt.brp - 1) << 16))
    return f"0x{br:08x}"


def btr_flexcan(bt: BitTiming) -> str:
    """Register value CAN_CTRL of the FlexCAN."""
    ctrl = _u32(((bt.brp - 1) << 24)
                | ((bt.sjw - 1) << 22)
                | ((bt.phase_seg1 - 1) << 19)
                | ((bt.phase_seg2 - 1) << 16)
                | (bt.prop_seg - 1))
    return f"0x{ctrl:08x}"


def btr_mcp251x(bt: BitTiming) -> str:
    """Register values CNF1, CNF2 and CNF3 of the MCP251x."""
    cnf1 = (((bt.sjw - 1) << 6) | (bt.brp - 1)) & 0xFF
    cnf2 = (0x80 | ((bt.phase_seg1 - 1) << 3) | (bt.prop_seg - 1)) & 0xFF
    cnf3 = (bt.phase_seg2 - 1) & 0xFF
    return f"0x{cnf1:02x} 0x{cnf2:02x} 0x{cnf3:02x}"


def btr_ti_hecc(bt: BitTiming) -> str:
    """Register value CANBTC of the TI HECC."""
    can_btc = (bt.phase_seg2 - 1) & 0x7
    can_btc |= ((bt.phase_seg1 + bt.prop_seg - 1) & 0xF) << 3
    can_btc |= ((bt.sjw - 1) & 0x3) << 8
    can_btc |= ((bt.brp - 1) & 0xFF) << 16
    return f"0x{_u32(can_btc):08x}"


def btr_rcar_can(bt: BitTiming) -> str:
    """Register value CiBCR of the R-Car CAN."""
    bcr = ((((bt.phase_seg1 + bt.prop_seg - 1) & 0x0F) << 20)
           | (((bt.brp - 1) & 0x3FF) << 8)
           | (((bt.sjw - 1) & 0x3) << 4)
           | ((bt.phase_seg2 - 1) & 0x07))
    return f"0x{_u32(bcr << 8):08x}"


@dataclass(frozen=True)
class Controller:
    """A CAN controller with its limits, reference clocks and register layout."""

    const: BitTimingConst
    ref_clocks: tuple[RefClock, ...]
    btr_header: str
    btr: Callable[[BitTiming], str]

    @property
    def name(self) -> str:
        return self.const.name


CONTROLLERS: tuple[Controller, ...] = (
    Controller(
        BitTimingConst("sja1000", 1, 16, 1, 8, 4, 1, 64, 1),
        (RefClock(8000000),),
        "BTR0 BTR1",
        btr_sja1000,
    ),
    Controller(
        BitTimingConst("mscan", 4, 16, 2, 8, 4, 1, 64, 1),
        (
            RefClock(32000000),
            RefClock(33000000),
            RefClock(33300000),
            RefClock(33333333),
            RefClock(66660000, "mpc5121"),
            RefClock(66666666, "mpc5121"),
        ),
        "BTR0 BTR1",
        btr_sja1000,
    ),
    Controller(
        BitTimingConst("at91", 4, 16, 2, 8, 4, 2, 128, 1),
        (RefClock(99532800, "ronetix PM9263"), RefClock(100000000)),
        f"{'CAN_BR':>10}",
        btr_at91,
    ),
    Controller(
        BitTimingConst("flexcan", 4, 16, 2, 8, 4, 1, 256, 1),
        (
            RefClock(24000000, "mx28"),
            RefClock(30000000, "mx6"),
            RefClock(49875000),
            RefClock(66000000),
            RefClock(66500000),
            RefClock(66666666),
            RefClock(83368421, "vybrid"),
        ),
        f"{'CAN_CTRL':>10}",
        btr_flexcan,
    ),
    Controller(
        BitTimingConst("mcp251x", 3, 16, 2, 8, 4, 1, 64, 1),
        (RefClock(8000000), RefClock(16000000)),
        "CNF1 CNF2 CNF3",
        btr_mcp251x,
    ),
    Controller(
        BitTimingConst("ti_hecc", 1, 16, 1, 8, 4, 1, 256, 1),
        (RefClock(13000000),),
        f"{'CANBTC':>10}",
        btr_ti_hecc,
    ),
    Controller(
        BitTimingConst("rcar_can", 4, 16, 2, 8, 4, 1, 1024, 1),
        (RefClock(65000000),),
        f"{'CiBCR':>10}",
        btr_rcar_can,
    ),
)


def cia_sample_point(bitrate: int) -> int:
    """CiA recommended sample point in one-tenth of a percent."""
    if bitrate > 800000:
        return 750
    if bitrate > 500000:
        return 800
    return 875


def update_sample_point(
    btc: BitTimingConst, spt_nominal: int, tseg: int
) -> tuple[int, int | None, int | None, int]:
    """Best sample point not above the nominal one for ``tseg`` time quanta.

    Returns (sample_point, tseg1, tseg2, error); tseg1 and tseg2 are None
    when no split puts the sample point at or below the nominal value.
    """
    best_spt_error = UINT_MAX
    best_spt = 0
    best_tseg1: int | None = None
    best_tseg2: int | None = None
    total = tseg + CAN_CALC_SYNC_SEG

    for i in (0, 1):
        tseg2 = _u32(total - _u32(spt_nominal * total) // 1000 - i)
        tseg2 = min(max(tseg2, btc.tseg2_min), btc.tseg2_max)
        tseg1 = _u32(tseg - tseg2)
        if tseg1 > btc.tseg1_max:
            tseg1 = btc.tseg1_max
            tseg2 = _u32(tseg - tseg1)

        spt = _u32(1000 * _u32(total - tseg2)) // total
        spt_error = abs(_s32(spt_nominal - spt))

        if spt <= spt_nominal and spt_error < best_spt_error:
            best_spt = spt
            best_spt_error = spt_error
            best_tseg1 = tseg1
            best_tseg2 = tseg2

    return best_spt, best_tseg1, best_tseg2, best_spt_error


def calc_bittiming(
    bitrate: int,
    sample_point: int,
    clock_freq: int,
    btc: BitTimingConst,
    sjw: int = 0,
) -> BitTiming:
    """Calculate bit timing for ``bitrate`` at ``clock_freq``.

    A ``sample_point`` of 0 selects the CiA recommendation. Raises
    ValueError when the bitrate cannot be reached within 0.5 percent.
    """
    if bitrate <= 0:
        raise ValueError("bitrate must be positive")
    if clock_freq <= 0:
        raise ValueError("clock frequency must be positive")

    spt_nominal = sample_point if sample_point else cia_sample_point(bitrate)

    best_rate_error = UINT_MAX
    best_spt_error = UINT_MAX
    best_tseg = 0
    best_brp = 0
    tseg1 = tseg2 = 0

    upper = (btc.tseg1_max + btc.tseg2_max) * 2 + 1
    lower = (btc.tseg1_min + btc.tseg2_min) * 2
    for tseg in range(upper, lower - 1, -1):
        tsegall = CAN_CALC_SYNC_SEG + tseg // 2

        brp = clock_freq // (tsegall * bitrate) + tseg % 2
        brp = (brp // btc.brp_inc) * btc.brp_inc
        if brp < btc.brp_min or brp > btc.brp_max:
            continue

        rate = clock_freq // (brp * tsegall)
        rate_error = abs(bitrate - rate)
        if rate_error > best_rate_error:
            continue
        if rate_error < best_rate_error:
            best_spt_error = UINT_MAX

        _spt, found1, found2, spt_error = update_sample_point(
            btc, spt_nominal, tseg // 2
        )
        if found1 is not None:
            tseg1, tseg2 = found1, found2
        if spt_error > best_spt_error:
            continue

        best_spt_error = spt_error
        best_rate_error = rate_error
        best_tseg = tseg // 2
        best_brp = brp

        if rate_error == 0 and spt_error == 0:
            break

    if not best_brp:
        raise ValueError(f"bitrate {bitrate} not possible")

    if best_rate_error:
        error = _u32(best_rate_error * 1000) // bitrate
        if error > CAN_CALC_MAX_ERROR:
            raise ValueError(
                f"bitrate error {error // 10}.{error % 10}% too high"
            )

    real_spt, found1, found2, _err = update_sample_point(btc, spt_nominal, best_tseg)
    if found1 is not None:
        tseg1, tseg2 = found1, found2

    tq = _u32(best_brp * 1000 * 1000 * 1000 // clock_freq)
    prop_seg = tseg1 // 2
    phase_seg1 = tseg1 - prop_seg
    phase_seg2 = tseg2

    if not sjw or not btc.sjw_max:
        sjw = 1
    else:
        sjw = min(sjw, btc.sjw_max)
        if tseg2 < sjw:
            sjw = tseg2

    real_bitrate = clock_freq // (best_brp * (CAN_CALC_SYNC_SEG + tseg1 + tseg2))

    return BitTiming(
        bitrate=real_bitrate,
        sample_point=real_spt,
        tq=tq,
        prop_seg=prop_seg,
        phase_seg1=phase_seg1,
        phase_seg2=phase_seg2,
        sjw=sjw,
        brp=best_brp,
    )


def format_bit_timing(
    controller: Controller,
    ref_clk: RefClock,
    bitrate: int,
    sample_point: int = 0,
    quiet: bool = False,
) -> str:
    """Table text (optional header and one row) for one bitrate."""
    parts: list[str] = []

    if not quiet:
        suffix = f" ({ref_clk.name})" if ref_clk.name else ""
        parts.append(
            f"Bit timing parameters for {controller.name}{suffix} "
            f"with {ref_clk.clk / 1000000.0:.6f} MHz ref clock\n"
            "nominal                                 real Bitrt   nom  real SampP\n"
            "Bitrate TQ[ns] PrS PhS1 PhS2 SJW BRP Bitrate Error SampP SampP Error "
            f"{controller.btr_header}\n"
        )

    try:
        bt = calc_bittiming(bitrate, sample_point, ref_clk.clk, controller.const)
    except ValueError:
        parts.append(f"{bitrate:7d} ***bitrate not possible***\n")
        return "".join(parts)

    spt_nominal = sample_point if sample_point else cia_sample_point(bitrate)
    rate_error = abs(bitrate - bt.bitrate)
    spt_error = abs(spt_nominal - bt.sample_point)

    parts.append(
        f"{bitrate:7d} "
        f"{bt.tq:6d} {bt.prop_seg:3d} {bt.phase_seg1:4d} {bt.phase_seg2:4d} "
        f"{bt.sjw:3d} {bt.brp:3d} "
        f"{bt.bitrate:7d} {100.0 * rate_error / bitrate:4.1f}% "
        f"{spt_nominal / 10.0:4.1f}% {bt.sample_point / 10.0:4.1f}% "
        f"{100.0 * spt_error / spt_nominal:4.1f}% "
        f"{controller.btr(bt)}\n"
    )
    return "".join(parts)


def list_controllers() -> list[str]:
    """Names of all supported controllers."""
    return [controller.name for controller in CONTROLLERS]


_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _parse_int(text: str) -> int:
    match = _LEADING_INT.match(text)
    return _u32(int(match.group(1))) if match else 0


def _usage(cmd: str) -> str:
    return (
        f"Usage: {cmd} [options] [<CAN-contoller-name>]\n"
        "\tOptions:\n"
        "\t-q           : don't print header line\n"
        "\t-l           : list all support CAN controller names\n"
        "\t-b <bitrate> : bit-rate in bits/sec\n"
        "\t-s <samp_pt> : sample-point in one-tenth of a percent\n"
        "\t               or 0 for CIA recommended sample points\n"
        "\t-c <clock>   : real CAN system clock in Hz\n"
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Command line entry point; returns the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    cmd = "can-calc-bit-timing"
    out = sys.stdout

    bitrate = 0
    clock = 0
    spt_nominal = 0
    quiet = False
    do_list = False

    try:
        opts, rest = getopt.gnu_getopt(args, "b:c:lqs:")
    except getopt.GetoptError:
        out.write(_usage(cmd))
        return 1

    for opt, value in opts:
        if opt == "-b":
            bitrate = _parse_int(value)
        elif opt == "-c":
            clock = _parse_int(value)
        elif opt == "-l":
            do_list = True
        elif opt == "-q":
            quiet = True
        elif opt == "-s":
            spt_nominal = _parse_int(value)

    if len(rest) > 1:
        out.write(_usage(cmd))
        return 1
    name = rest[0] if rest else None

    if do_list:
        out.write("".join(f"{n}\n" for n in list_controllers()))
        return 0

    if spt_nominal and (spt_nominal >= 1000 or spt_nominal < 100):
        out.write(_usage(cmd))
        return 1

    found = False
    for controller in CONTROLLERS:
        if name is not None and controller.name != name:
            continue
        found = True

        clocks = (RefClock(clock, "cmd-line"),) if clock else controller.ref_clocks
        for ref_clk in clocks:
            if bitrate:
                out.write(format_bit_timing(controller, ref_clk, bitrate,
                                            spt_nominal, quiet))
            else:
                for k, common in enumerate(COMMON_BITRATES):
                    out.write(format_bit_timing(controller, ref_clk, common,
                                                spt_nominal, bool(k)))
            out.write("\n")

    if not found:
        out.write(f"error: unknown CAN controller '{name}', try one of these:\n\n")
        out.write("".join(f"{n}\n" for n in list_controllers()))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())