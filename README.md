# canbench

A small toolbox for working on a CAN bus from Python: work out controller
bit-timing registers, watch how loaded a bus is, run a full-duplex echo test
between two nodes, manage kernel CAN gateway rules and drive the broadcast
manager from a plain TCP connection.

The calculations (bit timing, frame lengths on the wire, gateway rule encoding,
command parsing) are pure Python and run anywhere. The commands that open CAN
or netlink sockets need Linux with SocketCAN. There are no dependencies outside
the standard library.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Commands

### can-calc-bit-timing

Calculates bit-timing parameters and controller register values for a bitrate
and sample point.

```
can-calc-bit-timing -l                  # list supported controllers
can-calc-bit-timing sja1000             # table of common bitrates
can-calc-bit-timing -b 500000 mcp251x   # a single bitrate
can-calc-bit-timing -b 250000 -s 800 -c 16000000 flexcan
```

Options:

- `-q` do not print the header line
- `-l` list all supported controller names
- `-b <bitrate>` bitrate in bits/s; without it a table of common bitrates
  (1 Mbit/s down to 10 kbit/s) is printed
- `-s <samp_pt>` sample point in tenths of a percent (100..999), or 0 for the
  CiA recommended sample point
- `-c <clock>` real CAN system clock in Hz, used instead of the controller's
  reference clocks

Supported controllers: sja1000, mscan, at91, flexcan, mcp251x, ti_hecc and
rcar_can. Without a controller name every known controller is printed. A
bitrate that cannot be reached within 0.5 % is shown as
`***bitrate not possible***`. An unknown controller name prints the list of
known ones and exits with status 1.

### canbusload

Shows, once a second, the number of received frames, the bits used on the bus
and the resulting load for up to 16 interfaces. Each interface is given with
its bitrate (at most 1000000) as `<ifname>@<bitrate>`.

```
canbusload can0@500000 can1@125000 -t -b -c -r
```

Options:

- `-t` show the current time on the first line
- `-c` colourise lines
- `-b` show a bargraph in 5 % steps
- `-r` redraw the terminal, similar to `top`
- `-i` ignore bit stuffing in the calculation
- `-e` exact calculation of stuffed bits from frame content and CRC

By default the worst case of bit stuffing is assumed, so the load shown may
exceed 100 %. Stop it with Ctrl-C.

### canfdtest

Full-duplex test between a device under test and a host. On the device every
received frame is sent back with the CAN ID and all data bytes incremented; on
the host (`-g`) frames with ID 0x77 are generated and both the own echo and the
reply are checked.

```
canfdtest -v can0          # on the device under test
canfdtest -g -v can2       # on the host
canfdtest -g -l 1000 can2  # stop after 1000 checked replies
```

`-v` gives progress dots, `-vv` prints every frame. A mismatching frame is
reported and the command exits with status 1.

### cangw

Adds, deletes, flushes and lists rules of the kernel CAN-to-CAN gateway.

```
cangw -A -s can0 -d vcan3 -e -f 123:C00007FF -m SET:IL:333.4.1122334455667788
cangw -L
cangw -F
```

Commands: `-A` add, `-D` delete, `-F` flush, `-L` list. Adding and deleting
need `-s <src>` and `-d <dst>`. Further options:

- `-t` preserve the source receive timestamp, `-e` echo sent frames,
  `-i` allow routing back to the incoming interface
- `-u <uid>` user defined identifier (hexadecimal)
- `-l <hops>` hop limit (decimal, not 0)
- `-f <id>:<mask>` or `-f <id>~<mask>` filter (hexadecimal)
- `-m <instr>:<elements>:<id>.<dlc>.<data>` modification, up to four; `<instr>`
  is `AND`, `OR`, `XOR` or `SET`, `<elements>` one or more of `I`, `L`, `D`,
  `<data>` always 16 hex digits
- `-x <from>:<to>:<result>:<init>` XOR checksum (indices decimal, value hex)
- `-c <from>:<to>:<result>:<init>:<xor>:<table>` CRC8 checksum with a table of
  512 hex digits
- `-p <profile>:[<data>]` CRC8 profile: 1 (one byte), 2 (16 bytes) or 3
  (SFF id XOR, no data)

`-x` and `-c` are only accepted together with `-m`. Listed rules are printed as
command lines that can be fed straight back to `cangw`, followed by their
handled, dropped and deleted counters.

### bcmserver

A TCP server on port 28600 that accepts ASCII commands for the CAN broadcast
manager. Each client is served in its own thread with its own BCM socket.

```
< vcan1 A 1 0 123 8 11 22 33 44 55 66 77 88 >   send 123#1122334455667788 every second
< vcan1 U 0 0 123 3 11 22 33 >                  update the data of that job
< vcan1 D 0 0 123 0 >                           delete the job
< can0 S 0 0 123 0 >                            send one frame
< vcan1 R 0 0 123 1 FF >                        watch ID 123 for changes in byte 0
< vcan1 F 0 0 123 0 >                           receive ID 123 without content filter
< vcan1 X 0 0 123 0 >                           delete the receive filter
```

Only the CAN ID and the data bytes are hexadecimal. Received frames come back
as `< vcan1 123 4 11 22 33 44 >`, each terminated by a NUL byte. A malformed
or unknown command ends the connection; commands for an unknown interface are
ignored. Closing the connection closes its BCM socket and so ends all of its
cyclic jobs.

## Library use

The building blocks are importable on their own:

- `canbench.frame`: `CanFrame` (`pack`/`unpack` of the 16-byte classic and
  72-byte CAN FD layout, `is_extended`, `is_remote`), `CflMode` and the CAN
  flag and mask constants.
- `canbench.framelen`: `can_frame_length`, `exact_frame_length` and `crc15`,
  the number of bits a frame occupies on the wire.
- `canbench.bittiming`: `calc_bittiming`, `update_sample_point`,
  `cia_sample_point`, `format_bit_timing`, `list_controllers`, the `CONTROLLERS`
  table of `Controller`, `BitTimingConst` and `RefClock`, and the register
  formatters `btr_sja1000`, `btr_at91`, `btr_flexcan`, `btr_mcp251x`,
  `btr_ti_hecc` and `btr_rcar_can`.
- `canbench.busload`: `parse_interface_spec`, `InterfaceStats` (`record`,
  `percent`, `reset`) and `BusLoadMonitor` (`record`, `report`) for load
  accounting without a socket.
- `canbench.fdtest`: `compare_frames` (raises `FrameMismatch`),
  `echo_response`, `format_frame`, and `run_dut` / `run_generator`, which work
  on any object with `send` and `recv`.
- `canbench.gateway`: `parse_filter`, `parse_mod`, `parse_cs_xor`,
  `parse_cs_crc8`, `parse_crc8_profile`, `hex_bytes`, the `CanFilter`,
  `ModAttr`, `CsumXor` and `CsumCrc8` records, `Command`, and `add_attr`,
  `build_request` and `format_rule_list` for the netlink messages. Bad input
  raises `GatewayError`.
- `canbench.bcmserver`: `parse_command`, `BcmCommand.pack`, `CommandAssembler`,
  `format_rx`, `handle_client` and `serve`.
- `canbench.terminal`: ANSI escape sequences used for coloured output.

```python
from canbench.frame import CanFrame, CflMode
from canbench.framelen import can_frame_length

frame = CanFrame(0x123, b"\x11\x22")
print(can_frame_length(frame, CflMode.WORSTCASE))  # 75
print(can_frame_length(frame, CflMode.EXACT))
```

## What it does not do

- There is no command to dump, log, replay or generate arbitrary bus traffic;
  the only frames sent are the test frames of `canfdtest` and the jobs handed
  to the broadcast manager by `bcmserver`.
- Frame lengths on the wire are only calculated for classic CAN frames;
  `can_frame_length` returns 0 for CAN FD sizes, and `canbusload` reads
  classic frames only.
- `cangw` manages CAN-to-CAN gateway rules only.