"""
Diagnostic Probe Sequences
==========================

Fixed byte sequences for finding out why a connected printer stays
silent. Each sequence is split into named stages so a diagnostic run can
report which stage the device rejected.

Simple Test
-----------
Two initialization variants, raw text without any command bytes, three
line-ending styles and a paper feed. If nothing prints, the printer is
probably not reading this port at all.

Protocol Probes
---------------
One short test line per command language a label or receipt printer is
likely to speak: ESC/POS, plain text, CPCL, ZPL and bare ASCII. Whatever
comes out of the printer tells which language it understands.
"""

from dataclasses import dataclass
from typing import Final

from slip_printer.protocol.escpos import ESC, GS, INITIALIZE, LF

# ESC GS a 0 - initialization accepted by some Star-compatible firmware
ALTERNATE_INITIALIZE: Final[bytes] = bytes([ESC, GS, 0x61, 0x00])

# Pause after each initialization so the firmware can finish resetting
INITIALIZE_PAUSE: Final[float] = 0.1


@dataclass(frozen=True)
class ProbeStage:
    """
    One named step of a diagnostic run.

    Attributes:
        name: Label shown in diagnostic output
        chunks: Bytes written, in order, as one job
        pause: Seconds to wait after the stage before the next one
    """

    name: str
    chunks: tuple[bytes, ...]
    pause: float = 0.0


SIMPLE_TEST: Final[tuple[ProbeStage, ...]] = (
    ProbeStage("ESC/POS initialize", (INITIALIZE,), pause=INITIALIZE_PAUSE),
    ProbeStage("Alternate initialize", (ALTERNATE_INITIALIZE,), pause=INITIALIZE_PAUSE),
    ProbeStage("Raw text", (b"Hello World!\nThis is a test.\n\n",)),
    ProbeStage("Line endings", (b"Test 1\r\n", b"Test 2\n", b"Test 3\r")),
    ProbeStage("Paper feed", (LF * 3,)),
)

PROTOCOL_PROBES: Final[tuple[ProbeStage, ...]] = (
    ProbeStage("ESC/POS", (INITIALIZE, b"ESC/POS Test\n")),
    ProbeStage("Raw text", (b"Raw Text Test\n",)),
    ProbeStage("CPCL", (
        b"! 0 200 200 210 1\n",
        b"TEXT 4 0 30 40 CPCL Test\n",
        b"PRINT\n",
    )),
    ProbeStage("ZPL", (
        b"^XA\n",
        b"^FO50,50^A0N,50,50^FDZPL Test^FS\n",
        b"^XZ\n",
    )),
    ProbeStage("ASCII", (b"Hello\n", b"World\r\n")),
)
