"""
ESC/POS Command Encoder
=======================

Byte-level encoder for the subset of ESC/POS this printer family uses:
initialization, alignment, the combined print-mode byte, line feed and
paper cut.

Command Reference
-----------------
    ESC @        1B 40        Initialize printer (clears all modes)
    ESC a n      1B 61 n      Justification: 0 left, 1 center, 2 right
    ESC ! n      1B 21 n      Print mode: bit 3 emphasized (bold),
                              bit 4 double height, bit 5 double width
    LF           0A           Print buffer and feed one line
    GS V 0       1D 56 00     Full paper cut

Ordering
--------
The printer firmware is a byte-stream state machine: a print mode set
with ``ESC !`` stays active until it is explicitly reset. ``text()``
therefore always emits, in this order:

    [ESC a n]  [ESC ! n]  content  [ESC ! 0]  LF

The alignment directive appears only when an alignment is given, the two
print-mode directives only when at least one style flag is set. Nothing
from the next line is ever emitted between a style set and its reset.

Each directive is kept as a separate chunk so the writer sends them in
exactly the order generated.
"""

from enum import IntEnum
from typing import Final, Optional, Union

# =============================================================================
# Command Bytes
# =============================================================================

ESC: Final[int] = 0x1B
GS: Final[int] = 0x1D
LF: Final[bytes] = b"\x0a"

INITIALIZE: Final[bytes] = bytes([ESC, 0x40])          # ESC @
SELECT_PRINT_MODE: Final[bytes] = bytes([ESC, 0x21])   # ESC ! (+ n)
SELECT_JUSTIFICATION: Final[bytes] = bytes([ESC, 0x61])  # ESC a (+ n)
FULL_CUT: Final[bytes] = bytes([GS, 0x56, 0x00])       # GS V 0

# Print mode bits for ESC !
MODE_BOLD: Final[int] = 0x08
MODE_DOUBLE_HEIGHT: Final[int] = 0x10
MODE_DOUBLE_WIDTH: Final[int] = 0x20

# ESC ! 0 - cancel every print mode
RESET_PRINT_MODE: Final[bytes] = SELECT_PRINT_MODE + b"\x00"


class Align(IntEnum):
    """Justification values for ESC a."""

    LEFT = 0x00
    CENTER = 0x01
    RIGHT = 0x02

    @classmethod
    def parse(cls, value: Union["Align", str]) -> "Align":
        """Accept an Align member or its name ('left', 'center', 'right')."""
        if isinstance(value, Align):
            return value
        try:
            return cls[value.upper()]
        except KeyError:
            raise ValueError(f"Unknown alignment: {value!r}") from None


def print_mode(
    bold: bool = False,
    double_height: bool = False,
    double_width: bool = False,
) -> int:
    """Combine style flags into the single ESC ! mode byte."""
    mode = 0x00
    if bold:
        mode |= MODE_BOLD
    if double_height:
        mode |= MODE_DOUBLE_HEIGHT
    if double_width:
        mode |= MODE_DOUBLE_WIDTH
    return mode


# =============================================================================
# Encoder
# =============================================================================

class EscPosEncoder:
    """
    Accumulates ESC/POS directives as an ordered list of byte chunks.

    Usage:
        encoder = EscPosEncoder()
        encoder.reset()
        encoder.text("BAG LABEL", align="center", bold=True)
        encoder.separator("=", 24)
        encoder.text("")
        encoder.text("")
        encoder.cut()
        await writer.write(encoder.getvalue())
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._chunks: list[bytes] = []

    def __len__(self) -> int:
        return len(self._chunks)

    def chunks(self) -> list[bytes]:
        """Directives emitted so far, in order."""
        return list(self._chunks)

    def getvalue(self) -> bytes:
        """All directives joined into one byte string."""
        return b"".join(self._chunks)

    def clear(self) -> None:
        self._chunks.clear()

    def raw(self, data: bytes) -> "EscPosEncoder":
        """Append bytes unchanged."""
        self._chunks.append(bytes(data))
        return self

    # -------------------------------------------------------------------------
    # Directives
    # -------------------------------------------------------------------------

    def reset(self) -> "EscPosEncoder":
        """Emit ESC @. Must be the first directive of a document."""
        return self.raw(INITIALIZE)

    def text(
        self,
        content: str,
        align: Optional[Union[Align, str]] = None,
        bold: bool = False,
        double_height: bool = False,
        double_width: bool = False,
    ) -> "EscPosEncoder":
        """
        Emit one line of text.

        Args:
            content: Text to print (no trailing newline).
            align: Justification; omitted from the stream when None.
            bold: Emphasized mode.
            double_height: Double-height characters.
            double_width: Double-width characters.
        """
        if align is not None:
            self.raw(SELECT_JUSTIFICATION + bytes([Align.parse(align)]))

        mode = print_mode(bold, double_height, double_width)
        if mode:
            self.raw(SELECT_PRINT_MODE + bytes([mode]))

        self.raw(content.encode(self.encoding, errors="replace"))

        if mode:
            self.raw(RESET_PRINT_MODE)

        return self.raw(LF)

    def separator(self, char: str = "-", length: int = 32) -> "EscPosEncoder":
        """Emit a line made of ``char`` repeated ``length`` times."""
        return self.text(char * length)

    def cut(self) -> "EscPosEncoder":
        """Emit GS V 0 (full cut)."""
        return self.raw(FULL_CUT)
