"""
Print Documents and Templates
=============================

A PrintDocument is an immutable, ordered list of directives (reset, text
line, separator, cut) tagged with a template name. Templates build
documents from plain field records; ``render()`` turns a document into the
ESC/POS chunk sequence in a single pass.

Slip Layout
-----------
The three slip templates share one layout, sized for a 58mm head:

    MACHINE ASSIGNMENT          centered, bold, double height + width
    ========================
                                blank
    Tracking ID:      T-0042    bold, double height, left aligned
    Item:             Shirts
    ...
                                blank
    ========================
    Generated: 2026-10-19 14:03:11    centered
                                three blanks, then cut

Labels are padded to LABEL_WIDTH columns so values line up in the
printer's monospace font.

Determinism
-----------
The footer timestamp is captured when the document is built, so rendering
the same document twice yields identical bytes. Conditional sections
(the remaining-quantity variant of an order record) are chosen once, up
front, so each variant always has the same directive structure.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Final, Optional, Sequence, Union

from slip_printer.errors import DocumentError
from slip_printer.protocol.escpos import Align, EscPosEncoder

# Column width of left-hand field labels
LABEL_WIDTH: Final[int] = 18

# Header/footer rule
SLIP_RULE_CHAR: Final[str] = "="
SLIP_RULE_LENGTH: Final[int] = 24

# Receipt rule (separator defaults)
RECEIPT_RULE_CHAR: Final[str] = "-"
RECEIPT_RULE_LENGTH: Final[int] = 32

TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

TEST_PAGE_FOOTER: Final[str] = "AMSRAL Laundry Service"


# =============================================================================
# Directives
# =============================================================================

@dataclass(frozen=True)
class Reset:
    """Printer initialization."""


@dataclass(frozen=True)
class Text:
    """One line of text with optional alignment and style flags."""

    content: str
    align: Optional[Align] = None
    bold: bool = False
    double_height: bool = False
    double_width: bool = False


@dataclass(frozen=True)
class Separator:
    """A rule made of one repeated character."""

    char: str = RECEIPT_RULE_CHAR
    length: int = RECEIPT_RULE_LENGTH


@dataclass(frozen=True)
class Cut:
    """Full paper cut."""


Directive = Union[Reset, Text, Separator, Cut]


@dataclass(frozen=True)
class PrintDocument:
    """
    Ordered directives for one printed slip.

    Attributes:
        template: Name of the template that produced the document
        directives: Directives in print order
    """

    template: str
    directives: tuple[Directive, ...]

    def __len__(self) -> int:
        return len(self.directives)

    @property
    def lines(self) -> list[str]:
        """Plain text of every printed line, for previews and logs."""
        result = []
        for directive in self.directives:
            if isinstance(directive, Text):
                result.append(directive.content)
            elif isinstance(directive, Separator):
                result.append(directive.char * directive.length)
        return result


def render(document: PrintDocument, encoder: Optional[EscPosEncoder] = None) -> list[bytes]:
    """
    Encode a document as ESC/POS chunks.

    Args:
        document: Document to encode.
        encoder: Encoder to append to; a fresh UTF-8 encoder by default.

    Returns:
        The encoder's chunk list, in write order.
    """
    encoder = encoder if encoder is not None else EscPosEncoder()

    for directive in document.directives:
        if isinstance(directive, Reset):
            encoder.reset()
        elif isinstance(directive, Text):
            encoder.text(
                directive.content,
                align=directive.align,
                bold=directive.bold,
                double_height=directive.double_height,
                double_width=directive.double_width,
            )
        elif isinstance(directive, Separator):
            encoder.separator(directive.char, directive.length)
        elif isinstance(directive, Cut):
            encoder.cut()
        else:
            raise DocumentError(f"Unknown directive: {directive!r}")

    return encoder.chunks()


# =============================================================================
# Template Fields
# =============================================================================

@dataclass(frozen=True)
class AssignmentSlip:
    """Fields of a machine assignment slip."""

    tracking_number: str
    item_name: str
    wash_type: str
    process_types: Sequence[str]
    assigned_to: str
    quantity: int


@dataclass(frozen=True)
class BagLabel:
    """Fields of a bag label. Bag count and quantity may be blank."""

    order_id: int
    customer_name: str
    number_of_bags: str = ""
    quantity: str = ""


@dataclass(frozen=True)
class OrderRecordReceipt:
    """
    Fields of an order record.

    When ``is_remaining`` is set the slip records leftover quantity and
    prints placeholders instead of the wash type and processes.
    """

    order_id: int
    customer_name: str
    item_name: str
    quantity: int
    wash_type: str = ""
    process_types: Sequence[str] = ()
    tracking_number: Optional[str] = None
    is_remaining: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "OrderRecordReceipt":
        """
        Build from the JSON form used by batch files.

        Keys: orderId, customerName, itemName, quantity, washType,
        processTypes, trackingNumber (optional), isRemaining (optional).

        Raises:
            DocumentError: If a required key is missing or mistyped.
        """
        if not isinstance(data, dict):
            raise DocumentError("order record must be a JSON object")

        missing = [
            key for key in ("orderId", "customerName", "itemName", "quantity")
            if key not in data
        ]
        if missing:
            raise DocumentError(f"order record is missing: {', '.join(missing)}")

        process_types = data.get("processTypes") or []
        if isinstance(process_types, str):
            process_types = [process_types]
        if not isinstance(process_types, list):
            raise DocumentError("'processTypes' must be a list of strings")

        try:
            order_id = int(data["orderId"])
            quantity = int(data["quantity"])
        except (TypeError, ValueError):
            raise DocumentError(
                f"order {data.get('orderId')!r}: orderId and quantity must be integers"
            ) from None

        tracking = data.get("trackingNumber")
        return cls(
            order_id=order_id,
            customer_name=str(data["customerName"]),
            item_name=str(data["itemName"]),
            quantity=quantity,
            wash_type=str(data.get("washType") or ""),
            process_types=tuple(str(p) for p in process_types),
            tracking_number=str(tracking) if tracking else None,
            is_remaining=bool(data.get("isRemaining", False)),
        )


@dataclass(frozen=True)
class ReceiptItem:
    name: str
    quantity: int
    price: float


@dataclass(frozen=True)
class SalesReceipt:
    """Fields of a customer sales receipt."""

    company_name: str
    address: str
    phone: str
    order_number: str
    date: str
    time: str
    customer_name: str
    customer_phone: str
    items: Sequence[ReceiptItem] = field(default_factory=tuple)
    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0

    @classmethod
    def from_dict(cls, data: Any) -> "SalesReceipt":
        """
        Build from JSON (camelCase keys, ``items`` as a list of
        ``{"name", "quantity", "price"}`` objects).

        Raises:
            DocumentError: If a key is missing or mistyped.
        """
        if not isinstance(data, dict):
            raise DocumentError("receipt must be a JSON object")

        text_keys = {
            "company_name": "companyName",
            "address": "address",
            "phone": "phone",
            "order_number": "orderNumber",
            "date": "date",
            "time": "time",
            "customer_name": "customerName",
            "customer_phone": "customerPhone",
        }
        missing = [key for key in text_keys.values() if key not in data]
        if missing:
            raise DocumentError(f"receipt is missing: {', '.join(missing)}")

        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise DocumentError("'items' must be a list")

        try:
            items = tuple(
                ReceiptItem(
                    name=str(item["name"]),
                    quantity=int(item["quantity"]),
                    price=float(item["price"]),
                )
                for item in raw_items
            )
            amounts = {
                key: float(data.get(key, 0.0))
                for key in ("subtotal", "tax", "total")
            }
        except (KeyError, TypeError, ValueError) as e:
            raise DocumentError(f"receipt has an invalid item or amount: {e}") from None

        return cls(
            **{attr: str(data[key]) for attr, key in text_keys.items()},
            items=items,
            **amounts,
        )


def order_records_from_json(data: Any) -> list[OrderRecordReceipt]:
    """
    Parse a batch file's contents (a JSON list of order records).

    Raises:
        DocumentError: If the data is not a list or an entry is invalid.
    """
    if not isinstance(data, list):
        raise DocumentError("batch file must contain a JSON list of order records")

    records = []
    for position, entry in enumerate(data, start=1):
        try:
            records.append(OrderRecordReceipt.from_dict(entry))
        except DocumentError as e:
            raise DocumentError(f"entry {position}: {e}") from None
    return records


# =============================================================================
# Templates
# =============================================================================

class _SlipBuilder:
    """Collects directives with the shared slip layout helpers."""

    def __init__(self) -> None:
        self._directives: list[Directive] = [Reset()]

    def add(self, directive: Directive) -> None:
        self._directives.append(directive)

    def blank(self, count: int = 1) -> None:
        for _ in range(count):
            self.add(Text(""))

    def header(self, title: str) -> None:
        self.add(Text(
            title,
            align=Align.CENTER,
            bold=True,
            double_height=True,
            double_width=True,
        ))
        self.add(Separator(SLIP_RULE_CHAR, SLIP_RULE_LENGTH))
        self.blank()

    def field(self, label: str, value: Any) -> None:
        self.add(Text(
            f"{label + ':':<{LABEL_WIDTH}}{value}",
            align=Align.LEFT,
            bold=True,
            double_height=True,
        ))

    def footer(self, generated_at: datetime) -> None:
        self.blank()
        self.add(Separator(SLIP_RULE_CHAR, SLIP_RULE_LENGTH))
        self.add(Text(
            f"Generated: {generated_at.strftime(TIMESTAMP_FORMAT)}",
            align=Align.CENTER,
        ))
        # one spacer line plus two feed lines before the cut
        self.blank(3)
        self.add(Cut())

    def build(self, template: str) -> PrintDocument:
        return PrintDocument(template=template, directives=tuple(self._directives))


def assignment_slip(
    slip: AssignmentSlip,
    generated_at: Optional[datetime] = None,
) -> PrintDocument:
    """Machine assignment slip."""
    builder = _SlipBuilder()
    builder.header("MACHINE ASSIGNMENT")
    builder.field("Tracking ID", slip.tracking_number)
    builder.field("Item", slip.item_name)
    builder.field("Wash Type", slip.wash_type)
    builder.field("Process", ", ".join(slip.process_types))
    builder.field("Assigned To", slip.assigned_to)
    builder.field("Quantity", slip.quantity)
    builder.footer(generated_at or datetime.now())
    return builder.build("assignment_slip")


def bag_label(
    label: BagLabel,
    generated_at: Optional[datetime] = None,
) -> PrintDocument:
    """Bag label."""
    builder = _SlipBuilder()
    builder.header("BAG LABEL")
    builder.field("Reference No", label.order_id)
    builder.field("Customer", label.customer_name)
    builder.field("Number of Bags", label.number_of_bags)
    builder.field("Quantity", label.quantity)
    builder.footer(generated_at or datetime.now())
    return builder.build("bag_label")


def order_record_receipt(
    receipt: OrderRecordReceipt,
    generated_at: Optional[datetime] = None,
) -> PrintDocument:
    """
    Order record slip.

    The remaining-quantity variant replaces the wash type and process
    with placeholders and adds a status line.
    """
    builder = _SlipBuilder()
    builder.header("ORDER RECORD")
    builder.field("Order ID", receipt.order_id)
    builder.field("Customer", receipt.customer_name)
    builder.field("Item", receipt.item_name)
    builder.field("Quantity", receipt.quantity)
    if receipt.tracking_number:
        builder.field("Tracking", receipt.tracking_number)

    if receipt.is_remaining:
        builder.field("Wash Type", "Unknown")
        builder.field("Process", "Unknown")
        builder.field("Status", "Remaining Quantity")
    else:
        builder.field("Wash Type", receipt.wash_type)
        builder.field("Process", ", ".join(receipt.process_types))

    builder.footer(generated_at or datetime.now())
    return builder.build("order_record_receipt")


def sales_receipt(receipt: SalesReceipt) -> PrintDocument:
    """Customer receipt with line items and totals."""
    directives: list[Directive] = [
        Reset(),
        Text(receipt.company_name, align=Align.CENTER, bold=True, double_height=True),
        Text(receipt.address, align=Align.CENTER),
        Text(receipt.phone, align=Align.CENTER),
        Separator(),
        Text(""),
        Text(f"Order #: {receipt.order_number}"),
        Text(f"Date: {receipt.date}"),
        Text(f"Time: {receipt.time}"),
        Text(""),
        Text(f"Customer: {receipt.customer_name}"),
        Text(f"Phone: {receipt.customer_phone}"),
        Text(""),
        Text("Items:"),
        Separator(),
    ]

    for item in receipt.items:
        directives.append(Text(f"{item.name} x{item.quantity} - ${item.price:.2f}"))

    directives += [
        Separator(),
        Text(f"Subtotal: ${receipt.subtotal:.2f}"),
        Text(f"Tax: ${receipt.tax:.2f}"),
        Text(f"Total: ${receipt.total:.2f}", bold=True),
        Text(""),
        Text("Thank you for your business!", align=Align.CENTER),
        Text(""),
        Text(""),
        Cut(),
    ]
    return PrintDocument(template="sales_receipt", directives=tuple(directives))


def printer_test_page(generated_at: Optional[datetime] = None) -> PrintDocument:
    """Short page confirming the printer works."""
    now = generated_at or datetime.now()
    directives = (
        Reset(),
        Text("PRINTER TEST PAGE", align=Align.CENTER, bold=True, double_height=True),
        Text(""),
        Text("This is a test of the thermal printer."),
        Text("If you can read this, the printer is working correctly."),
        Text(""),
        Text(f"Date: {now:%Y-%m-%d}"),
        Text(f"Time: {now:%H:%M:%S}"),
        Text(""),
        Text(TEST_PAGE_FOOTER, align=Align.CENTER),
        Text(""),
        Text(""),
        Cut(),
    )
    return PrintDocument(template="test_page", directives=directives)
