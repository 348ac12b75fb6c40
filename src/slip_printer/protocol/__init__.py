"""
Slip Printer Protocol Module
============================

- **escpos**: byte-level ESC/POS encoder
- **documents**: print document model, slip templates and the renderer
- **probes**: diagnostic byte sequences (simple test, protocol probes)

    from slip_printer.protocol import BagLabel, bag_label, render

    chunks = render(bag_label(BagLabel(order_id=42, customer_name="Nadeesha")))
"""

from slip_printer.protocol.escpos import (
    FULL_CUT,
    INITIALIZE,
    RESET_PRINT_MODE,
    Align,
    EscPosEncoder,
    print_mode,
)
from slip_printer.protocol.documents import (
    LABEL_WIDTH,
    AssignmentSlip,
    BagLabel,
    Cut,
    Directive,
    OrderRecordReceipt,
    PrintDocument,
    ReceiptItem,
    Reset,
    SalesReceipt,
    Separator,
    Text,
    assignment_slip,
    bag_label,
    order_record_receipt,
    order_records_from_json,
    printer_test_page,
    render,
    sales_receipt,
)
from slip_printer.protocol.probes import PROTOCOL_PROBES, SIMPLE_TEST, ProbeStage

__all__ = [
    # Encoder
    "INITIALIZE",
    "RESET_PRINT_MODE",
    "FULL_CUT",
    "Align",
    "EscPosEncoder",
    "print_mode",
    # Documents
    "LABEL_WIDTH",
    "Reset",
    "Text",
    "Separator",
    "Cut",
    "Directive",
    "PrintDocument",
    "render",
    # Templates
    "AssignmentSlip",
    "BagLabel",
    "OrderRecordReceipt",
    "ReceiptItem",
    "SalesReceipt",
    "assignment_slip",
    "bag_label",
    "order_record_receipt",
    "order_records_from_json",
    "sales_receipt",
    "printer_test_page",
    # Diagnostics
    "ProbeStage",
    "SIMPLE_TEST",
    "PROTOCOL_PROBES",
]
