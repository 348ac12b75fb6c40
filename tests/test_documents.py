"""
Tests for Print Documents and Templates
=======================================

Template structure, the remaining-quantity branch, batch parsing and
rendering determinism.
"""

from datetime import datetime

import pytest

from slip_printer.errors import DocumentError
from slip_printer.protocol.documents import (
    LABEL_WIDTH,
    AssignmentSlip,
    BagLabel,
    Cut,
    OrderRecordReceipt,
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
from slip_printer.protocol.escpos import RESET_PRINT_MODE, SELECT_PRINT_MODE, EscPosEncoder

GENERATED = datetime(2026, 10, 19, 14, 3, 11)


@pytest.fixture
def order():
    return OrderRecordReceipt(
        order_id=1042,
        customer_name="Nadeesha Perera",
        item_name="Denim Jeans",
        quantity=120,
        wash_type="Stone Wash",
        process_types=("Enzyme", "Bleach"),
        tracking_number="TRK-77",
    )


class TestSlipLayout:
    """Shared slip structure."""

    def test_assignment_slip(self):
        slip = AssignmentSlip(
            tracking_number="T-0042",
            item_name="Shirts",
            wash_type="Normal",
            process_types=["Dye", "Softener"],
            assigned_to="Machine 3",
            quantity=50,
        )
        doc = assignment_slip(slip, generated_at=GENERATED)

        assert doc.template == "assignment_slip"
        assert doc.directives[0] == Reset()
        assert doc.directives[1] == Text(
            "MACHINE ASSIGNMENT", align=doc.directives[1].align,
            bold=True, double_height=True, double_width=True,
        )
        assert doc.directives[2] == Separator("=", 24)
        assert doc.lines[3:9] == [
            "Tracking ID:      T-0042",
            "Item:             Shirts",
            "Wash Type:        Normal",
            "Process:          Dye, Softener",
            "Assigned To:      Machine 3",
            "Quantity:         50",
        ]

    def test_labels_are_padded(self):
        doc = bag_label(BagLabel(order_id=7, customer_name="Ann"), generated_at=GENERATED)
        fields = [d for d in doc.directives if isinstance(d, Text) and d.bold and not d.double_width]

        assert fields[0].content == "Reference No:".ljust(LABEL_WIDTH) + "7"
        assert fields[2].content == "Number of Bags:".ljust(LABEL_WIDTH)
        assert all(f.double_height for f in fields)

    def test_footer(self, order):
        doc = order_record_receipt(order, generated_at=GENERATED)

        assert doc.directives[-1] == Cut()
        assert doc.directives[-4:-1] == (Text(""), Text(""), Text(""))
        assert doc.directives[-6] == Separator("=", 24)
        assert doc.directives[-5].content == "Generated: 2026-10-19 14:03:11"


class TestOrderRecord:
    """Regular and remaining-quantity variants."""

    def test_regular_branch(self, order):
        lines = order_record_receipt(order, generated_at=GENERATED).lines

        assert "Tracking:         TRK-77" in lines
        assert "Wash Type:        Stone Wash" in lines
        assert "Process:          Enzyme, Bleach" in lines
        assert not any(line.startswith("Status:") for line in lines)

    def test_remaining_branch(self, order):
        remaining = OrderRecordReceipt(**{**order.__dict__, "is_remaining": True})
        lines = order_record_receipt(remaining, generated_at=GENERATED).lines

        assert "Wash Type:        Unknown" in lines
        assert "Process:          Unknown" in lines
        assert "Status:           Remaining Quantity" in lines
        assert "Wash Type:        Stone Wash" not in lines

    def test_tracking_is_optional(self, order):
        untracked = OrderRecordReceipt(**{**order.__dict__, "tracking_number": None})
        lines = order_record_receipt(untracked, generated_at=GENERATED).lines

        assert not any(line.startswith("Tracking:") for line in lines)

    def test_variants_have_fixed_structure(self, order):
        """Same variant, different values: same directive shape."""
        other = OrderRecordReceipt(
            order_id=1, customer_name="B", item_name="C", quantity=2,
            wash_type="W", process_types=("P",), tracking_number="T",
        )
        shape = lambda doc: [type(d) for d in doc.directives]

        assert shape(order_record_receipt(order, GENERATED)) == shape(order_record_receipt(other, GENERATED))


class TestRendering:
    """Byte-level rendering."""

    def test_render_is_deterministic(self, order):
        doc = order_record_receipt(order, generated_at=GENERATED)

        assert render(doc) == render(doc)

    def test_render_starts_with_reset_and_ends_with_cut(self, order):
        chunks = render(order_record_receipt(order, generated_at=GENERATED))

        assert chunks[0] == b"\x1b\x40"
        assert chunks[-1] == b"\x1d\x56\x00"

    def test_style_set_is_followed_by_reset(self, order):
        """Every style set is closed by a style reset before the line feed."""
        chunks = render(order_record_receipt(order, generated_at=GENERATED))

        for i, chunk in enumerate(chunks):
            if chunk.startswith(SELECT_PRINT_MODE) and chunk != RESET_PRINT_MODE:
                assert chunks[i + 2] == RESET_PRINT_MODE
                assert chunks[i + 3] == b"\n"

    def test_render_with_encoder(self):
        encoder = EscPosEncoder(encoding="ascii")
        chunks = render(printer_test_page(GENERATED), encoder)

        assert chunks == encoder.chunks()
        assert b"Date: 2026-10-19" in chunks
        assert b"AMSRAL Laundry Service" in chunks

    def test_unknown_directive(self):
        from slip_printer.protocol.documents import PrintDocument

        with pytest.raises(DocumentError):
            render(PrintDocument("bad", (Reset(), "text")))


class TestSalesReceipt:
    def test_items_and_totals(self):
        receipt = SalesReceipt(
            company_name="AMSRAL",
            address="12 Main St",
            phone="011 222 3333",
            order_number="1001",
            date="2026-10-19",
            time="14:03",
            customer_name="Ann",
            customer_phone="077 123 4567",
            items=(ReceiptItem("Shirt", 2, 3.5),),
            subtotal=7.0,
            tax=0.7,
            total=7.7,
        )
        doc = sales_receipt(receipt)

        assert "Shirt x2 - $3.50" in doc.lines
        assert "Total: $7.70" in doc.lines
        total = [d for d in doc.directives if isinstance(d, Text) and d.content.startswith("Total")][0]
        assert total.bold is True
        assert doc.directives[-1] == Cut()

    def test_from_dict(self):
        receipt = SalesReceipt.from_dict({
            "companyName": "AMSRAL", "address": "a", "phone": "p",
            "orderNumber": 5, "date": "d", "time": "t",
            "customerName": "c", "customerPhone": "cp",
            "items": [{"name": "Towel", "quantity": "3", "price": 1}],
            "total": 3,
        })

        assert receipt.order_number == "5"
        assert receipt.items == (ReceiptItem("Towel", 3, 1.0),)
        assert receipt.total == 3.0
        assert receipt.tax == 0.0

    def test_from_dict_missing_keys(self):
        with pytest.raises(DocumentError, match="companyName"):
            SalesReceipt.from_dict({"address": "a"})


class TestBatchParsing:
    """order_records_from_json()"""

    def test_parse(self):
        records = order_records_from_json([
            {
                "orderId": 1, "customerName": "A", "itemName": "Jeans",
                "quantity": 10, "washType": "Stone", "processTypes": ["Enzyme"],
            },
            {
                "orderId": "2", "customerName": "B", "itemName": "Shirts",
                "quantity": 4, "isRemaining": True, "trackingNumber": "T2",
            },
        ])

        assert records[0].process_types == ("Enzyme",)
        assert records[1].order_id == 2
        assert records[1].is_remaining is True
        assert records[1].tracking_number == "T2"

    def test_not_a_list(self):
        with pytest.raises(DocumentError, match="JSON list"):
            order_records_from_json({"orderId": 1})

    def test_missing_key_reports_entry(self):
        with pytest.raises(DocumentError, match="entry 2: .*customerName"):
            order_records_from_json([
                {"orderId": 1, "customerName": "A", "itemName": "I", "quantity": 1},
                {"orderId": 2, "itemName": "I", "quantity": 1},
            ])

    def test_bad_quantity(self):
        with pytest.raises(DocumentError, match="must be integers"):
            order_records_from_json([
                {"orderId": 1, "customerName": "A", "itemName": "I", "quantity": "many"},
            ])
