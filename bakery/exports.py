"""訂單 Excel 匯出 (每個品項一列，附訂單表頭欄位)"""
import io

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from .services import TAIPEI

COLUMNS = [
    ("訂單編號", 18),
    ("訂單日期", 18),
    ("訂購人", 12),
    ("手機", 14),
    ("Email", 24),
    ("地址", 32),
    ("訂單狀態", 10),
    ("付款方式", 12),
    ("付款狀態", 10),
    ("配送方式", 20),
    ("業務", 16),
    ("品名", 24),
    ("單價", 8),
    ("數量", 8),
    ("品項小計", 10),
    ("運費", 8),
    ("點數折抵", 10),
    ("訂單總額", 10),
    ("備註", 30),
]

HEADER_FONT = Font(bold=True, color="FFFFFFFF", size=11)
HEADER_FILL = PatternFill(start_color="FFB5651D", end_color="FFB5651D", fill_type="solid")


def _header_values(order):
    return [
        order.order_number,
        order.created_at.astimezone(TAIPEI).strftime("%Y-%m-%d %H:%M"),
        order.customer_name,
        order.customer_phone,
        order.customer_email,
        order.address,
        order.get_status_display(),
        order.get_payment_method_display(),
        order.get_payment_status_display(),
        order.get_shipping_method_display(),
        str(order.salesperson) if order.salesperson_id else "",
    ]


def build_orders_workbook(orders):
    wb = Workbook()
    ws = wb.active
    ws.title = "訂單"

    for col, (title, width) in enumerate(COLUMNS, start=1):
        cell = ws.cell(row=1, column=col, value=title)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center")
        ws.column_dimensions[get_column_letter(col)].width = width
    ws.freeze_panes = "A2"

    for order in orders.prefetch_related("items").select_related("salesperson"):
        head = _header_values(order)
        tail = [order.shipping_fee, order.points_discount, order.total_amount, order.notes]
        items = list(order.items.all())
        if not items:
            ws.append(head + ["", "", "", ""] + tail)
            continue
        for item in items:
            ws.append(
                head
                + [item.product_name, item.price, item.quantity, item.line_total]
                + tail
            )

    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()
