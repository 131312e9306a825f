from typing import List, Literal, Optional

from db.models import Order


def generate_markdown_table(
    headers: Optional[List[str]],
    rows: List[List[str]],
    aligns: Optional[List[Literal["l", "c", "r"]]] = None,
) -> str:
    """
    Render rows as a Markdown table.

    Args:
        headers: column headers; when None the first row is used.
        rows: table body, cells are converted with str().
        aligns: 'l', 'c' or 'r' per column, centered by default.
    """
    if not rows:
        return ""

    if not headers:
        headers, rows = rows[0], rows[1:]

    headers = [str(h) for h in headers]
    if aligns is None:
        aligns = ["c"] * len(headers)
    elif len(aligns) != len(headers):
        raise ValueError("Length of aligns must match number of headers.")

    markers = {"l": ":---", "c": ":---:", "r": "---:"}
    lines = [
        "| " + " | ".join(headers) + " |",
        "| " + " | ".join(markers[a] for a in aligns) + " |",
    ]
    lines.extend("| " + " | ".join(str(cell) for cell in row) + " |" for row in rows)
    return "\n".join(lines)


def order_summary_markdown(order: Order) -> str:
    rows = [
        [
            line.title,
            f"{line.unit_price:.2f}",
            line.quantity,
            f"{line.unit_price * line.quantity:.2f}",
        ]
        for line in order.items
    ]
    table = generate_markdown_table(
        ["Product", "Unit Price", "Quantity", "Line Total"], rows, ["l", "r", "c", "r"]
    )
    payable = order.total if order.final_total is None else order.final_total
    footer = [
        f"**Subtotal:** {order.subtotal:.2f}",
        f"**Tax:** {order.tax:.2f}",
    ]
    if order.discount:
        footer.append(f"**Discount:** -{order.discount:.2f}")
    footer.append(f"**Total:** {payable:.2f}")
    return f"### Order {order.order_id}\n\n{table}\n\n" + "  \n".join(footer)
