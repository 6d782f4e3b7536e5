"""
Read side of the order ledger: a buyer's order history and a farmer's sales.
"""
from typing import Any, Dict, List


def orders_for_buyer(conn, user_id: int) -> List[Dict[str, Any]]:
    orders = conn.execute(
        "SELECT id, total, created_at FROM orders WHERE user_id = %s ORDER BY created_at DESC, id DESC",
        (user_id,),
    ).fetchall()
    if not orders:
        return []

    by_order = {o["id"]: {**o, "items": []} for o in orders}
    lines = conn.execute(
        "SELECT order_id, crop_id, crop_name, quantity, price "
        "FROM order_items WHERE order_id = ANY(%s) ORDER BY order_id, id",
        (list(by_order),),
    ).fetchall()
    for line in lines:
        by_order[line["order_id"]]["items"].append({
            "crop_id": line["crop_id"],
            "crop_name": line["crop_name"],
            "quantity": line["quantity"],
            "price": line["price"],
        })
    return list(by_order.values())


def sales_for_farmer(conn, farmer_id: int) -> List[Dict[str, Any]]:
    return conn.execute(
        """
        SELECT o.id AS order_id,
               o.created_at,
               o.total AS order_total,
               COALESCE(u.name, 'Unknown') AS buyer_name,
               COALESCE(u.email, '') AS buyer_email,
               c.id AS crop_id,
               c.crop_name,
               oi.quantity,
               oi.price,
               oi.quantity * oi.price AS subtotal
        FROM crops c
        JOIN order_items oi ON oi.crop_id = c.id
        JOIN orders o ON o.id = oi.order_id
        LEFT JOIN user_credentials u ON u.id = o.user_id
        WHERE c.farmer_id = %s
        ORDER BY o.created_at DESC, o.id DESC
        """,
        (farmer_id,),
    ).fetchall()
