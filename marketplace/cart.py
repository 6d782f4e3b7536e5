import logging
from typing import Any, Dict, List

from psycopg import errors as pg_errors

from .errors import InvalidInput, RecordNotFound

logger = logging.getLogger(__name__)


def add_to_cart(conn, user_id: int, crop_id: int, quantity: int) -> str:
    """
    Put ``quantity`` of a crop in the user's cart.

    A crop already in the cart has its quantity increased instead of getting a
    second entry. Returns ``"updated"`` or ``"added"``.
    """
    if quantity <= 0:
        raise InvalidInput("Invalid cart payload")

    # xmax is 0 only on a row this statement inserted
    try:
        row = conn.execute(
            "INSERT INTO cart(user_id, crop_id, quantity) VALUES (%s, %s, %s) "
            "ON CONFLICT (user_id, crop_id) DO UPDATE SET quantity = cart.quantity + EXCLUDED.quantity "
            "RETURNING (xmax = 0) AS inserted",
            (user_id, crop_id, quantity),
        ).fetchone()
    except pg_errors.ForeignKeyViolation as exc:
        raise RecordNotFound("Crop or user not found") from exc
    return "added" if row["inserted"] else "updated"


def get_cart(conn, user_id: int) -> List[Dict[str, Any]]:
    return conn.execute(
        "SELECT c.id, c.crop_id, cr.crop_name, cr.price, c.quantity, cr.image_url "
        "FROM cart c JOIN crops cr ON c.crop_id = cr.id "
        "WHERE c.user_id = %s ORDER BY c.id",
        (user_id,),
    ).fetchall()


def remove_from_cart(conn, user_id: int, cart_id: int) -> None:
    cur = conn.execute(
        "DELETE FROM cart WHERE id = %s AND user_id = %s",
        (cart_id, user_id),
    )
    if cur.rowcount == 0:
        raise RecordNotFound("Cart item not found")
