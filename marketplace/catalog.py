"""
Crop listings: farmer-owned CRUD, buyer-facing search, and ratings.
"""
import logging
import math
import os
import time
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, BinaryIO, Dict, List, Optional

from psycopg import errors as pg_errors

from .errors import InvalidInput, RecordNotFound
from .settings import UPLOAD_DIR

logger = logging.getLogger(__name__)

SORTS = {
    "price_asc": "c.price ASC",
    "price_desc": "c.price DESC",
    "name_asc": "c.crop_name ASC",
    "rating_desc": "COALESCE(r.avg_rating, 0) DESC, COALESCE(r.rating_count, 0) DESC",
}
DEFAULT_SORT = "c.id DESC"

LIST_SQL = """
    SELECT c.id, c.crop_name, c.quantity, c.location, c.price, c.image_url, c.farmer_id,
           COALESCE(r.avg_rating, 0) AS avg_rating,
           COALESCE(r.rating_count, 0) AS rating_count
    FROM crops c
    LEFT JOIN (
        SELECT crop_id, AVG(rating) AS avg_rating, COUNT(*) AS rating_count
        FROM crop_ratings
        GROUP BY crop_id
    ) r ON r.crop_id = c.id"""


def _number(value: Any) -> Optional[float]:
    """Parse a loosely-typed query value; None when absent or not a finite number."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def save_image(filename: str, data: BinaryIO, upload_dir: str = UPLOAD_DIR) -> str:
    """Write an uploaded image and return its public path (``uploads/<name>``)."""
    ext = os.path.splitext(filename or "")[1].lower()
    name = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"
    os.makedirs(upload_dir, exist_ok=True)
    with open(os.path.join(upload_dir, name), "wb") as out:
        out.write(data.read())
    return f"uploads/{name}"


def add_crop(conn, crop_name: str, quantity: Any, location: str, price: Any,
             image_url: str, farmer_id: Any) -> int:
    qty = _number(quantity)
    try:
        unit_price = Decimal(str(price).strip()) if price not in (None, "") else None
    except InvalidOperation:
        unit_price = None
    if unit_price is not None and not unit_price.is_finite():
        unit_price = None

    if (
        not (crop_name or "").strip()
        or not (location or "").strip()
        or not image_url
        or qty is None
        or unit_price is None
    ):
        raise InvalidInput("All fields, including image, are required")
    if qty < 0 or qty != int(qty) or unit_price < 0:
        raise InvalidInput("Quantity must be a whole number and price non-negative")
    f_id = _number(farmer_id)
    if f_id is None or f_id != int(f_id):
        raise InvalidInput("Valid farmerId is required")

    row = conn.execute(
        "INSERT INTO crops(crop_name, quantity, location, price, image_url, farmer_id) "
        "VALUES (%s, %s, %s, %s, %s, %s) RETURNING id",
        (crop_name.strip(), int(qty), location.strip(), unit_price, image_url, int(f_id)),
    ).fetchone()
    logger.info("Crop %s listed by farmer %s", row["id"], int(f_id))
    return row["id"]


def list_crops(conn, q: Optional[str] = None, min_price: Any = None, max_price: Any = None,
               sort: Optional[str] = None, farmer_id: Any = None) -> List[Dict[str, Any]]:
    where = []
    params: List[Any] = []

    if q and q.strip():
        pattern = f"%{q.strip()}%"
        where.append("(c.crop_name ILIKE %s OR c.location ILIKE %s)")
        params += [pattern, pattern]

    min_p = _number(min_price)
    if min_p is not None:
        where.append("c.price >= %s")
        params.append(min_p)
    max_p = _number(max_price)
    if max_p is not None:
        where.append("c.price <= %s")
        params.append(max_p)
    f_id = _number(farmer_id)
    if f_id is not None and f_id == int(f_id):
        where.append("c.farmer_id = %s")
        params.append(int(f_id))

    sql = LIST_SQL
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY " + SORTS.get(sort or "", DEFAULT_SORT)

    return conn.execute(sql, params).fetchall()


def update_crop(conn, crop_id: int, farmer_id: int, crop_name: Optional[str] = None,
                price: Optional[Decimal] = None, quantity: Optional[int] = None,
                location: Optional[str] = None) -> None:
    fields = []
    values: List[Any] = []
    if crop_name is not None and crop_name.strip():
        fields.append("crop_name = %s")
        values.append(crop_name.strip())
    if price is not None:
        fields.append("price = %s")
        values.append(price)
    if quantity is not None:
        fields.append("quantity = %s")
        values.append(quantity)
    if location is not None and location.strip():
        fields.append("location = %s")
        values.append(location.strip())

    if not fields:
        raise InvalidInput("No valid fields to update")

    values += [crop_id, farmer_id]
    cur = conn.execute(
        f"UPDATE crops SET {', '.join(fields)} WHERE id = %s AND farmer_id = %s",
        values,
    )
    if cur.rowcount == 0:
        raise RecordNotFound("Crop not found or not owned by farmer")


def delete_crop(conn, crop_id: int, farmer_id: int) -> None:
    cur = conn.execute(
        "DELETE FROM crops WHERE id = %s AND farmer_id = %s",
        (crop_id, farmer_id),
    )
    if cur.rowcount == 0:
        raise RecordNotFound("Crop not found or not owned by farmer")
    logger.info("Crop %s deleted by farmer %s", crop_id, farmer_id)


def rate_crop(conn, crop_id: int, user_id: int, rating: int) -> Dict[str, Any]:
    """Upsert the user's 1-5 rating and return the crop's new average and count."""
    if not 1 <= rating <= 5:
        raise InvalidInput("Rating must be 1-5")

    try:
        conn.execute(
            "INSERT INTO crop_ratings(user_id, crop_id, rating) VALUES (%s, %s, %s) "
            "ON CONFLICT (user_id, crop_id) DO UPDATE SET rating = EXCLUDED.rating, updated_at = NOW()",
            (user_id, crop_id, rating),
        )
    except pg_errors.ForeignKeyViolation as exc:
        raise RecordNotFound("Crop or user not found") from exc

    agg = conn.execute(
        "SELECT AVG(rating) AS avg_rating, COUNT(*) AS rating_count FROM crop_ratings WHERE crop_id = %s",
        (crop_id,),
    ).fetchone()
    return {
        "avg_rating": float(agg["avg_rating"] or 0),
        "rating_count": agg["rating_count"],
    }
