from fastapi import Body, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

import logging
import os
from contextlib import contextmanager
from typing import Any, Optional

import psycopg

from . import accounts, cart, catalog, orders
from .checkout import CheckoutProcessor, parse_request
from .db import get_conn
from .errors import CheckoutError, InvalidInput, RecordNotFound
from .logs import setup_logging
from .models import (
    CartAddRequest,
    CheckoutResponse,
    CropUpdate,
    FarmerRef,
    LoginRequest,
    LoginResponse,
    RatingRequest,
    RatingResponse,
    SignupRequest,
)
from .settings import UPLOAD_DIR
from .store import PostgresCheckoutStore

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Farm Marketplace", version="0.1.0")

os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


def get_processor() -> CheckoutProcessor:
    return CheckoutProcessor(PostgresCheckoutStore)


@contextmanager
def http_errors(action: str):
    """Turn record-access failures into HTTP errors; driver details only go to the log."""
    try:
        yield
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except psycopg.Error:
        logger.exception("Database error: %s", action)
        raise HTTPException(status_code=500, detail=f"Failed to {action}")


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/api/health")
def db_health():
    try:
        with get_conn() as conn:
            row = conn.execute("SELECT 1 AS ok").fetchone()
    except psycopg.Error:
        logger.exception("Health check failed")
        return JSONResponse(status_code=500, content={"ok": False, "db": False})
    return {"ok": True, "db": row["ok"] == 1}


# --- accounts ---

@app.post("/api/signup")
def signup(req: SignupRequest):
    try:
        with http_errors("save user details"), get_conn() as conn:
            user_id = accounts.signup(conn, req.name, req.email, req.password, req.role)
    except accounts.EmailAlreadyExists:
        raise HTTPException(status_code=400, detail="Email already exists")
    return {"message": "Signup successful", "userId": user_id}


@app.post("/api/login", response_model=LoginResponse)
def login(req: LoginRequest):
    try:
        with http_errors("log in"), get_conn() as conn:
            user = accounts.login(conn, req.email, req.password, req.role)
    except accounts.InvalidCredentials:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    except accounts.RoleMismatch:
        raise HTTPException(status_code=403, detail="Role mismatch for this user")
    return user


# --- crops ---

@app.post("/api/crops")
def create_crop(
    cropName: str = Form(""),
    quantity: str = Form(""),
    location: str = Form(""),
    price: str = Form(""),
    farmerId: str = Form(""),
    image: Optional[UploadFile] = File(None),
):
    image_url = catalog.save_image(image.filename, image.file) if image and image.filename else ""
    try:
        with http_errors("add crop"), get_conn() as conn:
            crop_id = catalog.add_crop(conn, cropName, quantity, location, price, image_url, farmerId)
    except HTTPException:
        if image_url:
            os.remove(os.path.join(UPLOAD_DIR, os.path.basename(image_url)))
        raise
    return {"message": "Crop added successfully", "id": crop_id}


@app.get("/api/crops")
def list_crops(
    q: Optional[str] = None,
    minPrice: Optional[str] = None,
    maxPrice: Optional[str] = None,
    sort: Optional[str] = None,
    farmerId: Optional[str] = None,
):
    with http_errors("retrieve crops"), get_conn() as conn:
        return catalog.list_crops(conn, q, minPrice, maxPrice, sort, farmerId)


@app.put("/api/crops/{crop_id}")
def update_crop(crop_id: int, req: CropUpdate):
    with http_errors("update crop"), get_conn() as conn:
        catalog.update_crop(
            conn, crop_id, req.farmerId,
            crop_name=req.crop_name, price=req.price, quantity=req.quantity, location=req.location,
        )
    return {"message": "Crop updated"}


@app.delete("/api/crops/{crop_id}")
def delete_crop(crop_id: int, req: FarmerRef):
    with http_errors("delete crop"), get_conn() as conn:
        catalog.delete_crop(conn, crop_id, req.farmerId)
    return {"message": "Crop deleted"}


@app.post("/api/crops/{crop_id}/rate", response_model=RatingResponse)
def rate_crop(crop_id: int, req: RatingRequest):
    with http_errors("save rating"), get_conn() as conn:
        agg = catalog.rate_crop(conn, crop_id, req.userId, req.rating)
    return RatingResponse(**agg)


# --- cart ---

@app.post("/api/cart")
def add_to_cart(req: CartAddRequest):
    with http_errors("add to cart"), get_conn() as conn:
        outcome = cart.add_to_cart(conn, req.userId, req.cropId, req.quantity)
    return {"message": "Cart updated" if outcome == "updated" else "Crop added to cart"}


@app.get("/api/cart/{user_id}")
def get_cart(user_id: int):
    with http_errors("fetch cart"), get_conn() as conn:
        return cart.get_cart(conn, user_id)


@app.delete("/api/cart/{user_id}/{cart_id}")
def remove_from_cart(user_id: int, cart_id: int):
    with http_errors("remove cart item"), get_conn() as conn:
        cart.remove_from_cart(conn, user_id, cart_id)
    return {"message": "Removed from cart"}


# --- checkout & orders ---

@app.post("/api/checkout", response_model=CheckoutResponse)
def checkout(payload: Any = Body(None), processor: CheckoutProcessor = Depends(get_processor)):
    """
    Payment is simulated client side; this only reserves stock and records the order.
    Failures answer with the structured body of the CheckoutError raised.
    """
    result = processor.process(parse_request(payload))
    return CheckoutResponse(order_id=result.order_id, total=result.total)


@app.get("/api/orders/{user_id}")
def buyer_orders(user_id: int):
    with http_errors("fetch orders"), get_conn() as conn:
        return orders.orders_for_buyer(conn, user_id)


@app.get("/api/farmer/orders/{farmer_id}")
def farmer_sales(farmer_id: int):
    with http_errors("fetch farmer sales history"), get_conn() as conn:
        return orders.sales_for_farmer(conn, farmer_id)
