from decimal import Decimal
from pydantic import AliasChoices, BaseModel, Field, StrictInt
from typing import List, Literal, Optional

Role = Literal["farmer", "consumer"]

class LineRequest(BaseModel):
    item_id: StrictInt = Field(validation_alias=AliasChoices("itemId", "cropId", "item_id"))
    qty: StrictInt = Field(gt=0)

class CheckoutRequest(BaseModel):
    buyer_id: StrictInt = Field(validation_alias=AliasChoices("buyerId", "userId", "buyer_id"))
    items: List[LineRequest] = Field(min_length=1)

class CheckoutResponse(BaseModel):
    message: str = "Checkout successful"
    order_id: int = Field(serialization_alias="orderId")
    total: Decimal

class SignupRequest(BaseModel):
    name: str = ""
    email: str = ""
    password: str = ""
    role: str = ""

class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""
    role: Optional[str] = None

class LoginResponse(BaseModel):
    message: str = "Login successful"
    userType: Role
    userId: int

class CartAddRequest(BaseModel):
    userId: int
    cropId: int
    quantity: int = Field(gt=0)

class RatingRequest(BaseModel):
    userId: StrictInt
    rating: int = Field(ge=1, le=5)

class RatingResponse(BaseModel):
    message: str = "Rating saved"
    avg_rating: float
    rating_count: int

class CropUpdate(BaseModel):
    farmerId: int
    crop_name: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    quantity: Optional[int] = Field(default=None, ge=0)
    location: Optional[str] = None

class FarmerRef(BaseModel):
    farmerId: int
