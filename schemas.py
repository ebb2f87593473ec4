"""
Database Schemas for the Home Chef Marketplace

Each Pydantic model below validates a request body before it reaches a
MongoDB collection. Documents are stored with camelCase keys (the aliases
generated below); Python code uses the snake_case attribute names.
"""
from typing import List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, EmailStr
from pydantic.alias_generators import to_camel

Role = Literal["user", "chef", "admin"]
RequestType = Literal["chef", "admin"]
RequestStatus = Literal["pending", "approved", "rejected"]
OrderStatus = Literal["pending", "accepted", "preparing", "delivered", "cancelled"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ===================== Users & credentials =====================

class TokenRequest(CamelModel):
    email: EmailStr
    role: Role = "user"


class UserCreate(CamelModel):
    name: str = Field(..., description="Display name")
    email: EmailStr = Field(..., description="Unique email address")
    photo_url: Optional[str] = None
    address: Optional[str] = None


class UserStatusUpdate(CamelModel):
    status: str = Field(..., description="Free-form account status, e.g. active or fraud")


# ===================== Role requests =====================

class RoleRequestCreate(CamelModel):
    user_name: str
    user_email: EmailStr
    request_type: RequestType


class RoleDecision(CamelModel):
    user_email: EmailStr
    request_type: RequestType
    action: Literal["approve", "reject"]


# ===================== Meals =====================

class MealCreate(CamelModel):
    food_name: str
    chef_name: str
    food_image: Optional[str] = None
    price: float = Field(..., ge=0)
    rating: float = Field(0.0, ge=0, le=5)
    ingredients: List[str] = []
    estimated_delivery_time: Optional[str] = None
    chef_experience: Optional[str] = None
    delivery_area: Optional[str] = None
    featured: bool = False


class MealUpdate(CamelModel):
    food_name: Optional[str] = None
    food_image: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    rating: Optional[float] = Field(None, ge=0, le=5)
    ingredients: Optional[List[str]] = None
    estimated_delivery_time: Optional[str] = None
    chef_experience: Optional[str] = None
    delivery_area: Optional[str] = None
    featured: Optional[bool] = None


# ===================== Reviews & favorites =====================

class ReviewCreate(CamelModel):
    food_id: str
    reviewer_name: str
    reviewer_image: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: str


class ReviewUpdate(CamelModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None


class FavoriteCreate(CamelModel):
    food_id: str
    meal_name: str
    chef_id: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)


# ===================== Orders & payments =====================

class OrderCreate(CamelModel):
    food_id: str
    meal_name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    total_price: Optional[float] = Field(None, ge=0)
    chef_id: str
    user_address: Optional[str] = None


class OrderStatusUpdate(CamelModel):
    order_status: OrderStatus


class CheckoutRequest(CamelModel):
    order_id: str
    meal_name: str
    total_price: float = Field(..., ge=0)
