"""Pydantic schemas for records, request bodies and response envelopes.

JSON field names are camelCase (``customerName``, ``totalPrice``...); Python
attribute names stay snake_case. Request bodies are deliberately lenient
(every field optional) so the repositories can report missing fields the same
way for every backend.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serializing to camelCase JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Records

class ProductRecord(CamelModel):
    """A persisted product."""
    id: str
    name: str
    category: str
    price: float
    stock: int
    description: str = ""
    image: str = "📦"
    created_at: datetime
    updated_at: datetime


class LineItem(CamelModel):
    """Product snapshot and quantity within an order."""
    product_id: Optional[str] = None
    name: str
    category: Optional[str] = None
    price: float
    quantity: int

    @property
    def subtotal(self) -> float:
        return self.price * self.quantity


class OrderRecord(CamelModel):
    """A persisted order."""
    id: str
    customer_name: str
    discord_id: str = ""
    additional_info: str = ""
    items: List[LineItem]
    total_price: float
    status: str = "pending"
    created_at: datetime
    updated_at: datetime


class AdminRecord(CamelModel):
    """Admin credential held by the fallback store."""
    username: str
    password_hash: str


# Request bodies

class ProductPayload(CamelModel):
    """Body for creating or updating a product."""
    name: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    stock: Optional[int] = None
    description: Optional[str] = None
    image: Optional[str] = None


class LineItemPayload(CamelModel):
    """One line item of an order submission."""
    product_id: Optional[str] = None
    name: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[int] = None


class OrderPayload(CamelModel):
    """Body for submitting an order. ``totalPrice`` is accepted and ignored."""
    customer_name: Optional[str] = None
    discord_id: Optional[str] = None
    additional_info: Optional[str] = None
    items: Optional[List[LineItemPayload]] = None
    total_price: Optional[float] = None


class OrderStatusPayload(CamelModel):
    """Body for updating an order's status."""
    status: Optional[str] = None


class LoginRequest(BaseModel):
    """Admin login body."""
    username: Optional[str] = None
    password: Optional[str] = None


# Response envelopes

class ProductResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: ProductRecord


class ProductListResponse(BaseModel):
    success: bool = True
    count: int
    data: List[ProductRecord]


class OrderResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: OrderRecord


class OrderListResponse(BaseModel):
    success: bool = True
    count: int
    data: List[OrderRecord]


class LoginResponse(BaseModel):
    success: bool = True
    message: str


class DatabaseStatus(BaseModel):
    status: str
    name: Optional[str] = None
    host: Optional[str] = None


class StatusResponse(BaseModel):
    success: bool = True
    message: str
    timestamp: datetime
    environment: str
    version: str
    storage: str
    database: DatabaseStatus


class HealthResponse(BaseModel):
    success: bool = True
    status: str
    timestamp: datetime
    uptime: float
    database: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: Optional[str] = None
    required: Optional[List[str]] = None
    missing: Optional[List[str]] = None
    messages: Optional[List[str]] = None
