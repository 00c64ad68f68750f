"""
Database Schemas for the Salon Desk API

Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
These models are used for validation before documents are written and for the
/schema endpoint.
"""

from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List, Literal
from datetime import datetime

PHONE_PATTERN = r"^[6-9]\d{9}$"
TIME_PATTERN = r"^\d{2}:\d{2}$"

Role = Literal["receptionist", "manager", "owner", "artist"]
PaymentMethod = Literal["online", "cash", "partial"]

# Accounts -------------------------------------------------------------------

class User(BaseModel):
    name: str
    email: EmailStr
    password_hash: str
    role: Role
    created_by: Optional[str] = Field(None, description="User _id of the creator")
    is_active: bool = True

class Session(BaseModel):
    user_id: str
    token: str
    role: Role
    name: str
    email: str
    expires_at: datetime

# Catalog --------------------------------------------------------------------

class Service(BaseModel):
    name: str
    name_key: str = Field(..., description="Case-folded name, unique")
    price: float = Field(..., ge=0)
    category: str = ""
    is_active: bool = True

class Artist(BaseModel):
    name: str
    phone: str = Field(..., pattern=PHONE_PATTERN)
    email: Optional[EmailStr] = None
    registration_id: Optional[str] = None
    commission: float = Field(0, ge=0, le=100)
    photo: Optional[str] = None
    user_id: Optional[str] = Field(None, description="Linked login account")
    is_active: bool = True

# Visits ---------------------------------------------------------------------

class VisitService(BaseModel):
    name: str
    price: float = Field(..., ge=0)

class Visit(BaseModel):
    name: str
    contact: str = Field(..., pattern=PHONE_PATTERN)
    age: str
    gender: Literal["male", "female", "other", "prefer_not"]
    date: datetime
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str = Field(..., pattern=TIME_PATTERN)
    artist: str = Field(..., description="Artist name at the time of the visit")
    artist_id: Optional[str] = None
    artist_commission: Optional[float] = Field(None, ge=0, le=100)
    service_type: Optional[str] = None
    services: List[VisitService] = Field(..., min_length=1)
    filled_by: str
    subtotal: float = Field(..., ge=0)
    discount_percent: float = Field(0, ge=0, le=100)
    discount_amount: float = Field(0, ge=0)
    final_total: float = Field(..., ge=0)
    payment_method: PaymentMethod = "online"
    cash_amount: float = Field(0, ge=0)
    online_amount: float = Field(0, ge=0)
    payment_status: Literal["pending", "success", "failed"] = "pending"
    razorpay_payment_id: Optional[str] = None

# Payments -------------------------------------------------------------------

class Payment(BaseModel):
    """Gateway ledger entry: one per order or payment link."""
    kind: Literal["order", "payment_link"]
    amount_paise: int = Field(..., ge=100)
    currency: Literal["INR"] = "INR"
    name: str
    phone: str
    status: Literal["created", "verified", "claimed", "reconciled", "unreconciled"] = "created"
    created_by: Optional[str] = None
