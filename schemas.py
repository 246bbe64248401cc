"""
Database Schemas for House of Muziris

Each document model maps to a MongoDB collection:
- MembershipRequest -> "requests"
- Member -> "members" (keyed by normalized email)
- UserProfile -> "profiles" (keyed by user id)
- carts: {user_id, items: [CartItem]}, one per user
- Order -> "orders"
- Payment -> "payments"
- ActivityEntry -> "trail"

Request payload models and the Result envelope returned by the service
layer live at the bottom of the module.
"""

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field

MemberType = Literal["private", "trade"]
RequestStatus = Literal["pending", "approved", "rejected"]
BusinessType = Literal["restaurant", "hotel", "corporate", "retailer"]
MonthlyVolume = Literal["<1kg", "1-10kg", "10+kg"]


class MembershipRequest(BaseModel):
    member_type: MemberType = Field("private", description="private or trade applicant")
    name: str = Field(..., max_length=100)
    email: str = Field(..., description="Normalized (lowercased, trimmed) email")
    phone: Optional[str] = None
    message: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
    business_type: Optional[BusinessType] = None
    monthly_volume: Optional[MonthlyVolume] = None
    status: RequestStatus = "pending"
    email_verified: bool = False
    verification_token: Optional[str] = None
    verification_expires_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class Member(BaseModel):
    email: str
    name: str
    company: Optional[str] = None
    role: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


class UserProfile(BaseModel):
    user_id: str
    email: str
    display_name: str
    loyalty_points: int = Field(0, ge=0, description="Authoritative loyalty balance")
    has_set_password: bool = False


class CartItem(BaseModel):
    id: str
    spice_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class Spice(BaseModel):
    id: str
    name: str
    description: str
    origin: str
    price: float = Field(..., ge=0)
    weight: str
    image: Optional[str] = None


class Order(BaseModel):
    order_number: str
    user_id: str
    user_email: str
    user_name: str
    items: List[CartItem]
    subtotal: float = Field(..., ge=0)
    discount: float = Field(0, ge=0)
    total: float = Field(..., ge=0)
    loyalty_points_earned: int = Field(0, ge=0)
    loyalty_points_used: int = Field(0, ge=0)
    payment_status: Literal["pending", "confirmed", "failed"] = "pending"
    payment_method: str = "upi"
    currency: str = "USD"
    idempotency_key: Optional[str] = None


class Payment(BaseModel):
    payment_id: str
    order_id: str
    order_number: str
    user_id: str
    user_email: str
    amount: float = Field(..., ge=0)
    currency: str
    payment_method: str
    status: Literal["pending", "success", "failed"] = "pending"
    upi_id: Optional[str] = None
    transaction_id: Optional[str] = None
    verified_at: Optional[datetime] = None


class ActivityEntry(BaseModel):
    user_id: str
    user_email: str
    action: str
    description: str
    metadata: Optional[dict] = None


# Request payloads
class MembershipApplication(BaseModel):
    member_type: MemberType = "private"
    name: str
    email: str
    phone: Optional[str] = None
    message: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
    business_type: Optional[BusinessType] = None
    monthly_volume: Optional[MonthlyVolume] = None


class RejectPayload(BaseModel):
    reason: Optional[str] = None


class TokenPayload(BaseModel):
    token: str


class EmailPayload(BaseModel):
    email: str


class LinkRequest(BaseModel):
    email: Optional[str] = None
    origin: Optional[str] = None


class PasswordLogin(BaseModel):
    email: str
    password: str
    confirm_password: Optional[str] = None


class PasswordCreate(BaseModel):
    password: str
    confirm_password: str


class AddToCart(BaseModel):
    spice_id: str


class QuantityUpdate(BaseModel):
    quantity: int = Field(..., ge=0)


class QuoteRequest(BaseModel):
    redeem_points: int = 0


class CheckoutRequest(BaseModel):
    redeem_points: int = 0
    payment_method: Literal["upi", "bank_transfer"] = "upi"
    idempotency_key: Optional[str] = Field(None, max_length=100)


class MarkPaid(BaseModel):
    transaction_id: Optional[str] = Field(None, max_length=100)


class PaymentDecision(BaseModel):
    status: Literal["success", "failed"]
    transaction_id: Optional[str] = Field(None, max_length=100)


class Result(BaseModel):
    """Outcome of a service operation: `data` on success, a display-ready `error` otherwise."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    warning: Optional[str] = None
    status_code: int = Field(200, exclude=True)

    @classmethod
    def ok(cls, data: Any = None, warning: Optional[str] = None) -> "Result":
        return cls(success=True, data=data, warning=warning)

    @classmethod
    def fail(cls, error: str, status_code: int = 400) -> "Result":
        return cls(success=False, error=error, status_code=status_code)
