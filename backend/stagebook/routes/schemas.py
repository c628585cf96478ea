# backend/stagebook/routes/schemas.py
"""Response models shared by several routers. Request models live with their routes."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator


class UserOut(BaseModel):
    id: int
    email: Optional[str] = None
    phone: Optional[str] = None
    display_name: Optional[str] = None
    role: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ArtistOut(BaseModel):
    id: int
    user_id: int
    bio: Optional[str] = None
    categories: List[str] = []
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    wallet_balance: float
    verification_status: str
    verification_note: str = ""

    class Config:
        from_attributes = True

    @field_validator("categories", mode="before")
    @classmethod
    def split_categories(cls, v):
        if isinstance(v, str):
            return [c for c in v.split(",") if c]
        return v


class PlannerOut(BaseModel):
    id: int
    user_id: int
    organization: Optional[str] = None
    wallet_balance: float
    verification_status: str

    class Config:
        from_attributes = True


class ServiceOut(BaseModel):
    id: int
    artist_id: int
    category: str
    unit: str
    price_for_user: Optional[float] = None
    price_for_planner: Optional[float] = None
    advance: float

    class Config:
        from_attributes = True


class BookingOut(BaseModel):
    id: int
    client_id: Optional[int] = None
    artist_id: int
    service_id: int
    event_id: Optional[int] = None
    source: str
    start_at: datetime
    end_at: datetime
    total_price: float
    paid_amount: float
    advance_amount: float
    status: str
    payment_status: str
    gateway_order_id: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class CalendarBlockOut(BaseModel):
    id: int
    artist_id: int
    start_at: datetime
    end_at: datetime
    type: str
    title: Optional[str] = None
    linked_booking_id: Optional[int] = None

    class Config:
        from_attributes = True


class TransactionOut(BaseModel):
    id: int
    owner_id: int
    owner_type: str
    type: str
    amount: float
    source: str
    reference_id: Optional[str] = None
    description: Optional[str] = None
    status: str
    admin_note: str = ""
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WalletOut(BaseModel):
    balance: float
    pending_amount: float
    available_balance: float
    transactions: List[TransactionOut]


class WithdrawalOut(BaseModel):
    id: int
    owner_id: int
    owner_type: str
    amount: float
    status: str
    account_holder: Optional[str] = None
    account_number: Optional[str] = None
    bank_name: Optional[str] = None
    ifsc_code: Optional[str] = None
    upi_id: Optional[str] = None
    admin_note: Optional[str] = None
    transaction_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CommissionOut(BaseModel):
    id: int
    artist_booking_commission: float
    ticket_sell_commission: float

    class Config:
        from_attributes = True


class EventOut(BaseModel):
    id: int
    planner_id: int
    title: str
    venue: Optional[str] = None
    start_at: datetime
    end_at: datetime
    published: bool

    class Config:
        from_attributes = True


class TicketTypeOut(BaseModel):
    id: int
    event_id: int
    title: str
    price: float
    quantity: int
    sold: int
    sales_start: Optional[datetime] = None
    sales_end: Optional[datetime] = None

    class Config:
        from_attributes = True


class TicketOut(BaseModel):
    id: int
    ticket_type_id: int
    event_id: int
    user_id: Optional[int] = None
    buyer_name: str
    buyer_phone: str
    persons: int
    scanned_persons: int
    scanned: bool
    is_valid: bool
    qr_payload: Optional[str] = None

    class Config:
        from_attributes = True


class WithdrawalCreate(BaseModel):
    amount: float
    account_holder: Optional[str] = None
    account_number: Optional[str] = None
    bank_name: Optional[str] = None
    ifsc_code: Optional[str] = None
    upi_id: Optional[str] = None

    def bank_details(self) -> dict:
        return self.model_dump(exclude={"amount"})


def wallet_out(summary: dict) -> WalletOut:
    return WalletOut(
        balance=summary["balance"],
        pending_amount=summary["pending_amount"],
        available_balance=summary["available_balance"],
        transactions=[TransactionOut.model_validate(t) for t in summary["transactions"]],
    )
