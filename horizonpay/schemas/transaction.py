"""
Pydantic schemas for conversion requests, transaction sessions and
payments.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import Field, field_validator, model_validator

from horizonpay.schemas.base import CamelModel
from horizonpay.schemas.rate import TraderSummary

UPI_ID_RE = re.compile(r"^[a-zA-Z0-9._-]+@[a-zA-Z]+$")
ACCOUNT_NUMBER_RE = re.compile(r"^\d{9,18}$")
IFSC_RE = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

SUPPORTED_SOURCE_CURRENCY = "NGN"
SUPPORTED_TARGET_CURRENCY = "INR"


# ---------------------------------------------------------------------------
# Convert
# ---------------------------------------------------------------------------


class ConvertRequest(CamelModel):
    """NGN to INR conversion with customer and payout details."""
    amount: Decimal = Field(..., examples=[50000])
    from_currency: str = Field(..., alias="from")
    to_currency: str = Field(..., alias="to")
    customer_name: str | None = Field(None, max_length=100)
    email: str | None = Field(None, max_length=254)
    phone: str | None = Field(None, max_length=20)
    payment_method: str | None = Field(None, max_length=50)
    receive_method: Literal["upi", "bank"]
    upi_id: str | None = Field(None, max_length=100, examples=["ravi.kumar@okaxis"])
    account_number: str | None = Field(None, examples=["123456789012"])
    ifsc_code: str | None = Field(None, examples=["HDFC0001234"])
    account_holder_name: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=500)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if not v.is_finite() or v <= 0:
            raise ValueError("Amount must be greater than 0")
        return v

    @field_validator("from_currency")
    @classmethod
    def validate_from(cls, v: str) -> str:
        if v != SUPPORTED_SOURCE_CURRENCY:
            raise ValueError(f"Only {SUPPORTED_SOURCE_CURRENCY} source currency supported")
        return v

    @field_validator("to_currency")
    @classmethod
    def validate_to(cls, v: str) -> str:
        if v != SUPPORTED_TARGET_CURRENCY:
            raise ValueError(f"Only {SUPPORTED_TARGET_CURRENCY} target currency supported")
        return v

    @field_validator("customer_name")
    @classmethod
    def validate_customer_name(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Customer name must be at least 2 characters")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().lower()
        if not EMAIL_RE.match(v):
            raise ValueError("Invalid email format")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        digits = re.sub(r"\D", "", v)
        if not 10 <= len(digits) <= 15:
            raise ValueError("Phone number must contain 10-15 digits")
        return digits

    @field_validator("upi_id")
    @classmethod
    def validate_upi_id(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not UPI_ID_RE.match(v):
            raise ValueError("Invalid UPI ID format. Example: username@bank")
        return v

    @field_validator("account_number")
    @classmethod
    def validate_account_number(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not ACCOUNT_NUMBER_RE.match(v):
            raise ValueError("Account number must be 9-18 digits")
        return v

    @field_validator("ifsc_code")
    @classmethod
    def validate_ifsc_code(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().upper()
        if not IFSC_RE.match(v):
            raise ValueError("Invalid IFSC code format (e.g., ABCD0123456)")
        return v

    @model_validator(mode="after")
    def check_payout_details(self) -> "ConvertRequest":
        if self.receive_method == "upi" and not self.upi_id:
            raise ValueError("upiId is required when receiveMethod is upi")
        if self.receive_method == "bank" and not (self.account_number and self.ifsc_code):
            raise ValueError("accountNumber and ifscCode are required when receiveMethod is bank")
        return self

    def sensitive_details(self) -> dict:
        """Fields stored only in the encrypted session blob."""
        return {
            "customer_name": self.customer_name or "Anonymous",
            "email": self.email,
            "phone": self.phone,
            "payment_method": self.payment_method,
            "receive_method": self.receive_method,
            "upi_id": self.upi_id,
            "account_number": self.account_number,
            "ifsc_code": self.ifsc_code,
            "account_holder_name": self.account_holder_name,
            "notes": self.notes,
        }


class ConvertQuery(CamelModel):
    amount: Decimal
    from_currency: str = Field(alias="from")
    to_currency: str = Field(alias="to")


class HorizonPayOffer(CamelModel):
    you_pay: Decimal
    you_get: Decimal
    gross_inr: Decimal
    exchange_rate: Decimal
    fee_percent: Decimal
    fee_amount: Decimal
    rate_source: str


class Comparison(CamelModel):
    horizon_pay_total: Decimal
    local_market_min: Decimal
    local_market_max: Decimal
    extra_vs_local_min: Decimal
    extra_vs_local_max: Decimal


class Breakdown(CamelModel):
    customer_pays_ngn: Decimal
    usdt_bought: Decimal
    usdt_buy_price_ngn: Decimal
    usdt_sell_price_inr: Decimal
    gross_inr: Decimal
    net_inr: Decimal
    fee_percent: Decimal
    our_cost_per_inr: Decimal
    our_selling_rate: Decimal
    our_profit_margin: Decimal


class RiskFlag(CamelModel):
    type: str
    message: str
    severity: Literal["low", "medium", "high"]


class ConvertResponse(CamelModel):
    success: bool = True
    timestamp: datetime
    service: str
    session_id: str
    expires_at: datetime
    expires_in_seconds: int
    status: str
    query: ConvertQuery
    horizon_pay_offer: HorizonPayOffer
    comparison: Comparison
    breakdown: Breakdown
    recommended_p2p_traders: list[TraderSummary]
    notice: str | None = None
    warning: str | None = None
    warnings: list[RiskFlag] = []


# ---------------------------------------------------------------------------
# Session views
# ---------------------------------------------------------------------------


class SessionSummary(CamelModel):
    """Non-sensitive session fields, safe for the customer-facing API."""
    session_id: str
    status: str
    amount_ngn: Decimal
    gross_inr: Decimal
    net_inr: Decimal
    locked_rate: Decimal
    fee_percent: Decimal
    fee_amount: Decimal
    rate_source: str
    payment_reference: str | None = None
    created_at: datetime
    expires_at: datetime
    paid_at: datetime | None = None

    model_config = {"from_attributes": True}


class SessionDetail(SessionSummary):
    """Admin view including the decrypted customer and payout details."""
    profit_margin: Decimal
    ip_address: str | None = None
    user_agent: str | None = None
    payment_channel: str | None = None
    paid_amount: Decimal | None = None
    verified_at: datetime | None = None
    failure_reason: str | None = None
    updated_at: datetime | None = None
    details: dict | None = None


class SessionListResponse(CamelModel):
    items: list[SessionSummary]
    total: int


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class PaymentInitializeRequest(CamelModel):
    session_id: str
    email: str | None = None
    customer_name: str | None = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().lower()
        if not EMAIL_RE.match(v):
            raise ValueError("Invalid email format")
        return v


class PaymentInitializeResponse(CamelModel):
    success: bool = True
    session_id: str
    reference: str
    authorization_url: str
    access_code: str | None = None
    amount_kobo: int


class ManualVerifyRequest(CamelModel):
    session_id: str
    reference: str | None = None


class PaymentStatusResponse(CamelModel):
    success: bool = True
    session_id: str
    status: str
    payment_reference: str | None = None
    paid_amount: Decimal | None = None
    paid_at: datetime | None = None
    failure_reason: str | None = None
