"""
Payment service — Paystack integration for NGN collections.

Initializes checkout transactions, verifies them by reference, checks
webhook signatures and applies a verified charge to its session. When
PAYSTACK_MOCK is set (dev/test) an in-memory gateway stands in for the
real API.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

import httpx

from horizonpay.core.errors import ExternalAPIError, ValidationError
from horizonpay.models.transaction_session import (
    TERMINAL_STATUSES,
    SessionStatus,
    TransactionSession,
)
from horizonpay.services.session_service import SessionStore

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "HP"
MOCK_CHECKOUT_URL = "https://checkout.paystack.com/mock/{reference}"


def to_kobo(amount_ngn: Decimal) -> int:
    return int((amount_ngn * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_reference(session_id: str, now_ms: int | None = None) -> str:
    """HP-{sessionId}-{epoch ms} payment reference."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{REFERENCE_PREFIX}-{session_id}-{now_ms}"


# ---------------------------------------------------------------------------
# Gateway results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentInit:
    reference: str
    authorization_url: str
    access_code: str | None = None


@dataclass(frozen=True)
class VerifiedCharge:
    reference: str
    status: str
    amount_kobo: int
    channel: str | None = None
    paid_at: datetime | None = None
    gateway_response: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


def _parse_paid_at(value) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def charge_from_payload(data: dict) -> VerifiedCharge:
    """Build a ``VerifiedCharge`` from a Paystack transaction object."""
    return VerifiedCharge(
        reference=str(data.get("reference") or ""),
        status=str(data.get("status") or "failed"),
        amount_kobo=int(data.get("amount") or 0),
        channel=data.get("channel"),
        paid_at=_parse_paid_at(data.get("paid_at") or data.get("paidAt")),
        gateway_response=data.get("gateway_response"),
    )


# ---------------------------------------------------------------------------
# Gateway protocol + implementations
# ---------------------------------------------------------------------------


class PaymentGateway(Protocol):
    async def initialize(
        self, *, email: str, amount_kobo: int, reference: str, callback_url: str, metadata: dict,
    ) -> PaymentInit:
        ...

    async def verify(self, reference: str) -> VerifiedCharge:
        ...


class MockPaystackGateway:
    """In-memory gateway for dev/testing; every initialized charge verifies as paid in full."""

    def __init__(self):
        self._charges: dict[str, int] = {}

    async def initialize(self, *, email, amount_kobo, reference, callback_url, metadata) -> PaymentInit:
        self._charges[reference] = amount_kobo
        logger.warning("Using MOCK payment gateway for %s", reference)
        return PaymentInit(
            reference=reference,
            authorization_url=MOCK_CHECKOUT_URL.format(reference=reference),
            access_code=f"mock_{reference[-13:]}",
        )

    async def verify(self, reference: str) -> VerifiedCharge:
        amount = self._charges.get(reference)
        if amount is None:
            return VerifiedCharge(
                reference=reference, status="failed", amount_kobo=0,
                gateway_response="Transaction reference not found",
            )
        return VerifiedCharge(
            reference=reference,
            status="success",
            amount_kobo=amount,
            channel="card",
            paid_at=datetime.now(timezone.utc),
            gateway_response="Approved",
        )


class PaystackGateway:
    """Paystack REST API over a shared ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, secret_key: str, timeout: float = 10.0):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.timeout = timeout

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.secret_key}"}

    async def _call(self, method: str, path: str, **kwargs) -> dict:
        try:
            resp = await self.client.request(
                method, f"{self.base_url}{path}",
                headers=self._headers(), timeout=self.timeout, **kwargs,
            )
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Paystack request %s %s failed: %s", method, path, exc)
            raise ExternalAPIError("Payment gateway unavailable") from exc

        if resp.status_code >= 400 or not body.get("status"):
            logger.error("Paystack rejected %s %s: %s", method, path, body.get("message"))
            raise ExternalAPIError(
                "Payment gateway rejected the request", {"gatewayMessage": body.get("message")},
            )
        return body.get("data") or {}

    async def initialize(self, *, email, amount_kobo, reference, callback_url, metadata) -> PaymentInit:
        data = await self._call(
            "POST",
            "/transaction/initialize",
            json={
                "email": email,
                "amount": amount_kobo,
                "currency": "NGN",
                "reference": reference,
                "callback_url": callback_url,
                "metadata": metadata,
            },
        )
        return PaymentInit(
            reference=data.get("reference", reference),
            authorization_url=data["authorization_url"],
            access_code=data.get("access_code"),
        )

    async def verify(self, reference: str) -> VerifiedCharge:
        data = await self._call("GET", f"/transaction/verify/{reference}")
        return charge_from_payload(data)


def build_payment_gateway(settings, client: httpx.AsyncClient) -> PaymentGateway:
    """Return the configured gateway."""
    if settings.PAYSTACK_MOCK:
        return MockPaystackGateway()
    if not settings.PAYSTACK_SECRET_KEY:
        raise RuntimeError("PAYSTACK_SECRET_KEY must be set when PAYSTACK_MOCK is disabled")
    return PaystackGateway(
        client, settings.PAYSTACK_BASE_URL, settings.PAYSTACK_SECRET_KEY,
        timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
    )


# ---------------------------------------------------------------------------
# Webhook signature
# ---------------------------------------------------------------------------


def verify_webhook_signature(payload_body: bytes, signature: str, secret: str) -> bool:
    """Verify a Paystack HMAC-SHA512 signature over the raw request body."""
    if not secret or not signature:
        return False

    expected = hmac.new(
        secret.encode(),
        payload_body,
        hashlib.sha512,
    ).hexdigest()

    return hmac.compare_digest(expected, signature)


# ---------------------------------------------------------------------------
# Applying a verified charge
# ---------------------------------------------------------------------------


async def initialize_payment(
    store: SessionStore,
    gateway: PaymentGateway,
    session: TransactionSession,
    *,
    email: str,
    customer_name: str,
    callback_url: str,
) -> tuple[PaymentInit, int]:
    """Open a checkout for a pending session and mark it payment_initiated."""
    if session.status != SessionStatus.PENDING:
        raise ValidationError(f"Transaction already {session.status.value}")

    amount_kobo = to_kobo(session.amount_ngn)
    reference = build_reference(session.id)
    init = await gateway.initialize(
        email=email,
        amount_kobo=amount_kobo,
        reference=reference,
        callback_url=f"{callback_url}?session={session.id}",
        metadata={
            "sessionId": session.id,
            "customerName": customer_name,
            "amountNGN": str(session.amount_ngn),
            "amountINR": str(session.net_inr),
        },
    )
    await store.transition(
        session, SessionStatus.PAYMENT_INITIATED, payment_reference=init.reference,
    )
    logger.info("Payment initialized for session %s (reference %s)", session.id, init.reference)
    return init, amount_kobo


async def settle_charge(
    store: SessionStore,
    session: TransactionSession,
    charge: VerifiedCharge,
) -> bool:
    """
    Apply a gateway-verified charge to *session*.

    A successful charge for at least the locked NGN amount completes the
    session; an unsuccessful or short charge fails it. Returns True when the
    session status changed. Already-terminal sessions are left unchanged.
    """
    if session.status in TERMINAL_STATUSES:
        logger.info(
            "Session %s already %s, ignoring charge %s",
            session.id, session.status.value, charge.reference,
        )
        return False

    paid_amount = Decimal(charge.amount_kobo) / 100
    if not charge.succeeded:
        return await store.transition(
            session,
            SessionStatus.FAILED,
            payment_reference=charge.reference or session.payment_reference,
            failure_reason=(charge.gateway_response or "Payment failed")[:255],
        )

    expected_kobo = to_kobo(session.amount_ngn)
    if charge.amount_kobo < expected_kobo:
        logger.warning(
            "Underpayment on session %s: expected %d kobo, received %d",
            session.id, expected_kobo, charge.amount_kobo,
        )
        return await store.transition(
            session,
            SessionStatus.FAILED,
            payment_reference=charge.reference,
            paid_amount=paid_amount,
            failure_reason=f"Underpaid: expected {session.amount_ngn} NGN, received {paid_amount} NGN",
        )

    changed = await store.transition(
        session,
        SessionStatus.COMPLETED,
        payment_reference=charge.reference,
        paid_amount=paid_amount,
        paid_at=charge.paid_at or datetime.now(timezone.utc),
        payment_channel=charge.channel,
    )
    if changed:
        logger.info("Payment completed: session %s reference %s amount %s", session.id, charge.reference, paid_amount)
    return changed
