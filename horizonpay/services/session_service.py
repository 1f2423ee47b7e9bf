"""
Transaction session store — create, read and transition locked-rate
conversion sessions.

A session is committed before its id is returned; if the write fails the
caller gets ``SessionStoreError`` and no id. Status writes follow
last-write-wins; re-applying a terminal status is a no-op, and metrics are
only counted on an actual change.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from horizonpay.core.errors import SessionExpiredError, SessionNotFoundError, SessionStoreError
from horizonpay.models.transaction_session import (
    TERMINAL_STATUSES,
    SessionStatus,
    TransactionSession,
)
from horizonpay.services.metrics import ServiceMetrics
from horizonpay.services.quote_service import ConversionQuote

logger = logging.getLogger(__name__)

# Rows scanned when searching decrypted customer details
SEARCH_SCAN_LIMIT = 1000


class SessionStore:
    def __init__(self, db: AsyncSession, metrics: ServiceMetrics, ttl_seconds: int):
        self.db = db
        self.metrics = metrics
        self.ttl_seconds = ttl_seconds

    # --- Create ---

    async def create(
        self,
        quote: ConversionQuote,
        details: dict,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TransactionSession:
        """Persist a new pending session carrying the quote's locked figures."""
        now = datetime.now(timezone.utc)
        session = TransactionSession(
            amount_ngn=quote.amount_ngn,
            gross_inr=quote.gross_inr,
            net_inr=quote.fees.net_amount,
            locked_rate=quote.pricing.customer_rate,
            fee_percent=quote.fees.fee_percent,
            fee_amount=quote.fees.fee_amount,
            profit_margin=quote.pricing.profit_margin_pct,
            rate_source=quote.pricing.rate_source.value,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500] or None,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        session.set_details(details)

        try:
            self.db.add(session)
            await self.db.flush()
            await self.db.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to create transaction session: %s", exc)
            await self.db.rollback()
            raise SessionStoreError() from exc

        self.metrics.record_session_created()
        logger.info(
            "Transaction session created: %s amount=%s rate=%s expires=%s",
            session.id, session.amount_ngn, session.locked_rate, session.expires_at.isoformat(),
        )
        return session

    # --- Read ---

    async def get(self, session_id: str) -> TransactionSession:
        result = await self.db.execute(
            select(TransactionSession).where(TransactionSession.id == session_id)
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def get_active(self, session_id: str) -> TransactionSession:
        """
        Return a session that can still be acted on.

        A pending session past its expiry is marked expired and
        ``SessionExpiredError`` is raised.
        """
        session = await self.get(session_id)
        if session.is_expired():
            await self.transition(session, SessionStatus.EXPIRED)
            raise SessionExpiredError(session_id)
        return session

    async def get_by_reference(self, reference: str) -> TransactionSession | None:
        result = await self.db.execute(
            select(TransactionSession).where(TransactionSession.payment_reference == reference)
        )
        return result.scalar_one_or_none()

    async def count_recent_by_ip(self, ip_address: str, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(TransactionSession)
            .where(
                TransactionSession.ip_address == ip_address,
                TransactionSession.created_at >= since,
            )
        )
        return int(result.scalar() or 0)

    async def list_recent(
        self,
        *,
        status: SessionStatus | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        limit: int = 50,
    ) -> list[TransactionSession]:
        """Sessions newest first, optionally filtered by status and creation date."""
        query = select(TransactionSession)
        if status is not None:
            query = query.where(TransactionSession.status == status)
        if date_from is not None:
            query = query.where(TransactionSession.created_at >= date_from)
        if date_to is not None:
            query = query.where(TransactionSession.created_at <= date_to)
        query = query.order_by(TransactionSession.created_at.desc()).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def search(
        self,
        *,
        email: str | None = None,
        phone: str | None = None,
        name: str | None = None,
        min_amount: Decimal | None = None,
        max_amount: Decimal | None = None,
        limit: int = 50,
    ) -> list[tuple[TransactionSession, dict]]:
        """
        Match sessions on decrypted customer details and NGN amount.

        Amount bounds are applied in SQL; email/phone/name are matched after
        decryption over the most recent ``SEARCH_SCAN_LIMIT`` rows.
        """
        query = select(TransactionSession)
        if min_amount is not None:
            query = query.where(TransactionSession.amount_ngn >= min_amount)
        if max_amount is not None:
            query = query.where(TransactionSession.amount_ngn <= max_amount)
        query = query.order_by(TransactionSession.created_at.desc()).limit(SEARCH_SCAN_LIMIT)

        result = await self.db.execute(query)
        email = email.lower() if email else None
        name = name.lower() if name else None
        phone = re.sub(r"\D", "", phone) if phone else None

        matches = []
        for session in result.scalars().all():
            try:
                details = session.get_details()
            except ValueError:
                logger.warning("Skipping session %s with undecryptable details", session.id)
                continue
            if email and (details.get("email") or "").lower() != email:
                continue
            if phone and details.get("phone") != phone:
                continue
            if name and name not in (details.get("customer_name") or "").lower():
                continue
            matches.append((session, details))
            if len(matches) >= limit:
                break
        return matches

    # --- Transitions ---

    async def transition(
        self,
        session: TransactionSession,
        new_status: SessionStatus,
        **fields,
    ) -> bool:
        """
        Move *session* to *new_status*, setting any extra column *fields*.

        Returns False without writing when the session already holds that
        terminal status.
        """
        if session.status == new_status and new_status in TERMINAL_STATUSES:
            logger.debug("Session %s already %s", session.id, new_status.value)
            return False

        changed = session.transition_to(new_status)
        for name, value in fields.items():
            setattr(session, name, value)

        await self.db.flush()
        await self.db.commit()

        if changed and new_status in TERMINAL_STATUSES:
            self.metrics.record_session_closed(new_status.value)
        logger.info("Session %s -> %s", session.id, new_status.value)
        return changed

    async def expire_stale(self, now: datetime | None = None) -> int:
        """Expire pending sessions past their expiry. Returns the count."""
        now = now or datetime.now(timezone.utc)
        result = await self.db.execute(
            select(TransactionSession).where(
                TransactionSession.status == SessionStatus.PENDING,
                TransactionSession.expires_at <= now,
            )
        )
        stale = list(result.scalars().all())
        for session in stale:
            session.transition_to(SessionStatus.EXPIRED)
            self.metrics.record_session_closed(SessionStatus.EXPIRED.value)

        if stale:
            await self.db.flush()
            await self.db.commit()
            logger.info("Expired %d stale transaction sessions", len(stale))
        return len(stale)
