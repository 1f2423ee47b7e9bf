"""
Fraud screening for conversion requests.

Two checks:
  - Daily NGN total per customer (email, else phone) against the daily
    limit. Exceeding it is high severity and blocks the request.
  - Three or more sessions from the same IP within five minutes. Medium
    severity, returned to the client as a warning.

Infrastructure failures in either check are logged and screened as no
risk; they never block a conversion.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from horizonpay.services.payment_service import to_kobo
from horizonpay.services.session_service import SessionStore

logger = logging.getLogger(__name__)

DAILY_TOTAL_KEY = "daily_total:{identifier}:{day}"
DAILY_TOTAL_TTL_SECONDS = 86400
RAPID_WINDOW = timedelta(minutes=5)
RAPID_THRESHOLD = 3


@dataclass(frozen=True)
class FraudRisk:
    type: str
    message: str
    severity: str


class FraudScreen:
    def __init__(self, redis, store: SessionStore, daily_limit_ngn: Decimal):
        self.redis = redis
        self.store = store
        self.daily_limit_ngn = daily_limit_ngn

    async def _check_daily_limit(self, identifier: str, amount_ngn: Decimal, now: datetime) -> FraudRisk | None:
        key = DAILY_TOTAL_KEY.format(identifier=identifier, day=now.date().isoformat())
        try:
            total_kobo = await self.redis.incrby(key, to_kobo(amount_ngn))
            await self.redis.expire(key, DAILY_TOTAL_TTL_SECONDS)
        except RedisError as exc:
            logger.error("Daily limit check failed: %s", exc)
            return None

        if Decimal(total_kobo) / 100 > self.daily_limit_ngn:
            return FraudRisk(
                type="daily_limit_exceeded",
                message=f"Daily limit of ₦{self.daily_limit_ngn:,.0f} would be exceeded",
                severity="high",
            )
        return None

    async def _check_rapid_requests(self, ip_address: str, now: datetime) -> FraudRisk | None:
        try:
            recent = await self.store.count_recent_by_ip(ip_address, now - RAPID_WINDOW)
        except SQLAlchemyError as exc:
            logger.error("Rapid transaction check failed: %s", exc)
            return None

        if recent >= RAPID_THRESHOLD:
            return FraudRisk(
                type="rapid_transactions",
                message="Multiple transactions detected in short time",
                severity="medium",
            )
        return None

    async def screen(
        self,
        *,
        amount_ngn: Decimal,
        email: str | None,
        phone: str | None,
        ip_address: str | None,
        now: datetime | None = None,
    ) -> list[FraudRisk]:
        now = now or datetime.now(timezone.utc)
        risks = []

        identifier = email or phone
        if identifier:
            risk = await self._check_daily_limit(identifier, amount_ngn, now)
            if risk:
                risks.append(risk)

        if ip_address:
            risk = await self._check_rapid_requests(ip_address, now)
            if risk:
                risks.append(risk)

        return risks


def has_high_risk(risks: list[FraudRisk]) -> bool:
    return any(r.severity == "high" for r in risks)
