"""Monthly usage counters (contracts sent per company)."""

from __future__ import annotations

import logging
from datetime import datetime

from contractflow.core.enums import UsageCounterType
from contractflow.services.base_service import BaseService
from contractflow.utils.clock import utcnow

logger = logging.getLogger(__name__)


def month_period(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


class UsageService(BaseService):
    def get_usage(
        self,
        company_id: str,
        counter_type: UsageCounterType | str = UsageCounterType.CONTRACTS_SENT,
        now: datetime | None = None,
    ) -> int:
        start, _ = month_period(now or utcnow())
        return self.store.get_usage(company_id, getattr(counter_type, "value", counter_type), start)

    def increment_usage(
        self,
        company_id: str,
        counter_type: UsageCounterType | str = UsageCounterType.CONTRACTS_SENT,
        now: datetime | None = None,
    ) -> None:
        """Add one to the current month's counter and commit."""
        start, end = month_period(now or utcnow())
        self.store.increment_usage(company_id, getattr(counter_type, "value", counter_type), start, end)
        self.commit("increment_usage", company_id=company_id)
