"""Investment lifecycle: validation, derived fields and owner-scoped access."""
from __future__ import annotations

import calendar
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, List, Mapping, Optional

from .database import Database
from .errors import FieldError, InternalError, NotFound
from .models import Investment, TokenPayload
from .validation import InvestmentForm, InvestmentUpdateForm, parse_form

logger = logging.getLogger("investdesk.investments")


def compute_end_date(start: datetime, duration_months: int) -> datetime:
    """Return ``start`` shifted forward by ``duration_months`` calendar months.

    Days past the end of the target month roll over into the following month,
    so 31 January plus one month is 2 March (or 3 March outside leap years).
    """

    if duration_months < 0:
        raise ValueError("duration_months must not be negative")

    month_index = start.month - 1 + duration_months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    first_of_month = start.replace(year=year, month=month, day=1)
    days_in_month = calendar.monthrange(year, month)[1]
    if start.day <= days_in_month:
        return first_of_month.replace(day=start.day)
    return first_of_month + timedelta(days=start.day - 1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvestmentManager:
    """Create, list, read and update investments on behalf of an identity.

    Every operation takes the identity resolved by the auth gate and passes its
    user id to the store, so one user can never see or touch another user's
    records.
    """

    def __init__(self, database: Database, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._database = database
        self._clock = clock or _utcnow

    def list(self, identity: TokenPayload) -> List[Investment]:
        with self._store_errors("list investments"):
            return self._database.list_investments_for_user(identity.user_id)

    def get(self, identity: TokenPayload, investment_id: str) -> Investment:
        with self._store_errors("load investment"):
            investment = self._database.get_investment_for_user(identity.user_id, investment_id)
        if investment is None:
            raise NotFound("Investment not found")
        return investment

    def create(self, identity: TokenPayload, fields: Mapping[str, Any]) -> Investment:
        form = parse_form(InvestmentForm, fields)
        start_date = form.start_date or self._clock()
        end_date = compute_end_date(start_date, form.duration)

        with self._store_errors("create investment"):
            investment = self._database.create_investment(
                identity.user_id,
                title=form.title,
                description=form.description,
                category=form.category,
                amount=form.amount,
                expected_return=form.expected_return,
                duration=form.duration,
                risk_level=form.risk_level,
                start_date=start_date,
                end_date=end_date,
                current_value=form.amount,
            )

        logger.info("User %s created investment %s", identity.user_id, investment.id)
        return investment

    def update(self, identity: TokenPayload, investment_id: str, fields: Mapping[str, Any]) -> Investment:
        locked: List[FieldError] = []
        if isinstance(fields, Mapping):
            locked = [
                FieldError(field=name, message=message)
                for name, message in InvestmentUpdateForm.locked_fields.items()
                if name in fields
            ]
        form = parse_form(InvestmentUpdateForm, fields, extra_errors=locked)
        changes = form.changes()

        with self._store_errors("update investment"):
            investment = self._database.update_investment(identity.user_id, investment_id, **changes)
        if investment is None:
            raise NotFound("Investment not found")

        if changes:
            logger.info(
                "User %s updated investment %s (%s)",
                identity.user_id,
                investment_id,
                ", ".join(sorted(changes)),
            )
        return investment

    @contextmanager
    def _store_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            logger.exception("Failed to %s", action)
            raise InternalError() from exc


__all__ = ["InvestmentManager", "compute_end_date"]
