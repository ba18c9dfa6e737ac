"""Tests for the investment lifecycle manager."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

import pytest

from investdesk.database import Database
from investdesk.errors import InternalError, NotFound, ValidationError
from investdesk.investments import InvestmentManager, compute_end_date
from investdesk.models import InvestmentCategory, InvestmentStatus, RiskLevel, TokenPayload


NOW = datetime(2024, 5, 10, 9, 30, tzinfo=timezone.utc)


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "investdesk.sqlite3", bcrypt_rounds=4)
    db.initialize()
    return db


@pytest.fixture()
def manager(database: Database) -> InvestmentManager:
    return InvestmentManager(database, clock=lambda: NOW)


def _identity(database: Database, email: str) -> TokenPayload:
    user = database.create_user(
        {"email": email, "password": "secret1", "firstName": "Test", "lastName": "User"}
    )
    return TokenPayload.for_user(user)


def _fields(**overrides: object) -> dict[str, object]:
    fields: dict[str, object] = {
        "title": "Treasury bills",
        "description": "Six month government paper",
        "category": "bonds",
        "amount": 25000,
        "expectedReturn": 14.5,
        "duration": 6,
        "riskLevel": "low",
    }
    fields.update(overrides)
    return fields


@pytest.mark.parametrize(
    ("start", "months", "expected"),
    [
        (datetime(2024, 1, 15), 6, datetime(2024, 7, 15)),
        (datetime(2024, 11, 15), 3, datetime(2025, 2, 15)),
        (datetime(2024, 3, 31), 120, datetime(2034, 3, 31)),
        (datetime(2024, 1, 31), 1, datetime(2024, 3, 2)),
        (datetime(2023, 1, 31), 1, datetime(2023, 3, 3)),
        (datetime(2024, 8, 31), 1, datetime(2024, 10, 1)),
    ],
)
def test_compute_end_date(start: datetime, months: int, expected: datetime) -> None:
    assert compute_end_date(start, months) == expected


def test_compute_end_date_keeps_time_and_timezone() -> None:
    start = datetime(2024, 1, 15, 8, 45, tzinfo=timezone.utc)
    assert compute_end_date(start, 6) == datetime(2024, 7, 15, 8, 45, tzinfo=timezone.utc)


def test_create_computes_derived_fields(database: Database, manager: InvestmentManager) -> None:
    identity = _identity(database, "owner@example.com")

    investment = manager.create(identity, _fields(startDate="2024-01-15"))

    assert investment.user_id == identity.user_id
    assert investment.category is InvestmentCategory.BONDS
    assert investment.risk_level is RiskLevel.LOW
    assert investment.status is InvestmentStatus.ACTIVE
    assert investment.start_date == datetime(2024, 1, 15, tzinfo=timezone.utc)
    assert investment.end_date == datetime(2024, 7, 15, tzinfo=timezone.utc)
    assert investment.current_value == 25000


def test_create_defaults_start_date_to_now(database: Database, manager: InvestmentManager) -> None:
    identity = _identity(database, "owner@example.com")

    investment = manager.create(identity, _fields(duration=12))

    assert investment.start_date == NOW
    assert investment.end_date == datetime(2025, 5, 10, 9, 30, tzinfo=timezone.utc)


def test_amount_below_minimum_is_rejected_and_not_persisted(
    database: Database, manager: InvestmentManager
) -> None:
    identity = _identity(database, "owner@example.com")

    with pytest.raises(ValidationError) as excinfo:
        manager.create(identity, _fields(amount=999.99))

    assert excinfo.value.fields == ["amount"]
    assert database.list_investments_for_user(identity.user_id) == []


def test_create_reports_every_invalid_field(database: Database, manager: InvestmentManager) -> None:
    identity = _identity(database, "owner@example.com")

    with pytest.raises(ValidationError) as excinfo:
        manager.create(
            identity,
            {
                "title": "   ",
                "description": "d" * 501,
                "amount": 10,
                "expectedReturn": -1,
                "duration": 121,
                "riskLevel": "reckless",
            },
        )

    messages = {error.field: error.message for error in excinfo.value.errors}
    assert set(messages) == {
        "title",
        "description",
        "category",
        "amount",
        "expectedReturn",
        "duration",
        "riskLevel",
    }
    assert messages["category"] == "Investment category is required"
    assert messages["duration"] == "Maximum duration is 120 months"
    assert database.list_investments_for_user(identity.user_id) == []


def test_null_values_count_as_missing(database: Database, manager: InvestmentManager) -> None:
    identity = _identity(database, "owner@example.com")

    with pytest.raises(ValidationError) as excinfo:
        manager.create(identity, _fields(category=None, title=""))

    assert sorted(excinfo.value.fields) == ["category", "title"]


def test_non_object_body_is_rejected(database: Database, manager: InvestmentManager) -> None:
    identity = _identity(database, "owner@example.com")

    with pytest.raises(ValidationError) as excinfo:
        manager.create(identity, ["not", "an", "object"])  # type: ignore[arg-type]

    assert excinfo.value.fields == ["body"]


def test_identities_never_see_each_other(database: Database, manager: InvestmentManager) -> None:
    alice = _identity(database, "alice@example.com")
    bob = _identity(database, "bob@example.com")

    created = manager.create(alice, _fields())

    assert [item.id for item in manager.list(alice)] == [created.id]
    assert manager.list(bob) == []
    with pytest.raises(NotFound):
        manager.get(bob, created.id)
    with pytest.raises(NotFound):
        manager.update(bob, created.id, {"status": "cancelled"})
    assert manager.get(alice, created.id).status is InvestmentStatus.ACTIVE


def test_list_is_newest_first(database: Database, manager: InvestmentManager) -> None:
    identity = _identity(database, "owner@example.com")

    titles = ["first", "second", "third"]
    for title in titles:
        manager.create(identity, _fields(title=title))

    assert [item.title for item in manager.list(identity)] == list(reversed(titles))


def test_update_changes_editable_fields_without_recomputing_end_date(
    database: Database, manager: InvestmentManager
) -> None:
    identity = _identity(database, "owner@example.com")
    created = manager.create(identity, _fields(startDate="2024-01-15"))

    updated = manager.update(
        identity,
        created.id,
        {"status": "completed", "currentValue": 27500, "title": "Matured bills"},
    )

    assert updated.status is InvestmentStatus.COMPLETED
    assert updated.current_value == 27500
    assert updated.title == "Matured bills"
    assert updated.amount == created.amount
    assert updated.duration == created.duration
    assert updated.end_date == created.end_date


def test_update_rejects_locked_fields(database: Database, manager: InvestmentManager) -> None:
    identity = _identity(database, "owner@example.com")
    created = manager.create(identity, _fields())

    with pytest.raises(ValidationError) as excinfo:
        manager.update(identity, created.id, {"duration": 12, "endDate": "2030-01-01", "title": "New"})

    assert sorted(excinfo.value.fields) == ["duration", "endDate"]
    assert manager.get(identity, created.id).title == "Treasury bills"


def test_update_requires_a_change(database: Database, manager: InvestmentManager) -> None:
    identity = _identity(database, "owner@example.com")
    created = manager.create(identity, _fields())

    with pytest.raises(ValidationError) as excinfo:
        manager.update(identity, created.id, {})

    assert excinfo.value.fields == ["body"]


def test_store_failures_surface_as_internal_error(database: Database, manager: InvestmentManager) -> None:
    identity = _identity(database, "owner@example.com")

    with mock.patch.object(database, "create_investment", side_effect=sqlite3.OperationalError("disk I/O error")):
        with pytest.raises(InternalError) as excinfo:
            manager.create(identity, _fields())

    assert excinfo.value.message == "Internal server error"
    assert excinfo.value.details is None
    assert "disk" not in str(excinfo.value)


def test_start_date_accepts_offsets(database: Database, manager: InvestmentManager) -> None:
    identity = _identity(database, "owner@example.com")

    investment = manager.create(identity, _fields(startDate="2024-01-15T01:00:00+01:00"))

    assert investment.start_date == datetime(2024, 1, 15, tzinfo=timezone.utc)
    assert investment.end_date - investment.start_date == timedelta(days=182)


@pytest.mark.parametrize(
    "overrides",
    [
        {"expectedReturn": 0},
        {"title": "t" * 100},
        {"amount": 1000},
        {"startDate": "9989-06-01", "duration": 120},
    ],
)
def test_boundary_values_are_accepted(
    database: Database, manager: InvestmentManager, overrides: dict[str, object]
) -> None:
    identity = _identity(database, "owner@example.com")

    investment = manager.create(identity, _fields(**overrides))

    assert investment.current_value == investment.amount
    assert database.list_investments_for_user(identity.user_id) == [investment]


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"title": "t" * 101}, "title"),
        ({"amount": float("nan")}, "amount"),
        ({"amount": float("inf")}, "amount"),
        ({"expectedReturn": float("nan")}, "expectedReturn"),
        ({"expectedReturn": float("inf")}, "expectedReturn"),
        ({"startDate": "9999-06-01", "duration": 120}, "startDate"),
        ({"startDate": "0001-01-01T00:00:00+01:00"}, "startDate"),
    ],
)
def test_out_of_range_values_are_rejected(
    database: Database, manager: InvestmentManager, overrides: dict[str, object], field: str
) -> None:
    identity = _identity(database, "owner@example.com")

    with pytest.raises(ValidationError) as excinfo:
        manager.create(identity, _fields(**overrides))

    assert excinfo.value.fields == [field]
    assert database.list_investments_for_user(identity.user_id) == []


@pytest.mark.parametrize("field", ["currentValue", "expectedReturn"])
def test_update_rejects_non_finite_numbers(
    database: Database, manager: InvestmentManager, field: str
) -> None:
    identity = _identity(database, "owner@example.com")
    investment = manager.create(identity, _fields())

    with pytest.raises(ValidationError) as excinfo:
        manager.update(identity, investment.id, {field: float("inf")})

    assert excinfo.value.fields == [field]
    assert manager.get(identity, investment.id) == investment
