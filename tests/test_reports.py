from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from errors import ValidationFailed
from models import Account, Category, TransactionType
from periods import Period, resolve_period
from schemas import AccountIn, TransactionIn
from services import AccountService, BalanceService, ReportService, TransactionService


def _named(session, model, owner, name):
    return session.scalar(select(model).where(model.user_id == owner, model.name == name))


def _add(session, owner, category_name, txn_type, amount, on, account_name="Cash"):
    category = _named(session, Category, owner, category_name)
    account = _named(session, Account, owner, account_name)
    return TransactionService(session, owner).create(
        TransactionIn(
            amount=Decimal(amount),
            type=txn_type,
            txn_date=on,
            category_id=category.id,
            account_id=account.id,
        )
    )


def test_balance_is_income_minus_expense(session, owner, intruder) -> None:
    _add(session, owner, "Salary", TransactionType.income, "1000", date(2025, 1, 1))
    _add(session, owner, "Rent", TransactionType.expense, "600.10", date(2025, 1, 2))
    _add(session, owner, "Groceries", TransactionType.expense, "0.10", date(2025, 1, 3))
    _add(session, owner, "Groceries", TransactionType.expense, "0.20", date(2025, 1, 3))
    _add(session, intruder, "Salary", TransactionType.income, "5", date(2025, 1, 1))
    cash = _named(session, Account, owner, "Cash")

    assert BalanceService(session, owner).balance(cash.id) == Decimal("399.60")


def test_accounts_with_balances_includes_empty_accounts(session, owner) -> None:
    _add(session, owner, "Salary", TransactionType.income, "10", date(2025, 1, 1))
    AccountService(session, owner).create(AccountIn(name="Savings"))

    rows = {a.name: a for a in BalanceService(session, owner).accounts_with_balances()}

    assert rows["Cash"].balance == Decimal("10.00")
    assert rows["Cash"].transaction_count == 1
    assert rows["Savings"].balance == Decimal("0.00")
    assert rows["Savings"].transaction_count == 0
    ordered = BalanceService(session, owner).accounts_with_balances()
    assert ordered[-1].name == "Savings"


def test_summary_bounds_are_inclusive(session, owner) -> None:
    _add(session, owner, "Salary", TransactionType.income, "100", date(2025, 5, 1))
    _add(session, owner, "Rent", TransactionType.expense, "30", date(2025, 5, 31))
    _add(session, owner, "Rent", TransactionType.expense, "70", date(2025, 6, 1))
    reports = ReportService(session, owner)

    may = reports.summary(Period("custom", date(2025, 5, 1), date(2025, 5, 31)))
    assert may.total_income == Decimal("100.00")
    assert may.total_expense == Decimal("30.00")
    assert may.net == Decimal("70.00")
    assert may.transaction_count == 2

    everything = reports.summary()
    assert everything.net == Decimal("0.00")
    assert everything.transaction_count == 3

    empty = reports.summary(Period("custom", date(2020, 1, 1), date(2020, 1, 31)))
    assert empty.transaction_count == 0
    assert empty.total_income == Decimal("0.00")


def test_cashflow_fills_empty_months(session, owner) -> None:
    _add(session, owner, "Salary", TransactionType.income, "1000", date(2025, 7, 15))

    points = ReportService(session, owner).cashflow("2025-06", 3)

    assert [(p.month, p.income, p.expense, p.net) for p in points] == [
        ("2025-06", Decimal("0.00"), Decimal("0.00"), Decimal("0.00")),
        ("2025-07", Decimal("1000.00"), Decimal("0.00"), Decimal("1000.00")),
        ("2025-08", Decimal("0.00"), Decimal("0.00"), Decimal("0.00")),
    ]


def test_cashflow_spans_year_boundary(session, owner) -> None:
    _add(session, owner, "Rent", TransactionType.expense, "40", date(2025, 1, 31))
    points = ReportService(session, owner).cashflow(date(2024, 11, 20), 3)
    assert [p.month for p in points] == ["2024-11", "2024-12", "2025-01"]
    assert points[-1].net == Decimal("-40.00")


def test_cashflow_defaults_to_window_ending_this_month(session, owner, monkeypatch) -> None:
    monkeypatch.setattr("services.today", lambda: date(2025, 3, 10))
    points = ReportService(session, owner).cashflow()
    assert [p.month for p in points] == [
        "2024-10",
        "2024-11",
        "2024-12",
        "2025-01",
        "2025-02",
        "2025-03",
    ]


def test_cashflow_validates_arguments(session, owner) -> None:
    reports = ReportService(session, owner)
    with pytest.raises(ValidationFailed):
        reports.cashflow("2025-6x", 3)
    with pytest.raises(ValidationFailed):
        reports.cashflow("2025-06", 0)
    with pytest.raises(ValidationFailed):
        reports.cashflow("2025-06", 61)
    # windows running past the last representable month
    with pytest.raises(ValidationFailed):
        reports.cashflow("9999-12", 1)
    with pytest.raises(ValidationFailed):
        reports.cashflow("9999-08", 6)


def test_by_category_sorted_with_percentages(session, owner) -> None:
    _add(session, owner, "Rent", TransactionType.expense, "600", date(2025, 2, 1))
    _add(session, owner, "Groceries", TransactionType.expense, "250", date(2025, 2, 2))
    _add(session, owner, "Groceries", TransactionType.expense, "150", date(2025, 2, 3))
    _add(session, owner, "Salary", TransactionType.income, "5000", date(2025, 2, 1))

    breakdown = ReportService(session, owner).by_category(
        transaction_type=TransactionType.expense
    )

    assert [(d.category_name, d.total, d.percentage) for d in breakdown.data] == [
        ("Rent", Decimal("600.00"), Decimal("60.0")),
        ("Groceries", Decimal("400.00"), Decimal("40.0")),
    ]
    assert breakdown.total == Decimal("1000.00")
    assert breakdown.data[0].category_color == "#ef4444"


def test_by_category_ties_break_by_name(session, owner) -> None:
    _add(session, owner, "Shopping", TransactionType.expense, "10", date(2025, 2, 1))
    _add(session, owner, "Health", TransactionType.expense, "10", date(2025, 2, 1))
    data = ReportService(session, owner).by_category(transaction_type="expense").data
    assert [d.category_name for d in data] == ["Health", "Shopping"]
    assert [d.percentage for d in data] == [Decimal("50.0"), Decimal("50.0")]


def test_by_category_empty_and_invalid_type(session, owner) -> None:
    reports = ReportService(session, owner)
    empty = reports.by_category(Period("custom", date(2025, 1, 1), date(2025, 1, 31)))
    assert empty.data == []
    assert empty.total == Decimal("0.00")
    with pytest.raises(ValidationFailed):
        reports.by_category(transaction_type="transfer")


def test_period_presets() -> None:
    on = date(2025, 3, 15)
    assert resolve_period("all", None, None, on=on) == Period("all", None, None)
    assert resolve_period("this_month", None, None, on=on) == Period(
        "this_month", date(2025, 3, 1), date(2025, 3, 31)
    )
    assert resolve_period("last_month", None, None, on=on) == Period(
        "last_month", date(2025, 2, 1), date(2025, 2, 28)
    )
    assert resolve_period(None, "2025-01-01", None, on=on).start == date(2025, 1, 1)
    with pytest.raises(ValueError):
        resolve_period("custom", "2025-02-01", "2025-01-01", on=on)
    with pytest.raises(ValueError):
        resolve_period("fortnight", None, None, on=on)
