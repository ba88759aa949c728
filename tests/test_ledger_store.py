from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from errors import (
    DuplicateName,
    EmailExists,
    InvalidAccount,
    InvalidCategory,
    NotFound,
    TypeMismatch,
    ValidationFailed,
)
from models import Account, Category, TransactionType
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetIn,
    CategoryIn,
    CategoryUpdate,
    TransactionIn,
    TransactionUpdate,
    parse_input,
)
from services import (
    AccountService,
    BudgetService,
    CategoryService,
    TransactionFilters,
    TransactionService,
    UserService,
)


def _category(session, owner, name):
    return session.scalar(
        select(Category).where(Category.user_id == owner, Category.name == name)
    )


def _account(session, owner, name):
    return session.scalar(
        select(Account).where(Account.user_id == owner, Account.name == name)
    )


def test_register_seeds_system_categories_and_default_accounts(session, owner) -> None:
    categories = CategoryService(session, owner).list_all()
    system = [c for c in categories if c.is_system]
    assert len(system) == 10
    assert sum(1 for c in system if c.type == TransactionType.expense) == 8
    assert sum(1 for c in system if c.type == TransactionType.income) == 2
    # expense sorts before income, names alphabetical within a type
    assert [c.name for c in categories[:3]] == ["Dining Out", "Entertainment", "Groceries"]

    accounts = AccountService(session, owner).list_all()
    assert {a.name for a in accounts} == {"Cash", "Card"}
    assert {a.color for a in accounts} == {"#22c55e", "#3b82f6"}


def test_register_rejects_existing_email_case_insensitive(session, owner) -> None:
    with pytest.raises(EmailExists):
        UserService(session).register("OWNER@example.com", "not-a-hash")


def test_account_names_unique_per_owner_case_insensitive(
    session, owner, intruder
) -> None:
    service = AccountService(session, owner)
    service.create(AccountIn(name="Savings"))
    with pytest.raises(DuplicateName):
        service.create(AccountIn(name="  SAVINGS "))

    # another owner may reuse the name
    AccountService(session, intruder).create(AccountIn(name="Savings"))


def test_account_can_be_renamed_to_case_variant_of_itself(session, owner) -> None:
    service = AccountService(session, owner)
    created = service.create(AccountIn(name="Savings", color="#000000"))
    renamed = service.update(created.id, AccountUpdate(name="SAVINGS"))
    assert renamed.name == "SAVINGS"
    assert renamed.color == "#000000"

    with pytest.raises(DuplicateName):
        service.update(created.id, AccountUpdate(name="cash"))


def test_account_input_validation() -> None:
    with pytest.raises(ValidationFailed):
        parse_input(AccountIn, {"name": "   "})
    with pytest.raises(ValidationFailed):
        parse_input(AccountIn, {"name": "x" * 51})
    with pytest.raises(ValidationFailed, match="color"):
        parse_input(AccountIn, {"name": "Ok", "color": "red"})
    assert parse_input(AccountIn, {"name": "  Trimmed  "}).name == "Trimmed"


def test_category_type_is_fixed_after_creation(session, owner) -> None:
    service = CategoryService(session, owner)
    created = service.create(CategoryIn(name="Pets", type=TransactionType.expense))
    assert created.is_system is False
    assert created.color == "#22c55e"

    payload = parse_input(CategoryUpdate, {"name": "Animals", "type": "income"})
    updated = service.update(created.id, payload)
    assert updated.name == "Animals"
    assert updated.type == TransactionType.expense


def test_category_update_rejects_unknown_fields(session, owner) -> None:
    with pytest.raises(ValidationFailed, match="icon"):
        parse_input(CategoryUpdate, {"name": "Pets", "icon": "paw"})

    service = CategoryService(session, owner)
    created = service.create({"name": "Pets", "type": "expense"})
    with pytest.raises(ValidationFailed):
        service.update(created.id, {"is_system": True})
    assert service.update(created.id, {"type": "income"}).type == TransactionType.expense


def test_services_validate_plain_dict_input(session, owner) -> None:
    accounts = AccountService(session, owner)
    with pytest.raises(ValidationFailed):
        accounts.create({"name": "   "})
    with pytest.raises(ValidationFailed):
        accounts.create({"name": "Extra", "owner": "someone"})
    created = accounts.create({"name": "  Wallet  "})
    assert created.name == "Wallet"
    assert accounts.update(created.id, {"color": "#000000"}).color == "#000000"


def test_category_create_rejects_is_system_flag() -> None:
    with pytest.raises(ValidationFailed):
        parse_input(
            CategoryIn, {"name": "Hack", "type": "expense", "is_system": True}
        )


def test_category_list_counts_transactions(session, owner) -> None:
    groceries = _category(session, owner, "Groceries")
    cash = _account(session, owner, "Cash")
    txns = TransactionService(session, owner)
    for amount in ("1.00", "2.00"):
        txns.create(
            TransactionIn(
                amount=Decimal(amount),
                type=TransactionType.expense,
                txn_date=date(2025, 1, 3),
                category_id=groceries.id,
                account_id=cash.id,
            )
        )
    counts = {c.name: c.transaction_count for c in CategoryService(session, owner).list_all()}
    assert counts["Groceries"] == 2
    assert counts["Rent"] == 0


def test_transaction_create_returns_joined_view(session, owner) -> None:
    groceries = _category(session, owner, "Groceries")
    cash = _account(session, owner, "Cash")
    txn = TransactionService(session, owner).create(
        TransactionIn(
            amount=Decimal("12.34"),
            type=TransactionType.expense,
            txn_date=date(2025, 2, 1),
            category_id=groceries.id,
            account_id=cash.id,
            note="Weekly shop",
            tags=["Food", "food", " Market "],
        )
    )
    assert txn.amount == Decimal("12.34")
    assert txn.currency == "EUR"
    assert txn.category_name == "Groceries"
    assert txn.category_color == "#10b981"
    assert txn.account_name == "Cash"
    assert txn.tags == ["Food", "Market"]


def test_transaction_checks_category_then_type_then_account(
    session, owner, intruder
) -> None:
    groceries = _category(session, owner, "Groceries")
    salary = _category(session, owner, "Salary")
    cash = _account(session, owner, "Cash")
    foreign_account = _account(session, intruder, "Cash")
    foreign_category = _category(session, intruder, "Groceries")
    service = TransactionService(session, owner)

    def attempt(category_id, account_id, txn_type=TransactionType.expense):
        return service.create(
            TransactionIn(
                amount=Decimal("5"),
                type=txn_type,
                txn_date=date(2025, 1, 1),
                category_id=category_id,
                account_id=account_id,
            )
        )

    with pytest.raises(InvalidCategory):
        attempt(foreign_category.id, foreign_account.id)
    with pytest.raises(TypeMismatch) as excinfo:
        attempt(salary.id, foreign_account.id)
    assert excinfo.value.details["required_type"] == "income"
    with pytest.raises(InvalidAccount):
        attempt(groceries.id, foreign_account.id)
    assert attempt(groceries.id, cash.id).amount == Decimal("5.00")


def test_transaction_amount_and_date_validation() -> None:
    base = {
        "type": "expense",
        "txn_date": "2025-01-01",
        "category_id": "00000000-0000-0000-0000-000000000001",
        "account_id": "00000000-0000-0000-0000-000000000002",
    }
    for bad in ("0", "-1", "1.001", "1000000000.00"):
        with pytest.raises(ValidationFailed, match="amount"):
            parse_input(TransactionIn, {**base, "amount": bad})
    with pytest.raises(ValidationFailed, match="future"):
        parse_input(TransactionIn, {**base, "amount": "1", "txn_date": "2999-01-01"})
    with pytest.raises(ValidationFailed):
        parse_input(TransactionIn, {**base, "amount": "1", "note": "x" * 501})
    with pytest.raises(ValidationFailed, match="tags"):
        parse_input(
            TransactionIn, {**base, "amount": "1", "tags": [f"t{i}" for i in range(11)]}
        )
    assert parse_input(TransactionIn, {**base, "amount": "999999999.99"}).amount == Decimal(
        "999999999.99"
    )


def test_transaction_update_is_partial_and_revalidated(session, owner) -> None:
    groceries = _category(session, owner, "Groceries")
    salary = _category(session, owner, "Salary")
    cash = _account(session, owner, "Cash")
    service = TransactionService(session, owner)
    txn = service.create(
        TransactionIn(
            amount=Decimal("10"),
            type=TransactionType.expense,
            txn_date=date(2025, 1, 1),
            category_id=groceries.id,
            account_id=cash.id,
            note="before",
        )
    )

    updated = service.update(txn.id, TransactionUpdate(amount=Decimal("11.50")))
    assert updated.amount == Decimal("11.50")
    assert updated.note == "before"

    with pytest.raises(TypeMismatch):
        service.update(txn.id, TransactionUpdate(category_id=salary.id))

    switched = service.update(
        txn.id, TransactionUpdate(type=TransactionType.income, category_id=salary.id)
    )
    assert switched.type == TransactionType.income
    assert switched.category_name == "Salary"

    with pytest.raises(ValidationFailed):
        parse_input(TransactionUpdate, {})
    with pytest.raises(ValidationFailed):
        parse_input(TransactionUpdate, {"amount": None})


def test_transaction_delete_and_search(session, owner) -> None:
    groceries = _category(session, owner, "Groceries")
    cash = _account(session, owner, "Cash")
    card = _account(session, owner, "Card")
    service = TransactionService(session, owner)
    first = service.create(
        TransactionIn(
            amount=Decimal("3"),
            type=TransactionType.expense,
            txn_date=date(2025, 1, 1),
            category_id=groceries.id,
            account_id=cash.id,
            note="Bakery",
        )
    )
    service.create(
        TransactionIn(
            amount=Decimal("4"),
            type=TransactionType.expense,
            txn_date=date(2025, 1, 5),
            category_id=groceries.id,
            account_id=card.id,
        )
    )

    page = service.search()
    assert page.total == 2
    assert [t.txn_date for t in page.items] == [date(2025, 1, 5), date(2025, 1, 1)]
    assert service.search(TransactionFilters(account_id=cash.id)).total == 1
    assert service.search(TransactionFilters(query="bake")).items[0].id == first.id
    assert service.search(TransactionFilters(start=date(2025, 1, 2))).total == 1

    service.delete(first.id)
    with pytest.raises(NotFound):
        service.delete(first.id)
    with pytest.raises(NotFound):
        service.get(first.id)


def test_budget_lifecycle(session, owner, intruder) -> None:
    groceries = _category(session, owner, "Groceries")
    foreign = _category(session, intruder, "Groceries")
    service = BudgetService(session, owner)

    budget = service.create(
        BudgetIn(category_id=groceries.id, year=2025, month=3, target_amount=Decimal("250"))
    )
    assert budget.target_amount == Decimal("250.00")
    with pytest.raises(DuplicateName):
        service.create(
            BudgetIn(category_id=groceries.id, year=2025, month=3, target_amount=Decimal("1"))
        )
    with pytest.raises(InvalidCategory):
        service.create(
            BudgetIn(category_id=foreign.id, year=2025, month=3, target_amount=Decimal("1"))
        )

    assert [b.id for b in service.list_for(2025, 3)] == [budget.id]
    assert service.list_for(2025, 4) == []
    with pytest.raises(NotFound):
        BudgetService(session, intruder).delete(budget.id)
    service.delete(budget.id)
    assert service.list_for() == []
