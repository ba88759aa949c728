from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterator, Optional, Union

from sqlalchemy import and_, case, delete, extract, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from database import begin_write
from errors import (
    DuplicateName,
    EmailExists,
    HasTransactions,
    InternalError,
    InvalidAccount,
    InvalidCategory,
    InvalidReassign,
    LedgerError,
    NotFound,
    SystemCategory,
    TypeMismatch,
    ValidationFailed,
)
from models import (
    DEFAULT_CURRENCY,
    Account,
    Budget,
    Category,
    Transaction,
    TransactionType,
    User,
)
from money import from_cents, percentage, to_cents
from ownership import EntityKind, owned, require, resolve
from periods import Period, add_months, month_end, month_start, parse_month, today
from schemas import (
    AccountBalanceOut,
    AccountIn,
    AccountOut,
    AccountUpdate,
    BudgetIn,
    BudgetOut,
    BulkDeleteIn,
    BulkReassignIn,
    CashflowPoint,
    CategoryBreakdownItem,
    CategoryBreakdownOut,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    CategoryUsageOut,
    SummaryOut,
    TransactionIn,
    TransactionOut,
    TransactionPage,
    TransactionUpdate,
    parse_input,
)

logger = logging.getLogger(__name__)

MAX_CASHFLOW_MONTHS = 60

SYSTEM_CATEGORIES: list[tuple[str, str, TransactionType]] = [
    ("Groceries", "#10b981", TransactionType.expense),
    ("Dining Out", "#f59e0b", TransactionType.expense),
    ("Transport", "#3b82f6", TransactionType.expense),
    ("Utilities", "#8b5cf6", TransactionType.expense),
    ("Rent", "#ef4444", TransactionType.expense),
    ("Entertainment", "#ec4899", TransactionType.expense),
    ("Health", "#14b8a6", TransactionType.expense),
    ("Shopping", "#f97316", TransactionType.expense),
    ("Salary", "#22c55e", TransactionType.income),
    ("Other Income", "#84cc16", TransactionType.income),
]

DEFAULT_ACCOUNTS: list[tuple[str, str]] = [
    ("Cash", "#22c55e"),
    ("Card", "#3b82f6"),
]

# Income adds to a balance, expense subtracts from it.
SIGNED_CENTS = case(
    (Transaction.type == TransactionType.income, Transaction.amount_cents),
    else_=-Transaction.amount_cents,
)
INCOME_CENTS = case(
    (Transaction.type == TransactionType.income, Transaction.amount_cents), else_=0
)
EXPENSE_CENTS = case(
    (Transaction.type == TransactionType.expense, Transaction.amount_cents), else_=0
)


@contextmanager
def atomic(session: Session, on_conflict: Optional[LedgerError] = None) -> Iterator[None]:
    """Commit the enclosed statements as one unit or roll all of them back.

    Engine errors pass through untouched. A unique/foreign-key violation is
    reported as ``on_conflict`` when given; any other storage failure becomes
    INTERNAL.
    """
    try:
        begin_write(session)
        yield
        session.commit()
    except LedgerError:
        session.rollback()
        raise
    except IntegrityError as exc:
        session.rollback()
        if on_conflict is not None:
            raise on_conflict from exc
        logger.exception("integrity_error: rolled back")
        raise InternalError("Storage constraint violated") from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("storage_error: rolled back")
        raise InternalError("Storage failure, no changes were applied") from exc


def name_key(name: str) -> str:
    return name.strip().lower()


def _as_uuid(value: Union[uuid.UUID, str, None]) -> Optional[uuid.UUID]:
    # an id that does not parse cannot name an existing row
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def seed_system_categories(session: Session, user_id: uuid.UUID) -> int:
    existing = session.scalar(
        select(func.count(Category.id)).where(
            Category.user_id == user_id, Category.is_system.is_(True)
        )
    )
    if existing:
        return 0
    for name, color, txn_type in SYSTEM_CATEGORIES:
        session.add(
            Category(
                user_id=user_id,
                name=name,
                name_key=name_key(name),
                color=color,
                type=txn_type,
                is_system=True,
            )
        )
    session.flush()
    return len(SYSTEM_CATEGORIES)


def seed_default_accounts(session: Session, user_id: uuid.UUID) -> int:
    existing = session.scalar(
        select(func.count(Account.id)).where(Account.user_id == user_id)
    )
    if existing:
        return 0
    for name, color in DEFAULT_ACCOUNTS:
        session.add(
            Account(user_id=user_id, name=name, name_key=name_key(name), color=color)
        )
    session.flush()
    return len(DEFAULT_ACCOUNTS)


def _date_bounds(stmt, start: Optional[date], end: Optional[date]):
    if start is not None:
        stmt = stmt.where(Transaction.txn_date >= start)
    if end is not None:
        stmt = stmt.where(Transaction.txn_date <= end)
    return stmt


@dataclass
class TransactionFilters:
    start: Optional[date] = None
    end: Optional[date] = None
    category_id: Optional[uuid.UUID] = None
    account_id: Optional[uuid.UUID] = None
    type: Optional[TransactionType] = None
    query: Optional[str] = None


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: uuid.UUID) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(User.email == email.strip().lower())
        )

    def register(
        self, email: str, credential_hash: str, name: Optional[str] = None
    ) -> User:
        """Create a user together with the seeded categories and accounts."""
        clean_email = email.strip().lower()
        with atomic(self.session, on_conflict=EmailExists()):
            if self.get_by_email(clean_email) is not None:
                raise EmailExists()
            user = User(email=clean_email, credential_hash=credential_hash, name=name)
            self.session.add(user)
            self.session.flush()
            seed_system_categories(self.session, user.id)
            seed_default_accounts(self.session, user.id)
        logger.info(f"user_registered: user_id={user.id}")
        return user


class AccountService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[AccountOut]:
        stmt = owned(EntityKind.account, self.user_id).order_by(
            Account.created_at, Account.name_key
        )
        return [AccountOut.model_validate(a) for a in self.session.scalars(stmt)]

    def get(self, account_id: uuid.UUID) -> AccountOut:
        account = require(self.session, EntityKind.account, account_id, self.user_id)
        return AccountOut.model_validate(account)

    def create(self, data: Union[AccountIn, dict]) -> AccountOut:
        data = parse_input(AccountIn, data)
        duplicate = DuplicateName("Account name already exists")
        with atomic(self.session, on_conflict=duplicate):
            self._ensure_unique(data.name)
            account = Account(
                user_id=self.user_id,
                name=data.name,
                name_key=name_key(data.name),
                color=data.color,
            )
            self.session.add(account)
            self.session.flush()
            out = AccountOut.model_validate(account)
        logger.info(f"account_created: user_id={self.user_id} account_id={out.id}")
        return out

    def update(
        self, account_id: uuid.UUID, data: Union[AccountUpdate, dict]
    ) -> AccountOut:
        data = parse_input(AccountUpdate, data)
        duplicate = DuplicateName("Account name already exists")
        with atomic(self.session, on_conflict=duplicate):
            account = require(
                self.session, EntityKind.account, account_id, self.user_id, lock=True
            )
            if data.name is not None:
                self._ensure_unique(data.name, exclude_id=account.id)
                account.name = data.name
                account.name_key = name_key(data.name)
            if data.color is not None:
                account.color = data.color
            self.session.flush()
            out = AccountOut.model_validate(account)
        logger.info(f"account_updated: user_id={self.user_id} account_id={out.id}")
        return out

    def _ensure_unique(self, name: str, exclude_id: Optional[uuid.UUID] = None) -> None:
        stmt = select(Account.id).where(
            Account.user_id == self.user_id, Account.name_key == name_key(name)
        )
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            logger.warning(f"account_duplicate_name: user_id={self.user_id}")
            raise DuplicateName("Account name already exists")


class CategoryService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[CategoryUsageOut]:
        stmt = (
            select(Category, func.count(Transaction.id).label("transaction_count"))
            .outerjoin(
                Transaction,
                and_(
                    Transaction.category_id == Category.id,
                    Transaction.user_id == self.user_id,
                ),
            )
            .where(Category.user_id == self.user_id)
            .group_by(Category.id)
            .order_by(Category.type, Category.name_key)
        )
        return [
            CategoryUsageOut(
                **CategoryOut.model_validate(row.Category).model_dump(),
                transaction_count=int(row.transaction_count or 0),
            )
            for row in self.session.execute(stmt)
        ]

    def get(self, category_id: uuid.UUID) -> CategoryOut:
        category = require(
            self.session, EntityKind.category, category_id, self.user_id
        )
        return CategoryOut.model_validate(category)

    def create(self, data: Union[CategoryIn, dict]) -> CategoryOut:
        data = parse_input(CategoryIn, data)
        duplicate = DuplicateName("Category name already exists")
        with atomic(self.session, on_conflict=duplicate):
            self._ensure_unique(data.name)
            category = Category(
                user_id=self.user_id,
                name=data.name,
                name_key=name_key(data.name),
                color=data.color,
                type=data.type,
                is_system=False,
            )
            self.session.add(category)
            self.session.flush()
            out = CategoryOut.model_validate(category)
        logger.info(f"category_created: user_id={self.user_id} category_id={out.id}")
        return out

    def update(
        self, category_id: uuid.UUID, data: Union[CategoryUpdate, dict]
    ) -> CategoryOut:
        data = parse_input(CategoryUpdate, data)
        duplicate = DuplicateName("Category name already exists")
        with atomic(self.session, on_conflict=duplicate):
            category = require(
                self.session, EntityKind.category, category_id, self.user_id, lock=True
            )
            if data.name is not None:
                self._ensure_unique(data.name, exclude_id=category.id)
                category.name = data.name
                category.name_key = name_key(data.name)
            if data.color is not None:
                category.color = data.color
            self.session.flush()
            out = CategoryOut.model_validate(category)
        logger.info(f"category_updated: user_id={self.user_id} category_id={out.id}")
        return out

    def _ensure_unique(self, name: str, exclude_id: Optional[uuid.UUID] = None) -> None:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id, Category.name_key == name_key(name)
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            logger.warning(f"category_duplicate_name: user_id={self.user_id}")
            raise DuplicateName("Category name already exists")


class TransactionService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def _view_stmt(self):
        return (
            select(
                Transaction,
                Category.name.label("category_name"),
                Category.color.label("category_color"),
                Account.name.label("account_name"),
            )
            .join(Category, Category.id == Transaction.category_id)
            .join(Account, Account.id == Transaction.account_id)
            .where(Transaction.user_id == self.user_id)
        )

    @staticmethod
    def _to_view(row) -> TransactionOut:
        txn: Transaction = row.Transaction
        return TransactionOut(
            id=txn.id,
            amount=from_cents(txn.amount_cents),
            currency=txn.currency,
            type=txn.type,
            txn_date=txn.txn_date,
            category_id=txn.category_id,
            category_name=row.category_name,
            category_color=row.category_color,
            account_id=txn.account_id,
            account_name=row.account_name,
            note=txn.note,
            tags=list(txn.tags or []),
            created_at=txn.created_at,
        )

    def get(self, transaction_id: uuid.UUID) -> TransactionOut:
        row = self.session.execute(
            self._view_stmt().where(Transaction.id == transaction_id)
        ).first()
        if row is None:
            raise NotFound("Transaction not found")
        return self._to_view(row)

    def search(
        self,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> TransactionPage:
        filters = filters or TransactionFilters()
        conditions = []
        if filters.category_id:
            conditions.append(Transaction.category_id == filters.category_id)
        if filters.account_id:
            conditions.append(Transaction.account_id == filters.account_id)
        if filters.type:
            conditions.append(Transaction.type == filters.type)
        if filters.query:
            like = f"%{filters.query.lower()}%"
            conditions.append(func.lower(func.coalesce(Transaction.note, "")).like(like))

        stmt = _date_bounds(self._view_stmt(), filters.start, filters.end)
        stmt = (
            stmt.where(*conditions)
            .order_by(
                Transaction.txn_date.desc(),
                Transaction.created_at.desc(),
                Transaction.id,
            )
            .offset(offset)
            .limit(limit)
        )
        count_stmt = _date_bounds(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == self.user_id, *conditions
            ),
            filters.start,
            filters.end,
        )
        items = [self._to_view(row) for row in self.session.execute(stmt)]
        total = int(self.session.scalar(count_stmt) or 0)
        return TransactionPage(items=items, total=total)

    def create(self, data: Union[TransactionIn, dict]) -> TransactionOut:
        data = parse_input(TransactionIn, data)
        with atomic(self.session):
            category = require(
                self.session,
                EntityKind.category,
                data.category_id,
                self.user_id,
                lock=True,
                error=InvalidCategory,
            )
            if category.type != data.type:
                logger.warning(
                    f"transaction_type_mismatch: user_id={self.user_id} "
                    f"category_type={category.type.value} txn_type={data.type.value}"
                )
                raise TypeMismatch(category.type.value)
            require(
                self.session,
                EntityKind.account,
                data.account_id,
                self.user_id,
                lock=True,
                error=InvalidAccount,
            )
            txn = Transaction(
                user_id=self.user_id,
                amount_cents=to_cents(data.amount),
                currency=DEFAULT_CURRENCY,
                type=data.type,
                txn_date=data.txn_date,
                category_id=data.category_id,
                account_id=data.account_id,
                note=data.note,
                tags=list(data.tags),
            )
            self.session.add(txn)
            self.session.flush()
            txn_id = txn.id
        logger.info(f"transaction_created: user_id={self.user_id} transaction_id={txn_id}")
        return self.get(txn_id)

    def update(
        self, transaction_id: uuid.UUID, data: Union[TransactionUpdate, dict]
    ) -> TransactionOut:
        data = parse_input(TransactionUpdate, data)
        fields = data.model_fields_set
        with atomic(self.session):
            txn = require(
                self.session,
                EntityKind.transaction,
                transaction_id,
                self.user_id,
                lock=True,
            )
            new_type = data.type if "type" in fields else txn.type
            category_id = data.category_id if "category_id" in fields else txn.category_id
            category = require(
                self.session,
                EntityKind.category,
                category_id,
                self.user_id,
                lock=True,
                error=InvalidCategory,
            )
            if category.type != new_type:
                logger.warning(
                    f"transaction_type_mismatch: user_id={self.user_id} "
                    f"transaction_id={transaction_id}"
                )
                raise TypeMismatch(category.type.value)
            if "account_id" in fields:
                require(
                    self.session,
                    EntityKind.account,
                    data.account_id,
                    self.user_id,
                    lock=True,
                    error=InvalidAccount,
                )
                txn.account_id = data.account_id

            txn.type = new_type
            txn.category_id = category.id
            if "amount" in fields:
                txn.amount_cents = to_cents(data.amount)
            if "txn_date" in fields:
                txn.txn_date = data.txn_date
            if "note" in fields:
                txn.note = data.note
            if "tags" in fields:
                txn.tags = list(data.tags or [])
            self.session.flush()
        logger.info(
            f"transaction_updated: user_id={self.user_id} transaction_id={transaction_id}"
        )
        return self.get(transaction_id)

    def delete(self, transaction_id: uuid.UUID) -> None:
        with atomic(self.session):
            result = self.session.execute(
                delete(Transaction).where(
                    Transaction.id == transaction_id,
                    Transaction.user_id == self.user_id,
                )
            )
            if result.rowcount == 0:
                raise NotFound("Transaction not found")
        logger.info(
            f"transaction_deleted: user_id={self.user_id} transaction_id={transaction_id}"
        )


class ReassignmentService:
    """Deletes accounts and categories, moving their transactions first.

    The whole sequence (resolve, system check, count, target check, re-point,
    delete) runs inside one storage transaction with the source and target
    rows locked, so a concurrent delete of either side cannot interleave.
    """

    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def delete_account(
        self,
        account_id: uuid.UUID,
        reassign_to: Union[uuid.UUID, str, None] = None,
    ) -> int:
        return self._delete(EntityKind.account, account_id, reassign_to)

    def delete_category(
        self,
        category_id: uuid.UUID,
        reassign_to: Union[uuid.UUID, str, None] = None,
    ) -> int:
        return self._delete(EntityKind.category, category_id, reassign_to)

    @staticmethod
    def _link_column(kind: EntityKind):
        if kind == EntityKind.account:
            return Transaction.account_id
        return Transaction.category_id

    def _delete(
        self,
        kind: EntityKind,
        entity_id: uuid.UUID,
        reassign_to: Union[uuid.UUID, str, None],
    ) -> int:
        column = self._link_column(kind)
        with atomic(self.session):
            source = require(self.session, kind, entity_id, self.user_id, lock=True)
            if kind == EntityKind.category and source.is_system:
                logger.warning(
                    f"system_category_delete_rejected: user_id={self.user_id} "
                    f"category_id={entity_id}"
                )
                raise SystemCategory()

            count = int(
                self.session.scalar(
                    select(func.count(Transaction.id)).where(
                        Transaction.user_id == self.user_id, column == source.id
                    )
                )
                or 0
            )
            moved = 0
            if count > 0:
                if reassign_to is None:
                    logger.warning(
                        f"{kind.value}_has_transactions: user_id={self.user_id} "
                        f"{kind.value}_id={entity_id} count={count}"
                    )
                    raise HasTransactions(
                        count,
                        f"{kind.value.capitalize()} has transactions. "
                        "Provide reassign_to.",
                    )
                target = resolve(
                    self.session, kind, _as_uuid(reassign_to), self.user_id, lock=True
                )
                if (
                    target is None
                    or target.id == source.id
                    or (kind == EntityKind.category and target.type != source.type)
                ):
                    logger.warning(
                        f"{kind.value}_invalid_reassign: user_id={self.user_id} "
                        f"{kind.value}_id={entity_id} reassign_to={reassign_to}"
                    )
                    raise InvalidReassign(f"Target {kind.value} not found")
                moved = self._reassign_transactions(column, source.id, target.id)
            self._delete_entity(kind, source.id)
        logger.info(
            f"{kind.value}_deleted: user_id={self.user_id} {kind.value}_id={entity_id} "
            f"reassign_to={reassign_to if moved else None} moved={moved}"
        )
        return moved

    def _reassign_transactions(
        self, column, source_id: uuid.UUID, target_id: uuid.UUID
    ) -> int:
        result = self.session.execute(
            update(Transaction)
            .where(Transaction.user_id == self.user_id, column == source_id)
            .values({column.key: target_id})
        )
        return int(result.rowcount or 0)

    def _delete_entity(self, kind: EntityKind, entity_id: uuid.UUID) -> None:
        if kind == EntityKind.category:
            self.session.execute(
                delete(Budget).where(
                    Budget.user_id == self.user_id, Budget.category_id == entity_id
                )
            )
        model = Account if kind == EntityKind.account else Category
        result = self.session.execute(
            delete(model).where(model.id == entity_id, model.user_id == self.user_id)
        )
        if result.rowcount == 0:
            # Lost the race against another delete of the same row.
            raise NotFound(f"{kind.value.capitalize()} not found")


class BulkTransactionService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def reassign_category(self, data: Union[BulkReassignIn, dict]) -> int:
        """Move a batch of transactions to one category, all or nothing.

        Ids that do not resolve to an owned transaction are skipped. If any
        owned transaction has a type different from the target category the
        whole batch is rejected, naming the first offender in request order.
        Returns the number of transactions whose category actually changed.
        """
        data = parse_input(BulkReassignIn, data)
        ids = list(dict.fromkeys(data.ids))
        with atomic(self.session):
            target = require(
                self.session,
                EntityKind.category,
                data.category_id,
                self.user_id,
                lock=True,
                error=InvalidCategory,
            )
            rows = self.session.execute(
                select(Transaction.id, Transaction.type)
                .where(Transaction.user_id == self.user_id, Transaction.id.in_(ids))
                .with_for_update()
            ).all()
            types = {row.id: row.type for row in rows}
            for txn_id in ids:
                txn_type = types.get(txn_id)
                if txn_type is not None and txn_type != target.type:
                    logger.warning(
                        f"bulk_reassign_type_mismatch: user_id={self.user_id} "
                        f"transaction_id={txn_id} required={target.type.value}"
                    )
                    raise TypeMismatch(target.type.value, transaction_id=str(txn_id))

            result = self.session.execute(
                update(Transaction)
                .where(
                    Transaction.user_id == self.user_id,
                    Transaction.id.in_(ids),
                    Transaction.type == target.type,
                    Transaction.category_id != target.id,
                )
                .values(category_id=target.id)
            )
            updated = int(result.rowcount or 0)
        logger.info(
            f"bulk_reassign: user_id={self.user_id} category_id={target.id} "
            f"requested={len(ids)} updated={updated}"
        )
        return updated

    def delete(self, data: Union[BulkDeleteIn, dict]) -> int:
        data = parse_input(BulkDeleteIn, data)
        ids = list(dict.fromkeys(data.ids))
        with atomic(self.session):
            result = self.session.execute(
                delete(Transaction).where(
                    Transaction.user_id == self.user_id, Transaction.id.in_(ids)
                )
            )
            deleted = int(result.rowcount or 0)
        logger.info(
            f"bulk_delete: user_id={self.user_id} requested={len(ids)} deleted={deleted}"
        )
        return deleted


class BalanceService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def balance(self, account_id: uuid.UUID) -> Decimal:
        require(self.session, EntityKind.account, account_id, self.user_id)
        cents = self.session.scalar(
            select(func.coalesce(func.sum(SIGNED_CENTS), 0)).where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
            )
        )
        return from_cents(int(cents or 0))

    def accounts_with_balances(self) -> list[AccountBalanceOut]:
        stmt = (
            select(
                Account,
                func.count(Transaction.id).label("transaction_count"),
                func.coalesce(func.sum(SIGNED_CENTS), 0).label("balance_cents"),
            )
            .outerjoin(
                Transaction,
                and_(
                    Transaction.account_id == Account.id,
                    Transaction.user_id == self.user_id,
                ),
            )
            .where(Account.user_id == self.user_id)
            .group_by(Account.id)
            .order_by(Account.created_at.asc(), Account.name_key.asc())
        )
        return [
            AccountBalanceOut(
                **AccountOut.model_validate(row.Account).model_dump(),
                balance=from_cents(int(row.balance_cents or 0)),
                transaction_count=int(row.transaction_count or 0),
            )
            for row in self.session.execute(stmt)
        ]


class ReportService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    def summary(self, period: Optional[Period] = None) -> SummaryOut:
        period = period or Period("all", None, None)
        stmt = _date_bounds(
            select(
                func.coalesce(func.sum(INCOME_CENTS), 0).label("income"),
                func.coalesce(func.sum(EXPENSE_CENTS), 0).label("expense"),
                func.count(Transaction.id).label("transaction_count"),
            ).where(Transaction.user_id == self.user_id),
            period.start,
            period.end,
        )
        row = self.session.execute(stmt).one()
        income = int(row.income or 0)
        expense = int(row.expense or 0)
        return SummaryOut(
            total_income=from_cents(income),
            total_expense=from_cents(expense),
            net=from_cents(income - expense),
            transaction_count=int(row.transaction_count or 0),
        )

    def cashflow(
        self, start: Union[str, date, None] = None, months: int = 6
    ) -> list[CashflowPoint]:
        """Income, expense and net per calendar month, gaps filled with zeros."""
        if not isinstance(months, int) or not 1 <= months <= MAX_CASHFLOW_MONTHS:
            raise ValidationFailed(
                f"months must be between 1 and {MAX_CASHFLOW_MONTHS}"
            )
        if start is None:
            first = add_months(month_start(today()), -(months - 1))
        elif isinstance(start, date):
            first = month_start(start)
        else:
            try:
                first = parse_month(start)
            except ValueError as exc:
                raise ValidationFailed(str(exc)) from exc
        try:
            buckets = [add_months(first, offset) for offset in range(months)]
            window_end = month_end(buckets[-1])
        except ValueError as exc:
            raise ValidationFailed(
                "Cashflow window is outside the supported date range"
            ) from exc

        year = extract("year", Transaction.txn_date).label("year")
        month = extract("month", Transaction.txn_date).label("month")
        stmt = _date_bounds(
            select(
                year,
                month,
                func.coalesce(func.sum(INCOME_CENTS), 0).label("income"),
                func.coalesce(func.sum(EXPENSE_CENTS), 0).label("expense"),
            ).where(Transaction.user_id == self.user_id),
            buckets[0],
            window_end,
        ).group_by(year, month)

        totals: dict[tuple[int, int], tuple[int, int]] = {}
        for row in self.session.execute(stmt):
            totals[(int(row.year), int(row.month))] = (
                int(row.income or 0),
                int(row.expense or 0),
            )

        out: list[CashflowPoint] = []
        for bucket in buckets:
            income, expense = totals.get((bucket.year, bucket.month), (0, 0))
            out.append(
                CashflowPoint(
                    month=f"{bucket.year:04d}-{bucket.month:02d}",
                    income=from_cents(income),
                    expense=from_cents(expense),
                    net=from_cents(income - expense),
                )
            )
        return out

    def by_category(
        self,
        period: Optional[Period] = None,
        transaction_type: Union[str, TransactionType, None] = None,
    ) -> CategoryBreakdownOut:
        period = period or Period("all", None, None)
        if transaction_type is not None and not isinstance(
            transaction_type, TransactionType
        ):
            try:
                transaction_type = TransactionType(transaction_type)
            except ValueError as exc:
                raise ValidationFailed("Type must be expense or income") from exc

        total_cents = func.sum(Transaction.amount_cents)
        stmt = _date_bounds(
            select(
                Category.id.label("category_id"),
                Category.name.label("name"),
                Category.name_key.label("name_key"),
                Category.color.label("color"),
                total_cents.label("total"),
            )
            .join(Category, Category.id == Transaction.category_id)
            .where(Transaction.user_id == self.user_id),
            period.start,
            period.end,
        ).group_by(Category.id, Category.name, Category.name_key, Category.color)
        if transaction_type is not None:
            stmt = stmt.where(Transaction.type == transaction_type)

        rows = [row for row in self.session.execute(stmt) if int(row.total or 0) > 0]
        grand_total = sum(int(row.total) for row in rows)
        if grand_total == 0:
            return CategoryBreakdownOut(data=[], total=from_cents(0))

        rows.sort(key=lambda r: (-int(r.total), r.name_key, str(r.category_id)))
        data = [
            CategoryBreakdownItem(
                category_id=row.category_id,
                category_name=row.name,
                category_color=row.color,
                total=from_cents(int(row.total)),
                percentage=percentage(int(row.total), grand_total),
            )
            for row in rows
        ]
        return CategoryBreakdownOut(data=data, total=from_cents(grand_total))


class BudgetService:
    def __init__(self, session: Session, user_id: uuid.UUID) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def _to_out(budget: Budget) -> BudgetOut:
        return BudgetOut(
            id=budget.id,
            category_id=budget.category_id,
            year=budget.year,
            month=budget.month,
            target_amount=from_cents(budget.target_cents),
        )

    def list_for(
        self, year: Optional[int] = None, month: Optional[int] = None
    ) -> list[BudgetOut]:
        stmt = owned(EntityKind.budget, self.user_id).order_by(
            Budget.year, Budget.month, Budget.created_at
        )
        if year is not None:
            stmt = stmt.where(Budget.year == year)
        if month is not None:
            stmt = stmt.where(Budget.month == month)
        return [self._to_out(b) for b in self.session.scalars(stmt)]

    def get(self, budget_id: uuid.UUID) -> BudgetOut:
        return self._to_out(
            require(self.session, EntityKind.budget, budget_id, self.user_id)
        )

    def create(self, data: Union[BudgetIn, dict]) -> BudgetOut:
        data = parse_input(BudgetIn, data)
        duplicate = DuplicateName("Budget already exists for this category and month")
        with atomic(self.session, on_conflict=duplicate):
            require(
                self.session,
                EntityKind.category,
                data.category_id,
                self.user_id,
                lock=True,
                error=InvalidCategory,
            )
            existing = self.session.scalar(
                select(Budget.id).where(
                    Budget.user_id == self.user_id,
                    Budget.category_id == data.category_id,
                    Budget.year == data.year,
                    Budget.month == data.month,
                )
            )
            if existing is not None:
                raise duplicate
            budget = Budget(
                user_id=self.user_id,
                category_id=data.category_id,
                year=data.year,
                month=data.month,
                target_cents=to_cents(data.target_amount),
            )
            self.session.add(budget)
            self.session.flush()
            out = self._to_out(budget)
        logger.info(f"budget_created: user_id={self.user_id} budget_id={out.id}")
        return out

    def delete(self, budget_id: uuid.UUID) -> None:
        with atomic(self.session):
            result = self.session.execute(
                delete(Budget).where(
                    Budget.id == budget_id, Budget.user_id == self.user_id
                )
            )
            if result.rowcount == 0:
                raise NotFound("Budget not found")
        logger.info(f"budget_deleted: user_id={self.user_id} budget_id={budget_id}")
