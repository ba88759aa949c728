import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Optional, Sequence, TypeVar

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    StringConstraints,
    ValidationError,
    field_validator,
    model_validator,
)

from errors import ValidationFailed
from models import TransactionType
from money import MAX_AMOUNT, has_two_places
from periods import today

COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"
MAX_NAME_LENGTH = 50
MAX_NOTE_LENGTH = 500
MAX_TAGS = 10
MAX_TAG_LENGTH = 30
MAX_BATCH = 100

_LOC_SOURCES = ("body", "query", "path", "header")

Name = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1, max_length=MAX_NAME_LENGTH),
]
Color = Annotated[str, StringConstraints(pattern=COLOR_PATTERN)]
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_input(schema: type[SchemaT], payload: Any) -> SchemaT:
    """Validate ``payload`` against ``schema``, reporting VALIDATION_ERROR.

    Only the first issue is surfaced, prefixed with the offending field.
    """
    if isinstance(payload, schema):
        return payload
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise validation_failed(exc.errors()) from exc


def validation_failed(issues: Sequence[Any]) -> ValidationFailed:
    if not issues:
        return ValidationFailed()
    first = issues[0]
    loc = ".".join(
        str(part) for part in first.get("loc", ()) if part not in _LOC_SOURCES
    )
    message = str(first.get("msg", "Validation failed"))
    if message.startswith("Value error, "):
        message = message[len("Value error, ") :]
    return ValidationFailed(f"{loc}: {message}" if loc else message)


def _check_amount(value: Decimal) -> Decimal:
    if not value.is_finite() or value <= 0:
        raise ValueError("Amount must be positive")
    if value > MAX_AMOUNT:
        raise ValueError("Amount too large")
    if not has_two_places(value):
        raise ValueError("Amount must have max 2 decimal places")
    return value


def _check_not_future(value: date) -> date:
    if value > today():
        raise ValueError("Transaction date cannot be in the future")
    return value


def _normalize_tags(values: list[str]) -> list[str]:
    if len(values) > MAX_TAGS:
        raise ValueError(f"Maximum {MAX_TAGS} tags")
    clean: list[str] = []
    seen: set[str] = set()
    for raw in values:
        tag = raw.strip()
        if not tag:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tags must be at most {MAX_TAG_LENGTH} characters")
        if tag.lower() in seen:
            continue
        seen.add(tag.lower())
        clean.append(tag)
    return clean


Amount = Annotated[Decimal, AfterValidator(_check_amount)]
TxnDate = Annotated[date, AfterValidator(_check_not_future)]
Tags = Annotated[list[str], AfterValidator(_normalize_tags)]
Note = Annotated[str, StringConstraints(max_length=MAX_NOTE_LENGTH)]


class AccountIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Name
    color: Color = "#6b7280"


class AccountUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[Name] = None
    color: Optional[Color] = None


class CategoryIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Name
    color: Color = "#22c55e"
    type: TransactionType


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[Name] = None
    color: Optional[Color] = None
    # accepted and dropped, type is fixed at creation
    type: Optional[Any] = Field(default=None, exclude=True)


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Amount
    type: TransactionType
    txn_date: TxnDate
    category_id: uuid.UUID
    account_id: uuid.UUID
    note: Optional[Note] = None
    tags: Tags = Field(default_factory=list)


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Optional[Amount] = None
    type: Optional[TransactionType] = None
    txn_date: Optional[TxnDate] = None
    category_id: Optional[uuid.UUID] = None
    account_id: Optional[uuid.UUID] = None
    note: Optional[Note] = None
    tags: Optional[Tags] = None

    @model_validator(mode="after")
    def require_fields(self) -> "TransactionUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        for field in ("amount", "type", "txn_date", "category_id", "account_id"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


class BulkReassignIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ids: list[uuid.UUID] = Field(..., min_length=1, max_length=MAX_BATCH)
    category_id: uuid.UUID


class BulkDeleteIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ids: list[uuid.UUID] = Field(..., min_length=1, max_length=MAX_BATCH)


class BudgetIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: uuid.UUID
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    target_amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT)

    @field_validator("target_amount")
    @classmethod
    def whole_cents(cls, value: Decimal) -> Decimal:
        if not has_two_places(value):
            raise ValueError("Amount must have max 2 decimal places")
        return value


class SignupIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Annotated[
        str,
        StringConstraints(
            strip_whitespace=True,
            to_lower=True,
            max_length=254,
            pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
        ),
    ]
    password: str = Field(..., min_length=8, max_length=72)
    name: Optional[str] = Field(default=None, max_length=100)

    @field_validator("password")
    @classmethod
    def fits_bcrypt(cls, value: str) -> str:
        # bcrypt only looks at the first 72 bytes
        if len(value.encode("utf-8")) > 72:
            raise ValueError("Password must be at most 72 bytes")
        return value


class LoginIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Annotated[str, StringConstraints(strip_whitespace=True, to_lower=True)]
    password: str = Field(..., min_length=1)


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    color: str
    created_at: datetime


class AccountBalanceOut(AccountOut):
    balance: Money
    transaction_count: int


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    color: str
    type: TransactionType
    is_system: bool
    created_at: datetime


class CategoryUsageOut(CategoryOut):
    transaction_count: int


class TransactionOut(BaseModel):
    id: uuid.UUID
    amount: Money
    currency: str
    type: TransactionType
    txn_date: date
    category_id: uuid.UUID
    category_name: str
    category_color: str
    account_id: uuid.UUID
    account_name: str
    note: Optional[str]
    tags: list[str]
    created_at: datetime


class TransactionPage(BaseModel):
    items: list[TransactionOut]
    total: int


class BulkReassignOut(BaseModel):
    updated: int


class BulkDeleteOut(BaseModel):
    deleted: int


class SummaryOut(BaseModel):
    total_income: Money
    total_expense: Money
    net: Money
    transaction_count: int


class CashflowPoint(BaseModel):
    month: str
    income: Money
    expense: Money
    net: Money


class CategoryBreakdownItem(BaseModel):
    category_id: uuid.UUID
    category_name: str
    category_color: str
    total: Money
    percentage: Annotated[
        Decimal, PlainSerializer(float, return_type=float, when_used="json")
    ]


class CategoryBreakdownOut(BaseModel):
    data: list[CategoryBreakdownItem]
    total: Money


class BudgetOut(BaseModel):
    id: uuid.UUID
    category_id: uuid.UUID
    year: int
    month: int
    target_amount: Money


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    name: Optional[str]


class TokenOut(BaseModel):
    token: str
    user: UserOut
