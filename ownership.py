"""Owner-scoped entity lookup.

Every read or write of an owned row goes through :func:`resolve` (or a query
built from :func:`owned`), so a row that exists but belongs to someone else
is indistinguishable from a row that does not exist.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Optional, Union

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from errors import LedgerError, NotFound
from models import Account, Budget, Category, Transaction

OwnedEntity = Union[Account, Category, Transaction, Budget]


class EntityKind(str, Enum):
    account = "account"
    category = "category"
    transaction = "transaction"
    budget = "budget"


MODELS: dict[EntityKind, type] = {
    EntityKind.account: Account,
    EntityKind.category: Category,
    EntityKind.transaction: Transaction,
    EntityKind.budget: Budget,
}


def owned(kind: EntityKind, owner_id: uuid.UUID) -> Select:
    model = MODELS[kind]
    return select(model).where(model.user_id == owner_id)


def resolve(
    session: Session,
    kind: EntityKind,
    entity_id: Optional[uuid.UUID],
    owner_id: uuid.UUID,
    *,
    lock: bool = False,
) -> Optional[OwnedEntity]:
    if entity_id is None:
        return None
    model = MODELS[kind]
    stmt = owned(kind, owner_id).where(model.id == entity_id)
    if lock:
        stmt = stmt.with_for_update()
    return session.scalar(stmt)


def require(
    session: Session,
    kind: EntityKind,
    entity_id: Optional[uuid.UUID],
    owner_id: uuid.UUID,
    *,
    lock: bool = False,
    error: type[LedgerError] = NotFound,
) -> OwnedEntity:
    entity = resolve(session, kind, entity_id, owner_id, lock=lock)
    if entity is None:
        raise error(f"{kind.value.capitalize()} not found")
    return entity
