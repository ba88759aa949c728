from sqlalchemy.orm import sessionmaker

from schemas import AccountIn
from services import AccountService, UserService


def test_open_read_does_not_block_writers(file_engine) -> None:
    factory = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    with factory() as setup:
        owner = UserService(setup).register("reader@example.com", "not-a-hash").id

    with factory() as reader, factory() as writer:
        before = AccountService(reader, owner).list_all()
        assert reader.in_transaction()

        created = AccountService(writer, owner).create(AccountIn(name="Side"))
        assert created.name == "Side"

        # the stale read snapshot is released before the reader writes
        later = AccountService(reader, owner).create(AccountIn(name="Later"))
        assert later.name == "Later"
        names = {a.name for a in AccountService(reader, owner).list_all()}
        assert {"Side", "Later"} <= names
        assert len(names) == len(before) + 2
