from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings

# Connection execution option marking a transaction that will write.
WRITE_LOCK = "ledger_write_lock"


def configure_engine(eng: Engine) -> Engine:
    """Attach SQLite pragmas and serialized write transactions to ``eng``.

    pysqlite defers BEGIN until the first write, which lets two sessions read
    the same row and then race on the write. Transactions opened through
    :func:`begin_write` start with ``BEGIN IMMEDIATE`` and so hold the write
    lock for their whole check-then-write sequence; every other transaction
    is a plain deferred ``BEGIN`` and only reads a WAL snapshot.
    Non-SQLite engines are returned untouched.
    """
    if eng.dialect.name != "sqlite":
        return eng
    event.listen(eng, "connect", _enable_sqlite_pragmas)
    event.listen(eng, "begin", _begin)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.execute("PRAGMA busy_timeout=5000;")
    cursor.close()


def _begin(conn):
    if conn.get_execution_options().get(WRITE_LOCK):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
    else:
        conn.exec_driver_sql("BEGIN")


def begin_write(session: Session) -> None:
    """Open a write transaction on ``session``.

    A transaction the session holds for reads only is committed first so the
    new one starts with the write lock. A session with pending changes keeps
    its current transaction.
    """
    if session.in_transaction():
        if session.new or session.dirty or session.deleted:
            return
        session.commit()
    session.connection(execution_options={WRITE_LOCK: True})


def _create_engine() -> Engine:
    settings = get_settings()
    connect_args: dict[str, object] = {}
    if settings.database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return configure_engine(
        create_engine(settings.database_url, connect_args=connect_args)
    )


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass

