"""SqlStore — SQLAlchemy ORM adapter for the store contract.

Each harness session wraps its own ORM ``Session``; rows land in a single
``todos`` table. Any SQLAlchemy URL works. For SQLite files the engine is
configured so concurrent writers queue on the busy timeout:

* WAL journal mode, so readers never block writers;
* pysqlite's implicit transaction handling is disabled and every transaction
  starts with an explicit ``BEGIN``, so reads inside it share one snapshot and
  a writer waits on the busy timeout for the write lock;
* ``NullPool``, so each transaction gets a fresh connection owned by the
  calling thread.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from .store import (
    ConstraintViolation,
    InvalidTransactionState,
    Record,
    Session,
    Store,
    StoreError,
    StoreIOError,
    StoreUnavailable,
    Transaction,
    check_key_field,
)

Base = declarative_base()


class Todo(Base):
    __tablename__ = "todos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    is_done = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_todos_title", "title"),
    )

    @classmethod
    def from_record(cls, record: Record) -> Todo:
        return cls(title=record.title, is_done=record.is_done, created_at=record.created_at)

    def to_record(self) -> Record:
        return Record(title=self.title, is_done=self.is_done, created_at=self.created_at)


def _translate(exc: SQLAlchemyError) -> StoreError:
    """Map a SQLAlchemy failure onto the store error taxonomy."""
    if isinstance(exc, IntegrityError):
        return ConstraintViolation(str(exc.orig))
    if isinstance(exc, InterfaceError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        return StoreUnavailable(str(exc))
    if isinstance(exc, DBAPIError):
        return StoreIOError(str(exc.orig))
    return StoreIOError(str(exc))


class SqlStore(Store):
    name = "sql"

    def __init__(
        self,
        url: str,
        *,
        unique_titles: bool = False,
        busy_timeout_s: float = 30.0,
        pool_size: int = 10,
        echo: bool = False,
    ) -> None:
        self.url = make_url(url)
        self.unique_titles = unique_titles
        self._is_sqlite = self.url.get_backend_name() == "sqlite"

        if self._is_sqlite:
            if self.url.database in (None, "", ":memory:"):
                raise ValueError(
                    "In-memory SQLite cannot be shared across sessions; "
                    "use a file URL (sqlite:///todos.db) or the memory store."
                )
            self._engine = create_engine(
                self.url,
                poolclass=NullPool,
                connect_args={"timeout": busy_timeout_s, "check_same_thread": False},
                echo=echo,
            )
            self._install_sqlite_hooks(busy_timeout_s)
        else:
            self._engine = create_engine(
                self.url,
                pool_size=pool_size,
                max_overflow=pool_size * 2,
                pool_pre_ping=True,
                echo=echo,
            )

        self._session_factory = sessionmaker(
            bind=self._engine,
            expire_on_commit=False,
            autoflush=False,
        )

    def _install_sqlite_hooks(self, busy_timeout_s: float) -> None:
        busy_ms = int(busy_timeout_s * 1000)

        @event.listens_for(self._engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute(f"PRAGMA busy_timeout={busy_ms}")
            cursor.close()
            # Transactions are issued explicitly by the "begin" hook below.
            dbapi_connection.isolation_level = None

        @event.listens_for(self._engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    # ------------------------------------------------------------------
    # Store API
    # ------------------------------------------------------------------

    def open_session(self) -> SqlSession:
        return SqlSession(self._session_factory())

    def reset(self) -> None:
        try:
            Base.metadata.drop_all(self._engine)
            Base.metadata.create_all(self._engine)
            if self.unique_titles:
                with self._engine.begin() as conn:
                    conn.execute(text("CREATE UNIQUE INDEX uq_todos_title ON todos (title)"))
        except SQLAlchemyError as e:
            raise _translate(e) from e

    def describe(self) -> str:
        rendered = self.url.render_as_string(hide_password=True)
        return f"{rendered} (unique)" if self.unique_titles else rendered

    def close(self) -> None:
        self._engine.dispose()


class SqlSession(Session):
    def __init__(self, orm) -> None:
        self._orm = orm
        self._current: SqlTransaction | None = None
        self._closed = False

    def begin(self) -> SqlTransaction:
        if self._closed:
            raise StoreUnavailable("Session is closed")
        if self._current is not None and self._current.active:
            raise InvalidTransactionState("Session already has an open transaction")
        try:
            self._orm.begin()
            # Acquire the connection now so lock and connect failures surface
            # here rather than on the first insert.
            self._orm.connection()
        except SQLAlchemyError as e:
            self._discard()
            raise _translate(e) from e
        self._current = SqlTransaction(self._orm)
        return self._current

    def count(self, predicate: Mapping[str, object] | None = None) -> int:
        stmt = select(func.count()).select_from(Todo)
        for key, value in (predicate or {}).items():
            check_key_field(key)
            stmt = stmt.where(getattr(Todo, key) == value)
        return self._read(lambda orm: orm.scalar(stmt))

    def group_count(self, key_field: str) -> dict[object, int]:
        check_key_field(key_field)
        column = getattr(Todo, key_field)
        stmt = select(column, func.count()).group_by(column)
        return self._read(lambda orm: {key: n for key, n in orm.execute(stmt)})

    def sample(self, limit: int = 20) -> list[Record]:
        stmt = select(Todo).order_by(Todo.id).limit(limit)
        return self._read(lambda orm: [t.to_record() for t in orm.scalars(stmt)])

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._orm.close()
        except SQLAlchemyError as e:
            raise _translate(e) from e

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _read(self, query):
        if self._closed:
            raise StoreUnavailable("Session is closed")
        if self._current is not None and self._current.active:
            raise InvalidTransactionState("Cannot read while a transaction is open")
        try:
            return query(self._orm)
        except SQLAlchemyError as e:
            raise _translate(e) from e
        finally:
            # Release the read transaction and its connection.
            self._discard()

    def _discard(self) -> None:
        try:
            self._orm.rollback()
        except SQLAlchemyError:
            pass


class SqlTransaction(Transaction):
    def __init__(self, orm) -> None:
        self._orm = orm
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def insert(self, record: Record) -> None:
        self.insert_many([record])

    def insert_many(self, records: Iterable[Record]) -> None:
        self._check_open()
        self._orm.add_all([Todo.from_record(r) for r in records])
        try:
            self._orm.flush()
        except SQLAlchemyError as e:
            raise _translate(e) from e

    def commit(self) -> None:
        self._check_open()
        try:
            self._orm.commit()
        except SQLAlchemyError as e:
            raise _translate(e) from e
        self._active = False
        self._orm.expunge_all()

    def rollback(self) -> None:
        self._check_open()
        try:
            self._orm.rollback()
        except SQLAlchemyError as e:
            raise _translate(e) from e
        finally:
            self._active = False
            self._orm.expunge_all()

    def _check_open(self) -> None:
        if not self._active:
            raise InvalidTransactionState("Transaction is already closed")
