"""
Database operations module for budget, category and transaction storage.

This module handles database connections and schema creation using the
SQLAlchemy ORM, and exposes the tables through the asynchronous record store
contracts. SQLite is the default backend; blocking session work runs in a
worker thread so the event loop keeps cooperating.
"""

import asyncio
import logging
import threading
from datetime import UTC, date, datetime
from typing import Any, Callable, List, Mapping, Optional, TypeVar

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from exceptions import DatabaseError, StoreUnavailableError
from models import Budget, Category, CategoryRef, Transaction, TransactionType, normalize_category_ref
from periods import period_bounds
from record_store import (
    BUDGET_UPDATE_FIELDS,
    BatchResponse,
    BudgetStore,
    CategoryStore,
    RecordStore,
    TransactionStore,
)

# Configure logging
logger = logging.getLogger(__name__)

T = TypeVar("T")


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone awareness.

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(UTC)


# Base class for declarative models
Base = declarative_base()


class CategoryRecord(Base):
    """
    SQLAlchemy model representing a category.

    Attributes:
        id: Auto-incrementing primary key
        name: Display name, unique per type
        type: expense or income
        color: Cosmetic color tag
        is_custom: True for user-created categories
    """

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, index=True)
    type = Column(Enum(TransactionType), nullable=False, index=True)
    color = Column(String(32), nullable=False, default="")
    is_custom = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("name", "type", name="uq_category_name_type"),
    )

    def __repr__(self) -> str:
        return f"<CategoryRecord(id={self.id}, name='{self.name}', type={self.type.value})>"

    def to_model(self) -> Category:
        return Category(
            id=self.id,
            name=self.name,
            type=self.type,
            color=self.color or "",
            is_custom=bool(self.is_custom),
        )


class TransactionRecord(Base):
    """
    SQLAlchemy model representing a transaction.

    Attributes:
        id: Auto-incrementing primary key
        amount: Signed amount (negative for expenses)
        type: expense or income
        description: Free-text description
        date: Occurrence date
        category_id: Foreign key to the category
    """

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    amount = Column(Float, nullable=False)
    type = Column(Enum(TransactionType), nullable=False)
    description = Column(String(500), nullable=False, default="")
    date = Column(Date, nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    category_ref = relationship("CategoryRecord", lazy="joined")

    __table_args__ = (
        Index("idx_category_date", "category_id", "date"),
    )

    def __repr__(self) -> str:
        return f"<TransactionRecord(id={self.id}, date={self.date}, amount={self.amount})>"

    def to_model(self) -> Transaction:
        name = self.category_ref.name if self.category_ref is not None else None
        return Transaction(
            id=self.id,
            amount=self.amount,
            type=self.type,
            description=self.description or "",
            date=self.date,
            category=CategoryRef(id=self.category_id, name=name),
        )


class BudgetRecord(Base):
    """
    SQLAlchemy model representing a monthly budget.

    The (category_id, month) index is deliberately not unique: the
    reconciler serializes upserts per key instead.
    """

    __tablename__ = "budgets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    monthly_limit = Column(Float, nullable=False, default=0.0)
    month = Column(String(7), nullable=False)
    year = Column(Integer, nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    category_ref = relationship("CategoryRecord", lazy="joined")

    __table_args__ = (
        Index("idx_budget_category_month", "category_id", "month"),
    )

    def __repr__(self) -> str:
        return (
            f"<BudgetRecord(id={self.id}, category_id={self.category_id}, "
            f"month='{self.month}', limit={self.monthly_limit})>"
        )

    def to_model(self) -> Budget:
        name = self.category_ref.name if self.category_ref is not None else None
        return Budget(
            id=self.id,
            name=self.name,
            monthly_limit=self.monthly_limit,
            month=self.month,
            year=self.year,
            category=CategoryRef(id=self.category_id, name=name),
        )


class DatabaseManager:
    """
    Manages database connections and sessions.
    """

    def __init__(self, connection_string: str):
        """
        Initialize the database manager.

        Args:
            connection_string: SQLAlchemy connection string (e.g., 'sqlite:///data/budgets.db')

        Raises:
            DatabaseError: If the engine cannot be created
        """
        # serializes session work when every thread shares one connection
        self.connection_lock: Optional[threading.Lock] = None
        try:
            url = make_url(connection_string)
            engine_kwargs: dict = {"echo": False}
            if url.drivername.startswith("sqlite") and url.database in (None, "", ":memory:"):
                # one shared connection so worker threads see the same in-memory database
                engine_kwargs.update(
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
                self.connection_lock = threading.Lock()
            self.engine = create_engine(connection_string, **engine_kwargs)
            self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
            logger.info(f"Database manager initialized with connection: {connection_string}")
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseError("Failed to initialize database", details={"connection": connection_string}, original_error=e)

    def create_tables(self) -> None:
        """
        Create all database tables if they don't exist.

        Raises:
            DatabaseError: If table creation fails
        """
        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created/verified successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise DatabaseError("Failed to create database tables", original_error=e)

    def get_session(self) -> Session:
        """
        Get a new database session.

        Note:
            Caller is responsible for closing the session.
        """
        return self.SessionLocal()

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        self.engine.dispose()
        logger.info("Database connections closed")


class _SQLStoreBase:
    """Runs blocking session work in a thread and maps backend failures."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    async def _run(self, action: str, work: Callable[[Session], T]) -> T:
        return await asyncio.to_thread(self._run_sync, action, work)

    def _run_sync(self, action: str, work: Callable[[Session], T]) -> T:
        lock = self.db_manager.connection_lock
        if lock is None:
            return self._run_session(action, work)
        with lock:
            return self._run_session(action, work)

    def _run_session(self, action: str, work: Callable[[Session], T]) -> T:
        session = self.db_manager.get_session()
        try:
            return work(session)
        except IntegrityError as e:
            session.rollback()
            logger.error(f"Failed to {action}: {e}")
            return BatchResponse.record_failed(str(e.orig))  # type: ignore[return-value]
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to {action}: {e}")
            raise StoreUnavailableError(f"Failed to {action}", details={"action": action}, original_error=e)
        finally:
            session.close()


class SQLCategoryStore(_SQLStoreBase, CategoryStore):

    async def find_by_name(self, name: str, category_type: Optional[str] = None) -> List[Category]:
        wanted_type = TransactionType.parse(category_type) if category_type else None

        def work(session: Session) -> List[Category]:
            query = session.query(CategoryRecord).filter(CategoryRecord.name == name)
            if wanted_type is not None:
                query = query.filter(CategoryRecord.type == wanted_type)
            return [row.to_model() for row in query.order_by(CategoryRecord.id).all()]

        return await self._run("find categories", work)

    async def list_by_type(self, category_type: str) -> List[Category]:
        wanted_type = TransactionType.parse(category_type)

        def work(session: Session) -> List[Category]:
            rows = session.query(CategoryRecord).filter(
                CategoryRecord.type == wanted_type
            ).order_by(CategoryRecord.name).all()
            return [row.to_model() for row in rows]

        return await self._run("list categories", work)

    async def list_all(self) -> List[Category]:
        def work(session: Session) -> List[Category]:
            rows = session.query(CategoryRecord).order_by(CategoryRecord.type, CategoryRecord.name).all()
            return [row.to_model() for row in rows]

        return await self._run("list categories", work)

    async def get_by_id(self, category_id: int) -> Optional[Category]:
        def work(session: Session) -> Optional[Category]:
            row = session.get(CategoryRecord, category_id)
            return row.to_model() if row else None

        return await self._run("get category", work)

    async def create(self, category: Category) -> BatchResponse:
        category_type = TransactionType.parse(category.type)

        def work(session: Session) -> BatchResponse:
            if category_type is None:
                return BatchResponse.record_failed(f"Invalid category type: {category.type}")
            row = CategoryRecord(
                name=category.name,
                type=category_type,
                color=category.color or "",
                is_custom=category.is_custom,
            )
            session.add(row)
            session.commit()
            logger.info(f"Created category '{row.name}' ({category_type.value})")
            return BatchResponse.ok(row.to_model())

        return await self._run("create category", work)

    async def delete(self, category_id: int) -> BatchResponse:
        def work(session: Session) -> BatchResponse:
            row = session.get(CategoryRecord, category_id)
            if row is None:
                return BatchResponse.record_failed(f"Category {category_id} not found")
            session.delete(row)
            session.commit()
            logger.info(f"Deleted category {category_id}")
            return BatchResponse.ok(None)

        return await self._run("delete category", work)


class SQLTransactionStore(_SQLStoreBase, TransactionStore):

    async def list_by_period(self, period_key: str) -> List[Transaction]:
        period_start, period_end = period_bounds(period_key)

        def work(session: Session) -> List[Transaction]:
            rows = session.query(TransactionRecord).filter(
                TransactionRecord.date >= period_start,
                TransactionRecord.date <= period_end
            ).order_by(TransactionRecord.date.desc(), TransactionRecord.id.desc()).all()
            return [row.to_model() for row in rows]

        return await self._run("list transactions", work)

    async def list_by_category(self, category_id: int) -> List[Transaction]:
        def work(session: Session) -> List[Transaction]:
            rows = session.query(TransactionRecord).filter(
                TransactionRecord.category_id == category_id
            ).order_by(TransactionRecord.date.desc(), TransactionRecord.id.desc()).all()
            return [row.to_model() for row in rows]

        return await self._run("list transactions", work)

    async def create(self, transaction: Transaction) -> BatchResponse:
        txn_type = TransactionType.parse(transaction.type)
        category_id = normalize_category_ref(transaction.category).id

        def work(session: Session) -> BatchResponse:
            if txn_type is None:
                return BatchResponse.record_failed(f"Invalid transaction type: {transaction.type}")
            row = TransactionRecord(
                amount=float(transaction.amount),
                type=txn_type,
                description=transaction.description or "",
                date=transaction.date or date.today(),
                category_id=category_id,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return BatchResponse.ok(row.to_model())

        return await self._run("create transaction", work)

    async def delete(self, transaction_id: int) -> BatchResponse:
        def work(session: Session) -> BatchResponse:
            row = session.get(TransactionRecord, transaction_id)
            if row is None:
                return BatchResponse.record_failed(f"Transaction {transaction_id} not found")
            session.delete(row)
            session.commit()
            return BatchResponse.ok(None)

        return await self._run("delete transaction", work)


class SQLBudgetStore(_SQLStoreBase, BudgetStore):

    async def find_by_category_and_period(self, category_id: int, period_key: str) -> Optional[Budget]:
        def work(session: Session) -> Optional[Budget]:
            row = session.query(BudgetRecord).filter(
                BudgetRecord.category_id == category_id,
                BudgetRecord.month == period_key
            ).order_by(BudgetRecord.id).first()
            return row.to_model() if row else None

        return await self._run("find budget", work)

    async def list_by_period(self, period_key: str) -> List[Budget]:
        def work(session: Session) -> List[Budget]:
            rows = session.query(BudgetRecord).filter(
                BudgetRecord.month == period_key
            ).order_by(BudgetRecord.id).all()
            return [row.to_model() for row in rows]

        return await self._run("list budgets", work)

    async def get_by_id(self, budget_id: int) -> Optional[Budget]:
        def work(session: Session) -> Optional[Budget]:
            row = session.get(BudgetRecord, budget_id)
            return row.to_model() if row else None

        return await self._run("get budget", work)

    async def create(self, budget: Budget) -> BatchResponse:
        category_id = normalize_category_ref(budget.category).id

        def work(session: Session) -> BatchResponse:
            if category_id is None or session.get(CategoryRecord, category_id) is None:
                return BatchResponse.record_failed(f"Category {category_id} not found")
            if budget.monthly_limit is None or float(budget.monthly_limit) < 0:
                return BatchResponse.record_failed("monthly_limit must not be negative")
            row = BudgetRecord(
                name=budget.name,
                monthly_limit=float(budget.monthly_limit),
                month=budget.month,
                year=int(budget.year),
                category_id=category_id,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.info(f"Created budget {row.id} '{row.name}': {row.monthly_limit:.2f}")
            return BatchResponse.ok(row.to_model())

        return await self._run("create budget", work)

    async def update(self, budget_id: int, fields: Mapping[str, Any]) -> BatchResponse:
        def work(session: Session) -> BatchResponse:
            unknown = set(fields) - BUDGET_UPDATE_FIELDS
            if unknown:
                return BatchResponse.record_failed(f"Unknown budget fields: {sorted(unknown)}")
            row = session.get(BudgetRecord, budget_id)
            if row is None:
                return BatchResponse.record_failed(f"Budget {budget_id} not found")
            if "monthly_limit" in fields and float(fields["monthly_limit"]) < 0:
                return BatchResponse.record_failed("monthly_limit must not be negative")

            if "name" in fields:
                row.name = fields["name"]
            if "monthly_limit" in fields:
                row.monthly_limit = float(fields["monthly_limit"])
            if "month" in fields:
                row.month = fields["month"]
            if "year" in fields:
                row.year = int(fields["year"])
            if "category" in fields:
                row.category_id = normalize_category_ref(fields["category"]).id

            session.commit()
            session.refresh(row)
            logger.info(f"Updated budget {budget_id}")
            return BatchResponse.ok(row.to_model())

        return await self._run("update budget", work)

    async def delete(self, budget_id: int) -> BatchResponse:
        def work(session: Session) -> BatchResponse:
            row = session.get(BudgetRecord, budget_id)
            if row is None:
                return BatchResponse.record_failed(f"Budget {budget_id} not found")
            session.delete(row)
            session.commit()
            logger.info(f"Deleted budget {budget_id}")
            return BatchResponse.ok(None)

        return await self._run("delete budget", work)


class SQLRecordStore(RecordStore):
    """RecordStore backed by the SQLAlchemy tables above."""

    def __init__(self, db_manager: DatabaseManager):
        super().__init__(
            categories=SQLCategoryStore(db_manager),
            transactions=SQLTransactionStore(db_manager),
            budgets=SQLBudgetStore(db_manager),
        )
        self.db_manager = db_manager
