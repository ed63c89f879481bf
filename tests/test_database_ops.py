from datetime import date

import pytest
import pytest_asyncio

from database_ops import DatabaseManager, SQLRecordStore
from exceptions import DatabaseError, PartialBatchFailureError, StoreUnavailableError
from models import Budget, Category, CategoryRef, Transaction, TransactionType
from reconciler import BudgetReconciler
from record_store import unwrap_single


@pytest.fixture()
def db_manager(tmp_path):
    """Provide a file-backed SQLite database with tables created."""
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'budgets.db'}")
    manager.create_tables()
    try:
        yield manager
    finally:
        manager.close()


@pytest_asyncio.fixture()
async def sql_store(db_manager):
    """SQL record store seeded with Groceries, Rent (expense) and Salary (income)."""
    store = SQLRecordStore(db_manager)
    for name, category_type in (
        ("Groceries", TransactionType.EXPENSE),
        ("Rent", TransactionType.EXPENSE),
        ("Salary", TransactionType.INCOME),
    ):
        unwrap_single(await store.categories.create(Category(None, name, category_type)), "create category")
    return store


@pytest.mark.asyncio
async def test_categories_round_trip(sql_store):
    expense = await sql_store.categories.list_by_type("expense")
    assert [c.name for c in expense] == ["Groceries", "Rent"]

    matches = await sql_store.categories.find_by_name("Salary", "income")
    assert len(matches) == 1
    assert matches[0].type is TransactionType.INCOME
    assert await sql_store.categories.find_by_name("Salary", "expense") == []


@pytest.mark.asyncio
async def test_duplicate_category_is_a_record_failure(sql_store):
    response = await sql_store.categories.create(Category(None, "Rent", TransactionType.EXPENSE))

    with pytest.raises(PartialBatchFailureError, match="UNIQUE"):
        unwrap_single(response, "create category")


@pytest.mark.asyncio
async def test_same_name_allowed_for_other_type(sql_store):
    created = unwrap_single(
        await sql_store.categories.create(Category(None, "Rent", TransactionType.INCOME)),
        "create category"
    )
    assert created.type is TransactionType.INCOME


@pytest.mark.asyncio
async def test_transactions_by_period_carry_category_names(sql_store):
    groceries = (await sql_store.categories.find_by_name("Groceries"))[0]
    for amount, day in ((-12.5, date(2024, 5, 3)), (-40.0, date(2024, 5, 20)), (-7.0, date(2024, 6, 1))):
        unwrap_single(
            await sql_store.transactions.create(Transaction(None, amount, date=day, category=groceries.id)),
            "create transaction"
        )

    may = await sql_store.transactions.list_by_period("2024-05")

    assert [t.amount for t in may] == [-40.0, -12.5]
    assert may[0].category == CategoryRef(groceries.id, "Groceries")
    assert len(await sql_store.transactions.list_by_category(groceries.id)) == 3


@pytest.mark.asyncio
async def test_budget_create_update_delete(sql_store):
    rent = (await sql_store.categories.find_by_name("Rent"))[0]
    created = unwrap_single(
        await sql_store.budgets.create(Budget(None, "Rent - 2024-05", 1200, "2024-05", 2024, rent.ref())),
        "create budget"
    )
    assert created.category == CategoryRef(rent.id, "Rent")

    updated = unwrap_single(
        await sql_store.budgets.update(created.id, {"monthly_limit": 1100}),
        "update budget"
    )
    assert updated.monthly_limit == 1100.0
    assert updated.name == "Rent - 2024-05"

    found = await sql_store.budgets.find_by_category_and_period(rent.id, "2024-05")
    assert found.id == created.id

    unwrap_single(await sql_store.budgets.delete(created.id), "delete budget")
    assert await sql_store.budgets.get_by_id(created.id) is None


@pytest.mark.asyncio
async def test_budget_update_rejects_unknown_fields(sql_store):
    rent = (await sql_store.categories.find_by_name("Rent"))[0]
    created = unwrap_single(
        await sql_store.budgets.create(Budget(None, "Rent - 2024-05", 1200, "2024-05", 2024, rent.ref())),
        "create budget"
    )

    with pytest.raises(PartialBatchFailureError, match="Unknown budget fields"):
        unwrap_single(await sql_store.budgets.update(created.id, {"Id": 5}), "update budget")
    with pytest.raises(PartialBatchFailureError, match="negative"):
        unwrap_single(await sql_store.budgets.update(created.id, {"monthly_limit": -1}), "update budget")


@pytest.mark.asyncio
async def test_budget_for_unknown_category_fails(sql_store):
    response = await sql_store.budgets.create(Budget(None, "Travel - 2024-05", 100, "2024-05", 2024, CategoryRef(99)))

    with pytest.raises(PartialBatchFailureError, match="not found"):
        unwrap_single(response, "create budget")


@pytest.mark.asyncio
async def test_reconciler_over_sql_store(sql_store):
    reconciler = BudgetReconciler(sql_store.categories, sql_store.budgets, category_type="expense")

    first = await reconciler.upsert("Groceries", 400, "2024-05", 2024)
    second = await reconciler.upsert("Groceries", 425, "2024-05", 2024)

    budgets = await sql_store.budgets.list_by_period("2024-05")
    assert len(budgets) == 1
    assert first.id == second.id
    assert budgets[0].monthly_limit == 425.0
    assert budgets[0].name == "Groceries - 2024-05"


@pytest.mark.asyncio
async def test_missing_tables_mean_store_unavailable():
    manager = DatabaseManager("sqlite://")
    try:
        store = SQLRecordStore(manager)
        with pytest.raises(StoreUnavailableError):
            await store.budgets.list_by_period("2024-05")
    finally:
        manager.close()


@pytest.mark.asyncio
async def test_in_memory_database_is_shared_between_threads():
    manager = DatabaseManager("sqlite://")
    manager.create_tables()
    try:
        store = SQLRecordStore(manager)
        unwrap_single(await store.categories.create(Category(None, "Dining")), "create category")
        assert [c.name for c in await store.categories.list_all()] == ["Dining"]
    finally:
        manager.close()


def test_invalid_connection_string_raises_database_error():
    with pytest.raises(DatabaseError):
        DatabaseManager("not a url")
