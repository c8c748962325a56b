"""Expense lifecycle against a real SQLite database.

Every write must leave the group's balances summing to zero, and a failed
write must leave them untouched.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from splitledger.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from splitledger.models.expense import Expense, SplitType
from splitledger.models.expense_split import ExpenseSplit
from splitledger.schemas.expense import ExpenseCreate, ExpenseUpdate, SplitInput
from splitledger.services import balance_store
from splitledger.services.expense_services import (
    create_expense,
    delete_expense,
    get_expense_by_id,
    get_expense_categories,
    list_group_expenses,
    list_user_expenses,
    update_expense,
)

D = Decimal


def _create(group, total="90.00", **kwargs) -> ExpenseCreate:
    return ExpenseCreate(group_id=group.group_id, title="Dinner", total_amount=D(total), **kwargs)


async def _balances(db, group):
    return await balance_store.group_snapshot(db, group.group_id)


async def test_equal_expense_without_splits_covers_all_members(db, group, notifier) -> None:
    expense = await create_expense(db, _create(group, "100.00"), group.alice, notifier=notifier)

    assert [s["amount"] for s in expense["splits"]] == [D("33.34"), D("33.33"), D("33.33")]
    assert expense["paid_by"] == group.alice
    assert expense["currency"] == "INR"

    balances = await _balances(db, group)
    assert balances == {group.alice: D("66.66"), group.bob: D("-33.33"), group.carol: D("-33.33")}
    assert sum(balances.values()) == 0


async def test_notifications_go_to_everyone_but_the_payer(db, group, notifier) -> None:
    expense = await create_expense(db, _create(group, "90.00"), group.alice, notifier=notifier)

    assert sorted(c["recipient"] for c in notifier.calls) == [group.bob, group.carol]
    assert all(c["payer"] == group.alice and c["expense_id"] == expense["id"] for c in notifier.calls)
    assert {c["share"] for c in notifier.calls} == {D("30.00")}


async def test_failing_notifier_does_not_fail_the_expense(db, group, notifier) -> None:
    notifier.fail_for = {group.bob}

    expense = await create_expense(db, _create(group, "90.00"), group.alice, notifier=notifier)

    assert expense["id"]
    assert [c["recipient"] for c in notifier.calls] == [group.carol]
    assert (await _balances(db, group))[group.bob] == D("-30.00")


async def test_exact_expense_with_other_payer(db, group, notifier) -> None:
    data = _create(
        group,
        "100.00",
        paid_by=group.bob,
        split_type=SplitType.EXACT,
        splits=[SplitInput(user_id=group.alice, amount=D("70.00")), SplitInput(user_id=group.carol, amount=D("30.00"))],
    )

    expense = await create_expense(db, data, group.alice, notifier=notifier)

    assert expense["paid_by"] == group.bob
    assert await _balances(db, group) == {group.alice: D("-70.00"), group.bob: D("100.00"), group.carol: D("-30.00")}


async def test_outsider_cannot_add_expense(db, group, notifier) -> None:
    with pytest.raises(ForbiddenError):
        await create_expense(db, _create(group), group.outsider, notifier=notifier)

    assert await _balances(db, group) == {}
    assert (await db.execute(select(func.count(Expense.id)))).scalar_one() == 0
    assert notifier.calls == []


async def test_invalid_split_leaves_nothing_behind(db, group, notifier) -> None:
    data = _create(
        group,
        "100.00",
        split_type=SplitType.PERCENTAGE,
        splits=[SplitInput(user_id=group.alice, percentage=D("50")), SplitInput(user_id=group.bob, percentage=D("49"))],
    )

    with pytest.raises(ValidationError, match="100%"):
        await create_expense(db, data, group.alice, notifier=notifier)

    assert (await db.execute(select(func.count(ExpenseSplit.id)))).scalar_one() == 0
    assert await _balances(db, group) == {}


async def test_payer_must_be_a_member(db, group, notifier) -> None:
    with pytest.raises(ValidationError, match="paid"):
        await create_expense(db, _create(group, paid_by=group.outsider), group.alice, notifier=notifier)


async def test_non_equal_split_without_splits_is_rejected(db, group, notifier) -> None:
    with pytest.raises(ValidationError):
        await create_expense(db, _create(group, split_type=SplitType.SHARES), group.alice, notifier=notifier)


async def test_unknown_group(db, group, notifier) -> None:
    data = ExpenseCreate(group_id=9999, title="Ghost", total_amount=D("10.00"))

    with pytest.raises(NotFoundError):
        await create_expense(db, data, group.alice, notifier=notifier)


async def test_update_amount_rederives_shares_split(db, group, notifier) -> None:
    data = _create(
        group,
        "100.00",
        split_type=SplitType.SHARES,
        splits=[SplitInput(user_id=group.alice, shares=2), SplitInput(user_id=group.bob, shares=1), SplitInput(user_id=group.carol, shares=1)],
    )
    created = await create_expense(db, data, group.alice, notifier=notifier)

    updated = await update_expense(db, created["id"], ExpenseUpdate(total_amount=D("200.00")), group.bob)

    assert {s["user_id"]: s["amount"] for s in updated["splits"]} == {
        group.alice: D("100.00"),
        group.bob: D("50.00"),
        group.carol: D("50.00"),
    }
    assert await _balances(db, group) == {group.alice: D("100.00"), group.bob: D("-50.00"), group.carol: D("-50.00")}


async def test_update_replaces_splits_and_payer(db, group, notifier) -> None:
    created = await create_expense(db, _create(group, "90.00"), group.alice, notifier=notifier)

    changes = ExpenseUpdate(
        title="Dinner and drinks",
        paid_by=group.carol,
        split_type=SplitType.EXACT,
        splits=[SplitInput(user_id=group.alice, amount=D("40.00")), SplitInput(user_id=group.bob, amount=D("50.00"))],
    )
    updated = await update_expense(db, created["id"], changes, group.alice)

    assert updated["title"] == "Dinner and drinks"
    assert updated["paid_by"] == group.carol
    assert [s["user_id"] for s in updated["splits"]] == [group.alice, group.bob]

    balances = await _balances(db, group)
    assert balances == {group.alice: D("-40.00"), group.bob: D("-50.00"), group.carol: D("90.00")}
    assert sum(balances.values()) == 0


async def test_update_title_only_keeps_ledger(db, group, notifier) -> None:
    created = await create_expense(db, _create(group, "90.00"), group.alice, notifier=notifier)
    before = await _balances(db, group)

    updated = await update_expense(db, created["id"], ExpenseUpdate(title="Lunch"), group.bob)

    assert updated["title"] == "Lunch"
    assert await _balances(db, group) == before


async def test_update_exact_amount_without_splits_is_rejected(db, group, notifier) -> None:
    data = _create(
        group,
        "30.00",
        split_type=SplitType.EXACT,
        splits=[SplitInput(user_id=group.alice, amount=D("10.00")), SplitInput(user_id=group.bob, amount=D("20.00"))],
    )
    created = await create_expense(db, data, group.alice, notifier=notifier)
    before = await _balances(db, group)

    with pytest.raises(ValidationError):
        await update_expense(db, created["id"], ExpenseUpdate(total_amount=D("40.00")), group.alice)

    assert await _balances(db, group) == before


async def test_outsider_cannot_update_or_delete(db, group, notifier) -> None:
    created = await create_expense(db, _create(group, "90.00"), group.alice, notifier=notifier)
    before = await _balances(db, group)

    with pytest.raises(ForbiddenError):
        await update_expense(db, created["id"], ExpenseUpdate(total_amount=D("10.00")), group.outsider)
    with pytest.raises(ForbiddenError):
        await delete_expense(db, created["id"], group.outsider)

    assert await _balances(db, group) == before


async def test_create_then_delete_round_trips_to_zero(db, group, notifier) -> None:
    first = await create_expense(db, _create(group, "90.00"), group.alice, notifier=notifier)
    second = await create_expense(db, _create(group, "45.50", paid_by=group.bob), group.bob, notifier=notifier)

    await delete_expense(db, first["id"], group.carol)
    await delete_expense(db, second["id"], group.alice)

    assert set((await _balances(db, group)).values()) == {D("0.00")}
    assert (await db.execute(select(func.count(ExpenseSplit.id)))).scalar_one() == 0


async def test_delete_missing_expense(db, group) -> None:
    with pytest.raises(NotFoundError):
        await delete_expense(db, 4242, group.alice)


async def test_reads(db, group, notifier) -> None:
    created = await create_expense(db, _create(group, "90.00", category="Travel"), group.alice, notifier=notifier)
    await create_expense(db, _create(group, "10.00"), group.bob, notifier=notifier)

    fetched = await get_expense_by_id(db, created["id"], group.carol)
    assert fetched["category"] == "Travel"
    assert fetched["total_amount"] == D("90.00")

    with pytest.raises(ForbiddenError):
        await get_expense_by_id(db, created["id"], group.outsider)

    page, pagination = await list_group_expenses(db, group.group_id, group.alice, page=1, limit=1)
    assert len(page) == 1
    assert (pagination.total, pagination.total_pages) == (2, 2)

    assert len(await list_user_expenses(db, group.carol)) == 2
    assert await list_user_expenses(db, group.outsider) == []
    assert "Other" in get_expense_categories()


async def test_update_locks_balance_rows_in_one_ascending_pass(db, group, notifier, monkeypatch) -> None:
    data = _create(
        group,
        "50.00",
        paid_by=group.bob,
        split_type=SplitType.EXACT,
        splits=[SplitInput(user_id=group.bob, amount=D("25.00")), SplitInput(user_id=group.carol, amount=D("25.00"))],
    )
    created = await create_expense(db, data, group.bob, notifier=notifier)

    touched = []
    original = balance_store.apply_delta

    async def recording_apply_delta(session, user_id, group_id, delta):
        touched.append(user_id)
        return await original(session, user_id, group_id, delta)

    monkeypatch.setattr(balance_store, "apply_delta", recording_apply_delta)

    changes = ExpenseUpdate(total_amount=D("60.00"), split_type=SplitType.EQUAL, splits=[
        SplitInput(user_id=group.alice),
        SplitInput(user_id=group.bob),
        SplitInput(user_id=group.carol),
    ])
    await update_expense(db, created["id"], changes, group.bob)

    assert touched == [group.alice, group.bob, group.carol]
    assert await _balances(db, group) == {group.alice: D("-20.00"), group.bob: D("40.00"), group.carol: D("-20.00")}


async def test_update_leaves_no_transaction_open(db, group, notifier) -> None:
    created = await create_expense(db, _create(group, "90.00"), group.alice, notifier=notifier)

    updated = await update_expense(db, created["id"], ExpenseUpdate(total_amount=D("60.00")), group.bob)

    assert not db.in_transaction()
    assert updated["total_amount"] == D("60.00")
    assert updated["updated_at"] is not None
