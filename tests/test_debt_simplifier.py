"""Greedy settlement plan over net balances."""

from __future__ import annotations

import random
from collections import defaultdict
from decimal import Decimal

from splitledger.core.utils import SettlementInstruction, simplify_debts

D = Decimal


def _settle(balances, transfers):
    result = defaultdict(Decimal, {uid: D(b) for uid, b in balances.items()})
    for t in transfers:
        result[t.from_user_id] += t.amount
        result[t.to_user_id] -= t.amount
    return result


def test_single_creditor_two_debtors() -> None:
    transfers = simplify_debts({"A": D("50"), "B": D("-30"), "C": D("-20")})

    assert transfers == [
        SettlementInstruction("B", "A", D("30.00")),
        SettlementInstruction("C", "A", D("20.00")),
    ]


def test_balanced_group_needs_no_transfers() -> None:
    assert simplify_debts({1: D("0"), 2: D("0.005"), 3: D("-0.004")}) == []
    assert simplify_debts({}) == []


def test_ties_are_broken_by_lowest_id() -> None:
    transfers = simplify_debts({3: D("10"), 1: D("10"), 2: D("-10"), 4: D("-10")})

    assert transfers == [
        SettlementInstruction(2, 1, D("10.00")),
        SettlementInstruction(4, 3, D("10.00")),
    ]


def test_output_is_independent_of_input_order() -> None:
    balances = {1: D("40"), 2: D("-25"), 3: D("15"), 4: D("-30")}
    reordered = dict(reversed(list(balances.items())))

    assert simplify_debts(balances) == simplify_debts(reordered)


def test_random_groups_settle_within_n_minus_one_transfers() -> None:
    rng = random.Random(7)

    for _ in range(200):
        n = rng.randint(2, 8)
        cents = [rng.randint(2, 10000) * rng.choice((-1, 1)) for _ in range(n - 1)]
        cents.append(-sum(cents))
        balances = {uid: D(c) / 100 for uid, c in enumerate(cents, start=1)}

        transfers = simplify_debts(balances)
        non_zero = sum(1 for b in balances.values() if abs(b) > D("0.01"))

        assert len(transfers) <= max(non_zero - 1, 0)
        assert all(t.amount > 0 for t in transfers)
        assert all(abs(v) <= D("0.01") for v in _settle(balances, transfers).values())
