"""Split validation and allocation rules."""

from __future__ import annotations

from decimal import Decimal

import pytest

from splitledger.core.exceptions import ValidationError
from splitledger.models.expense import SplitType
from splitledger.services.split_validator import (
    SplitLine,
    absorb_residual,
    allocate,
    equal_splits,
    resolve_split_amounts,
    validate_splits,
)

D = Decimal
MEMBERS = [1, 2, 3]


def test_equal_split_of_100_between_three() -> None:
    lines = equal_splits(D("100.00"), MEMBERS)

    assert [l.amount for l in lines] == [D("33.34"), D("33.33"), D("33.33")]
    validate_splits(D("100.00"), SplitType.EQUAL, lines, MEMBERS)


def test_equal_split_that_drops_a_cent_is_rejected() -> None:
    lines = [SplitLine(uid, amount=D("33.33")) for uid in MEMBERS]

    with pytest.raises(ValidationError):
        validate_splits(D("100.00"), SplitType.EQUAL, lines, MEMBERS)


def test_equal_split_with_uneven_amounts_is_rejected() -> None:
    lines = [SplitLine(1, amount=D("50.00")), SplitLine(2, amount=D("30.00")), SplitLine(3, amount=D("20.00"))]

    with pytest.raises(ValidationError, match="Equal split"):
        validate_splits(D("100.00"), SplitType.EQUAL, lines, MEMBERS)


def test_equal_split_without_members_is_rejected() -> None:
    with pytest.raises(ValidationError, match="No active members"):
        equal_splits(D("10.00"), [])


@pytest.mark.parametrize(
    "percentages, ok",
    [
        (("50", "30", "19.5"), False),
        (("50", "30", "20.5"), False),
        (("50", "30", "20"), True),
        (("33.33", "33.33", "33.34"), True),
    ],
)
def test_percentages_must_sum_to_100(percentages, ok) -> None:
    lines = [SplitLine(uid, percentage=D(p)) for uid, p in zip(MEMBERS, percentages)]
    lines = resolve_split_amounts(D("200.00"), SplitType.PERCENTAGE, lines)

    if ok:
        validate_splits(D("200.00"), SplitType.PERCENTAGE, lines, MEMBERS)
    else:
        with pytest.raises(ValidationError, match="100%"):
            validate_splits(D("200.00"), SplitType.PERCENTAGE, lines, MEMBERS)


def test_percentage_split_requires_percentages() -> None:
    lines = [SplitLine(1, amount=D("50.00")), SplitLine(2, amount=D("50.00"))]

    with pytest.raises(ValidationError, match="Percentage is required"):
        validate_splits(D("100.00"), SplitType.PERCENTAGE, lines, MEMBERS)


def test_shares_split_follows_share_ratio() -> None:
    lines = [SplitLine(1, shares=2), SplitLine(2, shares=1), SplitLine(3, shares=1)]
    lines = resolve_split_amounts(D("100.00"), SplitType.SHARES, lines)

    assert {l.user_id: l.amount for l in lines} == {1: D("50.00"), 2: D("25.00"), 3: D("25.00")}
    validate_splits(D("100.00"), SplitType.SHARES, lines, MEMBERS)


def test_shares_split_with_wrong_amounts_is_rejected() -> None:
    lines = [
        SplitLine(1, amount=D("40.00"), shares=2),
        SplitLine(2, amount=D("30.00"), shares=1),
        SplitLine(3, amount=D("30.00"), shares=1),
    ]

    with pytest.raises(ValidationError, match="Shares-based"):
        validate_splits(D("100.00"), SplitType.SHARES, lines, MEMBERS)


def test_exact_split_must_sum_to_total() -> None:
    lines = [SplitLine(1, amount=D("60.00")), SplitLine(2, amount=D("30.00"))]

    with pytest.raises(ValidationError, match="sum to total"):
        validate_splits(D("100.00"), SplitType.EXACT, lines, MEMBERS)

    lines.append(SplitLine(3, amount=D("10.00")))
    validate_splits(D("100.00"), SplitType.EXACT, lines, MEMBERS)


def test_exact_split_within_tolerance_is_accepted_and_absorbed() -> None:
    lines = [SplitLine(1, amount=D("33.33")), SplitLine(2, amount=D("33.33")), SplitLine(3, amount=D("33.33"))]

    validate_splits(D("100.00"), SplitType.EXACT, lines, MEMBERS)
    absorbed = absorb_residual(D("100.00"), lines)

    assert absorbed[0].amount == D("33.34")
    assert sum(l.amount for l in absorbed) == D("100.00")


def test_non_member_participant_is_rejected() -> None:
    lines = [SplitLine(1, amount=D("50.00")), SplitLine(99, amount=D("50.00"))]

    with pytest.raises(ValidationError, match="User 99 is not a group member"):
        validate_splits(D("100.00"), SplitType.EXACT, lines, MEMBERS)


def test_duplicate_participant_is_rejected() -> None:
    lines = [SplitLine(1, amount=D("50.00")), SplitLine(1, amount=D("50.00"))]

    with pytest.raises(ValidationError, match="Duplicate"):
        validate_splits(D("100.00"), SplitType.EXACT, lines, MEMBERS)


def test_negative_amount_is_rejected() -> None:
    lines = [SplitLine(1, amount=D("110.00")), SplitLine(2, amount=D("-10.00"))]

    with pytest.raises(ValidationError, match="negative"):
        validate_splits(D("100.00"), SplitType.EXACT, lines, MEMBERS)


def test_exact_split_needs_every_amount() -> None:
    with pytest.raises(ValidationError):
        resolve_split_amounts(D("10.00"), SplitType.EXACT, [SplitLine(1), SplitLine(2)])


def test_allocate_hands_leftover_cents_to_largest_remainders() -> None:
    amounts = allocate(D("10.00"), {3: D(1), 1: D(1), 2: D(1)})

    assert amounts == {1: D("3.34"), 2: D("3.33"), 3: D("3.33")}
    assert sum(amounts.values()) == D("10.00")


def test_allocate_rejects_zero_weights() -> None:
    with pytest.raises(ValidationError):
        allocate(D("10.00"), {1: D(0), 2: D(0)})


def test_percentage_amounts_must_follow_percentages() -> None:
    lines = [
        SplitLine(1, amount=D("90.00"), percentage=D("50")),
        SplitLine(2, amount=D("10.00"), percentage=D("50")),
    ]

    with pytest.raises(ValidationError, match="Percentage split amounts"):
        validate_splits(D("100.00"), SplitType.PERCENTAGE, lines, MEMBERS)

    lines = [
        SplitLine(1, amount=D("50.00"), percentage=D("50")),
        SplitLine(2, amount=D("50.00"), percentage=D("50")),
    ]
    validate_splits(D("100.00"), SplitType.PERCENTAGE, lines, MEMBERS)
