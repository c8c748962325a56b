"""Validation and allocation of an expense's split across participants.

Everything here is pure: membership comes in as a list of user ids, and
nothing touches the database. The coordinator decides which helper to
call (auto-generated equal split vs. caller supplied splits).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from splitledger.core.exceptions import ValidationError
from splitledger.core.utils import CENTS, TOLERANCE, ZERO, money
from splitledger.models.expense import SplitType


@dataclass(frozen=True)
class SplitLine:
    user_id: int
    amount: Optional[Decimal] = None
    percentage: Optional[Decimal] = None
    shares: Optional[int] = None


def allocate(total: Decimal, weights: Mapping[int, Decimal]) -> Dict[int, Decimal]:
    """Split ``total`` into cents proportionally to ``weights``.

    Largest remainder method: everyone gets the floor of their exact share,
    the leftover cents go to the biggest fractional parts, ties broken by
    ascending user id. The result always sums to ``total`` exactly.
    """
    if not weights:
        raise ValidationError("At least one participant is required")

    weight_sum = sum((Decimal(w) for w in weights.values()), ZERO)
    if weight_sum <= 0 or any(Decimal(w) < 0 for w in weights.values()):
        raise ValidationError("Split weights must be positive")

    total_cents = int(money(total) / CENTS)
    exact = {uid: total_cents * Decimal(w) / weight_sum for uid, w in weights.items()}
    cents = {uid: int(share) for uid, share in exact.items()}

    leftover = total_cents - sum(cents.values())
    order = sorted(weights, key=lambda uid: (-(exact[uid] - cents[uid]), uid))
    for uid in order[:leftover]:
        cents[uid] += 1

    return {uid: Decimal(c) * CENTS for uid, c in cents.items()}


def equal_splits(total: Decimal, member_ids: Iterable[int]) -> List[SplitLine]:
    """Equal split over ``member_ids``; residual cents go to the lowest ids."""
    member_ids = sorted(set(member_ids))
    if not member_ids:
        raise ValidationError("No active members found in the group")

    amounts = allocate(total, {uid: Decimal(1) for uid in member_ids})
    return [SplitLine(user_id=uid, amount=amounts[uid]) for uid in member_ids]


def _check_participants(splits: Sequence[SplitLine]) -> None:
    if not splits:
        raise ValidationError("At least one split is required")

    user_ids = [s.user_id for s in splits]
    if len(user_ids) != len(set(user_ids)):
        raise ValidationError("Duplicate users found in splits")


def _require_percentages(splits: Sequence[SplitLine]) -> None:
    for s in splits:
        if s.percentage is None:
            raise ValidationError("Percentage is required for percentage splits")
        if s.percentage < 0:
            raise ValidationError("Percentages cannot be negative")


def _require_shares(splits: Sequence[SplitLine]) -> None:
    for s in splits:
        if not s.shares or s.shares <= 0:
            raise ValidationError("Valid shares are required for shares-based splits")


def resolve_split_amounts(total: Decimal, split_type: SplitType, splits: Sequence[SplitLine]) -> List[SplitLine]:
    """Fill in amounts the caller left out, derived from the split type.

    Amounts are either given for every participant or for none.
    """
    _check_participants(splits)

    missing = [s for s in splits if s.amount is None]
    if not missing:
        return list(splits)
    if len(missing) != len(splits):
        raise ValidationError("Split amounts must be given for every participant or for none")

    if split_type == SplitType.EQUAL:
        weights = {s.user_id: Decimal(1) for s in splits}
    elif split_type == SplitType.PERCENTAGE:
        _require_percentages(splits)
        weights = {s.user_id: Decimal(s.percentage) for s in splits}
    elif split_type == SplitType.SHARES:
        _require_shares(splits)
        weights = {s.user_id: Decimal(s.shares) for s in splits}
    else:
        raise ValidationError("Exact splits require an amount for every participant")

    amounts = allocate(total, weights)
    return [replace(s, amount=amounts[s.user_id]) for s in splits]


def validate_splits(
    total_amount: Decimal,
    split_type: SplitType,
    splits: Sequence[SplitLine],
    group_member_ids: Iterable[int],
) -> None:
    """Raise ``ValidationError`` unless ``splits`` is a consistent division of ``total_amount``."""
    total = money(total_amount)
    if total <= 0:
        raise ValidationError("Total amount must be positive")

    _check_participants(splits)

    if any(s.amount is None for s in splits):
        raise ValidationError("Every split needs an amount")
    if any(s.amount < 0 for s in splits):
        raise ValidationError("Split amounts cannot be negative")

    members = set(group_member_ids)
    for s in splits:
        if s.user_id not in members:
            raise ValidationError(f"User {s.user_id} is not a group member")

    amounts = [money(s.amount) for s in splits]
    split_sum = sum(amounts, ZERO)

    if split_type == SplitType.EQUAL:
        expected = total / len(splits)
        if any(abs(a - expected) > TOLERANCE for a in amounts):
            raise ValidationError("Equal split amounts do not match")
        # the leftover cent has to land on someone
        if split_sum != total:
            raise ValidationError("Equal split amounts must add up to the total amount")

    elif split_type == SplitType.PERCENTAGE:
        _require_percentages(splits)
        total_pct = sum((Decimal(s.percentage) for s in splits), ZERO)
        if abs(total_pct - Decimal(100)) > TOLERANCE:
            raise ValidationError("Percentages must sum to 100%")
        for s, a in zip(splits, amounts):
            expected = Decimal(s.percentage) / Decimal(100) * total
            if abs(a - expected) > TOLERANCE:
                raise ValidationError("Percentage split amounts do not match")

    elif split_type == SplitType.SHARES:
        _require_shares(splits)
        total_shares = sum(s.shares for s in splits)
        for s, a in zip(splits, amounts):
            expected = Decimal(s.shares) / Decimal(total_shares) * total
            if abs(a - expected) > TOLERANCE:
                raise ValidationError("Shares-based split amounts do not match")

    elif split_type == SplitType.EXACT:
        if abs(split_sum - total) > TOLERANCE:
            raise ValidationError("Exact split amounts must sum to total amount")

    else:
        raise ValidationError(f"Unsupported split type: {split_type}")

    if abs(split_sum - total) > TOLERANCE:
        raise ValidationError("Split amounts must add up to the total amount")


def absorb_residual(total_amount: Decimal, splits: Sequence[SplitLine]) -> List[SplitLine]:
    """Move a sub-tolerance rounding residual onto one participant.

    Persisted splits then sum to the total exactly, which keeps the ledger
    exactly zero-sum. The residual goes to the lowest user id that can take
    it without going negative.
    """
    lines = [replace(s, amount=money(s.amount)) for s in splits]
    residual = money(total_amount) - sum((s.amount for s in lines), ZERO)
    if residual == 0:
        return lines

    for idx in sorted(range(len(lines)), key=lambda i: lines[i].user_id):
        if lines[idx].amount + residual >= 0:
            lines[idx] = replace(lines[idx], amount=lines[idx].amount + residual)
            break
    return lines
