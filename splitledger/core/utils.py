from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, getcontext
from typing import Dict, Hashable, List, Mapping

getcontext().prec = 28
CENTS = Decimal("0.01")
ZERO = Decimal("0")
# amounts closer than this are considered equal
TOLERANCE = Decimal("0.01")


def qround(d: Decimal) -> Decimal:
    return d.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_decimal(value) -> Decimal:
    """Decimal from DB values, strings or ints. Floats go through ``str`` to keep their printed digits."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value) -> Decimal:
    return qround(to_decimal(value))


@dataclass(frozen=True)
class SettlementInstruction:
    from_user_id: Hashable
    to_user_id: Hashable
    amount: Decimal


def _largest(side: Dict[Hashable, Decimal]) -> Hashable:
    # biggest amount first, lowest id on ties
    return min(side, key=lambda uid: (-side[uid], uid))


def simplify_debts(balances: Mapping[Hashable, Decimal]) -> List[SettlementInstruction]:
    """Greedy largest-creditor / largest-debtor matching.

    Deterministic for a given input and never emits more than n-1
    instructions for n non-zero balances.
    """
    creditors: Dict[Hashable, Decimal] = {}
    debtors: Dict[Hashable, Decimal] = {}

    for uid, bal in balances.items():
        bal = money(bal)
        if bal > TOLERANCE:
            creditors[uid] = bal
        elif bal < -TOLERANCE:
            debtors[uid] = -bal

    transfers: List[SettlementInstruction] = []

    while creditors and debtors:
        cred_id = _largest(creditors)
        debt_id = _largest(debtors)

        pay_amt = min(creditors[cred_id], debtors[debt_id])
        transfers.append(SettlementInstruction(debt_id, cred_id, pay_amt))

        creditors[cred_id] -= pay_amt
        debtors[debt_id] -= pay_amt

        if creditors[cred_id] <= TOLERANCE:
            del creditors[cred_id]
        if debtors[debt_id] <= TOLERANCE:
            del debtors[debt_id]

    return transfers
