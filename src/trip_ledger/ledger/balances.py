"""Balance aggregation over a trip's expenses, splits, claims and settlements."""

import logging
from decimal import Decimal

from ..currency import quantize
from ..models import Balance, Currency, ExpenseRecord, Settlement

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def compute_balances(
    participant_ids: list[str],
    records: list[ExpenseRecord],
    settlements: list[Settlement],
    settlement_currency: Currency = Currency.GBP,
) -> list[Balance]:
    """
    Fold every expense and settlement of a trip into one balance per participant.

    This is a pure function: it never fails, and participants with no
    activity get all-zero balances.

    Args:
        participant_ids: Trip roster, in display order
        records: Expenses with their splits, line items and claims
        settlements: Recorded settlements
        settlement_currency: Currency claim conversions are rounded to

    Returns:
        One Balance per roster participant, in roster order
    """
    balances = {
        pid: Balance(participant_id=pid) for pid in dict.fromkeys(participant_ids)
    }

    for record in records:
        expense = record.expense

        # Total paid: settlement-currency amount, original amount if unconverted
        payer = balances.get(expense.paid_by)
        if payer is not None:
            paid = (
                expense.settlement_amount
                if expense.settlement_amount is not None
                else expense.amount
            )
            payer.total_paid += paid

        # Total owed from policy-based split rows
        for split in record.splits:
            debtor = balances.get(split.participant_id)
            if debtor is None:
                continue
            debtor.total_owed += (
                split.settlement_amount
                if split.settlement_amount is not None
                else split.amount
            )

        # Itemized claims use the expense's frozen rate, never a fresh one
        if record.claims:
            rate = expense.fx_rate if expense.fx_rate is not None else Decimal("1")
            unit_costs = {item.id: item.unit_cost for item in record.line_items}
            for claim in record.claims:
                debtor = balances.get(claim.participant_id)
                if debtor is None:
                    continue
                owed = claim.amount_owed
                if owed is None:
                    unit_cost = unit_costs.get(claim.line_item_id, ZERO)
                    owed = unit_cost * claim.quantity_claimed
                debtor.total_owed += quantize(owed * rate, settlement_currency)

    for settlement in settlements:
        receiver = balances.get(settlement.to_participant)
        if receiver is not None:
            receiver.settlements_received += settlement.amount
        sender = balances.get(settlement.from_participant)
        if sender is not None:
            sender.settlements_paid += settlement.amount

    result = list(balances.values())
    logger.debug(
        "Computed balances: "
        + ", ".join(f"{b.participant_id}={b.net}" for b in result)
    )
    return result


def is_settled(balances: list[Balance], tolerance: Decimal = Decimal("0.01")) -> bool:
    """True when every participant's net balance is within tolerance of zero."""
    return all(abs(b.net) < tolerance for b in balances)


def total_imbalance(balances: list[Balance]) -> Decimal:
    """
    Sum of all net balances.

    Zero (within rounding) whenever every expense is fully split; an itemized
    expense that is only partly claimed shows up here as its unclaimed amount.
    """
    return sum((b.net for b in balances), ZERO)
