"""Debt minimization: turn net balances into a short list of payments."""

import logging
from collections.abc import Iterable
from decimal import Decimal

from ..models import Balance, Transaction, UserTransactions

logger = logging.getLogger(__name__)


def minimize_transactions(
    balances: Iterable[Balance], tolerance: Decimal = Decimal("0.01")
) -> list[Transaction]:
    """
    Minimize the number of payments needed to settle all debts.

    Uses a greedy algorithm: repeatedly match the largest creditor with the
    largest debtor. Optimal for typical small groups, but not guaranteed to
    find the global minimum transaction count.

    Args:
        balances: Net balances (positive = owed money, negative = owes money)
        tolerance: Balances within this distance of zero count as settled

    Returns:
        Payments that zero every balance (within tolerance)
    """
    # Debts are stored as positive amounts for easier calculation
    creditors = [[b.participant_id, b.net] for b in balances if b.net > tolerance]
    debtors = [[b.participant_id, -b.net] for b in balances if b.net < -tolerance]

    # Sort in descending order
    creditors.sort(key=lambda x: x[1], reverse=True)
    debtors.sort(key=lambda x: x[1], reverse=True)

    transactions = []
    cred_idx = 0
    debt_idx = 0

    while cred_idx < len(creditors) and debt_idx < len(debtors):
        creditor = creditors[cred_idx]
        debtor = debtors[debt_idx]

        # Transfer the minimum of what's owed and what's needed
        amount = min(creditor[1], debtor[1])
        transactions.append(
            Transaction(
                from_participant=debtor[0], to_participant=creditor[0], amount=amount
            )
        )

        creditor[1] -= amount
        debtor[1] -= amount

        if creditor[1] < tolerance:
            cred_idx += 1
        if debtor[1] < tolerance:
            debt_idx += 1

    logger.debug(f"Minimized to {len(transactions)} transactions")
    return transactions


def transactions_for(
    all_transactions: list[Transaction], participant_id: str
) -> UserTransactions:
    """Split the minimized transactions into what a participant pays and receives."""
    return UserTransactions(
        to_pay=[t for t in all_transactions if t.from_participant == participant_id],
        to_receive=[t for t in all_transactions if t.to_participant == participant_id],
    )
