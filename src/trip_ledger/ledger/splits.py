"""Split computation: turns one expense into per-participant obligations."""

import logging
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from ..currency import format_currency, minor_unit, quantize
from ..exceptions import SplitFailureReason, SplitValidationError
from ..models import (
    Currency,
    CustomSplit,
    EqualSplit,
    ExpenseSplit,
    ItemClaim,
    ItemizedSplit,
    LineItem,
    PercentageSplit,
    SettlementConversion,
    SplitPolicyVariant,
)

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = Decimal("0.01")
HUNDRED = Decimal("100")


def compute_splits(
    amount: Decimal,
    currency: Currency,
    participant_ids: list[str],
    policy: SplitPolicyVariant,
    conversion: SettlementConversion | None = None,
    settlement_currency: Currency = Currency.GBP,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> list[ExpenseSplit]:
    """
    Compute split rows for an expense.

    Args:
        amount: Expense amount in its original currency
        currency: Expense currency
        participant_ids: Selected participants (ignored for itemized splits,
                         where the claimants are the participants)
        policy: Split policy variant
        conversion: Settlement-currency total and rate, if known
        settlement_currency: Currency of settlement amounts
        tolerance: Absolute tolerance for total reconciliation

    Returns:
        One split per participant owing a positive amount

    Raises:
        SplitValidationError: If the policy's inputs don't reconcile
    """
    selected = list(dict.fromkeys(participant_ids))

    match policy:
        case EqualSplit():
            splits = _equal_splits(
                amount, currency, selected, conversion, settlement_currency
            )
        case CustomSplit(amounts=amounts):
            splits = _custom_splits(
                amount,
                currency,
                selected,
                amounts,
                conversion,
                settlement_currency,
                tolerance,
            )
        case PercentageSplit(percentages=percentages):
            splits = _percentage_splits(
                amount,
                currency,
                selected,
                percentages,
                conversion,
                settlement_currency,
                tolerance,
            )
        case ItemizedSplit(line_items=line_items, claims=claims):
            splits = _itemized_splits(
                amount,
                line_items,
                claims,
                currency,
                conversion,
                settlement_currency,
                tolerance,
            )
        case _:
            raise TypeError(f"Unsupported split policy: {policy!r}")

    # Zero-value obligations are never persisted
    return [split for split in splits if split.amount > 0]


def divide_evenly(total: Decimal, count: int, currency: Currency) -> list[Decimal]:
    """
    Divide a total into count shares of the currency's minor unit.

    Leftover minor units go one each to the first shares, so the shares
    always sum to the rounded total.
    """
    unit = minor_unit(currency)
    total_units = int((total / unit).to_integral_value(rounding=ROUND_HALF_UP))
    base, remainder = divmod(total_units, count)
    return [(base + (1 if i < remainder else 0)) * unit for i in range(count)]


def _require_participants(selected: list[str]):
    if not selected:
        raise SplitValidationError(
            SplitFailureReason.EMPTY_PARTICIPANTS,
            "Please select at least one person to split with",
        )


def _equal_splits(
    amount: Decimal,
    currency: Currency,
    selected: list[str],
    conversion: SettlementConversion | None,
    settlement_currency: Currency,
) -> list[ExpenseSplit]:
    _require_participants(selected)

    shares = divide_evenly(amount, len(selected), currency)
    settlement_shares: list[Decimal | None] = (
        list(divide_evenly(conversion.amount, len(selected), settlement_currency))
        if conversion
        else [None] * len(selected)
    )

    return [
        ExpenseSplit(participant_id=pid, amount=share, settlement_amount=settled)
        for pid, share, settled in zip(selected, shares, settlement_shares)
    ]


def _custom_splits(
    amount: Decimal,
    currency: Currency,
    selected: list[str],
    amounts: dict[str, Decimal],
    conversion: SettlementConversion | None,
    settlement_currency: Currency,
    tolerance: Decimal,
) -> list[ExpenseSplit]:
    _require_participants(selected)

    for pid in selected:
        if amounts.get(pid, Decimal("0")) <= 0:
            raise SplitValidationError(
                SplitFailureReason.NON_POSITIVE_ENTRY,
                "All selected participants must have an amount greater than 0",
                participant_id=pid,
            )

    total_split = sum((amounts[pid] for pid in selected), Decimal("0"))
    delta = amount - total_split
    if abs(delta) > tolerance:
        raise SplitValidationError(
            SplitFailureReason.TOTAL_MISMATCH,
            f"Split amounts ({format_currency(total_split, currency)}) must equal "
            f"total ({format_currency(amount, currency)}); "
            f"difference {format_currency(abs(delta), currency)}",
            delta=delta,
        )

    return [
        ExpenseSplit(
            participant_id=pid,
            amount=amounts[pid],
            settlement_amount=(
                quantize(amounts[pid] * conversion.rate, settlement_currency)
                if conversion
                else None
            ),
        )
        for pid in selected
    ]


def _percentage_splits(
    amount: Decimal,
    currency: Currency,
    selected: list[str],
    percentages: dict[str, Decimal],
    conversion: SettlementConversion | None,
    settlement_currency: Currency,
    tolerance: Decimal,
) -> list[ExpenseSplit]:
    _require_participants(selected)

    for pid in selected:
        if percentages.get(pid, Decimal("0")) <= 0:
            raise SplitValidationError(
                SplitFailureReason.NON_POSITIVE_ENTRY,
                "All selected participants must have a percentage greater than 0",
                participant_id=pid,
            )

    total_percentage = sum((percentages[pid] for pid in selected), Decimal("0"))
    delta = HUNDRED - total_percentage
    if abs(delta) > tolerance:
        raise SplitValidationError(
            SplitFailureReason.PERCENTAGE_MISMATCH,
            f"Percentages must add up to 100% (currently {total_percentage:.2f}%)",
            delta=delta,
        )

    splits = []
    for pid in selected:
        percentage = percentages[pid]
        splits.append(
            ExpenseSplit(
                participant_id=pid,
                amount=quantize(amount * percentage / HUNDRED, currency),
                percentage=percentage,
                settlement_amount=(
                    quantize(
                        conversion.amount * percentage / HUNDRED, settlement_currency
                    )
                    if conversion
                    else None
                ),
            )
        )
    return splits


def _itemized_splits(
    amount: Decimal,
    line_items: list[LineItem],
    claims: list[ItemClaim],
    currency: Currency,
    conversion: SettlementConversion | None,
    settlement_currency: Currency,
    tolerance: Decimal,
) -> list[ExpenseSplit]:
    receipt_total = sum((item.total_amount for item in line_items), Decimal("0"))
    delta = amount - receipt_total
    if abs(delta) > tolerance:
        raise SplitValidationError(
            SplitFailureReason.TOTAL_MISMATCH,
            f"Line items ({format_currency(receipt_total, currency)}) must add up "
            f"to the total ({format_currency(amount, currency)}); "
            f"difference {format_currency(abs(delta), currency)}",
            delta=delta,
        )

    owed: dict[str, Decimal] = {}
    for claim in price_claims(line_items, claims):
        owed[claim.participant_id] = owed.get(
            claim.participant_id, Decimal("0")
        ) + (claim.amount_owed or Decimal("0"))

    splits = []
    for pid, total in owed.items():
        amount = quantize(total, currency)
        splits.append(
            ExpenseSplit(
                participant_id=pid,
                amount=amount,
                settlement_amount=(
                    quantize(total * conversion.rate, settlement_currency)
                    if conversion
                    else None
                ),
            )
        )
    return splits


# ============================================================================
# Itemized receipt helpers
# ============================================================================


def allocate_receipt_charges(
    line_items: list[LineItem],
    tax_amount: Decimal,
    service_charge_amount: Decimal,
    currency: Currency,
) -> list[LineItem]:
    """
    Distribute receipt-level tax and service charge across line items.

    Each line receives charges proportional to its subtotal. After rounding,
    the line with the largest subtotal absorbs any residual so the allocated
    charges sum exactly to the receipt totals.

    Returns:
        New line items with tax_amount and service_amount filled in
    """
    receipt_subtotal = sum((item.subtotal for item in line_items), Decimal("0"))
    if not line_items or receipt_subtotal <= 0:
        return [item.model_copy() for item in line_items]

    allocated = []
    for item in line_items:
        share = item.subtotal / receipt_subtotal
        allocated.append(
            item.model_copy(
                update={
                    "tax_amount": quantize(tax_amount * share, currency),
                    "service_amount": quantize(service_charge_amount * share, currency),
                }
            )
        )

    largest = max(allocated, key=lambda x: x.subtotal)
    tax_residual = tax_amount - sum((i.tax_amount for i in allocated), Decimal("0"))
    service_residual = service_charge_amount - sum(
        (i.service_amount for i in allocated), Decimal("0")
    )
    if tax_residual or service_residual:
        largest.tax_amount += tax_residual
        largest.service_amount += service_residual
        logger.debug(
            f"Applied charge rounding adjustment to line {largest.id}: "
            f"tax {tax_residual}, service {service_residual}"
        )

    return allocated


def claimed_quantity(line_item_id: str, claims: Iterable[ItemClaim]) -> Decimal:
    """Total quantity of a line item claimed so far."""
    return sum(
        (c.quantity_claimed for c in claims if c.line_item_id == line_item_id),
        Decimal("0"),
    )


def available_quantity(line_item: LineItem, claims: Iterable[ItemClaim]) -> Decimal:
    """Quantity of a line item nobody has claimed yet."""
    return line_item.quantity - claimed_quantity(line_item.id, claims)


def price_claims(
    line_items: list[LineItem], claims: list[ItemClaim]
) -> list[ItemClaim]:
    """
    Validate claims against their line items and fill in amount_owed.

    Raises:
        SplitValidationError: If a claim references an unknown line item or a
                              line item is claimed beyond its quantity
    """
    items = {item.id: item for item in line_items}
    priced = []
    for claim in claims:
        item = items.get(claim.line_item_id)
        if item is None:
            raise SplitValidationError(
                SplitFailureReason.MISSING_LINE_ITEM,
                f"Claim references unknown line item {claim.line_item_id}",
                participant_id=claim.participant_id,
            )
        priced.append(
            claim.model_copy(
                update={"amount_owed": item.unit_cost * claim.quantity_claimed}
            )
        )

    for item in line_items:
        over = claimed_quantity(item.id, claims) - item.quantity
        if over > 0:
            raise SplitValidationError(
                SplitFailureReason.OVER_CLAIMED,
                f"Line item '{item.name}' is claimed {over} beyond its quantity "
                f"of {item.quantity}",
                delta=over,
            )

    return priced


def claim_items(
    line_items: list[LineItem],
    existing_claims: list[ItemClaim],
    participant_id: str,
    quantities: dict[str, Decimal],
) -> list[ItemClaim]:
    """
    Build a participant's claims, replacing whatever they claimed before.

    A participant may claim up to the unclaimed quantity plus their own
    previous claim on each item. Zero quantities are dropped.

    Returns:
        The participant's new, priced claims
    """
    others = [c for c in existing_claims if c.participant_id != participant_id]
    items = {item.id: item for item in line_items}

    claims = []
    for line_item_id, quantity in quantities.items():
        if quantity < 0:
            raise SplitValidationError(
                SplitFailureReason.NON_POSITIVE_ENTRY,
                f"Claimed quantity for {line_item_id} cannot be negative",
                participant_id=participant_id,
            )
        if quantity == 0:
            continue
        item = items.get(line_item_id)
        if item is None:
            raise SplitValidationError(
                SplitFailureReason.MISSING_LINE_ITEM,
                f"Claim references unknown line item {line_item_id}",
                participant_id=participant_id,
            )
        max_available = available_quantity(item, others)
        if quantity > max_available:
            raise SplitValidationError(
                SplitFailureReason.OVER_CLAIMED,
                f"Only {max_available} of '{item.name}' left to claim",
                delta=quantity - max_available,
                participant_id=participant_id,
            )
        claims.append(
            ItemClaim(
                line_item_id=line_item_id,
                participant_id=participant_id,
                quantity_claimed=quantity,
                amount_owed=item.unit_cost * quantity,
            )
        )
    return claims


def allocation_progress(line_items: list[LineItem], claims: list[ItemClaim]) -> Decimal:
    """Percentage of total line-item quantity that has been claimed (0-100)."""
    total_quantity = sum((item.quantity for item in line_items), Decimal("0"))
    if total_quantity <= 0:
        return Decimal("0")
    item_ids = {item.id for item in line_items}
    claimed = sum(
        (c.quantity_claimed for c in claims if c.line_item_id in item_ids),
        Decimal("0"),
    )
    return claimed / total_quantity * HUNDRED


def is_fully_allocated(line_items: list[LineItem], claims: list[ItemClaim]) -> bool:
    """True when every line item is completely claimed."""
    return all(
        claimed_quantity(item.id, claims) >= item.quantity for item in line_items
    )
