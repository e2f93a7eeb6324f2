"""Pydantic domain models for Trip Ledger."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, computed_field, model_validator

# ============================================================================
# Currency & FX Models
# ============================================================================


class Currency(StrEnum):
    """Supported currency codes."""

    GBP = "GBP"
    EUR = "EUR"
    USD = "USD"
    CHF = "CHF"
    JPY = "JPY"
    AUD = "AUD"
    CAD = "CAD"


class RateSource(StrEnum):
    """Where a resolved FX rate came from."""

    LIVE = "live"  # fetched from the FX service
    CACHED = "cached"  # memory or durable cache tier
    IDENTITY = "identity"  # from == to, never fetched


class FXRate(BaseModel):
    """A historical exchange rate: 1 unit of from_currency = rate units of to."""

    rate: Decimal = Field(gt=0)
    date: date  # Date the rate applies to (as returned by the service)
    from_currency: Currency
    to_currency: Currency
    source: RateSource


class ConversionFailure(BaseModel):
    """Returned by the resolver when no rate could be obtained."""

    reason: str
    requested_date: date
    from_currency: Currency
    to_currency: Currency


class ConversionResult(BaseModel):
    """An amount converted into the target currency."""

    converted_amount: Decimal
    rate: FXRate


class CachedRate(BaseModel):
    """A rate stored in the durable cache tier."""

    rate: Decimal
    date: date
    from_currency: Currency
    to_currency: Currency
    cached_at: datetime


# ============================================================================
# Split Policy Models
# ============================================================================


class SplitPolicy(StrEnum):
    """How an expense is divided between participants."""

    EQUAL = "equal"
    CUSTOM = "custom"
    PERCENTAGE = "percentage"
    ITEMIZED = "itemized"


class LineItem(BaseModel):
    """A single line on an itemized receipt.

    tax_amount and service_amount are this line's proportional share of the
    receipt-level charges (see allocate_receipt_charges).
    """

    id: str
    name: str
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal
    subtotal: Decimal
    tax_amount: Decimal = Decimal("0")
    service_amount: Decimal = Decimal("0")

    @property
    def total_amount(self) -> Decimal:
        """Line total including allocated tax and service charge."""
        return self.subtotal + self.tax_amount + self.service_amount

    @property
    def unit_cost(self) -> Decimal:
        """Cost of one unit including allocated charges."""
        return self.total_amount / self.quantity


class ItemClaim(BaseModel):
    """A participant's claim on part or all of a line item."""

    id: int | None = None
    line_item_id: str
    participant_id: str
    quantity_claimed: Decimal = Field(gt=0)
    amount_owed: Decimal | None = None  # original currency, set when claimed


class EqualSplit(BaseModel):
    """Everyone selected owes the same share."""

    kind: Literal["equal"] = "equal"


class CustomSplit(BaseModel):
    """Explicit amounts per participant, in the expense currency."""

    kind: Literal["custom"] = "custom"
    amounts: dict[str, Decimal]


class PercentageSplit(BaseModel):
    """Explicit percentages per participant, summing to 100."""

    kind: Literal["percentage"] = "percentage"
    percentages: dict[str, Decimal]


class ItemizedSplit(BaseModel):
    """Receipt line items claimed by participants."""

    kind: Literal["itemized"] = "itemized"
    line_items: list[LineItem]
    claims: list[ItemClaim] = Field(default_factory=list)


SplitPolicyVariant = Annotated[
    EqualSplit | CustomSplit | PercentageSplit | ItemizedSplit,
    Field(discriminator="kind"),
]


class SettlementConversion(BaseModel):
    """Settlement-currency total of an expense and the rate that produced it."""

    rate: Decimal = Field(gt=0)
    amount: Decimal


# ============================================================================
# Ledger Models
# ============================================================================


class Expense(BaseModel):
    """A shared expense paid by one participant."""

    id: int | None = None
    trip_id: str
    paid_by: str
    description: str = ""
    amount: Decimal = Field(gt=0)
    currency: Currency
    payment_date: date
    settlement_amount: Decimal | None = None
    fx_rate: Decimal | None = None
    fx_rate_date: date | None = None
    split_policy: SplitPolicy = SplitPolicy.EQUAL
    approximate_rate: bool = False  # True when a 1:1 fallback rate was used
    created_at: datetime = Field(default_factory=datetime.now)


class ExpenseSplit(BaseModel):
    """One participant's share of one expense."""

    id: int | None = None
    expense_id: int | None = None
    participant_id: str
    amount: Decimal  # original currency
    percentage: Decimal | None = None
    settlement_amount: Decimal | None = None


class ExpenseRecord(BaseModel):
    """An expense together with everything that divides it."""

    expense: Expense
    splits: list[ExpenseSplit] = Field(default_factory=list)
    line_items: list[LineItem] = Field(default_factory=list)
    claims: list[ItemClaim] = Field(default_factory=list)


class Settlement(BaseModel):
    """A real-world payment already made between two participants."""

    id: int | None = None
    trip_id: str
    from_participant: str
    to_participant: str
    amount: Decimal = Field(gt=0)  # settlement currency
    settled_at: date
    method: str | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def check_distinct_parties(self) -> "Settlement":
        if self.from_participant == self.to_participant:
            raise ValueError("A settlement must be between two different participants")
        return self


class ExpenseCreationResult(BaseModel):
    """Outcome of creating or re-editing an expense."""

    expense: Expense
    splits: list[ExpenseSplit]
    warnings: list[str] = Field(default_factory=list)

    @property
    def approximate_rate(self) -> bool:
        return self.expense.approximate_rate


# ============================================================================
# Derived Models
# ============================================================================


class Balance(BaseModel):
    """Net position of one participant, in the settlement currency.

    Positive net = the group owes this participant.
    """

    participant_id: str
    total_paid: Decimal = Decimal("0")
    total_owed: Decimal = Decimal("0")
    settlements_received: Decimal = Decimal("0")
    settlements_paid: Decimal = Decimal("0")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def net(self) -> Decimal:
        return (
            self.total_paid
            - self.total_owed
            + self.settlements_paid
            - self.settlements_received
        )


class Transaction(BaseModel):
    """A suggested payment produced by the debt minimizer."""

    from_participant: str
    to_participant: str
    amount: Decimal


class UserTransactions(BaseModel):
    """Minimized transactions from one participant's perspective."""

    to_pay: list[Transaction]
    to_receive: list[Transaction]
