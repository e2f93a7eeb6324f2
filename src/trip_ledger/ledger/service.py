"""Service layer that composes FX resolution, splits, balances and minimization.

Expense and split rows are written as two steps. If the split step fails
after the expense was saved, a PartialPersistenceError carries everything
needed to retry it; the expense is not rolled back.
"""

import logging
import sqlite3
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field, ValidationError

from ..config import Settings
from ..currency import format_currency, quantize
from ..db import Database
from ..exceptions import (
    PartialPersistenceError,
    PersistenceError,
    SettlementValidationError,
)
from ..models import (
    Balance,
    ConversionFailure,
    Currency,
    EqualSplit,
    Expense,
    ExpenseCreationResult,
    ExpenseSplit,
    ItemClaim,
    ItemizedSplit,
    Settlement,
    SettlementConversion,
    SplitPolicy,
    SplitPolicyVariant,
    Transaction,
)
from .balances import compute_balances
from .fx import FXRateResolver, build_resolver
from .minimizer import minimize_transactions
from .splits import allocation_progress, claim_items, compute_splits, price_claims

logger = logging.getLogger(__name__)


class _Conversion(BaseModel):
    """FX fields derived for one expense."""

    settlement_amount: Decimal
    fx_rate: Decimal
    fx_rate_date: date | None = None
    approximate: bool = False
    warnings: list[str] = Field(default_factory=list)


class LedgerService:
    """Service for recording trip expenses and settling up."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        resolver: FXRateResolver | None = None,
    ):
        """Initialize the ledger service."""
        self.settings = settings
        self.db = database
        self.resolver = resolver or build_resolver(settings, database)

    @property
    def settlement_currency(self) -> Currency:
        return self.settings.settlement_currency

    def close(self):
        """Release the FX client."""
        self.resolver.close()

    # ========================================================================
    # Expenses
    # ========================================================================

    def create_expense(
        self,
        trip_id: str,
        paid_by: str,
        amount: Decimal,
        currency: Currency,
        payment_date: date,
        participant_ids: list[str],
        policy: SplitPolicyVariant | None = None,
        description: str = "",
    ) -> ExpenseCreationResult:
        """
        Create an expense and its split rows.

        The FX rate is resolved once; if it can't be, a 1:1 rate is used and
        the expense is flagged as approximate rather than blocking creation.

        Raises:
            SplitValidationError: If the split inputs don't reconcile
                                  (nothing is written)
            PersistenceError: If the expense row can't be written
            PartialPersistenceError: If the expense was written but its
                                     split rows were not
        """
        policy = policy or EqualSplit()
        conversion = self._derive_conversion(amount, currency, payment_date)

        splits = compute_splits(
            amount=amount,
            currency=currency,
            participant_ids=participant_ids,
            policy=policy,
            conversion=SettlementConversion(
                rate=conversion.fx_rate, amount=conversion.settlement_amount
            ),
            settlement_currency=self.settlement_currency,
            tolerance=self.settings.split_tolerance,
        )

        expense = Expense(
            trip_id=trip_id,
            paid_by=paid_by,
            description=description,
            amount=amount,
            currency=currency,
            payment_date=payment_date,
            settlement_amount=conversion.settlement_amount,
            fx_rate=conversion.fx_rate,
            fx_rate_date=conversion.fx_rate_date,
            split_policy=SplitPolicy(policy.kind),
            approximate_rate=conversion.approximate,
        )

        try:
            expense.id = self.db.insert_expense(expense)
        except (sqlite3.Error, RuntimeError) as e:
            logger.error(f"Failed to save expense for trip {trip_id}: {e}")
            raise PersistenceError(f"Failed to save expense: {e}") from e

        logger.info(
            f"Saved expense {expense.id}: {format_currency(amount, currency)} "
            f"paid by {paid_by} ({policy.kind} split)"
        )

        splits = self._save_split_step(expense, policy, splits)

        return ExpenseCreationResult(
            expense=expense, splits=splits, warnings=conversion.warnings
        )

    def update_expense(
        self,
        expense_id: int,
        participant_ids: list[str],
        policy: SplitPolicyVariant | None = None,
        paid_by: str | None = None,
        amount: Decimal | None = None,
        currency: Currency | None = None,
        payment_date: date | None = None,
        description: str | None = None,
    ) -> ExpenseCreationResult:
        """
        Re-edit an expense.

        FX fields are always re-derived for the edited date and currency,
        and the split rows are recomputed and replaced.

        Raises:
            ValueError: If the expense doesn't exist
            SplitValidationError: If the split inputs don't reconcile
            PersistenceError: If the expense row can't be written
            PartialPersistenceError: If the split rows can't be written
        """
        existing = self.db.get_expense(expense_id)
        if existing is None:
            raise ValueError(f"Expense {expense_id} not found")

        policy = policy or EqualSplit()
        new_amount = amount if amount is not None else existing.amount
        new_currency = currency or existing.currency
        new_date = payment_date or existing.payment_date
        conversion = self._derive_conversion(new_amount, new_currency, new_date)

        splits = compute_splits(
            amount=new_amount,
            currency=new_currency,
            participant_ids=participant_ids,
            policy=policy,
            conversion=SettlementConversion(
                rate=conversion.fx_rate, amount=conversion.settlement_amount
            ),
            settlement_currency=self.settlement_currency,
            tolerance=self.settings.split_tolerance,
        )

        expense = existing.model_copy(
            update={
                "paid_by": paid_by or existing.paid_by,
                "amount": new_amount,
                "currency": new_currency,
                "payment_date": new_date,
                "description": (
                    description if description is not None else existing.description
                ),
                "settlement_amount": conversion.settlement_amount,
                "fx_rate": conversion.fx_rate,
                "fx_rate_date": conversion.fx_rate_date,
                "split_policy": SplitPolicy(policy.kind),
                "approximate_rate": conversion.approximate,
            }
        )

        try:
            self.db.update_expense(expense)
            self.db.delete_splits_for_expense(expense_id)
            if not isinstance(policy, ItemizedSplit):
                self.db.delete_line_items_for_expense(expense_id)
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to update expense {expense_id}: {e}") from e

        logger.info(f"Updated expense {expense_id}; re-derived FX and splits")

        splits = self._save_split_step(expense, policy, splits)
        return ExpenseCreationResult(
            expense=expense, splits=splits, warnings=conversion.warnings
        )

    def retry_splits(
        self, expense: Expense, splits: list[ExpenseSplit]
    ) -> list[ExpenseSplit]:
        """
        Retry the split step after a PartialPersistenceError.

        Raises:
            PersistenceError: If the split rows still can't be written
        """
        if expense.id is None:
            raise ValueError("Cannot save splits for an unsaved expense")
        try:
            self.db.delete_splits_for_expense(expense.id)
            return self._insert_splits(expense.id, splits)
        except (sqlite3.Error, RuntimeError) as e:
            raise PersistenceError(
                f"Failed to save splits for expense {expense.id}: {e}"
            ) from e

    def _derive_conversion(
        self, amount: Decimal, currency: Currency, payment_date: date
    ) -> _Conversion:
        """Resolve the settlement-currency amount and FX fields for an expense."""
        if currency == self.settlement_currency:
            return _Conversion(settlement_amount=amount, fx_rate=Decimal("1"))

        rate = self.resolver.resolve(payment_date, currency, self.settlement_currency)
        if isinstance(rate, ConversionFailure):
            warning = (
                f"Could not fetch the {currency}->{self.settlement_currency} rate "
                f"for {payment_date} ({rate.reason}). Using an approximate 1:1 rate."
            )
            logger.warning(warning)
            return _Conversion(
                settlement_amount=quantize(amount, self.settlement_currency),
                fx_rate=Decimal("1"),
                fx_rate_date=None,
                approximate=True,
                warnings=[warning],
            )

        return _Conversion(
            settlement_amount=quantize(amount * rate.rate, self.settlement_currency),
            fx_rate=rate.rate,
            fx_rate_date=rate.date,
        )

    def _save_split_step(
        self,
        expense: Expense,
        policy: SplitPolicyVariant,
        splits: list[ExpenseSplit],
    ) -> list[ExpenseSplit]:
        """Persist split rows, or line items and claims for itemized expenses."""
        try:
            if isinstance(policy, ItemizedSplit):
                self.db.save_line_items(expense.id, policy.line_items)
                priced = price_claims(policy.line_items, policy.claims)
                for pid in dict.fromkeys(c.participant_id for c in priced):
                    self.db.save_claims(
                        expense.id, pid, [c for c in priced if c.participant_id == pid]
                    )
                return [s.model_copy(update={"expense_id": expense.id}) for s in splits]
            return self._insert_splits(expense.id, splits)
        except (sqlite3.Error, RuntimeError) as e:
            logger.error(f"Expense {expense.id} saved but its splits were not: {e}")
            raise PartialPersistenceError(expense, splits, e) from e

    def _insert_splits(
        self, expense_id: int, splits: list[ExpenseSplit]
    ) -> list[ExpenseSplit]:
        row_ids = self.db.insert_splits(expense_id, splits)
        return [
            split.model_copy(update={"id": row_id, "expense_id": expense_id})
            for split, row_id in zip(splits, row_ids)
        ]

    # ========================================================================
    # Itemized claims
    # ========================================================================

    def claim_items(
        self,
        expense_id: int,
        participant_id: str,
        quantities: dict[str, Decimal],
    ) -> list[ItemClaim]:
        """
        Replace a participant's claims on an itemized expense.

        Raises:
            ValueError: If the expense doesn't exist or isn't itemized
            SplitValidationError: If a quantity exceeds what's left to claim
            PersistenceError: If the claims can't be written
        """
        expense = self.db.get_expense(expense_id)
        if expense is None:
            raise ValueError(f"Expense {expense_id} not found")
        if expense.split_policy != SplitPolicy.ITEMIZED:
            raise ValueError(f"Expense {expense_id} is not an itemized expense")

        line_items = self.db.get_line_items_for_expense(expense_id)
        existing = self.db.get_claims_for_expense(expense_id)
        claims = claim_items(line_items, existing, participant_id, quantities)

        try:
            self.db.save_claims(expense_id, participant_id, claims)
        except (sqlite3.Error, RuntimeError) as e:
            raise PersistenceError(f"Failed to save claims: {e}") from e

        progress = allocation_progress(
            line_items,
            [c for c in existing if c.participant_id != participant_id] + claims,
        )
        logger.info(
            f"Saved {len(claims)} claims for {participant_id} on expense "
            f"{expense_id} ({progress:.1f}% allocated)"
        )
        return claims

    def get_allocation_progress(self, expense_id: int) -> Decimal:
        """Percentage of an itemized expense's quantity that has been claimed."""
        return allocation_progress(
            self.db.get_line_items_for_expense(expense_id),
            self.db.get_claims_for_expense(expense_id),
        )

    # ========================================================================
    # Settlements
    # ========================================================================

    def record_settlement(
        self,
        trip_id: str,
        from_participant: str,
        to_participant: str,
        amount: Decimal,
        settled_at: date | None = None,
        method: str | None = None,
        notes: str | None = None,
    ) -> Settlement:
        """
        Record a payment already made between two participants.

        Raises:
            SettlementValidationError: If the parties are the same or the
                                       amount isn't positive
            PersistenceError: If the settlement can't be written
        """
        try:
            settlement = Settlement(
                trip_id=trip_id,
                from_participant=from_participant,
                to_participant=to_participant,
                amount=amount,
                settled_at=settled_at or date.today(),
                method=method,
                notes=notes,
            )
        except ValidationError as e:
            raise SettlementValidationError(
                f"Invalid settlement: {e.errors()[0]['msg']}"
            ) from e

        try:
            settlement.id = self.db.insert_settlement(settlement)
        except (sqlite3.Error, RuntimeError) as e:
            raise PersistenceError(f"Failed to save settlement: {e}") from e

        logger.info(
            f"Recorded settlement {settlement.id}: {from_participant} -> "
            f"{to_participant} {format_currency(amount, self.settlement_currency)}"
        )
        return settlement

    def get_settlement_history(self, trip_id: str) -> list[Settlement]:
        """Recorded settlements for a trip, most recent first."""
        return self.db.get_settlements_for_trip(trip_id)

    # ========================================================================
    # Balances
    # ========================================================================

    def get_balances(
        self, trip_id: str, participant_ids: list[str] | None = None
    ) -> list[Balance]:
        """
        Recompute balances for a trip from everything persisted.

        Args:
            trip_id: The trip
            participant_ids: Trip roster; defaults to everyone in the ledger
        """
        roster = participant_ids or self.db.get_trip_participant_ids(trip_id)
        records = self.db.get_expense_records(trip_id)
        settlements = self.db.get_settlements_for_trip(trip_id)

        logger.info(
            f"Calculating balances for {len(records)} expenses and "
            f"{len(settlements)} settlements"
        )
        return compute_balances(
            roster, records, settlements, settlement_currency=self.settlement_currency
        )

    def suggest_settlement(
        self, trip_id: str, participant_ids: list[str] | None = None
    ) -> list[Transaction]:
        """Minimized payments that would settle a trip."""
        balances = self.get_balances(trip_id, participant_ids)
        return minimize_transactions(
            balances, tolerance=self.settings.balance_tolerance
        )
