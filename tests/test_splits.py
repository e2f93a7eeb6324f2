"""Tests for split computation and itemized claim helpers."""

from decimal import Decimal

import pytest

from trip_ledger.currency import quantize
from trip_ledger.exceptions import SplitFailureReason, SplitValidationError
from trip_ledger.ledger.splits import (
    allocate_receipt_charges,
    allocation_progress,
    claim_items,
    compute_splits,
    divide_evenly,
    is_fully_allocated,
    price_claims,
)
from trip_ledger.models import (
    Currency,
    CustomSplit,
    EqualSplit,
    ItemClaim,
    ItemizedSplit,
    LineItem,
    PercentageSplit,
    SettlementConversion,
)


@pytest.fixture
def receipt():
    """Two pizzas and a bottle of wine."""
    return [
        LineItem(
            id="pizza",
            name="Pizza",
            quantity=Decimal("2"),
            unit_price=Decimal("10.00"),
            subtotal=Decimal("20.00"),
        ),
        LineItem(
            id="wine",
            name="Wine",
            quantity=Decimal("1"),
            unit_price=Decimal("10.00"),
            subtotal=Decimal("10.00"),
        ),
    ]


def amounts(splits):
    return {s.participant_id: s.amount for s in splits}


def claim(line_item_id: str, participant_id: str, quantity) -> ItemClaim:
    return ItemClaim(
        line_item_id=line_item_id,
        participant_id=participant_id,
        quantity_claimed=Decimal(quantity),
    )


class TestEqualSplit:
    """Tests for equal splits."""

    def test_divides_evenly(self):
        """90 EUR between three people is 30 each."""
        splits = compute_splits(
            Decimal("90.00"), Currency.EUR, ["alice", "bob", "carol"], EqualSplit()
        )

        assert amounts(splits) == {
            "alice": Decimal("30.00"),
            "bob": Decimal("30.00"),
            "carol": Decimal("30.00"),
        }

    def test_remainder_goes_to_first_participants(self):
        """100 / 3 leaves one penny, which the first participant takes."""
        splits = compute_splits(
            Decimal("100.00"), Currency.GBP, ["alice", "bob", "carol"], EqualSplit()
        )

        assert [s.amount for s in splits] == [
            Decimal("33.34"),
            Decimal("33.33"),
            Decimal("33.33"),
        ]
        assert sum(s.amount for s in splits) == Decimal("100.00")

    def test_zero_decimal_currency(self):
        """Yen shares are whole yen."""
        splits = compute_splits(
            Decimal("1000"), Currency.JPY, ["a", "b", "c"], EqualSplit()
        )

        assert [s.amount for s in splits] == [
            Decimal("334"),
            Decimal("333"),
            Decimal("333"),
        ]

    def test_shares_always_sum_to_rounded_total(self):
        """Sum of shares equals the rounded total for awkward amounts."""
        for total in ["0.01", "0.05", "10.00", "99.99", "123.457", "1000.01"]:
            for count in range(1, 8):
                shares = divide_evenly(Decimal(total), count, Currency.GBP)
                assert len(shares) == count
                assert sum(shares) == quantize(Decimal(total), Currency.GBP)

    def test_settlement_amounts_split_the_converted_total(self):
        """Settlement shares divide the converted total, not each share times rate."""
        splits = compute_splits(
            Decimal("100.00"),
            Currency.EUR,
            ["alice", "bob", "carol"],
            EqualSplit(),
            conversion=SettlementConversion(
                rate=Decimal("0.85"), amount=Decimal("85.00")
            ),
        )

        assert [s.settlement_amount for s in splits] == [
            Decimal("28.34"),
            Decimal("28.33"),
            Decimal("28.33"),
        ]

    def test_no_conversion_leaves_settlement_amount_empty(self):
        splits = compute_splits(Decimal("10"), Currency.GBP, ["a", "b"], EqualSplit())

        assert all(s.settlement_amount is None for s in splits)

    def test_duplicate_participants_are_ignored(self):
        """Selecting someone twice doesn't give them two shares."""
        splits = compute_splits(
            Decimal("10.00"), Currency.GBP, ["alice", "alice", "bob"], EqualSplit()
        )

        assert amounts(splits) == {"alice": Decimal("5.00"), "bob": Decimal("5.00")}

    def test_zero_shares_are_dropped(self):
        """A penny between three people only produces one row."""
        splits = compute_splits(
            Decimal("0.01"), Currency.GBP, ["alice", "bob", "carol"], EqualSplit()
        )

        assert amounts(splits) == {"alice": Decimal("0.01")}

    def test_rejects_empty_participants(self):
        with pytest.raises(SplitValidationError) as exc_info:
            compute_splits(Decimal("10"), Currency.GBP, [], EqualSplit())

        assert exc_info.value.reason == SplitFailureReason.EMPTY_PARTICIPANTS


class TestCustomSplit:
    """Tests for custom amount splits."""

    def test_accepts_matching_amounts(self):
        policy = CustomSplit(amounts={"alice": Decimal("60"), "bob": Decimal("40")})

        splits = compute_splits(Decimal("100"), Currency.GBP, ["alice", "bob"], policy)

        assert amounts(splits) == {"alice": Decimal("60"), "bob": Decimal("40")}

    def test_rejects_mismatched_total(self):
        """Amounts 50 + 40 for a 100 expense fail with a delta of 10."""
        policy = CustomSplit(amounts={"alice": Decimal("50"), "bob": Decimal("40")})

        with pytest.raises(SplitValidationError) as exc_info:
            compute_splits(Decimal("100"), Currency.GBP, ["alice", "bob"], policy)

        assert exc_info.value.reason == SplitFailureReason.TOTAL_MISMATCH
        assert exc_info.value.delta == Decimal("10")
        assert "£10.00" in str(exc_info.value)

    def test_accepts_within_tolerance(self):
        policy = CustomSplit(
            amounts={"alice": Decimal("50.00"), "bob": Decimal("49.995")}
        )

        splits = compute_splits(Decimal("100"), Currency.GBP, ["alice", "bob"], policy)

        assert len(splits) == 2

    def test_rejects_non_positive_entry(self):
        policy = CustomSplit(amounts={"alice": Decimal("100"), "bob": Decimal("0")})

        with pytest.raises(SplitValidationError) as exc_info:
            compute_splits(Decimal("100"), Currency.GBP, ["alice", "bob"], policy)

        assert exc_info.value.reason == SplitFailureReason.NON_POSITIVE_ENTRY
        assert exc_info.value.participant_id == "bob"

    def test_missing_entry_counts_as_zero(self):
        policy = CustomSplit(amounts={"alice": Decimal("100")})

        with pytest.raises(SplitValidationError) as exc_info:
            compute_splits(Decimal("100"), Currency.GBP, ["alice", "bob"], policy)

        assert exc_info.value.participant_id == "bob"

    def test_settlement_amounts_use_the_rate(self):
        policy = CustomSplit(amounts={"alice": Decimal("60"), "bob": Decimal("40")})

        splits = compute_splits(
            Decimal("100"),
            Currency.EUR,
            ["alice", "bob"],
            policy,
            conversion=SettlementConversion(
                rate=Decimal("0.85"), amount=Decimal("85.00")
            ),
        )

        assert [s.settlement_amount for s in splits] == [
            Decimal("51.00"),
            Decimal("34.00"),
        ]


class TestPercentageSplit:
    """Tests for percentage splits."""

    def test_accepts_percentages_summing_to_100(self):
        policy = PercentageSplit(
            percentages={"alice": Decimal("50"), "bob": Decimal("50")}
        )

        splits = compute_splits(Decimal("90"), Currency.GBP, ["alice", "bob"], policy)

        assert amounts(splits) == {"alice": Decimal("45.00"), "bob": Decimal("45.00")}
        assert all(s.percentage == Decimal("50") for s in splits)

    def test_rejects_percentages_not_summing_to_100(self):
        policy = PercentageSplit(
            percentages={"alice": Decimal("50"), "bob": Decimal("30")}
        )

        with pytest.raises(SplitValidationError) as exc_info:
            compute_splits(Decimal("90"), Currency.GBP, ["alice", "bob"], policy)

        assert exc_info.value.reason == SplitFailureReason.PERCENTAGE_MISMATCH
        assert exc_info.value.delta == Decimal("20")
        assert "80.00%" in str(exc_info.value)

    def test_rejects_non_positive_percentage(self):
        policy = PercentageSplit(
            percentages={"alice": Decimal("100"), "bob": Decimal("-5")}
        )

        with pytest.raises(SplitValidationError) as exc_info:
            compute_splits(Decimal("90"), Currency.GBP, ["alice", "bob"], policy)

        assert exc_info.value.reason == SplitFailureReason.NON_POSITIVE_ENTRY

    def test_amounts_are_rounded_to_currency(self):
        policy = PercentageSplit(
            percentages={
                "a": Decimal("33.33"),
                "b": Decimal("33.33"),
                "c": Decimal("33.34"),
            }
        )

        splits = compute_splits(Decimal("10.00"), Currency.GBP, ["a", "b", "c"], policy)

        assert [s.amount for s in splits] == [
            Decimal("3.33"),
            Decimal("3.33"),
            Decimal("3.33"),
        ]


class TestItemizedSplit:
    """Tests for itemized splits."""

    def test_sums_claims_per_participant(self, receipt):
        policy = ItemizedSplit(
            line_items=receipt,
            claims=[
                claim("pizza", "alice", 1),
                claim("pizza", "bob", 1),
                claim("wine", "bob", 1),
            ],
        )

        splits = compute_splits(Decimal("30"), Currency.EUR, [], policy)

        assert amounts(splits) == {"alice": Decimal("10.00"), "bob": Decimal("20.00")}

    def test_settlement_amounts_use_the_rate(self, receipt):
        policy = ItemizedSplit(
            line_items=receipt,
            claims=[
                claim("wine", "bob", 1)
            ],
        )

        splits = compute_splits(
            Decimal("30"),
            Currency.EUR,
            [],
            policy,
            conversion=SettlementConversion(rate=Decimal("0.5"), amount=Decimal("15")),
        )

        assert splits[0].settlement_amount == Decimal("5.00")

    def test_no_claims_no_splits(self, receipt):
        policy = ItemizedSplit(line_items=receipt)

        assert compute_splits(Decimal("30"), Currency.EUR, ["alice"], policy) == []

    def test_rejects_receipt_that_does_not_match_total(self, receipt):
        """A 500 bill with 30 of line items can never be fully claimed."""
        policy = ItemizedSplit(line_items=receipt, claims=[claim("wine", "bob", 1)])

        with pytest.raises(SplitValidationError) as exc_info:
            compute_splits(Decimal("500"), Currency.GBP, [], policy)

        assert exc_info.value.reason == SplitFailureReason.TOTAL_MISMATCH
        assert exc_info.value.delta == Decimal("470.00")

    def test_receipt_within_tolerance(self, receipt):
        policy = ItemizedSplit(line_items=receipt, claims=[claim("wine", "bob", 1)])

        splits = compute_splits(Decimal("30.01"), Currency.GBP, [], policy)

        assert amounts(splits) == {"bob": Decimal("10.00")}

    def test_rejects_over_claim(self, receipt):
        claims = [
            claim("pizza", "alice", 3)
        ]

        with pytest.raises(SplitValidationError) as exc_info:
            price_claims(receipt, claims)

        assert exc_info.value.reason == SplitFailureReason.OVER_CLAIMED
        assert exc_info.value.delta == Decimal("1")

    def test_rejects_unknown_line_item(self, receipt):
        claims = [
            claim("dessert", "alice", 1)
        ]

        with pytest.raises(SplitValidationError) as exc_info:
            price_claims(receipt, claims)

        assert exc_info.value.reason == SplitFailureReason.MISSING_LINE_ITEM


class TestAllocateReceiptCharges:
    """Tests for distributing tax and service charge across line items."""

    def make_items(self, *subtotals):
        return [
            LineItem(
                id=f"item{i}",
                name=f"Item {i}",
                quantity=Decimal("1"),
                unit_price=Decimal(s),
                subtotal=Decimal(s),
            )
            for i, s in enumerate(subtotals)
        ]

    def test_proportional_to_subtotal(self):
        items = allocate_receipt_charges(
            self.make_items("10", "20", "30"),
            tax_amount=Decimal("6.00"),
            service_charge_amount=Decimal("3.00"),
            currency=Currency.GBP,
        )

        assert [i.tax_amount for i in items] == [
            Decimal("1.00"),
            Decimal("2.00"),
            Decimal("3.00"),
        ]
        assert items[1].total_amount == Decimal("23.00")

    def test_residual_goes_to_largest_line(self):
        """A pound of tax over three equal lines can't split evenly."""
        items = allocate_receipt_charges(
            self.make_items("10", "10", "10"),
            tax_amount=Decimal("1.00"),
            service_charge_amount=Decimal("0"),
            currency=Currency.GBP,
        )

        assert sum(i.tax_amount for i in items) == Decimal("1.00")
        assert items[0].tax_amount == Decimal("0.34")

    def test_does_not_mutate_inputs(self):
        original = self.make_items("10", "20")

        allocate_receipt_charges(
            original, Decimal("3"), Decimal("0"), currency=Currency.GBP
        )

        assert all(i.tax_amount == Decimal("0") for i in original)

    def test_unit_cost_includes_charges(self, receipt):
        items = allocate_receipt_charges(
            receipt, Decimal("3.00"), Decimal("0"), currency=Currency.GBP
        )

        assert items[0].unit_cost == Decimal("11.00")


class TestClaimItems:
    """Tests for replacing a participant's claims."""

    def test_claims_available_quantity(self, receipt):
        existing = [
            claim("pizza", "alice", 1)
        ]

        claims = claim_items(receipt, existing, "bob", {"pizza": Decimal("1")})

        assert len(claims) == 1
        assert claims[0].amount_owed == Decimal("10.00")

    def test_rejects_more_than_available(self, receipt):
        existing = [
            claim("pizza", "alice", 1)
        ]

        with pytest.raises(SplitValidationError) as exc_info:
            claim_items(receipt, existing, "bob", {"pizza": Decimal("2")})

        assert exc_info.value.reason == SplitFailureReason.OVER_CLAIMED
        assert exc_info.value.participant_id == "bob"

    def test_own_previous_claim_is_available_again(self, receipt):
        """Re-claiming replaces the participant's earlier claim."""
        existing = [
            claim("pizza", "alice", 1)
        ]

        claims = claim_items(receipt, existing, "alice", {"pizza": Decimal("2")})

        assert claims[0].quantity_claimed == Decimal("2")
        assert claims[0].amount_owed == Decimal("20.00")

    def test_zero_quantities_are_dropped(self, receipt):
        claims = claim_items(
            receipt, [], "alice", {"pizza": Decimal("0"), "wine": Decimal("1")}
        )

        assert [c.line_item_id for c in claims] == ["wine"]

    def test_rejects_negative_quantity(self, receipt):
        with pytest.raises(SplitValidationError) as exc_info:
            claim_items(receipt, [], "alice", {"pizza": Decimal("-1")})

        assert exc_info.value.reason == SplitFailureReason.NON_POSITIVE_ENTRY


class TestAllocationProgress:
    """Tests for itemized allocation progress."""

    def test_partial(self, receipt):
        claims = [
            claim("pizza", "alice", 1)
        ]

        progress = allocation_progress(receipt, claims)

        assert round(progress, 2) == Decimal("33.33")
        assert not is_fully_allocated(receipt, claims)

    def test_fully_allocated(self, receipt):
        claims = [
            claim("pizza", "alice", 2),
            claim("wine", "bob", 1),
        ]

        assert allocation_progress(receipt, claims) == Decimal("100")
        assert is_fully_allocated(receipt, claims)

    def test_no_line_items(self):
        assert allocation_progress([], []) == Decimal("0")
