"""SQLite database operations for Trip Ledger."""

import sqlite3
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

from .models import (
    CachedRate,
    Currency,
    Expense,
    ExpenseRecord,
    ExpenseSplit,
    ItemClaim,
    LineItem,
    Settlement,
    SplitPolicy,
)


def _dec(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _str(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path | str):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        # Durable FX cache tier
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS fx_rate_cache (
                cache_key TEXT PRIMARY KEY,
                rate TEXT NOT NULL,
                rate_date DATE NOT NULL,
                from_currency TEXT NOT NULL,
                to_currency TEXT NOT NULL,
                cached_at TIMESTAMP NOT NULL
            )
        """
        )

        # Expenses table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                trip_id TEXT NOT NULL,
                paid_by TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                amount TEXT NOT NULL,
                currency TEXT NOT NULL,
                payment_date DATE NOT NULL,
                settlement_amount TEXT,
                fx_rate TEXT,
                fx_rate_date DATE,
                split_policy TEXT NOT NULL,
                approximate_rate INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_expenses_trip ON expenses (trip_id)"
        )

        # Split rows - only positive obligations may be stored
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expense_splits (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                expense_id INTEGER NOT NULL REFERENCES expenses (id) ON DELETE CASCADE,
                participant_id TEXT NOT NULL,
                amount TEXT NOT NULL CHECK (CAST(amount AS REAL) > 0),
                percentage TEXT,
                settlement_amount TEXT
            )
        """
        )

        # Itemized receipts
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS line_items (
                id TEXT NOT NULL,
                expense_id INTEGER NOT NULL REFERENCES expenses (id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                quantity TEXT NOT NULL,
                unit_price TEXT NOT NULL,
                subtotal TEXT NOT NULL,
                tax_amount TEXT NOT NULL,
                service_amount TEXT NOT NULL,
                PRIMARY KEY (expense_id, id)
            )
        """
        )
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS item_claims (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                expense_id INTEGER NOT NULL REFERENCES expenses (id) ON DELETE CASCADE,
                line_item_id TEXT NOT NULL,
                participant_id TEXT NOT NULL,
                quantity_claimed TEXT NOT NULL,
                amount_owed TEXT NOT NULL,
                FOREIGN KEY (expense_id, line_item_id)
                    REFERENCES line_items (expense_id, id) ON DELETE CASCADE
            )
        """
        )

        # Settlements table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS settlements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                trip_id TEXT NOT NULL,
                from_participant TEXT NOT NULL,
                to_participant TEXT NOT NULL,
                amount TEXT NOT NULL CHECK (CAST(amount AS REAL) > 0),
                settled_at DATE NOT NULL,
                method TEXT,
                notes TEXT,
                CHECK (from_participant <> to_participant)
            )
        """
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_settlements_trip ON settlements (trip_id)"
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    # ========================================================================
    # FX cache operations
    # ========================================================================

    def get_cached_rate(self, cache_key: str) -> CachedRate | None:
        """Get a cached FX rate by key."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT rate, rate_date, from_currency, to_currency, cached_at
            FROM fx_rate_cache
            WHERE cache_key = ?
            """,
            (cache_key,),
        )
        row = cursor.fetchone()
        if not row:
            return None

        return CachedRate(
            rate=Decimal(row["rate"]),
            date=date.fromisoformat(row["rate_date"]),
            from_currency=Currency(row["from_currency"]),
            to_currency=Currency(row["to_currency"]),
            cached_at=datetime.fromisoformat(row["cached_at"]),
        )

    def save_cached_rate(self, cache_key: str, cached: CachedRate):
        """Insert or replace a cached FX rate."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO fx_rate_cache (
                cache_key, rate, rate_date, from_currency, to_currency, cached_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(cache_key) DO UPDATE SET
                rate = excluded.rate,
                rate_date = excluded.rate_date,
                from_currency = excluded.from_currency,
                to_currency = excluded.to_currency,
                cached_at = excluded.cached_at
            """,
            (
                cache_key,
                str(cached.rate),
                cached.date.isoformat(),
                str(cached.from_currency),
                str(cached.to_currency),
                cached.cached_at.isoformat(),
            ),
        )
        self.conn.commit()

    def delete_cached_rate(self, cache_key: str):
        """Remove a cached FX rate."""
        self.conn.execute("DELETE FROM fx_rate_cache WHERE cache_key = ?", (cache_key,))
        self.conn.commit()

    def clear_cached_rates(self) -> int:
        """Remove all cached FX rates. Returns the number of rows removed."""
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM fx_rate_cache")
        self.conn.commit()
        return cursor.rowcount

    # ========================================================================
    # Expense operations
    # ========================================================================

    def insert_expense(self, expense: Expense) -> int:
        """Save an expense record and return its generated id."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO expenses (
                trip_id, paid_by, description, amount, currency, payment_date,
                settlement_amount, fx_rate, fx_rate_date, split_policy,
                approximate_rate, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            self._expense_params(expense) + (expense.created_at.isoformat(),),
        )
        self.conn.commit()
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Failed to insert expense record")
        return row_id

    def update_expense(self, expense: Expense):
        """Overwrite an existing expense record."""
        if expense.id is None:
            raise ValueError("Cannot update an expense without an id")
        self.conn.execute(
            """
            UPDATE expenses SET
                trip_id = ?, paid_by = ?, description = ?, amount = ?,
                currency = ?, payment_date = ?, settlement_amount = ?,
                fx_rate = ?, fx_rate_date = ?, split_policy = ?,
                approximate_rate = ?
            WHERE id = ?
            """,
            self._expense_params(expense) + (expense.id,),
        )
        self.conn.commit()

    def _expense_params(self, expense: Expense) -> tuple:
        return (
            expense.trip_id,
            expense.paid_by,
            expense.description,
            str(expense.amount),
            str(expense.currency),
            expense.payment_date.isoformat(),
            _str(expense.settlement_amount),
            _str(expense.fx_rate),
            expense.fx_rate_date.isoformat() if expense.fx_rate_date else None,
            str(expense.split_policy),
            int(expense.approximate_rate),
        )

    def get_expense(self, expense_id: int) -> Expense | None:
        """Get an expense by id."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM expenses WHERE id = ?", (expense_id,))
        row = cursor.fetchone()
        return self._row_to_expense(row) if row else None

    def get_expenses_for_trip(self, trip_id: str) -> list[Expense]:
        """Get all expenses of a trip, most recent payment first."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM expenses
            WHERE trip_id = ?
            ORDER BY payment_date DESC, id DESC
            """,
            (trip_id,),
        )
        return [self._row_to_expense(row) for row in cursor.fetchall()]

    def _row_to_expense(self, row: sqlite3.Row) -> Expense:
        return Expense(
            id=row["id"],
            trip_id=row["trip_id"],
            paid_by=row["paid_by"],
            description=row["description"],
            amount=Decimal(row["amount"]),
            currency=Currency(row["currency"]),
            payment_date=date.fromisoformat(row["payment_date"]),
            settlement_amount=_dec(row["settlement_amount"]),
            fx_rate=_dec(row["fx_rate"]),
            fx_rate_date=(
                date.fromisoformat(row["fx_rate_date"]) if row["fx_rate_date"] else None
            ),
            split_policy=SplitPolicy(row["split_policy"]),
            approximate_rate=bool(row["approximate_rate"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # ========================================================================
    # Split operations
    # ========================================================================

    def insert_splits(self, expense_id: int, splits: list[ExpenseSplit]) -> list[int]:
        """Save all split rows of an expense in one transaction."""
        cursor = self.conn.cursor()
        row_ids = []
        try:
            for split in splits:
                cursor.execute(
                    """
                    INSERT INTO expense_splits (
                        expense_id, participant_id, amount, percentage,
                        settlement_amount
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        expense_id,
                        split.participant_id,
                        str(split.amount),
                        _str(split.percentage),
                        _str(split.settlement_amount),
                    ),
                )
                if cursor.lastrowid is None:
                    raise RuntimeError("Failed to insert split record")
                row_ids.append(cursor.lastrowid)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return row_ids

    def delete_splits_for_expense(self, expense_id: int):
        """Remove every split row of an expense."""
        self.conn.execute(
            "DELETE FROM expense_splits WHERE expense_id = ?", (expense_id,)
        )
        self.conn.commit()

    def delete_line_items_for_expense(self, expense_id: int):
        """Remove an expense's line items and, by cascade, their claims."""
        self.conn.execute("DELETE FROM line_items WHERE expense_id = ?", (expense_id,))
        self.conn.commit()

    def get_splits_for_trip(self, trip_id: str) -> list[ExpenseSplit]:
        """Get all split rows belonging to a trip's expenses."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT s.* FROM expense_splits s
            JOIN expenses e ON e.id = s.expense_id
            WHERE e.trip_id = ?
            ORDER BY s.id
            """,
            (trip_id,),
        )
        return [
            ExpenseSplit(
                id=row["id"],
                expense_id=row["expense_id"],
                participant_id=row["participant_id"],
                amount=Decimal(row["amount"]),
                percentage=_dec(row["percentage"]),
                settlement_amount=_dec(row["settlement_amount"]),
            )
            for row in cursor.fetchall()
        ]

    # ========================================================================
    # Itemized receipt operations
    # ========================================================================

    def save_line_items(self, expense_id: int, line_items: list[LineItem]):
        """Replace the line items of an expense."""
        try:
            self.conn.execute(
                "DELETE FROM line_items WHERE expense_id = ?", (expense_id,)
            )
            self.conn.executemany(
                """
                INSERT INTO line_items (
                    id, expense_id, name, quantity, unit_price, subtotal,
                    tax_amount, service_amount
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        item.id,
                        expense_id,
                        item.name,
                        str(item.quantity),
                        str(item.unit_price),
                        str(item.subtotal),
                        str(item.tax_amount),
                        str(item.service_amount),
                    )
                    for item in line_items
                ],
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def save_claims(
        self, expense_id: int, participant_id: str, claims: list[ItemClaim]
    ) -> list[int]:
        """Replace one participant's claims on an expense."""
        cursor = self.conn.cursor()
        row_ids = []
        try:
            cursor.execute(
                "DELETE FROM item_claims WHERE expense_id = ? AND participant_id = ?",
                (expense_id, participant_id),
            )
            for claim in claims:
                cursor.execute(
                    """
                    INSERT INTO item_claims (
                        expense_id, line_item_id, participant_id,
                        quantity_claimed, amount_owed
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        expense_id,
                        claim.line_item_id,
                        claim.participant_id,
                        str(claim.quantity_claimed),
                        str(claim.amount_owed or Decimal("0")),
                    ),
                )
                if cursor.lastrowid is None:
                    raise RuntimeError("Failed to insert claim record")
                row_ids.append(cursor.lastrowid)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return row_ids

    def get_line_items_for_expense(self, expense_id: int) -> list[LineItem]:
        """Get the line items of an expense."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM line_items WHERE expense_id = ? ORDER BY rowid",
            (expense_id,),
        )
        return [self._row_to_line_item(row) for row in cursor.fetchall()]

    def get_claims_for_expense(self, expense_id: int) -> list[ItemClaim]:
        """Get every claim on an expense."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM item_claims WHERE expense_id = ? ORDER BY id",
            (expense_id,),
        )
        return [self._row_to_claim(row) for row in cursor.fetchall()]

    def _row_to_line_item(self, row: sqlite3.Row) -> LineItem:
        return LineItem(
            id=row["id"],
            name=row["name"],
            quantity=Decimal(row["quantity"]),
            unit_price=Decimal(row["unit_price"]),
            subtotal=Decimal(row["subtotal"]),
            tax_amount=Decimal(row["tax_amount"]),
            service_amount=Decimal(row["service_amount"]),
        )

    def _row_to_claim(self, row: sqlite3.Row) -> ItemClaim:
        return ItemClaim(
            id=row["id"],
            line_item_id=row["line_item_id"],
            participant_id=row["participant_id"],
            quantity_claimed=Decimal(row["quantity_claimed"]),
            amount_owed=Decimal(row["amount_owed"]),
        )

    # ========================================================================
    # Settlement operations
    # ========================================================================

    def insert_settlement(self, settlement: Settlement) -> int:
        """Save a settlement record and return its generated id."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO settlements (
                trip_id, from_participant, to_participant, amount,
                settled_at, method, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                settlement.trip_id,
                settlement.from_participant,
                settlement.to_participant,
                str(settlement.amount),
                settlement.settled_at.isoformat(),
                settlement.method,
                settlement.notes,
            ),
        )
        self.conn.commit()
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Failed to insert settlement record")
        return row_id

    def get_settlements_for_trip(self, trip_id: str) -> list[Settlement]:
        """Get all settlements of a trip, most recent first."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM settlements
            WHERE trip_id = ?
            ORDER BY settled_at DESC, id DESC
            """,
            (trip_id,),
        )
        return [
            Settlement(
                id=row["id"],
                trip_id=row["trip_id"],
                from_participant=row["from_participant"],
                to_participant=row["to_participant"],
                amount=Decimal(row["amount"]),
                settled_at=date.fromisoformat(row["settled_at"]),
                method=row["method"],
                notes=row["notes"],
            )
            for row in cursor.fetchall()
        ]

    # ========================================================================
    # Trip-level queries
    # ========================================================================

    def get_expense_records(self, trip_id: str) -> list[ExpenseRecord]:
        """Get every expense of a trip with its splits, line items and claims."""
        splits_by_expense: dict[int, list[ExpenseSplit]] = {}
        for split in self.get_splits_for_trip(trip_id):
            if split.expense_id is not None:
                splits_by_expense.setdefault(split.expense_id, []).append(split)

        records = []
        for expense in self.get_expenses_for_trip(trip_id):
            is_itemized = expense.split_policy == SplitPolicy.ITEMIZED
            records.append(
                ExpenseRecord(
                    expense=expense,
                    splits=splits_by_expense.get(expense.id, []),
                    line_items=(
                        self.get_line_items_for_expense(expense.id)
                        if is_itemized
                        else []
                    ),
                    claims=(
                        self.get_claims_for_expense(expense.id) if is_itemized else []
                    ),
                )
            )
        return records

    def get_trip_participant_ids(self, trip_id: str) -> list[str]:
        """Participants that appear anywhere in a trip's ledger, sorted."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT paid_by AS pid FROM expenses WHERE trip_id = :trip
            UNION
            SELECT s.participant_id FROM expense_splits s
                JOIN expenses e ON e.id = s.expense_id WHERE e.trip_id = :trip
            UNION
            SELECT c.participant_id FROM item_claims c
                JOIN expenses e ON e.id = c.expense_id WHERE e.trip_id = :trip
            UNION
            SELECT from_participant FROM settlements WHERE trip_id = :trip
            UNION
            SELECT to_participant FROM settlements WHERE trip_id = :trip
            ORDER BY pid
            """,
            {"trip": trip_id},
        )
        return [row["pid"] for row in cursor.fetchall()]
