"""Trip Ledger - Multi-currency shared expenses and settle-up suggestions."""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .db import Database
from .ledger.balances import compute_balances, is_settled
from .ledger.fx import FXRateCache, FXRateResolver, build_resolver
from .ledger.minimizer import minimize_transactions, transactions_for
from .ledger.service import LedgerService
from .ledger.splits import allocate_receipt_charges, compute_splits
from .models import (
    Balance,
    Currency,
    Expense,
    ExpenseSplit,
    Settlement,
    Transaction,
)

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "compute_balances",
    "is_settled",
    "FXRateCache",
    "FXRateResolver",
    "build_resolver",
    "minimize_transactions",
    "transactions_for",
    "LedgerService",
    "allocate_receipt_charges",
    "compute_splits",
    "Balance",
    "Currency",
    "Expense",
    "ExpenseSplit",
    "Settlement",
    "Transaction",
]
