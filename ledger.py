import logging
import math
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

import pandas as pd

logger = logging.getLogger(__name__)

CSV_COLUMNS = {
    'address': 'Address',
    'amount': 'Amount MET',
    'status': 'Status',
    'date': 'Date',
}


class InsufficientFunds(ValueError):
    pass


def _is_finite(amount):
    try:
        return math.isfinite(amount)
    except OverflowError:
        return False


@dataclass(frozen=True)
class Transaction:
    address: str
    amount: float
    status: str
    mode: str = 'paid'
    date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        d = asdict(self)
        d['date'] = self.date.isoformat()
        return d


class Ledger:
    """Append-only transaction log plus per-wallet balances.

    Every write goes through one lock, so balances and the log never
    disagree. Free-play accounts are seeded with starting credits the
    first time they are touched; paid accounts start at zero.
    """

    def __init__(self, free_starting_credits=1000.0):
        self.free_starting_credits = float(free_starting_credits)
        self._lock = threading.Lock()
        self._transactions = []
        self._balances = {}

    def _opening_balance(self, mode):
        return self.free_starting_credits if mode == 'free' else 0.0

    @staticmethod
    def _check_amount(amount, kind):
        if not _is_finite(amount):
            raise ValueError(f"{kind} amount must be a finite number, got {amount}")
        if amount < 0:
            raise ValueError(f"{kind} amount must not be negative, got {amount}")

    def _balance_locked(self, mode, wallet):
        # Reads never create an account; only credit, debit and reset store one
        return self._balances.get((mode, wallet), self._opening_balance(mode))

    def _append_locked(self, address, amount, status, mode):
        tx = Transaction(address=address, amount=float(amount), status=status, mode=mode)
        self._transactions.append(tx)
        return tx

    def record(self, address, amount, status, mode='paid'):
        if not _is_finite(amount):
            raise ValueError(f"Transaction amount must be a finite number, got {amount}")
        with self._lock:
            return self._append_locked(address, amount, status, mode)

    def balance(self, mode, wallet):
        with self._lock:
            return self._balance_locked(mode, wallet)

    def balances(self, mode):
        with self._lock:
            return {wallet: amount for (m, wallet), amount in self._balances.items() if m == mode}

    def credit(self, mode, wallet, amount, status='credit'):
        self._check_amount(amount, 'Credit')
        with self._lock:
            new_balance = self._balance_locked(mode, wallet) + amount
            self._balances[(mode, wallet)] = new_balance
            self._append_locked(wallet, amount, status, mode)
        return new_balance

    def debit(self, mode, wallet, amount, status='debit'):
        self._check_amount(amount, 'Debit')
        with self._lock:
            current = self._balance_locked(mode, wallet)
            if current < amount:
                raise InsufficientFunds(f"Balance {current:.2f} is less than {amount:.2f}")
            new_balance = current - amount
            self._balances[(mode, wallet)] = new_balance
            self._append_locked(wallet, -amount, status, mode)
        return new_balance

    def reset(self, mode, wallet):
        with self._lock:
            opening = self._opening_balance(mode)
            self._balances[(mode, wallet)] = opening
            self._append_locked(wallet, opening, 'reset', mode)
        logger.info("Reset %s balance for %s to %.2f", mode, wallet, opening)
        return opening

    def transactions(self):
        with self._lock:
            return list(self._transactions)

    def to_frame(self):
        rows = [tx.to_dict() for tx in self.transactions()]
        return pd.DataFrame(rows, columns=['address', 'amount', 'status', 'mode', 'date'])

    def export_csv(self):
        df = self.to_frame()[list(CSV_COLUMNS)].rename(columns=CSV_COLUMNS)
        return df.to_csv(index=False)
