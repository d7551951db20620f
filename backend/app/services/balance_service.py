from __future__ import annotations

import calendar
from typing import Any

from app.core.exceptions import ValidationError
from app.core.logging import get_logger

logger = get_logger("saldo.services.balance")


def previous_month(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def next_month(year: int, month: int) -> tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def month_bounds(year: int, month: int) -> tuple[str, str]:
    """First and last day of the month as ISO dates."""
    last_day = calendar.monthrange(year, month)[1]
    return f"{year:04d}-{month:02d}-01", f"{year:04d}-{month:02d}-{last_day:02d}"


def validate_month(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError(f"Month must be between 1 and 12, got {month}")
    if not 1900 <= year <= 9999:
        raise ValidationError(f"Year out of range: {year}")


def sum_by_type(transactions: list[dict[str, Any]]) -> tuple[float, float]:
    """Total income and total expenses of a list of transactions."""
    income = sum(abs(t.get("amount") or 0) for t in transactions if t.get("type") == "income")
    expenses = sum(abs(t.get("amount") or 0) for t in transactions if t.get("type") == "expense")
    return round(income, 2), round(expenses, 2)


class BalanceService:
    """Monthly starting/ending balances and their reconciliation.

    Balances chain forward: saving a month's ending balance writes it as the
    next month's starting balance. They are a check on the recorded
    transactions, never an input to them.
    """

    BALANCED_TOLERANCE = 0.005

    def __init__(self, repository: Any) -> None:
        self.repository = repository

    def get_balance(self, year: int, month: int) -> dict[str, Any]:
        """Stored balance for the month, or one pre-filled from the previous month."""
        validate_month(year, month)
        stored = self.repository.get_monthly_balance(year, month)
        if stored is not None:
            return dict(stored) | {"is_prefilled": False}

        prev = self.repository.get_monthly_balance(*previous_month(year, month))
        starting = prev.get("ending_balance") if prev else None
        return {
            "year": year,
            "month": month,
            "starting_balance": starting,
            "ending_balance": None,
            "notes": None,
            "is_prefilled": starting is not None,
        }

    def save_balance(
        self,
        year: int,
        month: int,
        starting_balance: float | None,
        ending_balance: float | None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Upsert the month and carry its ending balance into the next month."""
        validate_month(year, month)
        saved = self.repository.upsert_monthly_balance(
            {
                "year": year,
                "month": month,
                "starting_balance": starting_balance,
                "ending_balance": ending_balance,
                "notes": notes,
            }
        )
        logger.info(f"Saved balance {year}-{month:02d}: start={starting_balance}, end={ending_balance}")

        if ending_balance is not None:
            self._carry_forward(year, month, ending_balance)
        return dict(saved) | {"is_prefilled": False}

    def _carry_forward(self, year: int, month: int, ending_balance: float) -> None:
        next_year, next_mon = next_month(year, month)
        existing = self.repository.get_monthly_balance(next_year, next_mon) or {}
        if existing and existing.get("starting_balance") == ending_balance:
            return
        self.repository.upsert_monthly_balance(
            {
                "year": next_year,
                "month": next_mon,
                "starting_balance": ending_balance,
                "ending_balance": existing.get("ending_balance"),
                "notes": existing.get("notes"),
            }
        )
        logger.debug(f"Carried ending balance {ending_balance} into {next_year}-{next_mon:02d}")

    def list_year(self, year: int) -> list[dict[str, Any]]:
        return self.repository.list_monthly_balances(year)

    def reconcile(self, year: int, month: int) -> dict[str, Any]:
        """Compare the user's balances with the month's recorded transactions.

        expected_change = income - expenses
        accounting_balance = starting_balance + expected_change
        difference = ending_balance - accounting_balance

        A negative difference is a shortfall: less money in the account than
        the transactions explain.
        """
        balance = self.get_balance(year, month)
        start, end = month_bounds(year, month)
        transactions = self.repository.list_transactions(start_date=start, end_date=end)
        income, expenses = sum_by_type(transactions)
        return self.compute_reconciliation(
            year,
            month,
            income,
            expenses,
            balance.get("starting_balance"),
            balance.get("ending_balance"),
        )

    @classmethod
    def compute_reconciliation(
        cls,
        year: int,
        month: int,
        income: float,
        expenses: float,
        starting_balance: float | None,
        ending_balance: float | None,
    ) -> dict[str, Any]:
        expected_change = round(income - expenses, 2)
        accounting_balance = None
        difference = None
        if starting_balance is not None:
            accounting_balance = round(starting_balance + expected_change, 2)
            if ending_balance is not None:
                difference = round(ending_balance - accounting_balance, 2)

        if difference is None:
            status = "incomplete"
            message = "Enter both starting and ending balance to reconcile this month."
        elif abs(difference) < cls.BALANCED_TOLERANCE:
            status = "balanced"
            message = "Balances match the recorded transactions."
        elif difference < 0:
            status = "shortfall"
            message = f"{abs(difference):.2f} missing compared to the recorded transactions."
        else:
            status = "surplus"
            message = f"{difference:.2f} more than the recorded transactions explain."

        return {
            "year": year,
            "month": month,
            "total_income": income,
            "total_expenses": expenses,
            "expected_change": expected_change,
            "starting_balance": starting_balance,
            "ending_balance": ending_balance,
            "accounting_balance": accounting_balance,
            "difference": difference,
            "status": status,
            "message": message,
        }
