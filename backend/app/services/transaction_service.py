from __future__ import annotations

from typing import Any

import pandas as pd

from app.core.exceptions import EntityNotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.utils import manual_external_key
from app.schemas.models import NO_DESCRIPTION, TransactionCreate, TransactionType, TransactionUpdate
from app.services.balance_service import month_bounds, sum_by_type, validate_month

logger = get_logger("saldo.services.transaction")

UNCATEGORIZED = {"name": "Uncategorized", "icon": "📦", "color": "#94a3b8"}
UNKNOWN_CATEGORY = {"name": "Unknown category", "icon": "❓", "color": "#94a3b8"}


class TransactionService:
    """Manual transactions, month listings, month summaries and categories."""

    def __init__(self, repository: Any, default_currency: str = "EUR") -> None:
        self.repository = repository
        self.default_currency = default_currency

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def list_month(self, year: int, month: int) -> list[dict[str, Any]]:
        validate_month(year, month)
        start, end = month_bounds(year, month)
        return self.repository.list_transactions(start_date=start, end_date=end)

    def get_transaction(self, transaction_id: str) -> dict[str, Any]:
        txn = self.repository.get_transaction(transaction_id)
        if txn is None:
            logger.warning(f"Transaction not found: {transaction_id}")
            raise EntityNotFoundError(f"Transaction not found: {transaction_id}")
        return txn

    def create_manual(self, payload: TransactionCreate) -> dict[str, Any]:
        """Store a user-entered transaction.

        A negative amount is read as an expense regardless of the given type;
        the stored amount is always the magnitude.
        """
        if not payload.amount:
            raise ValidationError("Amount must be non-zero")

        txn_type = TransactionType.EXPENSE if payload.amount < 0 else payload.type
        row = {
            "revolut_id": manual_external_key(),
            "date": payload.date,
            "description": payload.description.strip() or NO_DESCRIPTION,
            "amount": abs(payload.amount),
            "type": txn_type.value,
            "currency": payload.currency or self.default_currency,
            "category_id": payload.category_id or None,
            "is_manual": True,
            "is_recurring": payload.is_recurring,
        }
        created = self.repository.create_transaction(row)
        logger.info(f"Created manual transaction {created['id']}: {row['type']} {row['amount']:.2f}")
        return created

    def update_transaction(self, transaction_id: str, payload: TransactionUpdate) -> dict[str, Any]:
        fields = payload.model_dump(mode="json", exclude_unset=True)
        if "description" in fields:
            fields["description"] = (fields["description"] or "").strip() or NO_DESCRIPTION
        if "category_id" in fields:
            fields["category_id"] = fields["category_id"] or None
        if not fields:
            return self.get_transaction(transaction_id)

        updated = self.repository.update_transaction(transaction_id, fields)
        if updated is None:
            raise EntityNotFoundError(f"Transaction not found: {transaction_id}")
        logger.info(f"Updated transaction {transaction_id}: {sorted(fields)}")
        return updated

    def delete_transaction(self, transaction_id: str) -> None:
        if not self.repository.delete_transaction(transaction_id):
            raise EntityNotFoundError(f"Transaction not found: {transaction_id}")
        logger.info(f"Deleted transaction {transaction_id}")

    # -------------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------------

    def month_summary(self, year: int, month: int) -> dict[str, Any]:
        transactions = self.list_month(year, month)
        categories = self.repository.list_categories()
        summary = self._build_summary(transactions)
        return {
            "year": year,
            "month": month,
            **summary,
            "transaction_count": len(transactions),
            "breakdown": self._build_breakdown(transactions, categories),
        }

    @staticmethod
    def _build_summary(transactions: list[dict[str, Any]]) -> dict[str, float]:
        income, expenses = sum_by_type(transactions)
        return {
            "total_income": income,
            "total_expenses": expenses,
            "net": round(income - expenses, 2),
        }

    @staticmethod
    def _build_breakdown(
        transactions: list[dict[str, Any]],
        categories: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        """Expenses grouped by category, largest first, with percentages."""
        df = pd.DataFrame(transactions)
        if df.empty or "type" not in df.columns:
            return []

        expense_df = df[df["type"] == "expense"].copy()
        if expense_df.empty:
            return []

        if "category_id" not in expense_df.columns:
            expense_df["category_id"] = None
        expense_df["category_key"] = expense_df["category_id"].fillna("").astype(str)
        expense_df["amount"] = expense_df["amount"].astype(float).abs()
        totals = expense_df.groupby("category_key")["amount"].sum().sort_values(ascending=False)
        grand_total = float(totals.sum())

        by_id = {cat["id"]: cat for cat in categories}
        breakdown = []
        for key, amount in totals.items():
            if not key:
                info = UNCATEGORIZED
            else:
                info = by_id.get(key, UNKNOWN_CATEGORY)
            breakdown.append(
                {
                    "category_id": key or None,
                    "name": info.get("name", UNKNOWN_CATEGORY["name"]),
                    "icon": info.get("icon") or UNKNOWN_CATEGORY["icon"],
                    "color": info.get("color") or UNKNOWN_CATEGORY["color"],
                    "amount": round(float(amount), 2),
                    "percentage": round(float(amount) / grand_total * 100, 1) if grand_total > 0 else 0.0,
                }
            )
        return breakdown

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    def list_categories(self) -> list[dict[str, Any]]:
        return self.repository.list_categories()

    def create_category(self, name: str, icon: str, color: str) -> dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name must not be empty")
        category = self.repository.create_category({"name": name, "icon": icon, "color": color})
        logger.info(f"Created category '{name}' ({category['id']})")
        return category

    def delete_category(self, category_id: str) -> None:
        """Delete a category. References on transactions and rules are kept."""
        if not self.repository.delete_category(category_id):
            raise EntityNotFoundError(f"Category not found: {category_id}")
        logger.info(f"Deleted category {category_id}")
