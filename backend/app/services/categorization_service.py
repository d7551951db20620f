from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from app.core.exceptions import EntityNotFoundError, ValidationError
from app.core.logging import LogContext, get_logger
from app.services.rule_engine import RuleEngine

logger = get_logger("saldo.services.categorization")


@dataclass
class RuleCreation:
    rule: dict[str, Any]
    applied_count: int


@dataclass
class CategorizationOutcome:
    updated: int
    rule: dict[str, Any] | None = None


class CategorizationService:
    """Merchant rules plus manual and bulk categorization of stored transactions."""

    def __init__(self, repository: Any) -> None:
        self.repository = repository

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    def list_rules(self) -> list[dict[str, Any]]:
        """Rules in the order the engine evaluates them."""
        return RuleEngine.order_rules(self.repository.list_rules())

    def create_rule(
        self,
        pattern: str,
        category_id: str,
        apply_to_existing: bool = True,
    ) -> RuleCreation:
        """Create a keyword rule, optionally recategorizing matching transactions.

        Every stored transaction whose description contains the pattern
        (case-insensitive) gets the rule's category, whatever it had before.

        Args:
            pattern: Substring to look for in descriptions
            category_id: Category assigned on match
            apply_to_existing: Also update already stored transactions

        Returns:
            The created rule and how many transactions were updated
        """
        pattern = (pattern or "").strip()
        if not pattern:
            raise ValidationError("Rule pattern must not be empty")
        if not category_id:
            raise ValidationError("Rule requires a category")

        rule = self.repository.create_rule({"merchant_pattern": pattern, "category_id": category_id})
        logger.info(f"Created rule '{pattern}' -> {category_id}")

        applied = 0
        if apply_to_existing:
            with LogContext(logger, "retroactive rule apply", pattern=pattern):
                matches = self.repository.list_transactions(description_contains=pattern)
                applied = self.repository.update_transactions_category(
                    [txn["id"] for txn in matches], category_id
                )
            logger.info(f"Rule '{pattern}' applied to {applied} existing transactions")

        return RuleCreation(rule=rule, applied_count=applied)

    def delete_rule(self, rule_id: str) -> None:
        if not self.repository.delete_rule(rule_id):
            raise EntityNotFoundError(f"Rule not found: {rule_id}")
        logger.info(f"Deleted rule {rule_id}")

    def upsert_rule(self, pattern: str, category_id: str) -> dict[str, Any]:
        """Point the rule with exactly this pattern at category_id, creating it if needed."""
        existing = self.repository.get_rule_by_pattern(pattern)
        if existing is None:
            return self.repository.create_rule({"merchant_pattern": pattern, "category_id": category_id})
        if existing.get("category_id") == category_id:
            return existing
        updated = self.repository.update_rule(existing["id"], {"category_id": category_id})
        return updated or existing

    # -------------------------------------------------------------------------
    # Manual categorization
    # -------------------------------------------------------------------------

    def categorize_transaction(
        self,
        transaction_id: str,
        category_id: str | None,
        scope: str = "single",
        create_rule: bool = False,
        overwrite_existing: bool = False,
    ) -> CategorizationOutcome:
        """Assign a category to one transaction and, optionally, its look-alikes.

        With scope="all" every other transaction whose description is exactly
        the same also gets the category. Look-alikes that already have a
        category are only changed when overwrite_existing is set.

        With create_rule, a rule whose pattern is the full description is
        created (or repointed) so future imports pick the category up.
        """
        if scope not in {"single", "all"}:
            raise ValidationError(f"Unknown categorization scope: {scope}")

        txn = self.repository.get_transaction(transaction_id)
        if txn is None:
            raise EntityNotFoundError(f"Transaction not found: {transaction_id}")

        description = txn.get("description") or ""
        rule = None
        if create_rule and category_id and description.strip():
            rule = self.upsert_rule(description, category_id)
            logger.info(f"Rule for '{description}' -> {category_id}")

        ids = [transaction_id]
        if scope == "all" and description:
            for other in self.repository.list_transactions(description_equals=description):
                if other["id"] == transaction_id:
                    continue
                if other.get("category_id") and not overwrite_existing:
                    continue
                ids.append(other["id"])

        updated = self.repository.update_transactions_category(ids, category_id)
        logger.info(f"Categorized {updated} transaction(s) like '{description}' as {category_id}")
        return CategorizationOutcome(updated=updated, rule=rule)

    # -------------------------------------------------------------------------
    # Bulk categorization
    # -------------------------------------------------------------------------

    @staticmethod
    def _range(start_date: date, end_date: date) -> tuple[str, str]:
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date")
        return start_date.isoformat(), end_date.isoformat()

    def preview_bulk(self, start_date: date, end_date: date, keyword: str | None = None) -> int:
        """Count the transactions a bulk categorization would touch."""
        start, end = self._range(start_date, end_date)
        return self.repository.count_transactions(
            start_date=start,
            end_date=end,
            description_contains=(keyword or "").strip() or None,
        )

    def bulk_categorize(
        self,
        start_date: date,
        end_date: date,
        category_id: str,
        keyword: str | None = None,
    ) -> int:
        """Set category_id on every transaction in the range (optionally keyword-filtered).

        Zero matches is a normal outcome and returns 0.
        """
        start, end = self._range(start_date, end_date)
        keyword = (keyword or "").strip() or None
        with LogContext(logger, "bulk categorization", start=start, end=end, keyword=keyword):
            updated = self.repository.update_category_where(
                category_id,
                start_date=start,
                end_date=end,
                description_contains=keyword,
            )
        logger.info(f"Bulk categorization updated {updated} transactions")
        return updated
