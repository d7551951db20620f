from __future__ import annotations

from typing import Any, Iterable

from app.core.logging import get_logger

logger = get_logger("saldo.services.rule_engine")


class RuleEngine:
    """First-match keyword rules mapping a description to a category.

    Rules with a created_at are scanned oldest first, ties keeping the order
    they were given in. Rules without a timestamp stay at their position.
    There is no specificity ranking: with rules "AMA" then "AMAZON",
    "AMAZON PRIME" resolves to the "AMA" category.
    """

    def __init__(self, rules: Iterable[dict[str, Any]]) -> None:
        self.rules = self.order_rules(rules)

    @staticmethod
    def order_rules(rules: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
        rules = list(rules)
        # Undated rules keep their slot; dated rules are reordered among the rest
        slots = [i for i, rule in enumerate(rules) if rule.get("created_at")]
        dated = sorted((rules[i] for i in slots), key=lambda r: r["created_at"])
        for slot, rule in zip(slots, dated):
            rules[slot] = rule
        return rules

    @staticmethod
    def matches(description: str | None, pattern: str | None) -> bool:
        if not description or not pattern or not pattern.strip():
            return False
        return pattern.upper() in description.upper()

    def find_rule(self, description: str | None) -> dict[str, Any] | None:
        for rule in self.rules:
            if self.matches(description, rule.get("merchant_pattern")):
                return rule
        return None

    def match(self, description: str | None) -> str | None:
        """Return the category_id of the first matching rule, or None."""
        rule = self.find_rule(description)
        return rule.get("category_id") if rule else None

    def apply(self, transactions: list[dict[str, Any]]) -> set[int]:
        """Attach a category to every uncategorized transaction a rule matches.

        Transactions that already carry a category_id are left untouched.

        Args:
            transactions: Transaction dicts, updated in place

        Returns:
            Indices of the transactions that received a category
        """
        matched: set[int] = set()
        if not self.rules:
            return matched

        for idx, txn in enumerate(transactions):
            if txn.get("category_id"):
                continue
            category_id = self.match(txn.get("description"))
            if category_id:
                txn["category_id"] = category_id
                matched.add(idx)

        logger.debug(f"Rule matching: {len(matched)}/{len(transactions)} transactions matched")
        return matched
