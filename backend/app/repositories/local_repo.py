"""
Local Repository

JSON-file implementation of the FirestoreRepository interface, used for
local development (STORE_BACKEND=local) and tests.

Files:
    data/transactions.json       - {revolut_id: transaction}
    data/categories.json         - {category_id: category}
    data/merchant_rules.json     - [rule, ...] in creation order
    data/monthly_balances.json   - {"YYYY-MM": balance}
"""

import json
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional
from uuid import uuid4

from app.core.exceptions import StoreError
from app.core.utils import balance_doc_id, contains_ci, utc_now_iso


class LocalRepository:
    def __init__(self, base_dir: Path | None = None) -> None:
        self.data_dir = base_dir or Path(__file__).resolve().parents[2] / "data"
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.transactions_path = self.data_dir / "transactions.json"
        self.categories_path = self.data_dir / "categories.json"
        self.rules_path = self.data_dir / "merchant_rules.json"
        self.balances_path = self.data_dir / "monthly_balances.json"
        self._lock = threading.RLock()

    def _read(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read {path.name}: {e}") from e

    def _write(self, path: Path, data: Any) -> None:
        try:
            path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as e:
            raise StoreError(f"Failed to write {path.name}: {e}") from e

    @contextmanager
    def _collection(self, path: Path, default: Any) -> Iterator[Any]:
        """Read-modify-write a collection file under the repository lock."""
        with self._lock:
            data = self._read(path, default)
            yield data
            self._write(path, data)

    # =========================================================================
    # Transactions
    # =========================================================================

    def _filter_transactions(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        description_contains: Optional[str] = None,
        description_equals: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        rows = self._read(self.transactions_path, {}).values()
        matches = []
        for txn in rows:
            day = txn.get("date", "")
            if start_date and day < start_date:
                continue
            if end_date and day > end_date:
                continue
            if description_equals is not None and txn.get("description") != description_equals:
                continue
            if description_contains and not contains_ci(txn.get("description"), description_contains):
                continue
            matches.append(txn)
        return matches

    def list_transactions(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        description_contains: Optional[str] = None,
        description_equals: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._filter_transactions(
                start_date, end_date, description_contains, description_equals
            )
        return sorted(rows, key=lambda t: (t.get("date", ""), t.get("created_at") or ""), reverse=True)

    def count_transactions(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        description_contains: Optional[str] = None,
    ) -> int:
        with self._lock:
            return len(self._filter_transactions(start_date, end_date, description_contains))

    def get_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._read(self.transactions_path, {}).get(transaction_id)

    def insert_transactions_ignore_duplicates(
        self,
        transactions: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        written: list[dict[str, Any]] = []
        now = utc_now_iso()
        with self._collection(self.transactions_path, {}) as data:
            for txn in transactions:
                key = txn["revolut_id"]
                if key in data:
                    continue
                row = dict(txn) | {"id": key, "created_at": now}
                data[key] = row
                written.append(row)
        return written

    def create_transaction(self, transaction: dict[str, Any]) -> dict[str, Any]:
        key = transaction["revolut_id"]
        with self._collection(self.transactions_path, {}) as data:
            if key in data:
                raise StoreError(f"Document already exists: transactions/{key}")
            row = dict(transaction) | {"id": key, "created_at": utc_now_iso()}
            data[key] = row
        return row

    def update_transaction(
        self,
        transaction_id: str,
        fields: dict[str, Any],
    ) -> dict[str, Any] | None:
        with self._collection(self.transactions_path, {}) as data:
            if transaction_id not in data:
                return None
            data[transaction_id].update(fields)
            return dict(data[transaction_id])

    def delete_transaction(self, transaction_id: str) -> bool:
        with self._collection(self.transactions_path, {}) as data:
            return data.pop(transaction_id, None) is not None

    def update_transactions_category(
        self,
        transaction_ids: list[str],
        category_id: Optional[str],
    ) -> int:
        updated = 0
        with self._collection(self.transactions_path, {}) as data:
            for txn_id in transaction_ids:
                if txn_id in data:
                    data[txn_id]["category_id"] = category_id
                    updated += 1
        return updated

    def update_category_where(
        self,
        category_id: Optional[str],
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        description_contains: Optional[str] = None,
    ) -> int:
        with self._lock:
            matches = self._filter_transactions(start_date, end_date, description_contains)
            return self.update_transactions_category([t["id"] for t in matches], category_id)

    # =========================================================================
    # Categories
    # =========================================================================

    def list_categories(self) -> list[dict[str, Any]]:
        with self._lock:
            categories = list(self._read(self.categories_path, {}).values())
        return sorted(categories, key=lambda c: c.get("name", "").lower())

    def create_category(self, category: dict[str, Any]) -> dict[str, Any]:
        category_id = str(uuid4())
        row = dict(category) | {"id": category_id, "created_at": utc_now_iso()}
        with self._collection(self.categories_path, {}) as data:
            data[category_id] = row
        return row

    def delete_category(self, category_id: str) -> bool:
        with self._collection(self.categories_path, {}) as data:
            return data.pop(category_id, None) is not None

    # =========================================================================
    # Merchant rules
    # =========================================================================

    def list_rules(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._read(self.rules_path, []))

    def get_rule_by_pattern(self, pattern: str) -> dict[str, Any] | None:
        for rule in self.list_rules():
            if rule.get("merchant_pattern") == pattern:
                return rule
        return None

    def create_rule(self, rule: dict[str, Any]) -> dict[str, Any]:
        row = dict(rule) | {"id": str(uuid4()), "created_at": utc_now_iso()}
        with self._collection(self.rules_path, []) as data:
            data.append(row)
        return row

    def update_rule(self, rule_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
        with self._collection(self.rules_path, []) as data:
            for rule in data:
                if rule.get("id") == rule_id:
                    rule.update(fields)
                    return dict(rule)
        return None

    def delete_rule(self, rule_id: str) -> bool:
        with self._collection(self.rules_path, []) as data:
            remaining = [rule for rule in data if rule.get("id") != rule_id]
            deleted = len(remaining) != len(data)
            data[:] = remaining
        return deleted

    # =========================================================================
    # Monthly balances
    # =========================================================================

    def get_monthly_balance(self, year: int, month: int) -> dict[str, Any] | None:
        with self._lock:
            return self._read(self.balances_path, {}).get(balance_doc_id(year, month))

    def upsert_monthly_balance(self, balance: dict[str, Any]) -> dict[str, Any]:
        row = dict(balance) | {"updated_at": utc_now_iso()}
        with self._collection(self.balances_path, {}) as data:
            data[balance_doc_id(row["year"], row["month"])] = row
        return row

    def list_monthly_balances(self, year: int) -> list[dict[str, Any]]:
        with self._lock:
            balances = [
                b for b in self._read(self.balances_path, {}).values()
                if b.get("year") == year
            ]
        return sorted(balances, key=lambda b: b.get("month", 0))
