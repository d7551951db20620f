"""
Firestore Repository

Repository implementation using Firestore for data persistence.

Data Structure:
    transactions/{revolut_id}      - Transactions, keyed by their external key
    categories/{category_id}       - User categories
    merchant_rules/{rule_id}       - Keyword -> category rules
    monthly_balances/{YYYY-MM}     - Starting/ending balances per month

Using the external key as the document id makes create() the dedup
mechanism: Firestore refuses to create a document that already exists.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Optional
from uuid import uuid4

import firebase_admin
from firebase_admin import firestore
from google.api_core.exceptions import AlreadyExists, GoogleAPIError
from google.cloud.firestore_v1 import FieldFilter

from app.core.exceptions import StoreError
from app.core.logging import get_logger
from app.core.utils import balance_doc_id, contains_ci, utc_now_iso

logger = get_logger("saldo.repositories.firestore")


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Re-raise Firestore client errors as StoreError with the store's message."""
    try:
        yield
    except GoogleAPIError as e:
        logger.error(f"Firestore {operation} failed: {e}")
        raise StoreError(getattr(e, "message", None) or str(e), {"operation": operation}) from e


class FirestoreRepository:
    """Repository using Firestore for data persistence."""

    # Firestore batch write limit
    BATCH_SIZE = 500

    def __init__(self) -> None:
        # Initialize Firebase Admin SDK with Application Default Credentials
        if not firebase_admin._apps:
            firebase_admin.initialize_app()

        self.db = firestore.client()

        # Collection references
        self.transactions_collection = "transactions"
        self.categories_collection = "categories"
        self.rules_collection = "merchant_rules"
        self.balances_collection = "monthly_balances"

    # =========================================================================
    # Transaction Methods
    # =========================================================================

    def _date_query(self, start_date: Optional[str], end_date: Optional[str]):
        query = self.db.collection(self.transactions_collection)
        if start_date:
            query = query.where(filter=FieldFilter("date", ">=", start_date))
        if end_date:
            query = query.where(filter=FieldFilter("date", "<=", end_date))
        return query

    def _stream_transactions(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        description_contains: Optional[str] = None,
        description_equals: Optional[str] = None,
    ) -> list[Any]:
        """Stream transaction snapshots, filtering descriptions client-side.

        Firestore has no substring operator, so the date range is pushed to
        the server and the description predicate runs here.
        """
        query = self._date_query(start_date, end_date)
        if description_equals is not None:
            query = query.where(filter=FieldFilter("description", "==", description_equals))
        docs = list(query.stream())
        if description_contains:
            docs = [
                doc for doc in docs
                if contains_ci(doc.to_dict().get("description"), description_contains)
            ]
        return docs

    def list_transactions(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        description_contains: Optional[str] = None,
        description_equals: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """
        List transactions, newest first.

        Args:
            start_date: Inclusive lower bound (YYYY-MM-DD)
            end_date: Inclusive upper bound (YYYY-MM-DD)
            description_contains: Case-insensitive substring filter
            description_equals: Exact description filter

        Returns:
            List of transaction documents with their ids
        """
        with store_errors("list_transactions"):
            docs = self._stream_transactions(
                start_date, end_date, description_contains, description_equals
            )
        transactions = [doc.to_dict() | {"id": doc.id} for doc in docs]
        transactions.sort(key=lambda t: (t.get("date", ""), t.get("created_at") or ""), reverse=True)
        return transactions

    def count_transactions(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        description_contains: Optional[str] = None,
    ) -> int:
        """Count matching transactions without returning them."""
        with store_errors("count_transactions"):
            if not description_contains:
                result = self._date_query(start_date, end_date).count().get()
                return int(result[0][0].value)
            return len(self._stream_transactions(start_date, end_date, description_contains))

    def get_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        with store_errors("get_transaction"):
            doc = self.db.collection(self.transactions_collection).document(transaction_id).get()
        if not doc.exists:
            return None
        return doc.to_dict() | {"id": doc.id}

    def insert_transactions_ignore_duplicates(
        self,
        transactions: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        """
        Insert transactions, silently skipping any whose key already exists.

        Existing documents are never overwritten.

        Args:
            transactions: Rows carrying a 'revolut_id' external key

        Returns:
            The rows actually written
        """
        collection = self.db.collection(self.transactions_collection)
        written: list[dict[str, Any]] = []
        now = utc_now_iso()

        with store_errors("insert_transactions"):
            for txn in transactions:
                key = txn["revolut_id"]
                row = dict(txn) | {"created_at": now}
                row.pop("id", None)
                try:
                    collection.document(key).create(row)
                except AlreadyExists:
                    continue
                written.append(row | {"id": key})

        logger.debug(f"Inserted {len(written)}/{len(transactions)} transactions")
        return written

    def create_transaction(self, transaction: dict[str, Any]) -> dict[str, Any]:
        key = transaction["revolut_id"]
        row = dict(transaction) | {"created_at": utc_now_iso()}
        with store_errors("create_transaction"):
            self.db.collection(self.transactions_collection).document(key).create(row)
        return row | {"id": key}

    def update_transaction(
        self,
        transaction_id: str,
        fields: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Update fields of one transaction. Returns None if it does not exist."""
        doc_ref = self.db.collection(self.transactions_collection).document(transaction_id)
        with store_errors("update_transaction"):
            if not doc_ref.get().exists:
                return None
            doc_ref.update(fields)
            doc = doc_ref.get()
        return doc.to_dict() | {"id": doc.id}

    def delete_transaction(self, transaction_id: str) -> bool:
        doc_ref = self.db.collection(self.transactions_collection).document(transaction_id)
        with store_errors("delete_transaction"):
            if not doc_ref.get().exists:
                return False
            doc_ref.delete()
        return True

    def update_transactions_category(
        self,
        transaction_ids: list[str],
        category_id: Optional[str],
    ) -> int:
        """Set category_id on every listed transaction using batch writes."""
        if not transaction_ids:
            return 0

        collection = self.db.collection(self.transactions_collection)
        with store_errors("update_transactions_category"):
            for i in range(0, len(transaction_ids), self.BATCH_SIZE):
                batch = self.db.batch()
                for txn_id in transaction_ids[i:i + self.BATCH_SIZE]:
                    batch.update(collection.document(txn_id), {"category_id": category_id})
                batch.commit()
        return len(transaction_ids)

    def update_category_where(
        self,
        category_id: Optional[str],
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        description_contains: Optional[str] = None,
    ) -> int:
        """Set category_id on every transaction matching the filter."""
        with store_errors("update_category_where"):
            docs = self._stream_transactions(start_date, end_date, description_contains)
        return self.update_transactions_category([doc.id for doc in docs], category_id)

    # =========================================================================
    # Category Methods
    # =========================================================================

    def list_categories(self) -> list[dict[str, Any]]:
        with store_errors("list_categories"):
            docs = self.db.collection(self.categories_collection).stream()
            categories = [doc.to_dict() | {"id": doc.id} for doc in docs]
        return sorted(categories, key=lambda c: c.get("name", "").lower())

    def create_category(self, category: dict[str, Any]) -> dict[str, Any]:
        category_id = str(uuid4())
        row = dict(category) | {"created_at": utc_now_iso()}
        with store_errors("create_category"):
            self.db.collection(self.categories_collection).document(category_id).set(row)
        return row | {"id": category_id}

    def delete_category(self, category_id: str) -> bool:
        """Delete a category. Transactions and rules pointing at it are left as-is."""
        doc_ref = self.db.collection(self.categories_collection).document(category_id)
        with store_errors("delete_category"):
            if not doc_ref.get().exists:
                return False
            doc_ref.delete()
        return True

    # =========================================================================
    # Merchant Rule Methods
    # =========================================================================

    def list_rules(self) -> list[dict[str, Any]]:
        """List rules in store order. Callers decide the matching order."""
        with store_errors("list_rules"):
            docs = self.db.collection(self.rules_collection).stream()
            return [doc.to_dict() | {"id": doc.id} for doc in docs]

    def get_rule_by_pattern(self, pattern: str) -> dict[str, Any] | None:
        query = (
            self.db.collection(self.rules_collection)
            .where(filter=FieldFilter("merchant_pattern", "==", pattern))
            .limit(1)
        )
        with store_errors("get_rule_by_pattern"):
            docs = list(query.stream())
        if not docs:
            return None
        return docs[0].to_dict() | {"id": docs[0].id}

    def create_rule(self, rule: dict[str, Any]) -> dict[str, Any]:
        rule_id = str(uuid4())
        row = dict(rule) | {"created_at": utc_now_iso()}
        with store_errors("create_rule"):
            self.db.collection(self.rules_collection).document(rule_id).set(row)
        return row | {"id": rule_id}

    def update_rule(self, rule_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
        doc_ref = self.db.collection(self.rules_collection).document(rule_id)
        with store_errors("update_rule"):
            if not doc_ref.get().exists:
                return None
            doc_ref.update(fields)
            doc = doc_ref.get()
        return doc.to_dict() | {"id": doc.id}

    def delete_rule(self, rule_id: str) -> bool:
        doc_ref = self.db.collection(self.rules_collection).document(rule_id)
        with store_errors("delete_rule"):
            if not doc_ref.get().exists:
                return False
            doc_ref.delete()
        return True

    # =========================================================================
    # Monthly Balance Methods
    # =========================================================================

    def get_monthly_balance(self, year: int, month: int) -> dict[str, Any] | None:
        doc_ref = self.db.collection(self.balances_collection).document(balance_doc_id(year, month))
        with store_errors("get_monthly_balance"):
            doc = doc_ref.get()
        if not doc.exists:
            return None
        return doc.to_dict()

    def upsert_monthly_balance(self, balance: dict[str, Any]) -> dict[str, Any]:
        """Write the (year, month) record, replacing any existing one."""
        doc_id = balance_doc_id(balance["year"], balance["month"])
        row = dict(balance) | {"updated_at": utc_now_iso()}
        with store_errors("upsert_monthly_balance"):
            self.db.collection(self.balances_collection).document(doc_id).set(row)
        return row

    def list_monthly_balances(self, year: int) -> list[dict[str, Any]]:
        query = self.db.collection(self.balances_collection).where(
            filter=FieldFilter("year", "==", year)
        )
        with store_errors("list_monthly_balances"):
            balances = [doc.to_dict() for doc in query.stream()]
        return sorted(balances, key=lambda b: b.get("month", 0))
