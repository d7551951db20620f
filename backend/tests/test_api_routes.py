"""Integration tests for API routes."""

from __future__ import annotations

from io import BytesIO
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.core.exceptions import EntityNotFoundError, FileProcessingError, StoreError, ValidationError
from app.services.categorization_service import CategorizationOutcome, RuleCreation
from app.services.import_service import ImportResult, ImportService

TXN = {
    "id": "rev_1709648530000_1250_98710_amazonprime",
    "revolut_id": "rev_1709648530000_1250_98710_amazonprime",
    "date": "2024-03-05",
    "description": "Amazon Prime",
    "amount": 12.5,
    "type": "expense",
    "currency": "EUR",
    "category_id": None,
    "is_manual": False,
    "is_recurring": False,
    "created_at": "2024-03-06T10:00:00+00:00",
}


@pytest.fixture
def mock_services():
    """Mock all service dependencies."""
    mock_import = MagicMock()
    mock_transactions = MagicMock()
    mock_categorization = MagicMock()
    mock_balances = MagicMock()

    mock_import.import_transactions.return_value = ImportResult(imported=2, skipped=1, total=3)
    mock_transactions.list_month.return_value = [TXN]
    mock_transactions.get_transaction.return_value = TXN
    mock_transactions.list_categories.return_value = []
    mock_categorization.list_rules.return_value = []

    with patch("app.api.routes.get_import_service", return_value=mock_import), \
         patch("app.api.routes.get_transaction_service", return_value=mock_transactions), \
         patch("app.api.routes.get_categorization_service", return_value=mock_categorization), \
         patch("app.api.budget_routes.get_transaction_service", return_value=mock_transactions), \
         patch("app.api.budget_routes.get_categorization_service", return_value=mock_categorization), \
         patch("app.api.budget_routes.get_balance_service", return_value=mock_balances):
        yield {
            "import": mock_import,
            "transactions": mock_transactions,
            "categorization": mock_categorization,
            "balances": mock_balances,
        }


@pytest.fixture
def client(mock_services) -> TestClient:
    """Create test client with mocked services."""
    from app.main import app

    return TestClient(app)


@pytest.fixture
def local_client(repo) -> TestClient:
    """Test client backed by a real ImportService over a temporary JSON store."""
    from app.main import app

    with patch("app.api.routes.get_import_service", return_value=ImportService(repo)):
        yield TestClient(app)


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestImportEndpoint:
    """Tests for the bulk import endpoint."""

    def test_import_returns_counts(self, client, mock_services):
        response = client.post("/import", json=[{"revolut_id": "k1"}])

        assert response.status_code == 200
        assert response.json() == {"success": True, "imported": 2, "skipped": 1, "total": 3}

    def test_import_store_error(self, client, mock_services):
        mock_services["import"].import_transactions.side_effect = StoreError("deadline exceeded")

        response = client.post("/import", json=[])

        assert response.status_code == 500
        assert response.json() == {"error": "deadline exceeded"}

    def test_import_unexpected_error(self, client):
        with patch("app.api.routes.get_import_service",
                   side_effect=RuntimeError("could not load default credentials")):
            response = client.post("/import", json=[])

        assert response.status_code == 500
        assert response.json() == {"error": "could not load default credentials"}

    def test_malformed_json_rejected(self, client, mock_services):
        response = client.post(
            "/import",
            content=b"[{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid JSON body")
        mock_services["import"].import_transactions.assert_not_called()

    def test_missing_body_rejected(self, client, mock_services):
        response = client.post("/import")

        assert response.status_code == 400
        assert "error" in response.json()

    def test_object_body_rejected(self, local_client):
        response = local_client.post("/import", json={"revolut_id": "k1"})

        assert response.status_code == 400
        assert "error" in response.json()

    def test_invalid_element_rejected(self, local_client):
        response = local_client.post("/import", json=[{"description": "no key"}])

        assert response.status_code == 400
        assert "index 0" in response.json()["error"]

    def test_reimport_skips_everything(self, local_client):
        rows = [
            {"revolut_id": "k1", "date": "2024-03-05", "description": "A", "amount": 1.0, "type": "expense"},
            {"revolut_id": "k2", "date": "2024-03-06", "description": "B", "amount": 2.0, "type": "income"},
        ]

        first = local_client.post("/import", json=rows)
        second = local_client.post("/import", json=rows)

        assert first.json() == {"success": True, "imported": 2, "skipped": 0, "total": 2}
        assert second.json() == {"success": True, "imported": 0, "skipped": 2, "total": 2}


class TestStatementEndpoints:
    """Tests for statement file upload."""

    def test_import_statement(self, local_client, english_csv_content):
        files = {"file": ("account-statement.csv", BytesIO(english_csv_content), "text/csv")}

        response = local_client.post("/statements/import", files=files)

        assert response.status_code == 200
        data = response.json()
        assert data["imported"] == 2
        assert data["raw_row_count"] == 3
        assert data["skipped_count"] == 1
        assert data["no_valid_rows"] is False

    def test_parse_statement_preview(self, local_client, italian_csv_content):
        files = {"file": ("estratto.csv", BytesIO(italian_csv_content), "text/csv")}

        response = local_client.post("/statements/parse", files=files)

        assert response.status_code == 200
        data = response.json()
        assert [t["description"] for t in data["transactions"]] == ["Esselunga", "Ricarica da conto"]

    def test_pending_only_statement_is_soft_empty(self, local_client, pending_only_csv_content):
        files = {"file": ("pending.csv", BytesIO(pending_only_csv_content), "text/csv")}

        response = local_client.post("/statements/import", files=files)

        assert response.status_code == 200
        assert response.json()["no_valid_rows"] is True
        assert response.json()["imported"] == 0

    def test_unsupported_file(self, client, mock_services):
        mock_services["import"].parse_statement.side_effect = FileProcessingError("Unsupported file type: a.pdf")
        files = {"file": ("a.pdf", BytesIO(b"%PDF"), "application/pdf")}

        response = client.post("/statements/parse", files=files)

        assert response.status_code == 400
        assert response.json()["detail"] == "Unsupported file type: a.pdf"


class TestTransactionEndpoints:
    """Tests for ledger endpoints."""

    def test_list_month(self, client, mock_services):
        response = client.get("/transactions", params={"year": 2024, "month": 3})

        assert response.status_code == 200
        assert response.json()[0]["id"] == TXN["id"]
        mock_services["transactions"].list_month.assert_called_once_with(2024, 3)

    def test_list_requires_month(self, client):
        response = client.get("/transactions", params={"year": 2024})
        assert response.status_code == 422

    def test_invalid_month(self, client, mock_services):
        mock_services["transactions"].list_month.side_effect = ValidationError("Month must be between 1 and 12")

        response = client.get("/transactions", params={"year": 2024, "month": 13})

        assert response.status_code == 400

    def test_get_not_found(self, client, mock_services):
        mock_services["transactions"].get_transaction.side_effect = EntityNotFoundError("Transaction not found: x")

        response = client.get("/transactions/x")

        assert response.status_code == 404

    def test_create_manual(self, client, mock_services):
        mock_services["transactions"].create_manual.return_value = TXN | {"is_manual": True}
        payload = {"description": "Cash", "amount": -5, "date": "2024-03-04"}

        response = client.post("/transactions", json=payload)

        assert response.status_code == 200
        assert response.json()["is_manual"] is True

    def test_create_manual_missing_amount(self, client):
        response = client.post("/transactions", json={"date": "2024-03-04"})
        assert response.status_code == 422

    def test_delete(self, client, mock_services):
        response = client.delete("/transactions/abc")

        assert response.status_code == 200
        assert response.json() == {"status": "deleted", "id": "abc"}

    def test_categorize(self, client, mock_services):
        mock_services["categorization"].categorize_transaction.return_value = CategorizationOutcome(
            updated=3, rule={"id": "rule-1"}
        )
        payload = {"category_id": "cat-food", "scope": "all", "create_rule": True}

        response = client.post("/transactions/t1/categorize", json=payload)

        assert response.status_code == 200
        assert response.json() == {"updated": 3, "rule_id": "rule-1"}
        mock_services["categorization"].categorize_transaction.assert_called_once_with(
            "t1", "cat-food", scope="all", create_rule=True, overwrite_existing=False
        )

    def test_categorize_bad_scope(self, client):
        response = client.post("/transactions/t1/categorize", json={"category_id": "c", "scope": "year"})
        assert response.status_code == 422

    def test_bulk_preview(self, client, mock_services):
        mock_services["categorization"].preview_bulk.return_value = 4
        payload = {"start_date": "2024-03-01", "end_date": "2024-03-31", "keyword": "amazon"}

        response = client.post("/transactions/bulk-category/preview", json=payload)

        assert response.status_code == 200
        assert response.json() == {"matched": 4, "updated": 0}

    def test_bulk_inverted_range(self, client, mock_services):
        mock_services["categorization"].bulk_categorize.side_effect = ValidationError(
            "start_date must not be after end_date"
        )
        payload = {"start_date": "2024-03-31", "end_date": "2024-03-01", "category_id": "c"}

        response = client.post("/transactions/bulk-category", json=payload)

        assert response.status_code == 400

    def test_month_summary(self, client, mock_services):
        mock_services["transactions"].month_summary.return_value = {
            "year": 2024,
            "month": 3,
            "total_income": 300.0,
            "total_expenses": 100.0,
            "net": 200.0,
            "transaction_count": 2,
            "breakdown": [],
        }

        response = client.get("/summary/2024/3")

        assert response.status_code == 200
        assert response.json()["net"] == 200.0


class TestBudgetEndpoints:
    """Tests for categories, rules and balances."""

    def test_create_category(self, client, mock_services):
        mock_services["transactions"].create_category.return_value = {
            "id": "cat-1", "name": "Food", "icon": "📁", "color": "#6B7280"
        }

        response = client.post("/categories", json={"name": "Food"})

        assert response.status_code == 200
        assert response.json()["id"] == "cat-1"

    def test_create_rule(self, client, mock_services):
        mock_services["categorization"].create_rule.return_value = RuleCreation(
            rule={"id": "r1", "merchant_pattern": "AMAZON", "category_id": "cat-1"},
            applied_count=5,
        )

        response = client.post("/rules", json={"merchant_pattern": "AMAZON", "category_id": "cat-1"})

        assert response.status_code == 200
        assert response.json()["applied_count"] == 5
        assert response.json()["rule"]["merchant_pattern"] == "AMAZON"

    def test_delete_missing_rule(self, client, mock_services):
        mock_services["categorization"].delete_rule.side_effect = EntityNotFoundError("Rule not found: r9")
        assert client.delete("/rules/r9").status_code == 404

    def test_save_balance(self, client, mock_services):
        mock_services["balances"].save_balance.return_value = {
            "year": 2024, "month": 3, "starting_balance": 500.0, "ending_balance": 650.0,
        }

        response = client.put("/balances/2024/3", json={"starting_balance": 500, "ending_balance": 650})

        assert response.status_code == 200
        mock_services["balances"].save_balance.assert_called_once_with(2024, 3, 500.0, 650.0, None)

    def test_reconciliation(self, client, mock_services):
        mock_services["balances"].reconcile.return_value = {
            "year": 2024,
            "month": 3,
            "total_income": 300.0,
            "total_expenses": 100.0,
            "expected_change": 200.0,
            "starting_balance": 500.0,
            "ending_balance": 650.0,
            "accounting_balance": 700.0,
            "difference": -50.0,
            "status": "shortfall",
            "message": "50.00 missing compared to the recorded transactions.",
        }

        response = client.get("/balances/2024/3/reconciliation")

        assert response.status_code == 200
        assert response.json()["status"] == "shortfall"
        assert response.json()["difference"] == -50.0


class TestCORS:
    """Tests for CORS configuration."""

    def test_cors_headers_present(self, client):
        response = client.options(
            "/health",
            headers={
                "Origin": "http://localhost:5173",
                "Access-Control-Request-Method": "GET",
            },
        )
        # CORS preflight should return 200
        assert response.status_code == 200
