"""Pytest fixtures and configuration."""

from __future__ import annotations

import os
import tempfile
from io import BytesIO
from pathlib import Path
from typing import Any, Callable

import pytest
from fastapi import UploadFile

# Set environment variables before importing app modules
os.environ["STORE_BACKEND"] = "local"
os.environ["LOCAL_DATA_DIR"] = tempfile.mkdtemp(prefix="saldo-tests-")
os.environ["ENVIRONMENT"] = "development"

from app.repositories.local_repo import LocalRepository  # noqa: E402


@pytest.fixture
def english_csv_content() -> bytes:
    """Revolut export with English headers: two settled rows, one pending."""
    csv_data = """Type,Product,Started Date,Completed Date,Description,Amount,Fee,Currency,State,Balance
CARD_PAYMENT,Current,2024-03-05 14:22:05,2024-03-05 14:22:10,Amazon Prime,-12.50,0.00,EUR,COMPLETED,987.10
TOPUP,Current,2024-03-06 09:00:00,2024-03-06 09:00:01,Salary ACME,2500.00,0.00,EUR,COMPLETED,3487.10
CARD_PAYMENT,Current,2024-03-07 10:00:00,,Corner Shop,-20.00,0.00,EUR,PENDING,
"""
    return csv_data.encode("utf-8")


@pytest.fixture
def italian_csv_content() -> bytes:
    """Revolut export with Italian headers and decimal commas."""
    csv_data = """Tipo,Prodotto,Data di inizio,Data di completamento,Descrizione,Importo,Costo,Valuta,Stato,Saldo
PAGAMENTO CON CARTA,Attuale,2024-03-08 18:30:00,2024-03-08 18:31:00,Esselunga,"-45,30","0,00",EUR,COMPLETATO,"954,70"
RICARICA,Attuale,2024-03-09 08:00:00,2024-03-09 08:00:00,Ricarica da conto,"100,00","0,00",EUR,COMPLETATO,"1054,70"
PAGAMENTO CON CARTA,Attuale,2024-03-10 12:00:00,,Bar Roma,"-2,50","0,00",EUR,IN SOSPESO,
"""
    return csv_data.encode("utf-8")


@pytest.fixture
def pending_only_csv_content() -> bytes:
    csv_data = """Type,Product,Started Date,Completed Date,Description,Amount,Fee,Currency,State,Balance
CARD_PAYMENT,Current,2024-03-07 10:00:00,,Corner Shop,-20.00,0.00,EUR,PENDING,
CARD_PAYMENT,Current,2024-03-07 11:00:00,,Bakery,-3.20,0.00,EUR,REVERTED,
"""
    return csv_data.encode("utf-8")


@pytest.fixture
def english_csv_file(english_csv_content: bytes) -> UploadFile:
    """Revolut CSV upload file."""
    return UploadFile(filename="account-statement.csv", file=BytesIO(english_csv_content))


@pytest.fixture
def temp_data_dir(tmp_path: Path) -> Path:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return data_dir


@pytest.fixture
def repo(temp_data_dir: Path) -> LocalRepository:
    """Empty JSON-file repository in a temporary directory."""
    return LocalRepository(temp_data_dir)


@pytest.fixture
def make_txn() -> Callable[..., dict[str, Any]]:
    """Build a stored-transaction row."""

    def _make(
        key: str,
        date: str,
        description: str,
        amount: float,
        type: str = "expense",
        category_id: str | None = None,
    ) -> dict[str, Any]:
        return {
            "revolut_id": key,
            "date": date,
            "description": description,
            "amount": amount,
            "type": type,
            "currency": "EUR",
            "category_id": category_id,
            "is_manual": False,
            "is_recurring": False,
        }

    return _make


@pytest.fixture
def seeded_repo(repo: LocalRepository, make_txn) -> LocalRepository:
    """Repository holding a small March 2024 ledger."""
    repo.insert_transactions_ignore_duplicates(
        [
            make_txn("t1", "2024-03-02", "AMAZON PRIME", 12.50),
            make_txn("t2", "2024-03-05", "Amazon.de Marketplace", 30.00, category_id="cat-old"),
            make_txn("t3", "2024-03-10", "Salary ACME", 300.00, type="income"),
            make_txn("t4", "2024-03-15", "Esselunga", 57.50),
            make_txn("t5", "2024-03-20", "Esselunga", 42.50, category_id="cat-other"),
            make_txn("t6", "2024-04-01", "Esselunga", 10.00),
        ]
    )
    return repo
