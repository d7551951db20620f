"""Revolut statement parser.

Reads the first sheet of a Revolut export (CSV or XLSX, English or Italian
headers), keeps settled rows that carry an amount, and maps each one to a
canonical transaction candidate with a stable external key.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from io import BytesIO
from typing import Any

import pandas as pd

from app.core.exceptions import FileProcessingError
from app.core.logging import get_logger
from app.core.utils import statement_external_key
from app.schemas.models import NO_DESCRIPTION, TransactionCandidate, TransactionType

logger = get_logger("saldo.services.statement_parser")

# Ordered header aliases per logical field; the first present one wins.
COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "type": ("Type", "Tipo"),
    "product": ("Product", "Prodotto"),
    "started_date": ("Started Date", "Data di inizio"),
    "completed_date": ("Completed Date", "Data di completamento"),
    "description": ("Description", "Descrizione"),
    "amount": ("Amount", "Importo"),
    "fee": ("Fee", "Costo"),
    "currency": ("Currency", "Valuta"),
    "state": ("State", "Stato"),
    "balance": ("Balance", "Saldo"),
}

SETTLED_STATES = {"COMPLETED", "COMPLETATO"}

DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y",
)

_AMOUNT_JUNK = re.compile(r"[^\d,.\-+]")


@dataclass
class StatementRow:
    """One raw export row after alias resolution. Absent fields are None."""

    state: str | None = None
    amount: float | None = None
    description: str | None = None
    completed_date: datetime | None = None
    started_date: datetime | None = None
    currency: str | None = None
    balance: float | None = None
    type: str | None = None
    product: str | None = None
    fee: float | None = None

    @property
    def is_settled(self) -> bool:
        return (self.state or "").strip().upper() in SETTLED_STATES

    @property
    def moment(self) -> datetime | None:
        return self.completed_date or self.started_date


@dataclass
class StatementParseResult:
    transactions: list[TransactionCandidate] = field(default_factory=list)
    raw_row_count: int = 0
    skipped_count: int = 0

    @property
    def no_valid_rows(self) -> bool:
        return not self.transactions


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def parse_amount(value: Any) -> float | None:
    """Decode a numeric cell or a locale-formatted amount string.

    Handles '-12.50', '-12,50', '1.234,56', '1,234.56' and '€ 3,00'.
    A lone separator followed by exactly three digits is a thousands
    separator ('1.234' and '1,234' are 1234) unless the integer part
    is 0, so '0,125' stays 0.125. Returns None when nothing numeric can
    be read.
    """
    if _is_missing(value):
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = _AMOUNT_JUNK.sub("", str(value).replace("−", "-"))
    if not text:
        return None
    if "," in text and "." in text:
        # The right-most separator is the decimal one
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text or "." in text:
        sep = "," if "," in text else "."
        whole, _, fraction = text.rpartition(sep)
        if text.count(sep) > 1 or (len(fraction) == 3 and whole.lstrip("+-") not in ("", "0")):
            text = text.replace(sep, "")
        else:
            text = text.replace(sep, ".")
    try:
        return float(text)
    except ValueError:
        return None


def parse_moment(value: Any) -> datetime | None:
    """Decode a date-time cell. Returns None when no known format fits."""
    if _is_missing(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, datetime):
        return value

    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def resolve_columns(columns: list[Any]) -> dict[str, list[Any]]:
    """Map each logical field to its present header columns, in alias order."""
    by_key = {str(col).strip().casefold(): col for col in columns}
    resolved: dict[str, list[Any]] = {}
    for name, aliases in COLUMN_ALIASES.items():
        resolved[name] = [by_key[a.casefold()] for a in aliases if a.casefold() in by_key]
    return resolved


class StatementParser:
    MAX_ROWS_PER_FILE = 10000

    def __init__(self, default_currency: str = "EUR", max_rows: int | None = None) -> None:
        self.default_currency = default_currency
        self.max_rows = max_rows or self.MAX_ROWS_PER_FILE

    def parse(self, content: bytes, filename: str) -> StatementParseResult:
        """Parse a statement file into transaction candidates.

        Args:
            content: Raw bytes of the uploaded file
            filename: Original filename, used to pick the reader

        Returns:
            Candidates in original row order plus row diagnostics

        Raises:
            FileProcessingError: If the file is empty, of an unsupported
                type, unreadable, or has too many rows
        """
        df = self.read_dataframe(content, filename)
        return self.parse_dataframe(df)

    def read_dataframe(self, content: bytes, filename: str) -> pd.DataFrame:
        if not content:
            logger.warning(f"Empty file uploaded: {filename}")
            raise FileProcessingError(f"{filename} is empty.")

        stream = BytesIO(content)
        lowered = (filename or "").lower()

        try:
            if lowered.endswith(".csv"):
                df = pd.read_csv(stream, dtype=object, skipinitialspace=True)
            elif lowered.endswith(".xlsx"):
                # First sheet only
                df = pd.read_excel(stream, sheet_name=0)
            elif lowered.endswith(".xls"):
                logger.warning(f"Legacy Excel file rejected: {filename}")
                raise FileProcessingError(
                    f"Unsupported file type: {filename}. Export the statement as CSV or XLSX."
                )
            else:
                logger.warning(f"Unsupported file type: {filename}")
                raise FileProcessingError(f"Unsupported file type: {filename}")
        except FileProcessingError:
            raise
        except Exception as e:
            logger.error(f"Failed to read file '{filename}': {e}")
            raise FileProcessingError(
                f"Failed to read file '{filename}': {e}",
                {"cause": type(e).__name__},
            ) from e

        if df.shape[0] > self.max_rows:
            logger.warning(f"File exceeds {self.max_rows} rows: {df.shape[0]}")
            raise FileProcessingError(f"File exceeds {self.max_rows:,} rows.")

        logger.debug(f"Read dataframe from '{filename}': {df.shape[0]} rows, {df.shape[1]} columns")
        return df

    def parse_dataframe(self, df: pd.DataFrame) -> StatementParseResult:
        columns = resolve_columns(list(df.columns))
        result = StatementParseResult(raw_row_count=int(df.shape[0]))

        for record in df.to_dict(orient="records"):
            row = self.resolve_row(record, columns)
            candidate = self.to_candidate(row)
            if candidate is None:
                result.skipped_count += 1
                continue
            result.transactions.append(candidate)

        if result.no_valid_rows:
            logger.info(f"No valid rows among {result.raw_row_count} raw rows")
        elif result.skipped_count:
            logger.debug(f"Skipped {result.skipped_count} unsettled or incomplete rows")
        return result

    @staticmethod
    def resolve_row(record: dict[Any, Any], columns: dict[str, list[Any]]) -> StatementRow:
        def first(name: str) -> Any:
            for column in columns.get(name, []):
                value = record.get(column)
                if not _is_missing(value):
                    return value
            return None

        def text(name: str) -> str | None:
            value = first(name)
            return None if value is None else str(value).strip()

        return StatementRow(
            state=text("state"),
            amount=parse_amount(first("amount")),
            description=text("description"),
            completed_date=parse_moment(first("completed_date")),
            started_date=parse_moment(first("started_date")),
            currency=text("currency"),
            balance=parse_amount(first("balance")),
            type=text("type"),
            product=text("product"),
            fee=parse_amount(first("fee")),
        )

    def to_candidate(self, row: StatementRow) -> TransactionCandidate | None:
        """Build the canonical record, or None when the row is not importable."""
        if not row.is_settled or row.amount is None:
            return None
        moment = row.moment
        if moment is None:
            return None

        description = row.description or NO_DESCRIPTION
        return TransactionCandidate(
            revolut_id=statement_external_key(moment, row.amount, row.balance, description),
            date=moment.date().isoformat(),
            description=description,
            amount=abs(row.amount),
            type=TransactionType.EXPENSE if row.amount < 0 else TransactionType.INCOME,
            currency=row.currency or self.default_currency,
        )
