from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import ValidationError
from app.core.logging import LogContext, get_logger
from app.schemas.models import TransactionCandidate
from app.services.rule_engine import RuleEngine
from app.services.statement_parser import StatementParser, StatementParseResult

logger = get_logger("saldo.services.import")


@dataclass
class ImportResult:
    imported: int
    skipped: int
    total: int


@dataclass
class StatementImportResult:
    parse: StatementParseResult
    result: ImportResult


class ImportService:
    """Deduplicating bulk import of canonical transactions.

    Rows are written with insert-if-absent semantics keyed on revolut_id, so
    importing overlapping statement periods never duplicates or mutates rows
    that are already stored. The imported count is what the store reports as
    newly written.
    """

    def __init__(
        self,
        repository: Any,
        parser: StatementParser | None = None,
        apply_rules: bool = True,
    ) -> None:
        self.repository = repository
        self.parser = parser or StatementParser()
        self.apply_rules = apply_rules

    def import_transactions(self, payload: Any, apply_rules: bool | None = None) -> ImportResult:
        """Import a batch of transaction candidates.

        Args:
            payload: List of candidate dicts (or TransactionCandidate objects)
            apply_rules: Pre-categorize with merchant rules; defaults to the
                service setting

        Returns:
            ImportResult with imported/skipped/total counts

        Raises:
            ValidationError: If payload is not a list or an element is invalid
            StoreError: If the store fails; nothing is reported as imported
        """
        if not isinstance(payload, list):
            raise ValidationError("Body must be an array of transactions")

        candidates = self._validate(payload)
        total = len(candidates)
        logger.info(f"Received {total} transactions to import")
        if not candidates:
            return ImportResult(imported=0, skipped=0, total=0)

        rows = [candidate.model_dump(mode="json") for candidate in candidates]

        use_rules = self.apply_rules if apply_rules is None else apply_rules
        if use_rules:
            engine = RuleEngine(self.repository.list_rules())
            matched = engine.apply(rows)
            logger.info(f"Applied merchant rules before import: {len(matched)}/{total} categorized")

        with LogContext(logger, "transaction upsert", batch_size=total):
            written = self.repository.insert_transactions_ignore_duplicates(rows)

        imported = len(written)
        skipped = total - imported
        logger.info(f"Imported: {imported}, skipped (duplicates): {skipped}")
        return ImportResult(imported=imported, skipped=skipped, total=total)

    def parse_statement(self, content: bytes, filename: str) -> StatementParseResult:
        result = self.parser.parse(content, filename)
        logger.info(
            f"Parsed '{filename}': {len(result.transactions)} candidates "
            f"from {result.raw_row_count} rows ({result.skipped_count} skipped)"
        )
        return result

    def import_statement(self, content: bytes, filename: str) -> StatementImportResult:
        """Parse a statement file and import its candidates in one step.

        A file with no valid rows is a successful, empty outcome; the store
        is not contacted.
        """
        parsed = self.parse_statement(content, filename)
        if parsed.no_valid_rows:
            return StatementImportResult(parse=parsed, result=ImportResult(0, 0, 0))
        result = self.import_transactions(list(parsed.transactions))
        return StatementImportResult(parse=parsed, result=result)

    @staticmethod
    def _validate(payload: list[Any]) -> list[TransactionCandidate]:
        candidates: list[TransactionCandidate] = []
        for index, item in enumerate(payload):
            if isinstance(item, TransactionCandidate):
                candidates.append(item)
                continue
            try:
                candidates.append(TransactionCandidate.model_validate(item))
            except PydanticValidationError as e:
                errors = e.errors(include_url=False)
                fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in errors)
                raise ValidationError(
                    f"Invalid transaction at index {index}: {fields or 'malformed'}",
                    {"index": index, "errors": errors},
                ) from e
        return candidates
