import json
from typing import Any

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.exceptions import (
    EntityNotFoundError,
    FileProcessingError,
    SaldoError,
    StoreError,
    ValidationError,
)
from app.core.logging import get_logger
from app.repositories.firestore_repo import FirestoreRepository
from app.repositories.local_repo import LocalRepository
from app.schemas.models import (
    BulkCategoryPreviewRequest,
    BulkCategoryRequest,
    BulkCategoryResponse,
    CategorizeRequest,
    CategorizeResponse,
    ImportResponse,
    MonthSummaryResponse,
    ParsedStatementResponse,
    StatementImportResponse,
    TransactionCreate,
    TransactionItem,
    TransactionUpdate,
)
from app.services.categorization_service import CategorizationService
from app.services.import_service import ImportService
from app.services.statement_parser import StatementParser
from app.services.transaction_service import TransactionService

router = APIRouter()
logger = get_logger("saldo.api")

# Lazy initialization to avoid a Firestore connection at import time (breaks tests)
_repo: FirestoreRepository | LocalRepository | None = None
_import_service: ImportService | None = None
_transaction_service: TransactionService | None = None
_categorization_service: CategorizationService | None = None


def get_repo() -> FirestoreRepository | LocalRepository:
    global _repo
    if _repo is None:
        settings = get_settings()
        if settings.store_backend == "local":
            _repo = LocalRepository(settings.local_data_dir)
        else:
            _repo = FirestoreRepository()
    return _repo


def get_import_service() -> ImportService:
    global _import_service
    if _import_service is None:
        settings = get_settings()
        _import_service = ImportService(
            get_repo(),
            parser=StatementParser(settings.default_currency, settings.max_rows_per_file),
            apply_rules=settings.apply_rules_on_import,
        )
    return _import_service


def get_transaction_service() -> TransactionService:
    global _transaction_service
    if _transaction_service is None:
        _transaction_service = TransactionService(get_repo(), get_settings().default_currency)
    return _transaction_service


def get_categorization_service() -> CategorizationService:
    global _categorization_service
    if _categorization_service is None:
        _categorization_service = CategorizationService(get_repo())
    return _categorization_service


def to_http_exception(error: SaldoError) -> HTTPException:
    """Map a domain error onto the HTTP status the API reports for it."""
    if isinstance(error, (ValidationError, FileProcessingError)):
        return HTTPException(status_code=400, detail=error.message)
    if isinstance(error, EntityNotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    return HTTPException(status_code=500, detail=error.message)


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# =============================================================================
# Import
# =============================================================================

@router.post("/import", response_model=ImportResponse)
async def import_transactions(request: Request) -> Any:
    """Import an array of parsed transactions.

    Rows whose revolut_id is already stored are skipped, never overwritten.

    Returns:
        {success, imported, skipped, total}, or {error} with 400 for a
        malformed or missing body and 500 for any failure while storing
    """
    try:
        payload = json.loads(await request.body())
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": f"Invalid JSON body: {e}"})

    try:
        service = get_import_service()
        result = await run_in_threadpool(service.import_transactions, payload)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": e.message})
    except StoreError as e:
        return JSONResponse(status_code=500, content={"error": e.message})
    except Exception as e:
        logger.exception(f"Unexpected import failure: {e}")
        return JSONResponse(status_code=500, content={"error": str(e) or type(e).__name__})

    return ImportResponse(
        success=True,
        imported=result.imported,
        skipped=result.skipped,
        total=result.total,
    )


@router.post("/statements/parse", response_model=ParsedStatementResponse)
def parse_statement(file: UploadFile = File(...)) -> ParsedStatementResponse:
    """Parse a Revolut export without storing anything (import preview)."""
    try:
        parsed = get_import_service().parse_statement(file.file.read(), file.filename or "")
    except SaldoError as e:
        raise to_http_exception(e)

    return ParsedStatementResponse(
        filename=file.filename or "",
        transactions=parsed.transactions,
        raw_row_count=parsed.raw_row_count,
        skipped_count=parsed.skipped_count,
        no_valid_rows=parsed.no_valid_rows,
    )


@router.post("/statements/import", response_model=StatementImportResponse)
def import_statement(file: UploadFile = File(...)) -> StatementImportResponse:
    """Parse a Revolut export and import its settled rows."""
    try:
        outcome = get_import_service().import_statement(file.file.read(), file.filename or "")
    except SaldoError as e:
        raise to_http_exception(e)

    return StatementImportResponse(
        filename=file.filename or "",
        raw_row_count=outcome.parse.raw_row_count,
        skipped_count=outcome.parse.skipped_count,
        no_valid_rows=outcome.parse.no_valid_rows,
        imported=outcome.result.imported,
        skipped=outcome.result.skipped,
        total=outcome.result.total,
    )


# =============================================================================
# Transactions
# =============================================================================

@router.get("/transactions", response_model=list[TransactionItem])
def list_transactions(year: int, month: int) -> list[dict]:
    """List one month's transactions, newest first."""
    try:
        return get_transaction_service().list_month(year, month)
    except SaldoError as e:
        raise to_http_exception(e)


@router.post("/transactions", response_model=TransactionItem)
def create_transaction(payload: TransactionCreate) -> dict:
    try:
        return get_transaction_service().create_manual(payload)
    except SaldoError as e:
        raise to_http_exception(e)


@router.post("/transactions/bulk-category/preview", response_model=BulkCategoryResponse)
def preview_bulk_category(payload: BulkCategoryPreviewRequest) -> BulkCategoryResponse:
    """Count the transactions a bulk categorization would update."""
    try:
        matched = get_categorization_service().preview_bulk(
            payload.start_date, payload.end_date, payload.keyword
        )
    except SaldoError as e:
        raise to_http_exception(e)
    return BulkCategoryResponse(matched=matched, updated=0)


@router.post("/transactions/bulk-category", response_model=BulkCategoryResponse)
def bulk_category(payload: BulkCategoryRequest) -> BulkCategoryResponse:
    """Set a category on every transaction in a date range, optionally keyword-filtered."""
    try:
        updated = get_categorization_service().bulk_categorize(
            payload.start_date, payload.end_date, payload.category_id, payload.keyword
        )
    except SaldoError as e:
        raise to_http_exception(e)
    return BulkCategoryResponse(matched=updated, updated=updated)


@router.get("/transactions/{transaction_id}", response_model=TransactionItem)
def get_transaction(transaction_id: str) -> dict:
    try:
        return get_transaction_service().get_transaction(transaction_id)
    except SaldoError as e:
        raise to_http_exception(e)


@router.patch("/transactions/{transaction_id}", response_model=TransactionItem)
def update_transaction(transaction_id: str, payload: TransactionUpdate) -> dict:
    try:
        return get_transaction_service().update_transaction(transaction_id, payload)
    except SaldoError as e:
        raise to_http_exception(e)


@router.delete("/transactions/{transaction_id}")
def delete_transaction(transaction_id: str) -> dict:
    try:
        get_transaction_service().delete_transaction(transaction_id)
    except SaldoError as e:
        raise to_http_exception(e)
    return {"status": "deleted", "id": transaction_id}


@router.post("/transactions/{transaction_id}/categorize", response_model=CategorizeResponse)
def categorize_transaction(transaction_id: str, payload: CategorizeRequest) -> CategorizeResponse:
    """Assign a category to a transaction, optionally to all look-alikes and as a rule."""
    try:
        outcome = get_categorization_service().categorize_transaction(
            transaction_id,
            payload.category_id,
            scope=payload.scope,
            create_rule=payload.create_rule,
            overwrite_existing=payload.overwrite_existing,
        )
    except SaldoError as e:
        raise to_http_exception(e)
    return CategorizeResponse(
        updated=outcome.updated,
        rule_id=outcome.rule["id"] if outcome.rule else None,
    )


@router.get("/summary/{year}/{month}", response_model=MonthSummaryResponse)
def month_summary(year: int, month: int) -> dict:
    """Income/expense totals and expense breakdown by category for a month."""
    try:
        return get_transaction_service().month_summary(year, month)
    except SaldoError as e:
        raise to_http_exception(e)
