"""
Budget API Routes

API endpoints for categories, merchant rules and monthly balances.
"""

from typing import Optional

from fastapi import APIRouter

from app.api.routes import (
    get_categorization_service,
    get_repo,
    get_transaction_service,
    to_http_exception,
)
from app.core.exceptions import SaldoError
from app.schemas.models import (
    CategoryCreate,
    CategoryItem,
    MerchantRuleCreate,
    MerchantRuleItem,
    MonthlyBalanceItem,
    MonthlyBalanceUpdate,
    ReconciliationResponse,
    RuleCreatedResponse,
)
from app.services.balance_service import BalanceService

router = APIRouter(tags=["budget"])

_balance_service: Optional[BalanceService] = None


def get_balance_service() -> BalanceService:
    global _balance_service
    if _balance_service is None:
        _balance_service = BalanceService(get_repo())
    return _balance_service


# =============================================================================
# Categories
# =============================================================================

@router.get("/categories", response_model=list[CategoryItem])
def list_categories() -> list[dict]:
    try:
        return get_transaction_service().list_categories()
    except SaldoError as e:
        raise to_http_exception(e)


@router.post("/categories", response_model=CategoryItem)
def create_category(payload: CategoryCreate) -> dict:
    try:
        return get_transaction_service().create_category(payload.name, payload.icon, payload.color)
    except SaldoError as e:
        raise to_http_exception(e)


@router.delete("/categories/{category_id}")
def delete_category(category_id: str) -> dict:
    """Delete a category. Transactions keep their (now unknown) category id."""
    try:
        get_transaction_service().delete_category(category_id)
    except SaldoError as e:
        raise to_http_exception(e)
    return {"status": "deleted", "id": category_id}


# =============================================================================
# Merchant rules
# =============================================================================

@router.get("/rules", response_model=list[MerchantRuleItem])
def list_rules() -> list[dict]:
    """List rules in matching order (first match wins)."""
    try:
        return get_categorization_service().list_rules()
    except SaldoError as e:
        raise to_http_exception(e)


@router.post("/rules", response_model=RuleCreatedResponse)
def create_rule(payload: MerchantRuleCreate) -> RuleCreatedResponse:
    try:
        created = get_categorization_service().create_rule(
            payload.merchant_pattern,
            payload.category_id,
            apply_to_existing=payload.apply_to_existing,
        )
    except SaldoError as e:
        raise to_http_exception(e)
    return RuleCreatedResponse(
        rule=MerchantRuleItem(**created.rule),
        applied_count=created.applied_count,
    )


@router.delete("/rules/{rule_id}")
def delete_rule(rule_id: str) -> dict:
    try:
        get_categorization_service().delete_rule(rule_id)
    except SaldoError as e:
        raise to_http_exception(e)
    return {"status": "deleted", "id": rule_id}


# =============================================================================
# Monthly balances
# =============================================================================

@router.get("/balances", response_model=list[MonthlyBalanceItem])
def list_balances(year: int) -> list[dict]:
    """Stored balances of a year, by month (trend data)."""
    try:
        return get_balance_service().list_year(year)
    except SaldoError as e:
        raise to_http_exception(e)


@router.get("/balances/{year}/{month}", response_model=MonthlyBalanceItem)
def get_balance(year: int, month: int) -> dict:
    try:
        return get_balance_service().get_balance(year, month)
    except SaldoError as e:
        raise to_http_exception(e)


@router.put("/balances/{year}/{month}", response_model=MonthlyBalanceItem)
def save_balance(year: int, month: int, payload: MonthlyBalanceUpdate) -> dict:
    """Save a month's balances; the ending balance becomes next month's start."""
    try:
        return get_balance_service().save_balance(
            year,
            month,
            payload.starting_balance,
            payload.ending_balance,
            payload.notes,
        )
    except SaldoError as e:
        raise to_http_exception(e)


@router.get("/balances/{year}/{month}/reconciliation", response_model=ReconciliationResponse)
def reconcile_month(year: int, month: int) -> dict:
    try:
        return get_balance_service().reconcile(year, month)
    except SaldoError as e:
        raise to_http_exception(e)
