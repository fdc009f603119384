from fastapi import APIRouter, Depends, Query

from app.core.security import get_current_user_id
from app.db import dynamo
from app.models.budget import BaseIncomeRequest, BudgetPublic
from app.utils import balances
from app.utils.periods import current_month_year, month_name

router = APIRouter()


def budget_view(budget: dict) -> BudgetPublic:
    """Shape a stored budget document into the response, computing totals and remaining."""
    expenses = budget.get("expenses") or []
    return BudgetPublic(
        year=budget["year"],
        month=budget["month"],
        month_name=month_name(budget["month"]),
        base_income=budget.get("base_income"),
        expenses=expenses,
        total_expenses=balances.total_expenses(expenses),
        remaining=balances.calculate_remaining(budget.get("base_income"), expenses),
    )


@router.get("/current", response_model=BudgetPublic)
def get_current_budget(user_id: str = Depends(get_current_user_id)):
    year, month = current_month_year()
    return budget_view(dynamo.get_or_create_budget(user_id, year, month))


@router.get("", response_model=BudgetPublic)
def get_budget_by_month(
    year: int = Query(..., gt=0),
    month: int = Query(..., ge=1, le=12),
    user_id: str = Depends(get_current_user_id),
):
    """
    Budget for a specific month, e.g. /budget?year=2025&month=11.
    The month is created empty the first time it is requested.
    """
    return budget_view(dynamo.get_or_create_budget(user_id, year, month))


@router.post("/base-income", response_model=BudgetPublic)
@router.put("/base-income", response_model=BudgetPublic)
def set_base_income(request: BaseIncomeRequest, user_id: str = Depends(get_current_user_id)):
    budget = dynamo.set_base_income(user_id, request.year, request.month, request.amount)
    return budget_view(budget)
