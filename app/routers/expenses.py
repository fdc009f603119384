import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.core.security import get_current_user_id
from app.db import dynamo
from app.models.budget import BudgetPublic, ExpenseCreate, ExpenseInDB, ExpenseUpdate
from app.routers.budget import budget_view

router = APIRouter()
logger = logging.getLogger(__name__)

EXPENSE_NOT_FOUND = "expense not found or doesn't belong to user"


@router.post("", response_model=BudgetPublic, status_code=status.HTTP_201_CREATED)
def create_expense(expense: ExpenseCreate, user_id: str = Depends(get_current_user_id)):
    expense_db = ExpenseInDB(title=expense.title, amount=expense.amount)
    budget = dynamo.add_expense(user_id, expense.year, expense.month, expense_db.model_dump())
    logger.info(f"Added expense {expense_db.expense_id} to {budget['period']} for user {user_id}")
    return budget_view(budget)


@router.put("/{expense_id}", response_model=BudgetPublic)
def update_expense(
    expense_id: str,
    expense_update: ExpenseUpdate,
    user_id: str = Depends(get_current_user_id),
):
    updated = dynamo.update_expense(user_id, expense_id, expense_update.title, expense_update.amount)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=EXPENSE_NOT_FOUND)
    return budget_view(updated)


@router.delete("/{expense_id}", response_model=BudgetPublic)
def delete_expense(expense_id: str, user_id: str = Depends(get_current_user_id)):
    updated = dynamo.delete_expense(user_id, expense_id)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=EXPENSE_NOT_FOUND)
    return budget_view(updated)
