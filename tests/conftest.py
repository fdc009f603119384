import copy
import os

# Dummy credentials so boto3 never looks for a real AWS profile
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

import pytest
from fastapi.testclient import TestClient

from app.core.security import create_access_token
from app.db import dynamo
from app.main import app
from app.utils.periods import period_key, to_iso


class InMemoryStore:
    """Dict-backed stand-in for the functions in app.db.dynamo."""

    def __init__(self):
        self.users = {}
        self.budgets = {}
        self.funds = {}
        self.transactions = {}

    # Users
    def get_user_by_email(self, email):
        for user in self.users.values():
            if user["email"] == email:
                return copy.deepcopy(user)
        return None

    def get_user_by_id(self, user_id):
        return copy.deepcopy(self.users.get(user_id))

    def put_user(self, user_item):
        self.users[user_item["user_id"]] = copy.deepcopy(user_item)

    # Budgets
    def _budget(self, user_id, year, month):
        key = (user_id, period_key(year, month))
        if key not in self.budgets:
            now = to_iso()
            self.budgets[key] = {
                "user_id": user_id,
                "period": key[1],
                "year": year,
                "month": month,
                "base_income": None,
                "expenses": [],
                "created_at": now,
                "updated_at": now,
            }
        return self.budgets[key]

    def get_budget(self, user_id, year, month):
        return copy.deepcopy(self.budgets.get((user_id, period_key(year, month))))

    def get_or_create_budget(self, user_id, year, month):
        return copy.deepcopy(self._budget(user_id, year, month))

    def list_budgets(self, user_id):
        return [copy.deepcopy(b) for (owner, _), b in self.budgets.items() if owner == user_id]

    def set_base_income(self, user_id, year, month, amount):
        budget = self._budget(user_id, year, month)
        budget["base_income"] = amount
        return copy.deepcopy(budget)

    def add_expense(self, user_id, year, month, expense):
        budget = self._budget(user_id, year, month)
        budget["expenses"].append(copy.deepcopy(expense))
        return copy.deepcopy(budget)

    def _find_expense(self, user_id, expense_id):
        for (owner, _), budget in self.budgets.items():
            if owner != user_id:
                continue
            for expense in budget["expenses"]:
                if expense["expense_id"] == expense_id:
                    return budget, expense
        return None, None

    def update_expense(self, user_id, expense_id, title, amount):
        budget, expense = self._find_expense(user_id, expense_id)
        if not budget:
            return None
        expense.update(title=title, amount=amount)
        return copy.deepcopy(budget)

    def delete_expense(self, user_id, expense_id):
        budget, expense = self._find_expense(user_id, expense_id)
        if not budget:
            return None
        budget["expenses"].remove(expense)
        return copy.deepcopy(budget)

    # Funds
    def list_funds(self, user_id):
        funds = [copy.deepcopy(f) for (owner, _), f in self.funds.items() if owner == user_id]
        return sorted(funds, key=lambda f: f["created_at"])

    def get_fund(self, user_id, fund_id):
        return copy.deepcopy(self.funds.get((user_id, fund_id)))

    def put_fund(self, fund_item):
        self.funds[(fund_item["user_id"], fund_item["fund_id"])] = {"total_paid": 0, **copy.deepcopy(fund_item)}

    def update_fund(self, user_id, fund_id, updates):
        fund = self.funds.get((user_id, fund_id))
        if not fund:
            return None
        if "principal_amount" in updates and fund.get("total_paid", 0) > updates["principal_amount"]:
            raise dynamo.DynamoConflict("fund was changed by another request, please retry")
        fund.update(copy.deepcopy(updates))
        return copy.deepcopy(fund)

    def delete_fund(self, user_id, fund_id):
        for key in [k for k in self.transactions if k[0] == fund_id]:
            del self.transactions[key]
        return self.funds.pop((user_id, fund_id), None) is not None

    def _move_total_paid(self, user_id, fund_id, paid_before, paid_after):
        fund = self.funds.get((user_id, fund_id))
        if not fund or fund.get("total_paid") != paid_before or paid_after > fund["principal_amount"]:
            raise dynamo.DynamoConflict("fund was changed by another request, please retry")
        fund["total_paid"] = paid_after

    # Transactions
    def list_transactions(self, fund_id):
        items = [copy.deepcopy(t) for (owner, _), t in self.transactions.items() if owner == fund_id]
        return sorted(items, key=lambda t: (t["date"], t["created_at"]))

    def get_transaction(self, fund_id, transaction_id):
        return copy.deepcopy(self.transactions.get((fund_id, transaction_id)))

    def put_transaction(self, user_id, transaction_item, paid_before, paid_after):
        self._move_total_paid(user_id, transaction_item["fund_id"], paid_before, paid_after)
        key = (transaction_item["fund_id"], transaction_item["transaction_id"])
        self.transactions[key] = copy.deepcopy(transaction_item)

    def update_transaction(self, user_id, fund_id, transaction_id, updates, paid_before, paid_after):
        transaction = self.transactions.get((fund_id, transaction_id))
        if not transaction:
            return False
        self._move_total_paid(user_id, fund_id, paid_before, paid_after)
        transaction.update(copy.deepcopy(updates))
        return True

    def delete_transaction(self, user_id, fund_id, transaction_id, paid_before, paid_after):
        if (fund_id, transaction_id) not in self.transactions:
            return False
        self._move_total_paid(user_id, fund_id, paid_before, paid_after)
        del self.transactions[(fund_id, transaction_id)]
        return True

    def check_tables(self):
        return {
            name: {"name": name, "status": "accessible"}
            for name in ("users", "budgets", "funds", "transactions")
        }


STORE_FUNCTIONS = [
    "get_user_by_email", "get_user_by_id", "put_user",
    "get_budget", "get_or_create_budget", "list_budgets", "set_base_income",
    "add_expense", "update_expense", "delete_expense",
    "list_funds", "get_fund", "put_fund", "update_fund", "delete_fund",
    "list_transactions", "get_transaction", "put_transaction",
    "update_transaction", "delete_transaction", "check_tables",
]


@pytest.fixture()
def store(monkeypatch):
    fake = InMemoryStore()
    for name in STORE_FUNCTIONS:
        monkeypatch.setattr(dynamo, name, getattr(fake, name))
    return fake


@pytest.fixture()
def client(store):
    return TestClient(app)


@pytest.fixture()
def auth_headers():
    token = create_access_token(data={"sub": "user-1"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def other_auth_headers():
    token = create_access_token(data={"sub": "user-2"})
    return {"Authorization": f"Bearer {token}"}
