import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.utils.periods import period_key, to_iso

logger = logging.getLogger(__name__)

# Initialize DynamoDB resource
dynamodb = boto3.resource(
    "dynamodb",
    region_name=settings.DYNAMO_REGION,
    endpoint_url=settings.DYNAMO_ENDPOINT_URL,
)

# Get table references
users_table = dynamodb.Table(settings.DYNAMO_USERS_TABLE)
budgets_table = dynamodb.Table(settings.DYNAMO_BUDGETS_TABLE)
funds_table = dynamodb.Table(settings.DYNAMO_FUNDS_TABLE)
transactions_table = dynamodb.Table(settings.DYNAMO_TRANSACTIONS_TABLE)

EMAIL_INDEX = "email-index"


class DynamoError(Exception):
    """A DynamoDB call failed; rendered as a 500 by the app's exception handler."""

    def __init__(self, message: str, operation: Optional[str] = None, table_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.table_name = table_name

    def __str__(self) -> str:
        return self.message


class DynamoConflict(DynamoError):
    """A conditional write lost to a concurrent change; rendered as a 409."""


def _fail(operation: str, table, error: ClientError) -> DynamoError:
    message = error.response.get("Error", {}).get("Message", str(error))
    logger.error(f"{operation} failed on {table.name}: {message}")
    return DynamoError(message, operation=operation, table_name=table.name)


def _conflict(operation: str, table) -> DynamoConflict:
    logger.warning(f"{operation} on {table.name} conflicted with a concurrent write")
    return DynamoConflict(
        "fund was changed by another request, please retry",
        operation=operation,
        table_name=table.name,
    )


def _is_conditional_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _query_all(table, operation: str, **kwargs) -> List[Dict[str, Any]]:
    """Run a query and follow LastEvaluatedKey until every page is read."""
    items: List[Dict[str, Any]] = []
    try:
        while True:
            response = table.query(**kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
    except ClientError as e:
        raise _fail(operation, table, e)
    return [_from_dynamo(item) for item in items]


def _get(table, operation: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        response = table.get_item(Key=key)
    except ClientError as e:
        raise _fail(operation, table, e)
    item = response.get("Item")
    return _from_dynamo(item) if item else None


def _set_expression(
    updates: Dict[str, Any],
    defaults: Optional[Dict[str, Any]] = None,
) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
    """
    Build a SET expression from ``updates``; ``defaults`` are only written when
    the attribute does not exist yet (if_not_exists).
    """
    parts = []
    names: Dict[str, str] = {}
    values: Dict[str, Any] = {}

    for idx, (key, value) in enumerate(updates.items()):
        names[f"#f{idx}"] = key
        values[f":v{idx}"] = value
        parts.append(f"#f{idx} = :v{idx}")

    for idx, (key, value) in enumerate((defaults or {}).items()):
        names[f"#d{idx}"] = key
        values[f":d{idx}"] = value
        parts.append(f"#d{idx} = if_not_exists(#d{idx}, :d{idx})")

    return "SET " + ", ".join(parts), names, values


def _transact(operation: str, table, items: List[Dict[str, Any]]) -> Optional[List[str]]:
    """
    Run TransactWriteItems through the resource's client, which serializes
    plain Python values like the table calls do. Returns None when every write
    went through, or the per-item cancellation codes ("None",
    "ConditionalCheckFailed", ...) when DynamoDB cancelled the transaction.
    """
    try:
        dynamodb.meta.client.transact_write_items(TransactItems=items)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") == "TransactionCanceledException":
            codes = [reason.get("Code", "None") for reason in e.response.get("CancellationReasons", [])]
            return codes or ["Unknown"]
        raise _fail(operation, table, e)
    return None


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def get_user_by_email(email: str):
    """Query the Users table by email through the email GSI."""
    items = _query_all(
        users_table,
        "get_user_by_email",
        IndexName=EMAIL_INDEX,
        KeyConditionExpression=Key("email").eq(email),
    )
    return items[0] if items else None


def get_user_by_id(user_id: str):
    return _get(users_table, "get_user_by_id", {"user_id": user_id})


def put_user(user_item: dict):
    """Insert a new user into the Users table."""
    try:
        users_table.put_item(
            Item=_convert_for_dynamo(user_item),
            ConditionExpression="attribute_not_exists(user_id)",
        )
    except ClientError as e:
        raise _fail("put_user", users_table, e)


# ---------------------------------------------------------------------------
# Monthly budgets
# ---------------------------------------------------------------------------

def _budget_key(user_id: str, year: int, month: int) -> Dict[str, str]:
    return {"user_id": user_id, "period": period_key(year, month)}


def _budget_defaults(year: int, month: int, now: str) -> Dict[str, Any]:
    return {
        "year": year,
        "month": month,
        "base_income": None,
        "expenses": [],
        "created_at": now,
    }


def get_budget(user_id: str, year: int, month: int):
    return _get(budgets_table, "get_budget", _budget_key(user_id, year, month))


def get_or_create_budget(user_id: str, year: int, month: int):
    """Return the month's budget, creating an empty one the first time it is asked for."""
    existing = get_budget(user_id, year, month)
    if existing:
        return existing

    now = to_iso()
    item = {**_budget_key(user_id, year, month), **_budget_defaults(year, month, now), "updated_at": now}
    try:
        budgets_table.put_item(
            Item=_convert_for_dynamo(item),
            ConditionExpression="attribute_not_exists(user_id)",
        )
    except ClientError as e:
        if _is_conditional_failure(e):
            # Created by a concurrent request
            return get_budget(user_id, year, month)
        raise _fail("get_or_create_budget", budgets_table, e)
    logger.info(f"Created budget {item['period']} for user {user_id}")
    return item


def list_budgets(user_id: str) -> List[Dict[str, Any]]:
    return _query_all(
        budgets_table,
        "list_budgets",
        KeyConditionExpression=Key("user_id").eq(user_id),
    )


def set_base_income(user_id: str, year: int, month: int, amount: float):
    """Set the month's base income, creating the budget if needed. Returns the updated item."""
    now = to_iso()
    expression, names, values = _set_expression(
        {"base_income": amount, "updated_at": now},
        defaults={k: v for k, v in _budget_defaults(year, month, now).items() if k != "base_income"},
    )
    try:
        response = budgets_table.update_item(
            Key=_budget_key(user_id, year, month),
            UpdateExpression=expression,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=_convert_for_dynamo(values),
            ReturnValues="ALL_NEW",
        )
    except ClientError as e:
        raise _fail("set_base_income", budgets_table, e)
    return _from_dynamo(response["Attributes"])


def add_expense(user_id: str, year: int, month: int, expense: dict):
    """Append an expense to the month's budget, creating the budget if needed."""
    now = to_iso()
    expression, names, values = _set_expression(
        {"updated_at": now},
        defaults={k: v for k, v in _budget_defaults(year, month, now).items() if k != "expenses"},
    )
    names["#expenses"] = "expenses"
    values[":empty"] = []
    values[":new"] = [expense]
    expression += ", #expenses = list_append(if_not_exists(#expenses, :empty), :new)"
    try:
        response = budgets_table.update_item(
            Key=_budget_key(user_id, year, month),
            UpdateExpression=expression,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=_convert_for_dynamo(values),
            ReturnValues="ALL_NEW",
        )
    except ClientError as e:
        raise _fail("add_expense", budgets_table, e)
    return _from_dynamo(response["Attributes"])


def _find_expense(user_id: str, expense_id: str) -> Optional[Tuple[Dict[str, Any], int]]:
    for budget in list_budgets(user_id):
        for idx, expense in enumerate(budget.get("expenses") or []):
            if expense.get("expense_id") == expense_id:
                return budget, idx
    return None


def update_expense(user_id: str, expense_id: str, title: str, amount: float):
    """
    Replace the title and amount of one of the user's expenses.
    Returns the updated budget, or None if the expense does not exist.
    """
    located = _find_expense(user_id, expense_id)
    if not located:
        return None
    budget, idx = located

    try:
        response = budgets_table.update_item(
            Key={"user_id": user_id, "period": budget["period"]},
            UpdateExpression=(
                f"SET #expenses[{idx}].#title = :title, #expenses[{idx}].#amount = :amount, "
                "#updated_at = :now"
            ),
            # The list may have shifted since it was read
            ConditionExpression=f"#expenses[{idx}].#expense_id = :expense_id",
            ExpressionAttributeNames={
                "#expenses": "expenses",
                "#title": "title",
                "#amount": "amount",
                "#expense_id": "expense_id",
                "#updated_at": "updated_at",
            },
            ExpressionAttributeValues=_convert_for_dynamo({
                ":title": title,
                ":amount": amount,
                ":now": to_iso(),
                ":expense_id": expense_id,
            }),
            ReturnValues="ALL_NEW",
        )
    except ClientError as e:
        if _is_conditional_failure(e):
            return None
        raise _fail("update_expense", budgets_table, e)
    return _from_dynamo(response["Attributes"])


def delete_expense(user_id: str, expense_id: str):
    """Remove one of the user's expenses. Returns the updated budget or None."""
    located = _find_expense(user_id, expense_id)
    if not located:
        return None
    budget, idx = located

    try:
        response = budgets_table.update_item(
            Key={"user_id": user_id, "period": budget["period"]},
            UpdateExpression=f"REMOVE #expenses[{idx}] SET #updated_at = :now",
            ConditionExpression=f"#expenses[{idx}].#expense_id = :expense_id",
            ExpressionAttributeNames={
                "#expenses": "expenses",
                "#expense_id": "expense_id",
                "#updated_at": "updated_at",
            },
            ExpressionAttributeValues={":now": to_iso(), ":expense_id": expense_id},
            ReturnValues="ALL_NEW",
        )
    except ClientError as e:
        if _is_conditional_failure(e):
            return None
        raise _fail("delete_expense", budgets_table, e)
    return _from_dynamo(response["Attributes"])


# ---------------------------------------------------------------------------
# Funds
# ---------------------------------------------------------------------------

def list_funds(user_id: str) -> List[Dict[str, Any]]:
    funds = _query_all(
        funds_table,
        "list_funds",
        KeyConditionExpression=Key("user_id").eq(user_id),
    )
    return sorted(funds, key=lambda f: f.get("created_at", ""))


def get_fund(user_id: str, fund_id: str):
    """Fetch a fund; ownership is enforced by the user_id partition key."""
    return _get(funds_table, "get_fund", {"user_id": user_id, "fund_id": fund_id})


def put_fund(fund_item: dict):
    try:
        funds_table.put_item(Item=_convert_for_dynamo({"total_paid": 0, **fund_item}))
    except ClientError as e:
        raise _fail("put_fund", funds_table, e)


def update_fund(user_id: str, fund_id: str, updates: dict):
    """
    Apply updates to an existing fund. Returns the updated item or None if it is gone.
    A new principal is only written while it still covers the fund's running
    total_paid; otherwise DynamoConflict is raised.
    """
    expression, names, values = _set_expression(updates)
    names["#fund_id"] = "fund_id"
    condition = "attribute_exists(#fund_id)"
    if "principal_amount" in updates:
        names["#total_paid"] = "total_paid"
        values[":principal"] = updates["principal_amount"]
        condition += " AND (attribute_not_exists(#total_paid) OR #total_paid <= :principal)"
    try:
        response = funds_table.update_item(
            Key={"user_id": user_id, "fund_id": fund_id},
            UpdateExpression=expression,
            ConditionExpression=condition,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=_convert_for_dynamo(values),
            ReturnValues="ALL_NEW",
        )
    except ClientError as e:
        if _is_conditional_failure(e):
            if get_fund(user_id, fund_id):
                raise _conflict("update_fund", funds_table)
            return None
        raise _fail("update_fund", funds_table, e)
    return _from_dynamo(response["Attributes"])


def delete_fund(user_id: str, fund_id: str) -> bool:
    """Delete a fund together with all of its transactions."""
    transactions = list_transactions(fund_id)
    try:
        with transactions_table.batch_writer() as batch:
            for item in transactions:
                batch.delete_item(Key={"fund_id": fund_id, "transaction_id": item["transaction_id"]})
    except ClientError as e:
        raise _fail("delete_fund", transactions_table, e)

    try:
        response = funds_table.delete_item(
            Key={"user_id": user_id, "fund_id": fund_id},
            ReturnValues="ALL_OLD",
        )
    except ClientError as e:
        raise _fail("delete_fund", funds_table, e)
    logger.info(f"Deleted fund {fund_id} and {len(transactions)} transactions")
    return "Attributes" in response


def _paid_total_update(
    user_id: str,
    fund_id: str,
    paid_before: Optional[float],
    paid_after: float,
) -> Dict[str, Any]:
    """
    TransactWriteItems entry moving the fund's running total_paid from
    ``paid_before`` to ``paid_after``. It only applies while the stored total is
    still ``paid_before`` (None for funds written before the total was kept) and
    ``paid_after`` stays within the principal.
    """
    names = {
        "#fund_id": "fund_id",
        "#principal": "principal_amount",
        "#total_paid": "total_paid",
    }
    values: Dict[str, Any] = {":paid_after": paid_after}
    condition = "attribute_exists(#fund_id) AND #principal >= :paid_after AND "
    if paid_before is None:
        condition += "attribute_not_exists(#total_paid)"
    else:
        condition += "#total_paid = :paid_before"
        values[":paid_before"] = paid_before
    return {
        "Update": {
            "TableName": funds_table.name,
            "Key": {"user_id": user_id, "fund_id": fund_id},
            "UpdateExpression": "SET #total_paid = :paid_after",
            "ConditionExpression": condition,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": _convert_for_dynamo(values),
        }
    }


# ---------------------------------------------------------------------------
# Fund transactions
# ---------------------------------------------------------------------------

def list_transactions(fund_id: str) -> List[Dict[str, Any]]:
    """All transactions of a fund, oldest payment date first."""
    items = _query_all(
        transactions_table,
        "list_transactions",
        KeyConditionExpression=Key("fund_id").eq(fund_id),
    )
    return sorted(items, key=lambda t: (t.get("date", ""), t.get("created_at", "")))


def get_transaction(fund_id: str, transaction_id: str):
    return _get(
        transactions_table,
        "get_transaction",
        {"fund_id": fund_id, "transaction_id": transaction_id},
    )


def put_transaction(
    user_id: str,
    transaction_item: dict,
    paid_before: Optional[float],
    paid_after: float,
) -> None:
    """Store a payment and move the fund's total_paid in one transaction."""
    codes = _transact("put_transaction", transactions_table, [
        {
            "Put": {
                "TableName": transactions_table.name,
                "Item": _convert_for_dynamo(transaction_item),
                "ConditionExpression": "attribute_not_exists(#transaction_id)",
                "ExpressionAttributeNames": {"#transaction_id": "transaction_id"},
            }
        },
        _paid_total_update(user_id, transaction_item["fund_id"], paid_before, paid_after),
    ])
    if codes:
        raise _conflict("put_transaction", funds_table)


def update_transaction(
    user_id: str,
    fund_id: str,
    transaction_id: str,
    updates: dict,
    paid_before: Optional[float],
    paid_after: float,
) -> bool:
    """
    Apply updates to a payment together with the fund's total_paid.
    Returns False if the payment no longer exists.
    """
    expression, names, values = _set_expression(updates)
    names["#transaction_id"] = "transaction_id"
    codes = _transact("update_transaction", transactions_table, [
        {
            "Update": {
                "TableName": transactions_table.name,
                "Key": {"fund_id": fund_id, "transaction_id": transaction_id},
                "UpdateExpression": expression,
                "ConditionExpression": "attribute_exists(#transaction_id)",
                "ExpressionAttributeNames": names,
                "ExpressionAttributeValues": _convert_for_dynamo(values),
            }
        },
        _paid_total_update(user_id, fund_id, paid_before, paid_after),
    ])
    if not codes:
        return True
    if codes[0] == "ConditionalCheckFailed":
        return False
    raise _conflict("update_transaction", funds_table)


def delete_transaction(
    user_id: str,
    fund_id: str,
    transaction_id: str,
    paid_before: Optional[float],
    paid_after: float,
) -> bool:
    """Delete a payment and lower the fund's total_paid. Returns False if it was already gone."""
    codes = _transact("delete_transaction", transactions_table, [
        {
            "Delete": {
                "TableName": transactions_table.name,
                "Key": {"fund_id": fund_id, "transaction_id": transaction_id},
                "ConditionExpression": "attribute_exists(#transaction_id)",
                "ExpressionAttributeNames": {"#transaction_id": "transaction_id"},
            }
        },
        _paid_total_update(user_id, fund_id, paid_before, paid_after),
    ])
    if not codes:
        return True
    if codes[0] == "ConditionalCheckFailed":
        return False
    raise _conflict("delete_transaction", funds_table)


# ---------------------------------------------------------------------------
# Table management
# ---------------------------------------------------------------------------

TABLE_DEFINITIONS = {
    "users": {
        "table": users_table,
        "KeySchema": [{"AttributeName": "user_id", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "user_id", "AttributeType": "S"},
            {"AttributeName": "email", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": EMAIL_INDEX,
                "KeySchema": [{"AttributeName": "email", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            }
        ],
    },
    "budgets": {
        "table": budgets_table,
        "KeySchema": [
            {"AttributeName": "user_id", "KeyType": "HASH"},
            {"AttributeName": "period", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "user_id", "AttributeType": "S"},
            {"AttributeName": "period", "AttributeType": "S"},
        ],
    },
    "funds": {
        "table": funds_table,
        "KeySchema": [
            {"AttributeName": "user_id", "KeyType": "HASH"},
            {"AttributeName": "fund_id", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "user_id", "AttributeType": "S"},
            {"AttributeName": "fund_id", "AttributeType": "S"},
        ],
    },
    "transactions": {
        "table": transactions_table,
        "KeySchema": [
            {"AttributeName": "fund_id", "KeyType": "HASH"},
            {"AttributeName": "transaction_id", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "fund_id", "AttributeType": "S"},
            {"AttributeName": "transaction_id", "AttributeType": "S"},
        ],
    },
}


def ensure_tables() -> List[str]:
    """
    Create any missing tables (on-demand billing). Intended for DynamoDB Local
    and fresh environments; returns the names of the tables created.
    """
    client = dynamodb.meta.client
    try:
        existing = set(client.list_tables().get("TableNames", []))
    except ClientError as e:
        raise _fail("ensure_tables", users_table, e)

    created = []
    for definition in TABLE_DEFINITIONS.values():
        table = definition["table"]
        if table.name in existing:
            continue
        params = {k: v for k, v in definition.items() if k != "table"}
        try:
            dynamodb.create_table(TableName=table.name, BillingMode="PAY_PER_REQUEST", **params)
            table.wait_until_exists()
        except ClientError as e:
            raise _fail("ensure_tables", table, e)
        logger.info(f"Created DynamoDB table {table.name}")
        created.append(table.name)
    return created


def check_tables() -> Dict[str, Dict[str, Any]]:
    """Probe every table with a one-item scan and report whether it is reachable."""
    report = {}
    for alias, definition in TABLE_DEFINITIONS.items():
        table = definition["table"]
        try:
            table.scan(Limit=1)
            report[alias] = {"name": table.name, "status": "accessible", "region": settings.DYNAMO_REGION}
        except (BotoCoreError, ClientError) as e:
            logger.error(f"DynamoDB check failed for {table.name}: {str(e)}")
            report[alias] = {"name": table.name, "status": "error", "error": str(e)}
    return report


def _convert_for_dynamo(obj: Any):
    """
    Recursively convert floats to Decimal for DynamoDB compatibility.
    """
    if isinstance(obj, float):
        return Decimal(str(obj))
    if isinstance(obj, dict):
        return {k: _convert_for_dynamo(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_convert_for_dynamo(v) for v in obj]
    return obj


def _from_dynamo(obj: Any):
    """
    Recursively convert Decimal instances back to native Python numeric types.
    """
    if isinstance(obj, list):
        return [_from_dynamo(item) for item in obj]
    if isinstance(obj, dict):
        return {k: _from_dynamo(v) for k, v in obj.items()}
    if isinstance(obj, Decimal):
        if obj % 1 == 0:
            return int(obj)
        return float(obj)
    return obj
