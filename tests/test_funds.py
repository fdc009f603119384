import copy

import pytest

from app.db import dynamo

FUND = {
    "person_name": "Sam",
    "type": "GIVEN",
    "principal_amount": 1000,
    "start_date": "2025-01-15T00:00:00Z",
    "notes": "car repair",
}


@pytest.fixture()
def fund_id(client, auth_headers):
    r = client.post("/api/funds", json=FUND, headers=auth_headers)
    assert r.status_code == 201
    return r.json()["fund_id"]


def _pay(client, headers, fund_id, amount, date="2025-02-01T00:00:00Z"):
    return client.post(
        f"/api/funds/{fund_id}/transactions",
        json={"amount": amount, "date": date},
        headers=headers,
    )


def test_create_fund_starts_open(client, auth_headers):
    r = client.post("/api/funds", json=FUND, headers=auth_headers)
    body = r.json()
    assert body["status"] == "OPEN"
    assert body["total_paid"] == 0
    assert body["outstanding"] == 1000
    assert body["transactions"] == []
    assert body["start_date"] == "2025-01-15T00:00:00+00:00"


@pytest.mark.parametrize(
    "override",
    [
        {"person_name": "  "},
        {"type": "STOLEN"},
        {"principal_amount": 0},
    ],
)
def test_create_fund_validation(client, auth_headers, override):
    r = client.post("/api/funds", json={**FUND, **override}, headers=auth_headers)
    assert r.status_code == 400


def test_list_funds_only_returns_own(client, auth_headers, other_auth_headers, fund_id):
    client.post("/api/funds", json={**FUND, "person_name": "Kim"}, headers=other_auth_headers)
    r = client.get("/api/funds", headers=auth_headers)
    assert [f["fund_id"] for f in r.json()] == [fund_id]


def test_partial_payments_until_paid(client, auth_headers, fund_id):
    r = _pay(client, auth_headers, fund_id, 400)
    assert r.status_code == 201
    assert r.json()["outstanding"] == 600

    r = _pay(client, auth_headers, fund_id, 600, date="2025-01-20T00:00:00Z")
    body = r.json()
    assert body["status"] == "PAID"
    assert body["outstanding"] == 0
    # Sorted by payment date
    assert [t["amount"] for t in body["transactions"]] == [600, 400]


def test_payment_cannot_exceed_principal(client, auth_headers, fund_id):
    _pay(client, auth_headers, fund_id, 900)
    r = _pay(client, auth_headers, fund_id, 150)
    assert r.status_code == 400
    assert r.json()["detail"] == "transaction amount would exceed principal amount. Maximum allowed: 100.00"


def test_update_transaction_rechecks_principal(client, auth_headers, fund_id):
    _pay(client, auth_headers, fund_id, 300)
    r = _pay(client, auth_headers, fund_id, 500)
    tx = next(t for t in r.json()["transactions"] if t["amount"] == 500)
    url = f"/api/funds/{fund_id}/transactions/{tx['transaction_id']}"

    r = client.put(url, json={"amount": 700, "date": tx["date"]}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "PAID"

    r = client.put(url, json={"amount": 701, "date": tx["date"]}, headers=auth_headers)
    assert r.status_code == 400


def test_delete_transaction_reopens_fund(client, auth_headers, fund_id):
    r = _pay(client, auth_headers, fund_id, 1000)
    tx_id = r.json()["transactions"][0]["transaction_id"]

    r = client.delete(f"/api/funds/{fund_id}/transactions/{tx_id}", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "OPEN"

    r = client.delete(f"/api/funds/{fund_id}/transactions/{tx_id}", headers=auth_headers)
    assert r.status_code == 404
    assert r.json()["detail"] == "transaction not found or doesn't belong to fund"


def test_principal_cannot_drop_below_paid(client, auth_headers, fund_id):
    _pay(client, auth_headers, fund_id, 600)
    r = client.put(f"/api/funds/{fund_id}", json={**FUND, "principal_amount": 500}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "principal amount cannot be less than total paid (600.00)"

    r = client.put(f"/api/funds/{fund_id}", json={**FUND, "principal_amount": 600}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "PAID"


def test_fund_of_another_user_is_not_found(client, other_auth_headers, fund_id):
    r = client.get(f"/api/funds/{fund_id}", headers=other_auth_headers)
    assert r.status_code == 404
    assert r.json()["detail"] == "fund not found or doesn't belong to user"
    assert _pay(client, other_auth_headers, fund_id, 10).status_code == 404


def test_delete_fund_removes_transactions(client, store, auth_headers, fund_id):
    _pay(client, auth_headers, fund_id, 100)
    r = client.delete(f"/api/funds/{fund_id}", headers=auth_headers)
    assert r.status_code == 200
    assert r.json() == {"message": "fund deleted successfully"}
    assert store.list_transactions(fund_id) == []
    assert client.get(f"/api/funds/{fund_id}", headers=auth_headers).status_code == 404


def test_oversized_principal_is_rejected(client, auth_headers):
    r = client.post("/api/funds", json={**FUND, "principal_amount": 1e26}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["errors"][0]["path"] == "principal_amount"
    assert client.get("/api/funds", headers=auth_headers).json() == []


def test_infinite_payment_is_rejected(client, auth_headers, fund_id):
    r = client.post(
        f"/api/funds/{fund_id}/transactions",
        content='{"amount": Infinity}',
        headers={**auth_headers, "Content-Type": "application/json"},
    )
    assert r.status_code == 400
    assert client.get(f"/api/funds/{fund_id}", headers=auth_headers).json()["transactions"] == []


def test_update_unknown_fund(client, auth_headers):
    r = client.put("/api/funds/missing", json=FUND, headers=auth_headers)
    assert r.status_code == 404
    assert r.json()["detail"] == "fund not found or doesn't belong to user"


def test_delete_unknown_fund(client, auth_headers):
    r = client.delete("/api/funds/missing", headers=auth_headers)
    assert r.status_code == 404
    assert r.json()["detail"] == "fund not found or doesn't belong to user"


def test_update_unknown_transaction(client, auth_headers, fund_id):
    r = client.put(
        f"/api/funds/{fund_id}/transactions/missing",
        json={"amount": 10},
        headers=auth_headers,
    )
    assert r.status_code == 404
    assert r.json()["detail"] == "transaction not found or doesn't belong to fund"


def test_update_fund_without_start_date_keeps_it(client, auth_headers, fund_id):
    body = {k: v for k, v in FUND.items() if k != "start_date"}
    r = client.put(f"/api/funds/{fund_id}", json={**body, "notes": "paid in cash"}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["start_date"] == "2025-01-15T00:00:00+00:00"
    assert r.json()["notes"] == "paid in cash"


def test_update_transaction_without_date_keeps_it(client, auth_headers, fund_id):
    r = _pay(client, auth_headers, fund_id, 100, date="2025-03-05T00:00:00Z")
    tx = r.json()["transactions"][0]

    r = client.put(
        f"/api/funds/{fund_id}/transactions/{tx['transaction_id']}",
        json={"amount": 150},
        headers=auth_headers,
    )
    assert r.status_code == 200
    assert r.json()["transactions"][0]["date"] == "2025-03-05T00:00:00+00:00"
    assert r.json()["total_paid"] == 150


def test_payment_without_date_is_dated_now(client, auth_headers, fund_id):
    r = client.post(f"/api/funds/{fund_id}/transactions", json={"amount": 5}, headers=auth_headers)
    assert r.status_code == 201
    assert r.json()["transactions"][0]["date"]


def test_fund_keeps_running_total_paid(client, store, auth_headers, fund_id):
    r = _pay(client, auth_headers, fund_id, 250)
    tx_id = r.json()["transactions"][0]["transaction_id"]
    _pay(client, auth_headers, fund_id, 100)
    assert store.funds[("user-1", fund_id)]["total_paid"] == 350

    client.delete(f"/api/funds/{fund_id}/transactions/{tx_id}", headers=auth_headers)
    assert store.funds[("user-1", fund_id)]["total_paid"] == 100


def test_payment_based_on_stale_reads_conflicts(client, store, auth_headers, fund_id, monkeypatch):
    stale_fund = store.get_fund("user-1", fund_id)
    _pay(client, auth_headers, fund_id, 800)

    # A second request that read the fund before the 800 payment landed
    monkeypatch.setattr(dynamo, "get_fund", lambda user_id, fid: copy.deepcopy(stale_fund))
    monkeypatch.setattr(dynamo, "list_transactions", lambda fid: [])
    r = _pay(client, auth_headers, fund_id, 300)
    assert r.status_code == 409
    assert r.json()["detail"] == "fund was changed by another request, please retry"

    assert [t["amount"] for t in store.list_transactions(fund_id)] == [800]
    assert store.funds[("user-1", fund_id)]["total_paid"] == 800
