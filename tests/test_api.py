from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook, load_workbook
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import main
from database import Base, make_session_factory


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = make_session_factory(engine)

    def override_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[main.get_db] = override_db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def xlsx(rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.append(["Text", "Amount", "Type", "Transfer", "Category", "Date"])
    for row in rows:
        ws.append(row)
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_requires_caller_identity(client) -> None:
    assert client.get("/accounts/dashboard").status_code == 401


def test_account_lifecycle_over_http(client) -> None:
    headers = {"X-User-Id": "1"}

    created = client.post(
        "/accounts", json={"name": "Wallet", "balance": -100, "currency": "inr"}, headers=headers
    )
    assert created.status_code == 201
    account_id = created.json()["account_id"]

    duplicate = client.post("/accounts", json={"name": "Wallet"}, headers=headers)
    assert duplicate.status_code == 409

    invalid = client.post(
        "/accounts", json={"name": "Bad", "currency": "EURO"}, headers=headers
    )
    assert invalid.status_code == 400

    body = client.get(f"/accounts/{account_id}", headers=headers).json()
    assert body["currency"] == "INR"
    assert body["analytics"]["expense"] == 100

    assert client.get(f"/accounts/{account_id}", headers={"X-User-Id": "2"}).status_code == 404
    assert (
        client.put(
            f"/accounts/{account_id}", json={"name": "Mine"}, headers={"X-User-Id": "2"}
        ).status_code
        == 403
    )

    updated = client.put(f"/accounts/{account_id}", json={"balance": 5}, headers=headers)
    assert updated.json() == {"message": "Account updated successfully"}

    assert client.delete(f"/accounts/{account_id}", headers=headers).status_code == 200
    assert client.get(f"/accounts/{account_id}", headers=headers).status_code == 404


def test_import_flow_and_statement_over_http(client) -> None:
    headers = {"X-User-Id": "1"}
    account_id = client.post(
        "/accounts", json={"name": "Wallet"}, headers=headers
    ).json()["account_id"]

    staged = client.post(
        "/accounts/import/transaction",
        data={"accountId": str(account_id)},
        files={"file": ("tx.xlsx", xlsx([["Coffee", "4.5", "expense", "-", "Dining", "2024-01-05"]]))},
        headers=headers,
    )
    assert staged.status_code == 200
    import_id = staged.json()["import_id"]

    preview = client.get(f"/accounts/import/{import_id}", headers=headers).json()
    assert preview["length"] == 1

    assert client.post(f"/accounts/import/{import_id}/confirm", headers=headers).status_code == 200
    again = client.post(f"/accounts/import/{import_id}/confirm", headers=headers)
    assert again.status_code == 400

    analytics = client.get(
        f"/accounts/{account_id}/analytics",
        params={"duration": "2024-01-01,2024-01-31"},
        headers=headers,
    ).json()
    assert analytics["expense"] == 4.5
    assert analytics["expense_percentage_change"] == 100

    statement = client.get(
        f"/accounts/{account_id}/statement",
        params={"exportType": "xlsx", "numTransactions": "10"},
        headers=headers,
    )
    assert statement.status_code == 200
    assert statement.headers["content-disposition"] == 'attachment; filename="statement.xlsx"'

    bad = client.get(
        f"/accounts/{account_id}/statement",
        params={"exportType": "xlsx", "numTransactions": "0"},
        headers=headers,
    )
    assert bad.status_code == 400


def test_dashboard_over_http(client) -> None:
    headers = {"X-User-Id": "7"}
    client.post("/accounts", json={"name": "Main", "balance": 300}, headers=headers)
    client.post("/accounts", json={"name": "Side", "balance": -20}, headers=headers)

    summary = client.get("/accounts/dashboard", headers=headers).json()

    assert [a["name"] for a in summary["accounts"]] == ["Main", "Side"]
    assert summary["total_transactions"] == 2
    assert summary["overall_balance"] == 280


def test_sample_workbook_download(client) -> None:
    headers = {"X-User-Id": "1"}

    response = client.get("/accounts/import/sample", headers=headers)

    assert response.status_code == 200
    assert response.headers["content-disposition"] == (
        'attachment; filename="sample_transactions.xlsx"'
    )
    sheet = load_workbook(BytesIO(response.content)).active
    assert [cell.value for cell in sheet[1]] == [
        "Text",
        "Amount",
        "Type",
        "Transfer",
        "Category",
        "Date",
    ]
    assert sheet.max_row == 3
    assert client.get("/accounts/import/sample").status_code == 401


def test_overlong_text_is_rejected_at_staging(client) -> None:
    headers = {"X-User-Id": "1"}
    account_id = client.post(
        "/accounts", json={"name": "Wallet"}, headers=headers
    ).json()["account_id"]

    staged = client.post(
        "/accounts/import/transaction",
        data={"accountId": str(account_id)},
        files={"file": ("tx.xlsx", xlsx([["x" * 300, 4, "expense", "", "Dining", "2024-01-05"]]))},
        headers=headers,
    )

    assert staged.status_code == 400
    assert "Text exceeds 255 characters" in staged.json()["detail"]
