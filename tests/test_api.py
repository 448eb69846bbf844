from datetime import datetime, timezone

from fastapi.testclient import TestClient

from config import Settings
from database import Base, create_db_engine, create_session_factory
from main import create_app

RECEIPT_TEXT = b"STARBUCKS #1142\nLatte 4.75\nMuffin 3.25\nTotal 8.00\n"


def _client(tmp_path) -> TestClient:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path / 'api.db'}",
        secret_key="test-secret",
        bcrypt_rounds=4,
    )
    engine = create_db_engine(settings)
    Base.metadata.create_all(engine)
    return TestClient(create_app(settings, create_session_factory(engine)))


def _register_and_login(client: TestClient, email: str = "alice@example.com") -> dict:
    resp = client.post(
        "/api/auth/register",
        json={"firstName": "Alice", "lastName": "Smith", "email": email, "password": "secret1"},
    )
    assert resp.status_code == 201
    resp = client.post("/api/auth/login", json={"email": email, "password": "secret1"})
    assert resp.status_code == 200
    return resp.json()


def _expense(**overrides) -> dict:
    body = {
        "type": "expense",
        "category": "Food & Dining",
        "amount": 25.5,
        "description": "Lunch",
        "date": datetime.now(timezone.utc).replace(tzinfo=None).isoformat(),
    }
    body.update(overrides)
    return body


def test_register_validation_and_duplicates(tmp_path) -> None:
    client = _client(tmp_path)
    _register_and_login(client)

    resp = client.post(
        "/api/auth/register",
        json={"firstName": "A", "lastName": "B", "email": "alice@example.com", "password": "secret1"},
    )
    assert resp.status_code == 409
    assert resp.json()["detail"] == "User with this email already exists"

    resp = client.post(
        "/api/auth/register",
        json={"firstName": "A", "lastName": "B", "email": "b@example.com", "password": "123"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Password must be at least 6 characters long"


def test_login_rejects_bad_credentials(tmp_path) -> None:
    client = _client(tmp_path)
    _register_and_login(client)

    resp = client.post(
        "/api/auth/login", json={"email": "alice@example.com", "password": "nope-nope"}
    )
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid email or password"


def test_requests_without_identity_are_rejected(tmp_path) -> None:
    client = _client(tmp_path)

    resp = client.get("/api/transactions")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Authentication required"

    resp = client.get("/api/analytics", headers={"Authorization": "Bearer forged"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid token"


def test_create_list_and_analytics(tmp_path) -> None:
    client = _client(tmp_path)
    login = _register_and_login(client)
    assert "auth-token" in client.cookies

    resp = client.post("/api/transactions", json=_expense())
    assert resp.status_code == 201
    created = resp.json()
    assert created["message"] == "Transaction created successfully"
    assert created["transaction"]["category"] == "Food & Dining"
    assert created["transaction"]["status"] == "completed"

    resp = client.post(
        "/api/transactions",
        json=_expense(type="income", category=None, amount=1000, description="Pay"),
    )
    assert resp.status_code == 201
    assert resp.json()["transaction"]["category"] == "Salary"

    resp = client.get("/api/transactions", params={"timeRange": "all", "limit": 1000})
    assert resp.status_code == 200
    body = resp.json()
    assert body["pagination"] == {"page": 1, "limit": 100, "total": 2, "pages": 1}
    assert body["summary"]["income"] == 1000
    assert body["summary"]["expenses"] == 25.5
    assert body["summary"]["net"] == 974.5
    assert body["summary"]["categoryStats"] == [
        {"category": "Food & Dining", "total": 25.5, "count": 1}
    ]
    assert body["partial"] is False

    resp = client.get(
        "/api/analytics",
        params={"timeRange": "all"},
        headers={"Authorization": f"Bearer {login['token']}"},
    )
    assert resp.status_code == 200
    analytics = resp.json()
    assert analytics["summary"]["netSavings"] == 974.5
    assert analytics["summary"]["transactionCount"] == 1
    assert len(analytics["monthlyData"]) == 12
    assert analytics["topMerchants"] == [{"name": "Lunch", "amount": 25.5, "count": 1}]


def test_create_rejects_bad_payloads(tmp_path) -> None:
    client = _client(tmp_path)
    _register_and_login(client)

    resp = client.post(
        "/api/transactions",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid request format"

    resp = client.post("/api/transactions", json=_expense(amount=0))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "amount must be greater than 0"

    resp = client.post("/api/transactions", json=_expense(type="transfer"))
    assert resp.json()["detail"] == "invalid type"


def test_users_only_see_their_own_transactions(tmp_path) -> None:
    client = _client(tmp_path)
    alice = _register_and_login(client, "alice@example.com")
    client.post("/api/transactions", json=_expense())
    bob = _register_and_login(client, "bob@example.com")

    resp = client.get(
        "/api/transactions",
        params={"timeRange": "all"},
        headers={"Authorization": f"Bearer {bob['token']}"},
    )
    assert resp.json()["pagination"]["total"] == 0

    resp = client.get(
        "/api/transactions",
        params={"timeRange": "all"},
        headers={"Authorization": f"Bearer {alice['token']}"},
    )
    assert resp.json()["pagination"]["total"] == 1


def test_me_and_logout(tmp_path) -> None:
    client = _client(tmp_path)
    _register_and_login(client)

    resp = client.get("/api/auth/me")
    assert resp.status_code == 200
    assert resp.json()["email"] == "alice@example.com"
    assert resp.json()["firstName"] == "Alice"

    resp = client.post("/api/auth/logout")
    assert resp.status_code == 200
    assert "auth-token=" in resp.headers["set-cookie"]


def test_import_export_and_receipts(tmp_path) -> None:
    client = _client(tmp_path)
    _register_and_login(client)

    csv_body = b"Date,Type,Category,Amount,Description\n2025-05-01,expense,Utilities,80,Power\n"
    resp = client.post(
        "/api/transactions/import", files={"file": ("bank.csv", csv_body, "text/csv")}
    )
    assert resp.status_code == 200
    assert resp.json()["summary"]["successful"] == 1

    resp = client.post(
        "/api/transactions/import", files={"file": ("bank.pdf", b"%PDF", "application/pdf")}
    )
    assert resp.status_code == 400

    resp = client.get("/api/transactions/export.csv", params={"timeRange": "all"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "Power" in resp.text

    resp = client.post(
        "/api/receipts/process",
        files={"receipt": ("coffee.txt", RECEIPT_TEXT, "text/plain")},
    )
    assert resp.status_code == 200
    processed = resp.json()
    assert processed["receipt"]["merchant"] == "STARBUCKS #1142"
    assert processed["receipt"]["amount"] == 8.0
    assert processed["receipt"]["status"] == "completed"

    resp = client.get("/api/receipts")
    assert [r["id"] for r in resp.json()["receipts"]] == [processed["receipt"]["id"]]

    resp = client.delete("/api/admin/cleanup")
    assert resp.status_code == 200
    assert resp.json()["deleted"] == {"receipts": 0, "transactions": 1}


def test_overlong_password_is_a_validation_error(tmp_path) -> None:
    client = _client(tmp_path)

    resp = client.post(
        "/api/auth/register",
        json={"firstName": "A", "lastName": "B", "email": "a@example.com", "password": "p" * 80},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Password must be at most 72 bytes long"


def test_huge_page_number_returns_empty_page(tmp_path) -> None:
    client = _client(tmp_path)
    _register_and_login(client)
    client.post("/api/transactions", json=_expense())

    resp = client.get(
        "/api/transactions", params={"timeRange": "all", "page": "99999999999999999999"}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["transactions"] == []
    assert body["pagination"]["total"] == 1
