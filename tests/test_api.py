from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app


def _engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def _client(engine=None) -> TestClient:
    engine = engine or _engine()
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def test_ledger_round_trip_over_http() -> None:
    client = _client()
    try:
        wallet = client.post(
            "/api/accounts",
            json={
                "name": "Wallet",
                "type": "CASH",
                "initial_balance_cents": 10_000,
                "initial_balance_at": "2025-03-01T09:00:00",
            },
        )
        assert wallet.status_code == 201
        wallet_id = wallet.json()["id"]

        created = client.post(
            "/api/transactions",
            json={
                "occurred_at": "2025-03-02T12:00:00",
                "type": "EXPENSE",
                "amount_cents": 2_500,
                "account_id": wallet_id,
            },
        )
        assert created.status_code == 201

        balance = client.get(f"/api/accounts/{wallet_id}/balance").json()
        assert balance["amount_cents"] == 7_500

        view = client.get(
            "/api/transactions",
            params={"period": "custom", "start": "2025-03-01", "end": "2025-03-31"},
        ).json()
        assert view["period"]["total_expense_cents"] == 2_500
        assert [d["date"] for d in view["days"]] == ["2025-03-02", "2025-03-01"]

        history = client.get(
            f"/api/accounts/{wallet_id}/history",
            params={"period": "custom", "start": "2025-03-01", "end": "2025-03-31"},
        ).json()
        assert [i["balance_after_cents"] for i in history["items"]] == [7_500, 10_000]

        deleted = client.delete(f"/api/transactions/{created.json()['id']}")
        assert deleted.status_code == 204
        assert client.get(f"/api/accounts/{wallet_id}/balance").json()["amount_cents"] == 10_000
    finally:
        app.dependency_overrides.clear()


def test_errors_map_to_status_codes() -> None:
    client = _client()
    try:
        assert client.get("/api/accounts/99/balance").status_code == 404
        assert client.get("/api/transactions", params={"period": "someday"}).status_code == 400
        bad_transfer = client.post(
            "/api/transactions",
            json={
                "occurred_at": "2025-03-02T12:00:00",
                "type": "TRANSFER",
                "amount_cents": 100,
                "account_id": 1,
            },
        )
        assert bad_transfer.status_code == 422
        assert client.put(
            "/api/budgets/cell",
            json={"subcategory_id": 5, "year": 2025, "month": 13, "amount_cents": 1},
        ).status_code == 422
    finally:
        app.dependency_overrides.clear()


def test_budget_cell_endpoint_upserts() -> None:
    client = _client()
    try:
        missing = client.put(
            "/api/budgets/cell",
            json={"subcategory_id": 5, "year": 2025, "month": 1, "amount_cents": 1},
        )
        assert missing.status_code == 404

        grid = client.get("/api/budgets", params={"year": 2025}).json()
        assert grid["type"] == "EXPENSE"
        assert grid["categories"] == []
    finally:
        app.dependency_overrides.clear()


def test_credit_account_response_carries_settlement_fields() -> None:
    client = _client()
    try:
        created = client.post(
            "/api/accounts",
            json={
                "name": "Visa",
                "type": "CREDIT",
                "credit_due_day": 10,
                "credit_closing_day": 3,
            },
        )
        assert created.status_code == 201
        body = created.json()
        assert body["debit_method"] == "INVOICE"
        assert body["credit_due_day"] == 10
        assert body["credit_closing_day"] == 3
    finally:
        app.dependency_overrides.clear()


def test_unknown_stored_types_answer_422() -> None:
    engine = _engine()
    client = _client(engine)
    try:
        wallet_id = client.post(
            "/api/accounts", json={"name": "Wallet", "type": "CASH"}
        ).json()["id"]
        txn_id = client.post(
            "/api/transactions",
            json={
                "occurred_at": "2025-03-02T12:00:00",
                "type": "EXPENSE",
                "amount_cents": 2_500,
                "account_id": wallet_id,
            },
        ).json()["id"]
        params = {"period": "custom", "start": "2025-03-01", "end": "2025-03-31"}

        with engine.begin() as conn:
            conn.execute(
                text("UPDATE transactions SET type = 'REFUND' WHERE id = :id"),
                {"id": txn_id},
            )
        assert client.get("/api/transactions", params=params).status_code == 422
        assert (
            client.get(f"/api/accounts/{wallet_id}/history", params=params).status_code
            == 422
        )

        with engine.begin() as conn:
            conn.execute(
                text("UPDATE accounts SET type = 'SAVINGS' WHERE id = :id"),
                {"id": wallet_id},
            )
        assert client.get("/api/accounts").status_code == 422
        assert client.get(f"/api/accounts/{wallet_id}/balance").status_code == 422
    finally:
        app.dependency_overrides.clear()
