import logging
from datetime import date

from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import main
from auth import hash_password, issue_token, read_token, verify_password
from database import Base, build_engine, get_db


def make_client() -> TestClient:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[get_db] = override_get_db
    main.response_cache.clear()
    return TestClient(main.app)


def register_and_login(client: TestClient, name: str = "alice") -> dict[str, str]:
    resp = client.post(
        "/api/users/register",
        json={"username": name, "email": f"{name}@example.com", "password": "s3cret"},
    )
    assert resp.status_code == 200
    resp = client.post(
        "/api/users/login", json={"email": f"{name}@example.com", "password": "s3cret"}
    )
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def test_password_hash_and_token_round_trip() -> None:
    hashed = hash_password("hunter2")
    assert hashed != "hunter2"
    assert verify_password("hunter2", hashed)
    assert not verify_password("hunter3", hashed)
    assert read_token(issue_token(42)) == 42
    assert read_token("not-a-token") is None


def test_register_login_and_me() -> None:
    client = make_client()
    headers = register_and_login(client)

    me = client.get("/api/users/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["username"] == "alice"
    assert "password_hash" not in me.json()

    dup = client.post(
        "/api/users/register",
        json={"username": "alice", "email": "other@example.com", "password": "x"},
    )
    assert dup.status_code == 400

    by_username = client.post(
        "/api/users/login", json={"email": "alice", "password": "s3cret"}
    )
    assert by_username.status_code == 200

    bad = client.post(
        "/api/users/login", json={"email": "alice@example.com", "password": "nope"}
    )
    assert bad.status_code == 400
    assert bad.json()["detail"] == "Invalid credentials"


def test_routes_require_token() -> None:
    client = make_client()
    assert client.get("/api/transactions").status_code == 401
    resp = client.get(
        "/api/transactions", headers={"Authorization": "Bearer forged.token"}
    )
    assert resp.status_code == 401


def test_transaction_crud_refreshes_cached_list() -> None:
    client = make_client()
    headers = register_and_login(client)

    assert client.get("/api/transactions", headers=headers).json() == []

    created = client.post(
        "/api/transactions",
        headers=headers,
        json={
            "date": "2024-01-10",
            "type": "expense",
            "amount_cents": 2_000,
            "category": " Food ",
            "note": "Groceries",
        },
    )
    assert created.status_code == 200
    txn = created.json()
    assert txn["category"] == "Food"

    listed = client.get("/api/transactions", headers=headers).json()
    assert [t["id"] for t in listed] == [txn["id"]]

    updated = client.put(
        f"/api/transactions/{txn['id']}",
        headers=headers,
        json={
            "date": "2024-01-11",
            "type": "expense",
            "amount_cents": 2_500,
            "category": "Food",
        },
    )
    assert updated.status_code == 200
    assert client.get("/api/transactions", headers=headers).json()[0][
        "amount_cents"
    ] == 2_500

    deleted = client.delete(f"/api/transactions/{txn['id']}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["id"] == txn["id"]
    assert client.get("/api/transactions", headers=headers).json() == []
    missing = client.delete(f"/api/transactions/{txn['id']}", headers=headers)
    assert missing.status_code == 404


def test_negative_amount_is_rejected() -> None:
    client = make_client()
    headers = register_and_login(client)
    resp = client.post(
        "/api/transactions",
        headers=headers,
        json={
            "date": "2024-01-10",
            "type": "expense",
            "amount_cents": -5,
            "category": "Food",
        },
    )
    assert resp.status_code == 422


def test_paginated_list_and_filters() -> None:
    client = make_client()
    headers = register_and_login(client)
    for day, cents in [(1, 1_000), (2, 2_000), (3, 3_000)]:
        client.post(
            "/api/transactions",
            headers=headers,
            json={
                "date": date(2024, 1, day).isoformat(),
                "type": "expense",
                "amount_cents": cents,
                "category": "Food",
            },
        )

    page = client.get(
        "/api/transactions?page=1&page_size=2", headers=headers
    ).json()
    assert [t["amount_cents"] for t in page["transactions"]] == [3_000, 2_000]
    assert page["pagination"]["total_pages"] == 2

    filtered = client.get(
        "/api/transactions?min_amount=15&date_to=2024-01-02", headers=headers
    ).json()
    assert [t["amount_cents"] for t in filtered] == [2_000]

    bad = client.get("/api/transactions?min_amount=abc", headers=headers)
    assert bad.status_code == 400


def test_analytics_empty_then_populated() -> None:
    client = make_client()
    headers = register_and_login(client)

    empty = client.get("/api/transactions/analytics", headers=headers)
    assert empty.status_code == 404

    client.post(
        "/api/transactions",
        headers=headers,
        json={
            "date": "2024-01-05",
            "type": "income",
            "amount_cents": 100_000,
            "category": "Salary",
        },
    )
    resp = client.get("/api/transactions/analytics", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["total_transactions"] == 1
    assert len(body["monthly_trends"]) == 12
    assert body["periods"]["all_time"]["income_cents"] == 100_000
    assert body["top_income_categories"][0]["category"] == "Salary"

    stats = client.get("/api/transactions/stats", headers=headers).json()
    assert stats["transaction_count"] == 1
    assert client.get("/api/transactions/summary", headers=headers).json() == []


def test_users_see_only_their_own_data() -> None:
    client = make_client()
    alice = register_and_login(client, "alice")
    bob = register_and_login(client, "bob")
    client.post(
        "/api/transactions",
        headers=alice,
        json={
            "date": "2024-01-05",
            "type": "expense",
            "amount_cents": 500,
            "category": "Food",
        },
    )
    assert len(client.get("/api/transactions", headers=alice).json()) == 1
    assert client.get("/api/transactions", headers=bob).json() == []
    assert client.get("/api/transactions/chart-data", headers=bob).json() == []


def test_budget_goals_flow() -> None:
    client = make_client()
    headers = register_and_login(client)
    goal = {"category": "Food", "amount_cents": 10_000, "month": 1, "year": 2024}

    created = client.post("/api/budgetGoals", headers=headers, json=goal)
    assert created.status_code == 200
    dup = client.post("/api/budget", headers=headers, json=goal)
    assert dup.status_code == 400
    assert "already exists" in dup.json()["detail"]

    for category, cents in [("Food", 8_500), ("Transport", 4_000)]:
        client.post(
            "/api/transactions",
            headers=headers,
            json={
                "date": "2024-02-12",
                "type": "expense",
                "amount_cents": cents,
                "category": category,
            },
        )

    progress = client.get(
        "/api/budgetGoals/progress?year=2024&month=1", headers=headers
    ).json()
    rows = {row["category"]: row for row in progress["progress"]}
    assert rows["Food"]["status"] == "warning"
    assert rows["Food"]["percentage_used"] == 85.0
    assert rows["Transport"]["status"] == "no-budget"
    assert progress["summary"]["categories_without_budget_count"] == 1

    summary = client.get("/api/budgetGoals/summary/2024/1", headers=headers).json()
    assert summary["month_name"] == "February 2024"
    assert summary["total_spent_cents"] == 12_500

    bad_month = client.get("/api/budgetGoals/summary/2024/12", headers=headers)
    assert bad_month.status_code == 400

    suggestions = client.get(
        "/api/budgetGoals/categories?q=tranport", headers=headers
    ).json()
    assert [s["category"] for s in suggestions] == ["Transport"]

    goal_id = created.json()["id"]
    updated = client.put(
        f"/api/budgetGoals/{goal_id}",
        headers=headers,
        json={**goal, "amount_cents": 20_000},
    )
    assert updated.json()["amount_cents"] == 20_000
    assert client.delete(f"/api/budgetGoals/{goal_id}", headers=headers).status_code == 200
    assert client.delete(f"/api/budgetGoals/{goal_id}", headers=headers).status_code == 404


def test_invalid_goal_month_is_rejected() -> None:
    client = make_client()
    headers = register_and_login(client)
    resp = client.post(
        "/api/budgetGoals",
        headers=headers,
        json={"category": "Food", "amount_cents": 100, "month": 12, "year": 2024},
    )
    assert resp.status_code == 422


def test_health_and_index() -> None:
    client = make_client()
    assert client.get("/health").json()["status"] == "OK"
    assert client.get("/").json()["endpoints"]["transactions"] == "/api/transactions"


def test_budget_routes_reject_out_of_range_year() -> None:
    client = make_client()
    headers = register_and_login(client)

    progress = client.get(
        "/api/budget/progress?year=9999&month=11", headers=headers
    )
    assert progress.status_code == 400
    assert "Year must be between" in progress.json()["detail"]

    summary = client.get("/api/budget/summary/0/0", headers=headers)
    assert summary.status_code == 400

    in_range = client.get("/api/budget/summary/3000/11", headers=headers)
    assert in_range.status_code == 200


def test_unknown_type_filter_is_rejected() -> None:
    client = make_client()
    headers = register_and_login(client)
    client.post(
        "/api/transactions",
        headers=headers,
        json={
            "date": "2024-01-05",
            "type": "expense",
            "amount_cents": 500,
            "category": "Food",
        },
    )
    resp = client.get("/api/transactions?type=bogus", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid type: bogus"

    expenses = client.get("/api/transactions?type=expense", headers=headers).json()
    assert len(expenses) == 1


def test_analytics_failure_is_logged(monkeypatch, caplog) -> None:
    client = make_client()
    headers = register_and_login(client)

    def boom(self, now):
        raise RuntimeError("database went away")

    monkeypatch.setattr(main.AnalyticsService, "financial_summary", boom)
    with caplog.at_level(logging.ERROR):
        resp = client.get("/api/transactions/analytics", headers=headers)

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to generate financial summary"
    assert "Error building financial summary" in caplog.text
