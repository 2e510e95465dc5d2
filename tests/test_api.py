from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from budget_categorizer.app import create_app
from budget_categorizer.errors import RunFailure
from budget_categorizer.models import CategorySource
from conftest import add_account, add_transaction, assignment_of, category_id

TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    monkeypatch.setenv("API_TOKEN", TOKEN)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    app = create_app(database_url="sqlite://")
    with TestClient(app) as test_client:
        yield test_client


def test_requests_without_valid_token_are_rejected(client: TestClient) -> None:
    response = client.post("/api/categorization/run")
    assert response.status_code == 401
    assert response.json() == {"detail": "Unauthorized"}

    response = client.get("/api/recurring", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_unset_token_rejects_everything(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("API_TOKEN", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with TestClient(create_app(database_url="sqlite://")) as test_client:
        response = test_client.get("/api/categories/rules", headers={"Authorization": "Bearer "})
    assert response.status_code == 401


def test_malformed_run_payload_returns_400(client: TestClient) -> None:
    response = client.post("/api/categorization/run", content=b"{not json", headers=AUTH)
    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid JSON payload"}

    response = client.post("/api/categorization/run", json=["list"], headers=AUTH)
    assert response.status_code == 400

    response = client.post("/api/categorization/run", json={"overwrite": "maybe"}, headers=AUTH)
    assert response.status_code == 400


def test_run_returns_stats_and_summary(client: TestClient) -> None:
    db = client.app.state.db
    checking = add_account(db, "Checking")
    savings = add_account(db, "Savings")
    add_transaction(db, checking, -500.0, "VIR LIVRET A", datetime(2024, 3, 1))
    add_transaction(db, savings, 500.0, "VIR RECU", datetime(2024, 3, 2))
    add_transaction(db, checking, -4.5, "BOULANGERIE", datetime(2024, 3, 3))

    response = client.post("/api/categorization/run", json={}, headers=AUTH)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["stats"]["total"] == 3
    assert data["stats"]["transferMatches"] == 2
    assert data["stats"]["unmatched"] == 1
    assert data["message"] == (
        "Categorized 2 of 3 transactions (rules: 0, bank: 0, transfers: 2, AI: 0, unmatched: 1)"
    )

    logs = client.get("/api/categorization/logs", params={"limit": 5}, headers=AUTH).json()["logs"]
    assert len(logs) == 1
    assert logs[0]["transferMatches"] == 2


def test_run_failure_hides_internal_error(client: TestClient) -> None:
    pipeline = MagicMock()
    pipeline.run = AsyncMock(side_effect=RunFailure("sqlite3.OperationalError: disk I/O error"))
    client.app.state.pipeline = pipeline

    response = client.post("/api/categorization/run", headers=AUTH)

    assert response.status_code == 500
    assert response.json() == {"detail": "Categorization failed"}


def test_manual_categorize_creates_exact_rule(client: TestClient) -> None:
    db = client.app.state.db
    account = add_account(db, "Checking")
    tx_id = add_transaction(db, account, -23.0, "Pharmacie  du Marché", datetime(2024, 3, 1))
    health = category_id(db, "Health")

    response = client.post(
        f"/api/transactions/{tx_id}/categorize",
        json={"categoryId": health},
        headers=AUTH,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["rule"]["pattern"] == "PHARMACIE DU MARCHE"
    assert data["rule"]["matchType"] == "exact"
    assert data["rule"]["priority"] == 200
    assignment = assignment_of(db, tx_id)
    assert assignment.source == CategorySource.MANUAL.value
    assert assignment.confidence == 1.0

    # The learned rule categorizes the next occurrence.
    next_id = add_transaction(db, account, -18.0, "PHARMACIE DU MARCHE", datetime(2024, 4, 1))
    client.post("/api/categorization/run", headers=AUTH)
    assert assignment_of(db, next_id).category_id == health


def test_manual_categorize_errors(client: TestClient) -> None:
    db = client.app.state.db
    account = add_account(db, "Checking")
    tx_id = add_transaction(db, account, -1.0, "X", datetime(2024, 3, 1))

    response = client.post("/api/transactions/missing/categorize", json={"categoryId": "c"}, headers=AUTH)
    assert response.status_code == 404

    response = client.post(f"/api/transactions/{tx_id}/categorize", json={"categoryId": "nope"}, headers=AUTH)
    assert response.status_code == 400
    assert response.json() == {"detail": "Unknown category"}

    response = client.post(f"/api/transactions/{tx_id}/categorize", headers=AUTH)
    assert response.status_code == 400


def test_create_and_list_rules(client: TestClient) -> None:
    db = client.app.state.db
    subscriptions = category_id(db, "Subscriptions")

    low = client.post(
        "/api/categories/rules",
        json={"pattern": "NETFLIX", "categoryId": subscriptions},
        headers=AUTH,
    )
    high = client.post(
        "/api/categories/rules",
        json={"pattern": "^CB NETFLIX", "categoryId": subscriptions, "matchType": "regex", "priority": 150},
        headers=AUTH,
    )
    assert low.status_code == 201
    assert high.status_code == 201

    rules = client.get("/api/categories/rules", headers=AUTH).json()["rules"]
    assert [rule["pattern"] for rule in rules] == ["^CB NETFLIX", "NETFLIX"]

    invalid = client.post(
        "/api/categories/rules",
        json={"pattern": "(", "categoryId": subscriptions, "matchType": "regex"},
        headers=AUTH,
    )
    assert invalid.status_code == 400


def test_recurring_endpoints(client: TestClient) -> None:
    db = client.app.state.db
    account = add_account(db, "Checking")
    today = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=1)
    for i in range(5):
        add_transaction(db, account, -45.0, "GYM MEMBERSHIP", today - timedelta(days=30 * i))

    response = client.post("/api/recurring/detect", headers=AUTH)
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["detected"] == 1
    assert data["created"] == 1
    assert data["message"] == "Detected 1 recurring patterns (1 new, 0 updated, 0 inactive)"

    patterns = client.get("/api/recurring", params={"status": "active"}, headers=AUTH).json()["patterns"]
    assert len(patterns) == 1
    assert patterns[0]["cadence"] == "monthly"
    assert patterns[0]["expectedAmount"] == -45.0
    assert patterns[0]["occurrenceCount"] == 5

    deleted = client.delete(f"/api/recurring/{patterns[0]['id']}", headers=AUTH)
    assert deleted.status_code == 200
    assert deleted.json()["status"] == "inactive"
    assert client.get("/api/recurring", params={"status": "active"}, headers=AUTH).json()["patterns"] == []

    assert client.delete("/api/recurring/unknown", headers=AUTH).status_code == 404
