import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, patch
from datetime import datetime, timedelta

from rfq_desk.main import app, get_identity_provider, get_rfq_service
from rfq_desk.adapters.identity import StaticTokenIdentityProvider
from rfq_desk.service.rfq_service import RFQService
from rfq_desk.service.errors import ConflictError, InvalidTransitionError, NotFoundError, RFQValidationError
from rfq_desk.models import Actor, CreateRFQData, Decision, RFQ, RFQItem, Role, SubmitQuote
from shared.models_db import RFQStatus
from shared.settings import settings

NOW = datetime(2026, 3, 1, 12, 0, 0)
TOKENS = {
    "buyer-token": "buyer-1:BUYER",
    "other-buyer-token": "buyer-2:BUYER",
    "seller-token": "seller-1:SELLER",
    "admin-token": "admin-1:ADMIN",
}

client = TestClient(app)


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}

def make_rfq(status: RFQStatus = RFQStatus.PENDING, user_id: str = "buyer-1") -> RFQ:
    return RFQ(
        id="rfq-1",
        rfqNumber="RFQ-20260301-ABC123",
        userId=user_id,
        subject="Bulk widgets",
        status=status,
        items=[RFQItem(id="item-1", productId="P1", productName="Widget", quantity=5)],
        expiresAt=NOW + timedelta(days=30),
        createdAt=NOW,
        updatedAt=NOW,
    )

# --- Fixtures and Mocks ---
@pytest.fixture
def mock_rfq_service() -> AsyncMock:
    return AsyncMock(spec=RFQService)

@pytest.fixture(autouse=True)
def override_dependencies(mock_rfq_service: AsyncMock):
    app.dependency_overrides[get_rfq_service] = lambda: mock_rfq_service
    app.dependency_overrides[get_identity_provider] = lambda: StaticTokenIdentityProvider(TOKENS)
    yield
    app.dependency_overrides.clear()


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"

# --- Authentication ---
def test_missing_token_is_401(mock_rfq_service: AsyncMock):
    response = client.get("/rfqs")
    assert response.status_code == 401
    assert response.json() == {"detail": "Not authenticated"}
    mock_rfq_service.list_rfqs.assert_not_awaited()

def test_unknown_token_is_401():
    response = client.get("/rfqs", headers=auth("nope"))
    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid token"}

def test_malformed_scheme_is_401():
    response = client.get("/rfqs", headers={"Authorization": "NotBearer buyer-token"})
    assert response.status_code == 401

@patch.object(settings, 'TEST_AUTH_BYPASS', 'true')
def test_auth_bypass_uses_headers(mock_rfq_service: AsyncMock):
    mock_rfq_service.list_rfqs.return_value = []
    response = client.get("/rfqs", headers={"X-User-Id": "admin-9", "X-User-Role": "ADMIN"})
    assert response.status_code == 200
    mock_rfq_service.list_rfqs.assert_awaited_once_with(status=None, user_id=None)

@patch.object(settings, 'TEST_AUTH_BYPASS', 'false')
def test_bypass_headers_ignored_when_disabled():
    response = client.get("/rfqs", headers={"X-User-Id": "admin-9", "X-User-Role": "ADMIN"})
    assert response.status_code == 401

# --- Create ---
def test_create_rfq(mock_rfq_service: AsyncMock):
    mock_rfq_service.create_rfq.return_value = make_rfq()
    payload = {"subject": "Bulk widgets", "items": [{"productId": "P1", "quantity": 5}]}

    response = client.post("/rfqs", json=payload, headers=auth("buyer-token"))

    assert response.status_code == 201
    body = response.json()
    assert body["rfqNumber"] == "RFQ-20260301-ABC123"
    assert body["status"] == "pending"
    buyer_id, data = mock_rfq_service.create_rfq.call_args[0]
    assert buyer_id == "buyer-1"
    assert isinstance(data, CreateRFQData)
    assert data.items[0].quantity == 5

def test_create_rfq_validation_error_is_structured(mock_rfq_service: AsyncMock):
    mock_rfq_service.create_rfq.side_effect = RFQValidationError("An RFQ needs at least one item")
    response = client.post("/rfqs", json={"subject": "x", "items": []}, headers=auth("buyer-token"))
    assert response.status_code == 422
    assert response.json() == {"error": "validation_error", "rfqId": None, "detail": "An RFQ needs at least one item"}

def test_create_rfq_schema_error(mock_rfq_service: AsyncMock):
    response = client.post("/rfqs", json={"items": "not-a-list"}, headers=auth("buyer-token"))
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "validation_error"
    assert body["rfqId"] is None
    assert "subject: Field required" in body["detail"]
    assert "items:" in body["detail"]
    mock_rfq_service.create_rfq.assert_not_awaited()

def test_create_rfq_missing_body():
    response = client.post("/rfqs", headers=auth("buyer-token"))
    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"

def test_list_rfqs_unknown_status_filter():
    response = client.get("/rfqs?status=archived", headers=auth("admin-token"))
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "validation_error"
    assert body["detail"].startswith("query.status:")

# --- Read ---
def test_list_rfqs_buyer_sees_only_own(mock_rfq_service: AsyncMock):
    mock_rfq_service.list_rfqs.return_value = [make_rfq()]
    response = client.get("/rfqs?status=pending", headers=auth("buyer-token"))
    assert response.status_code == 200
    assert len(response.json()) == 1
    mock_rfq_service.list_rfqs.assert_awaited_once_with(status=RFQStatus.PENDING, user_id="buyer-1")

def test_list_rfqs_seller_sees_all(mock_rfq_service: AsyncMock):
    mock_rfq_service.list_rfqs.return_value = []
    client.get("/rfqs", headers=auth("seller-token"))
    mock_rfq_service.list_rfqs.assert_awaited_once_with(status=None, user_id=None)

def test_get_rfq_owner(mock_rfq_service: AsyncMock):
    mock_rfq_service.get_rfq.return_value = make_rfq()
    response = client.get("/rfqs/rfq-1", headers=auth("buyer-token"))
    assert response.status_code == 200
    assert response.json()["id"] == "rfq-1"

def test_get_rfq_other_buyer_forbidden(mock_rfq_service: AsyncMock):
    mock_rfq_service.get_rfq.return_value = make_rfq()
    response = client.get("/rfqs/rfq-1", headers=auth("other-buyer-token"))
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"

def test_get_rfq_not_found(mock_rfq_service: AsyncMock):
    mock_rfq_service.get_rfq.side_effect = NotFoundError("RFQ missing not found", rfq_id="missing")
    response = client.get("/rfqs/missing", headers=auth("admin-token"))
    assert response.status_code == 404
    assert response.json() == {"error": "not_found", "rfqId": "missing", "detail": "RFQ missing not found"}

# --- Quote / respond ---
def test_submit_quote(mock_rfq_service: AsyncMock):
    mock_rfq_service.submit_quote.return_value = make_rfq(RFQStatus.QUOTED)
    response = client.post("/rfqs/rfq-1/quote", json={"price": 450.0, "terms": "Net 30"}, headers=auth("seller-token"))
    assert response.status_code == 200
    assert response.json()["status"] == "quoted"
    rfq_id, actor, quote = mock_rfq_service.submit_quote.call_args[0]
    assert rfq_id == "rfq-1"
    assert actor == Actor(userId="seller-1", role=Role.SELLER)
    assert quote == SubmitQuote(price=450.0, terms="Net 30")

def test_submit_quote_rejects_non_positive_price(mock_rfq_service: AsyncMock):
    response = client.post("/rfqs/rfq-1/quote", json={"price": 0, "terms": "Net 30"}, headers=auth("seller-token"))
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "validation_error"
    assert body["rfqId"] == "rfq-1"
    assert body["detail"].startswith("price:")
    mock_rfq_service.submit_quote.assert_not_awaited()

def test_respond(mock_rfq_service: AsyncMock):
    mock_rfq_service.respond.return_value = make_rfq(RFQStatus.ACCEPTED)
    response = client.post("/rfqs/rfq-1/respond", json={"decision": "accept"}, headers=auth("buyer-token"))
    assert response.status_code == 200
    assert response.json()["status"] == "accepted"
    mock_rfq_service.respond.assert_awaited_once_with("rfq-1", "buyer-1", Decision.ACCEPT)

def test_respond_invalid_transition(mock_rfq_service: AsyncMock):
    mock_rfq_service.respond.side_effect = InvalidTransitionError(
        "rfq-1", RFQStatus.ACCEPTED, RFQStatus.REJECTED, "accepted is a terminal state"
    )
    response = client.post("/rfqs/rfq-1/respond", json={"decision": "reject"}, headers=auth("buyer-token"))
    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "invalid_transition"
    assert body["current"] == "accepted"
    assert body["requested"] == "rejected"
    assert body["reason"] == "accepted is a terminal state"

def test_respond_conflict(mock_rfq_service: AsyncMock):
    mock_rfq_service.respond.side_effect = ConflictError("RFQ was modified concurrently", rfq_id="rfq-1")
    response = client.post("/rfqs/rfq-1/respond", json={"decision": "accept"}, headers=auth("buyer-token"))
    assert response.status_code == 409
    assert response.json()["error"] == "conflict"

# --- Staff operations ---
def test_sweep_requires_staff(mock_rfq_service: AsyncMock):
    response = client.post("/rfqs/sweep", headers=auth("seller-token"))
    assert response.status_code == 403
    mock_rfq_service.sweep_expired.assert_not_awaited()

def test_sweep(mock_rfq_service: AsyncMock):
    mock_rfq_service.sweep_expired.return_value = 3
    response = client.post("/rfqs/sweep", headers=auth("admin-token"))
    assert response.status_code == 200
    assert response.json() == {"expired": 3}

def test_expire_if_due(mock_rfq_service: AsyncMock):
    mock_rfq_service.expire_if_due.return_value = make_rfq(RFQStatus.EXPIRED)
    response = client.post("/rfqs/rfq-1/expire", headers=auth("admin-token"))
    assert response.status_code == 200
    assert response.json()["status"] == "expired"
    mock_rfq_service.expire_if_due.assert_awaited_once_with("rfq-1")

# --- Lookup by reference number ---
def test_get_rfq_by_number(mock_rfq_service: AsyncMock):
    mock_rfq_service.get_rfq_by_number.return_value = make_rfq()
    response = client.get("/rfqs/by-number/RFQ-20260301-ABC123", headers=auth("buyer-token"))
    assert response.status_code == 200
    body = response.json()
    assert body["id"] == "rfq-1"
    assert body["totalItems"] == 1
    assert body["totalQuantity"] == 5
    mock_rfq_service.get_rfq_by_number.assert_awaited_once_with("RFQ-20260301-ABC123")

def test_get_rfq_by_number_other_buyer_forbidden(mock_rfq_service: AsyncMock):
    mock_rfq_service.get_rfq_by_number.return_value = make_rfq()
    response = client.get("/rfqs/by-number/RFQ-20260301-ABC123", headers=auth("other-buyer-token"))
    assert response.status_code == 403
    assert response.json()["rfqId"] == "rfq-1"

def test_get_rfq_by_number_not_found(mock_rfq_service: AsyncMock):
    mock_rfq_service.get_rfq_by_number.side_effect = NotFoundError("RFQ RFQ-NOPE not found")
    response = client.get("/rfqs/by-number/RFQ-NOPE", headers=auth("admin-token"))
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
