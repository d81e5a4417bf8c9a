import json
from datetime import datetime, timedelta, timezone

import orders_route
from models import Order

ORDER_ID = "3f2a1c9e-4b7d-4e21-9a55-0c1d2e3f4a5b"


def test_list_orders_newest_first(client, make_order):
  base = datetime(2025, 1, 1, tzinfo=timezone.utc)
  for i in range(20):
    make_order(first_name=f"Klient{i}", created_at=base + timedelta(days=i))

  r = client.get("/api/orders", params={"page": 2, "pageSize": 15})
  assert r.status_code == 200
  body = r.json()
  assert body["pagination"] == {"page": 2, "pageSize": 15, "totalCount": 20, "totalPages": 2}
  assert [o["first_name"] for o in body["data"]] == [f"Klient{i}" for i in range(4, -1, -1)]


def test_list_orders_rejects_page_zero(client):
  r = client.get("/api/orders", params={"page": 0})
  assert r.status_code == 400
  assert "error" in r.json()


def test_list_orders_rejects_non_numeric_page(client):
  r = client.get("/api/orders", params={"page": "two"})
  assert r.status_code == 400
  assert set(r.json()) == {"error"}


def test_search_requires_query(client):
  r = client.get("/api/orders/search", params={"query": "   "})
  assert r.status_code == 400
  assert r.json() == {"error": "Search query is required"}


def test_search_by_text_fields(client, make_order):
  make_order(first_name="Mari", company="Sunrise OU", email="mari@example.com")
  make_order(first_name="Jaan", last_name="Kask", company="Metsa AS", email="jaan@example.com")
  make_order(first_name="Liis", company_name="SUNRISE Group", email="liis@example.com")

  r = client.get("/api/orders/search", params={"query": "  SunRise "})
  assert r.status_code == 200
  names = {o["first_name"] for o in r.json()["data"]}
  assert names == {"Mari", "Liis"}

  r = client.get("/api/orders/search", params={"query": "KASK"})
  assert [o["first_name"] for o in r.json()["data"]] == ["Jaan"]


def test_search_by_identifier_prefix(client, make_order):
  make_order(id=ORDER_ID)
  make_order(id="9b1f0000-0000-4000-8000-000000000000", first_name="3f2a1c9e")

  r = client.get("/api/orders/search", params={"query": ORDER_ID[:13].upper()})
  body = r.json()
  assert [o["id"] for o in body["data"]] == [ORDER_ID]
  assert body["fullTextSearchUsed"] is False


def test_thin_results_are_supplemented_without_duplicates(client, make_order, monkeypatch):
  first = make_order(first_name="Mari", email="mari@example.com")
  other = make_order(first_name="Jaan", email="jaan@example.com")
  calls = []

  def fake_full_text(session, normalized, limit=orders_route.FULL_TEXT_LIMIT):
    calls.append(normalized)
    return [session.get(Order, other.id), session.get(Order, first.id)]

  monkeypatch.setattr(orders_route, "full_text_orders", fake_full_text)
  r = client.get("/api/orders/search", params={"query": "mari"})
  body = r.json()
  ids = [o["id"] for o in body["data"]]
  assert calls == ["mari"]
  assert ids == [first.id, other.id]
  assert len(ids) == len(set(ids))
  assert body["fullTextSearchUsed"] is True
  assert body["totalCount"] == 1


def test_short_queries_are_not_supplemented(client, make_order, monkeypatch):
  make_order(first_name="Ly")
  monkeypatch.setattr(orders_route, "full_text_orders", lambda *a, **kw: 1 / 0)
  r = client.get("/api/orders/search", params={"query": "ly"})
  assert r.status_code == 200
  assert r.json()["fullTextSearchUsed"] is False


def test_full_text_failure_keeps_primary_results(client, make_order):
  # sqlite has no full text operator on a plain column, the supplement fails quietly
  make_order(first_name="Mari")
  r = client.get("/api/orders/search", params={"query": "mari"})
  assert r.status_code == 200
  body = r.json()
  assert len(body["data"]) == 1
  assert body["fullTextSearchUsed"] is False


def test_update_payment_status(client, make_order):
  order = make_order()
  r = client.patch(f"/api/orders/{order.id}/payment-status", json={"status": "paid"})
  assert r.status_code == 200
  assert r.json()["data"]["payment_status"] == "paid"
  assert client.get("/api/orders").json()["data"][0]["payment_status"] == "paid"


def test_update_payment_status_rejects_unknown_status(client, make_order):
  order = make_order()
  r = client.patch(f"/api/orders/{order.id}/payment-status", json={"status": "refunded"})
  assert r.status_code == 400
  assert r.json() == {"error": "Valid status is required (pending or paid)"}


def test_update_payment_status_unknown_order(client):
  r = client.patch("/api/orders/nope/payment-status", json={"status": "paid"})
  assert r.status_code == 404


def test_full_analysis_forwards_order_and_owner(client, make_order, services):
  order = make_order(user_id="user-1")
  r = client.post(f"/api/orders/{order.id}/full-analysis")
  assert r.status_code == 200
  [request] = services.requests
  assert str(request.url) == "https://analysis.test/api/final-match-start"
  assert request.headers["Authorization"] == "Bearer analysis-token"
  assert json.loads(request.content) == {"order_id": order.id, "user_id": "user-1"}


def test_full_analysis_without_owner_is_rejected(client, make_order, services):
  order = make_order(user_id=None)
  r = client.post(f"/api/orders/{order.id}/full-analysis")
  assert r.status_code == 400
  assert services.requests == []


def test_full_analysis_upstream_failure(client, make_order, services):
  services.analysis_status = 503
  order = make_order(user_id="user-1")
  r = client.post(f"/api/orders/{order.id}/full-analysis")
  assert r.status_code == 500
  assert r.json() == {"error": "analysis queue is full"}
