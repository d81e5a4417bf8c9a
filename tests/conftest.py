"""Pytest configuration and fixtures."""
import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import httpx
import pytest
from datetime import datetime, timezone
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session

import external
from auth_admin import AuthAdmin, get_auth_admin
from db import get_session, init_db, make_engine
from external import get_http_client
from main import app
from models import Order, Profile


class FakeDirectory:
  """Stands in for the auth provider's admin REST API."""

  def __init__(self, users=None):
    self.users = list(users or [])
    self.requests = []
    self.passwords = {}

  def add(self, user_id, email, **extra):
    user = {
      "id": user_id,
      "email": email,
      "created_at": "2025-01-01T10:00:00Z",
      "last_sign_in_at": None,
      "email_confirmed_at": None,
      "phone": "",
      "user_metadata": {},
      "app_metadata": {"provider": "email"},
    }
    user.update(extra)
    self.users.append(user)
    return user

  def handler(self, request: httpx.Request) -> httpx.Response:
    self.requests.append((request.method, request.url.path))
    path = request.url.path
    if path == "/auth/v1/admin/users" and request.method == "GET":
      page = int(request.url.params["page"])
      per_page = int(request.url.params["per_page"])
      start = (page - 1) * per_page
      return httpx.Response(200, json={"users": self.users[start:start + per_page], "aud": "authenticated"})
    if path.startswith("/auth/v1/admin/users/"):
      user_id = path.rsplit("/", 1)[1]
      user = next((u for u in self.users if u["id"] == user_id), None)
      if user is None:
        return httpx.Response(404, json={"code": 404, "msg": "User not found"})
      if request.method == "PUT":
        self.passwords[user_id] = json.loads(request.content)["password"]
      return httpx.Response(200, json=user)
    if path == "/auth/v1/admin/generate_link":
      body = json.loads(request.content)
      return httpx.Response(200, json={
        "email": body["email"],
        "action_link": f"https://auth.test/auth/v1/verify?token=tok123&type={body['type']}",
        "verification_type": body["type"],
      })
    return httpx.Response(404, json={"msg": "no route"})


class FakeServices:
  """Analysis service and PDF renderer."""

  def __init__(self):
    self.requests = []
    self.analysis_status = 200
    self.pdf_status = 200
    self.pdf_bytes = b"%PDF-1.4 fake invoice"

  def handler(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    if request.url.path.endswith("/final-match-start"):
      if self.analysis_status >= 400:
        return httpx.Response(self.analysis_status, json={"error": "analysis queue is full"})
      return httpx.Response(self.analysis_status, json={"status": "accepted"})
    if request.url.path.endswith("/generate-invoice-pdf"):
      if self.pdf_status >= 400:
        return httpx.Response(self.pdf_status, text="renderer exploded")
      return httpx.Response(200, content=self.pdf_bytes, headers={"Content-Type": "application/pdf"})
    return httpx.Response(404)


@pytest.fixture
def engine():
  engine = make_engine("sqlite://")
  init_db(engine)
  yield engine
  SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
  with Session(engine) as session:
    yield session


@pytest.fixture
def directory():
  return FakeDirectory()


@pytest.fixture
def auth_admin(directory):
  client = httpx.Client(transport=httpx.MockTransport(directory.handler))
  yield AuthAdmin("https://auth.test", "service-key", client=client)
  client.close()


@pytest.fixture
def services(monkeypatch):
  fake = FakeServices()
  monkeypatch.setattr(external, "ANALYSIS_API_URL", "https://analysis.test/api")
  monkeypatch.setattr(external, "ANALYSIS_API_TOKEN", "analysis-token")
  monkeypatch.setattr(external, "PDF_RENDERER_URL", "https://renderer.test/api")
  return fake


@pytest.fixture
def overrides(engine, auth_admin, services):
  def _session():
    with Session(engine) as session:
      yield session

  async def _http():
    async with httpx.AsyncClient(transport=httpx.MockTransport(services.handler)) as client:
      yield client

  app.dependency_overrides[get_session] = _session
  app.dependency_overrides[get_auth_admin] = lambda: auth_admin
  app.dependency_overrides[get_http_client] = _http
  yield app
  app.dependency_overrides.clear()


@pytest.fixture
def client(overrides):
  with TestClient(overrides) as client:
    yield client


@pytest.fixture
def make_order(session):
  def _make(**fields):
    fields.setdefault("first_name", "Mari")
    fields.setdefault("last_name", "Tamm")
    fields.setdefault("email", "mari@example.com")
    fields.setdefault("created_at", datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))
    order = Order(**fields)
    session.add(order)
    session.commit()
    session.refresh(order)
    return order
  return _make


@pytest.fixture
def make_profile(session):
  def _make(**fields):
    profile = Profile(**fields)
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile
  return _make
