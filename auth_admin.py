# auth_admin.py
import logging
import os
from typing import Any, Dict, Iterator, List, Optional

import httpx
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip().rstrip("/")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
USER_DIRECTORY_MAX_PAGES = int(os.getenv("USER_DIRECTORY_MAX_PAGES", "50"))

PER_PAGE = 1000  # provider maximum


class AuthAdminError(Exception):
  def __init__(self, message: str, status_code: int = 500):
    super().__init__(message)
    self.message = message
    self.status_code = status_code


class AuthAdmin:
  """Admin-scoped calls against the hosted auth provider's REST API."""

  def __init__(self, base_url: str, service_key: str, client: Optional[httpx.Client] = None,
               max_pages: int = USER_DIRECTORY_MAX_PAGES):
    self.base_url = base_url.rstrip("/")
    self.max_pages = max_pages
    self._client = client or httpx.Client(timeout=30)
    self._headers = {
      "apikey": service_key,
      "Authorization": f"Bearer {service_key}",
      "Content-Type": "application/json",
    }

  def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
    url = f"{self.base_url}/auth/v1/admin{path}"
    try:
      r = self._client.request(method, url, headers=self._headers, **kwargs)
    except httpx.HTTPError as e:
      logger.error("Auth provider unreachable: %s", e)
      raise AuthAdminError(f"Auth provider unreachable: {e}")
    if r.status_code >= 400:
      try:
        body = r.json()
        message = body.get("msg") or body.get("message") or body.get("error_description") or body.get("error")
      except ValueError:
        message = None
      raise AuthAdminError(message or f"Auth provider error: {r.status_code}", r.status_code)
    return r.json()

  def list_users(self, page: int, per_page: int = PER_PAGE) -> List[Dict[str, Any]]:
    body = self._request("GET", "/users", params={"page": page, "per_page": per_page})
    return body.get("users") or []

  def iter_users(self) -> Iterator[Dict[str, Any]]:
    # each call starts again from page 1
    for page in range(1, self.max_pages + 1):
      users = self.list_users(page)
      yield from users
      if len(users) < PER_PAGE:
        return
    logger.warning("User directory drain stopped at the %d page limit", self.max_pages)

  def get_user(self, user_id: str) -> Dict[str, Any]:
    return self._request("GET", f"/users/{user_id}")

  def update_password(self, user_id: str, password: str) -> None:
    self._request("PUT", f"/users/{user_id}", json={"password": password})

  def generate_magic_link(self, email: str) -> str:
    body = self._request("POST", "/generate_link", json={"type": "magiclink", "email": email})
    link = body.get("action_link") or (body.get("properties") or {}).get("action_link")
    if not link:
      raise AuthAdminError("Magic link was not generated")
    return link


def get_auth_admin():
  if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
    raise AuthAdminError("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY is not set")
  with httpx.Client(timeout=30) as client:
    yield AuthAdmin(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, client=client)
