# listing.py
"""Listing services the back-office views drive.

Each instance owns the page it loaded, the active local filter and the
current search results. Page changes, searches and row actions go through
the HTTP API of this backend.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from models import DONE, PAYMENT_STATUSES
from pagination import Pagination

logger = logging.getLogger(__name__)

SEARCH_DELAY = 0.3
MIN_PASSWORD_LENGTH = 6


class ListingError(Exception):
  def __init__(self, message: str, status_code: int = 500):
    super().__init__(message)
    self.message = message
    self.status_code = status_code


class InvalidPaymentStatus(ValueError):
  pass


class PasswordTooShort(ValueError):
  pass


class MissingOwner(ValueError):
  pass


def _body(r: httpx.Response) -> Dict[str, Any]:
  try:
    body = r.json()
  except ValueError:
    body = {}
  if r.status_code >= 400:
    message = body.get("error") if isinstance(body, dict) else None
    raise ListingError(message or f"Request failed with status {r.status_code}", r.status_code)
  return body


class Debouncer:
  """Runs the latest call once the input has been quiet for `delay` seconds.

  A new call cancels a run that is still waiting, never one that already
  started.
  """

  def __init__(self, run: Callable[..., Awaitable[Any]], delay: float = SEARCH_DELAY):
    self._run = run
    self.delay = delay
    self._pending: Optional[asyncio.Task] = None
    self._tasks = set()

  def __call__(self, *args) -> None:
    if self._pending is not None:
      self._pending.cancel()
    task = asyncio.ensure_future(self._fire(args))
    self._pending = task
    self._tasks.add(task)
    task.add_done_callback(self._tasks.discard)

  async def _fire(self, args) -> None:
    await asyncio.sleep(self.delay)
    self._pending = None
    await self._run(*args)

  async def wait(self) -> None:
    while self._tasks:
      await asyncio.gather(*list(self._tasks), return_exceptions=True)


class _Listing:
  path = ""

  def __init__(self, client: httpx.AsyncClient, page_size: int, search_delay: float = SEARCH_DELAY):
    self.client = client
    self.items: List[Dict[str, Any]] = []
    self.pagination = Pagination(pageSize=page_size)
    self.query = ""
    self.searching = False
    self.search_results: List[Dict[str, Any]] = []
    self.search_total = 0
    self.error: Optional[str] = None
    self._issued = 0
    self._applied = 0
    self._background = set()
    self._debounced_search = Debouncer(self._search_quietly, search_delay)

  @property
  def local_mode(self) -> bool:
    return self.searching

  @property
  def visible(self) -> List[Dict[str, Any]]:
    if self.searching:
      return list(self.search_results)
    return list(self.items)

  async def load(self, page: int = 1) -> None:
    r = await self.client.get(self.path, params={"page": page, "pageSize": self.pagination.pageSize})
    try:
      body = _body(r)
    except ListingError as e:
      self.error = e.message
      raise
    self.items = body.get("data") or []
    self.pagination = Pagination.from_payload(body["pagination"])
    self.error = None

  async def go_to_page(self, page: int) -> bool:
    if not self.pagination.request(page, self.local_mode):
      return False
    await self.load(page)
    return True

  def _take_results(self, body: Dict[str, Any]) -> None:
    self.search_results = body.get("data") or []
    self.search_total = body.get("totalCount") or len(self.search_results)

  async def search(self, query: str) -> bool:
    """Run a server-side search. Returns False when the response was stale."""
    self._issued += 1
    seq = self._issued
    self.query = query
    if not query.strip():
      self.clear_search(seq)
      return True

    r = await self.client.get(f"{self.path}/search", params={"query": query.strip().lower()})
    body = _body(r)
    if seq <= self._applied:
      logger.debug("Dropping stale search response %d for %r", seq, query)
      return False
    self._applied = seq
    self.searching = True
    self._take_results(body)
    return True

  async def _search_quietly(self, query: str) -> None:
    try:
      await self.search(query)
    except (ListingError, httpx.HTTPError) as e:
      logger.error("Search for %r failed: %s", query, e)
      self.error = str(e)

  def type_query(self, query: str) -> None:
    self.query = query
    self._debounced_search(query)

  def clear_search(self, seq: Optional[int] = None) -> None:
    if seq is None:
      self._issued += 1
      seq = self._issued
    # responses of searches issued before the clear are stale now
    self._applied = max(self._applied, seq)
    self.query = ""
    self.searching = False
    self.search_results = []
    self.search_total = 0

  def _spawn(self, coro) -> asyncio.Task:
    task = asyncio.ensure_future(coro)
    self._background.add(task)
    task.add_done_callback(self._background.discard)
    return task

  async def settle(self) -> None:
    await self._debounced_search.wait()
    while self._background:
      await asyncio.gather(*list(self._background), return_exceptions=True)


def _is_paid(order):
  return order.get("payment_status") == "paid"

def _full_done(order):
  return order.get("full_status") == DONE

def _quick_only(order):
  return order.get("quick_status") == DONE and order.get("full_status") != DONE

ORDER_FILTERS = {
  "all": None,
  "paid": _is_paid,
  "full_analysis": _full_done,
  "quick_analysis": _quick_only,
}

ORDER_SORT_KEYS = {
  "customer": lambda o: f"{o.get('first_name') or ''} {o.get('last_name') or ''}".strip().lower(),
  "created_at": lambda o: o.get("created_at") or "",
  "total_cost": lambda o: o.get("total_cost") or 0,
  "payment_status": lambda o: o.get("payment_status") or "",
}


class OrderListing(_Listing):
  path = "/api/orders"

  def __init__(self, client: httpx.AsyncClient, page_size: int = 15, search_delay: float = SEARCH_DELAY):
    super().__init__(client, page_size, search_delay)
    self.filter = "all"
    self.sort_field: Optional[str] = None
    self.sort_descending = False
    self.full_text_used = False

  @property
  def local_mode(self) -> bool:
    return self.searching or self.filter != "all"

  @property
  def visible(self) -> List[Dict[str, Any]]:
    if self.searching:
      rows = list(self.search_results)
    else:
      predicate = ORDER_FILTERS[self.filter]
      rows = [o for o in self.items if predicate is None or predicate(o)]
    if self.sort_field:
      rows.sort(key=ORDER_SORT_KEYS[self.sort_field], reverse=self.sort_descending)
    return rows

  def apply_filter(self, kind: str) -> None:
    # only the loaded page is filtered, there is no server round trip
    if kind not in ORDER_FILTERS:
      raise ValueError(f"Unknown filter: {kind}")
    self.filter = kind

  def sort_by(self, field: str) -> None:
    if field not in ORDER_SORT_KEYS:
      raise ValueError(f"Unknown sort field: {field}")
    if field == self.sort_field:
      self.sort_descending = not self.sort_descending
    else:
      self.sort_field = field
      self.sort_descending = False

  def _take_results(self, body: Dict[str, Any]) -> None:
    super()._take_results(body)
    self.full_text_used = bool(body.get("fullTextSearchUsed"))

  def clear_search(self, seq: Optional[int] = None) -> None:
    super().clear_search(seq)
    self.full_text_used = False

  def _find(self, order_id: str) -> Optional[Dict[str, Any]]:
    for order in self.items + self.search_results:
      if order.get("id") == order_id:
        return order
    return None

  def _patch_local(self, order_id: str, **changes) -> None:
    self.items = [dict(o, **changes) if o.get("id") == order_id else o for o in self.items]
    self.search_results = [dict(o, **changes) if o.get("id") == order_id else o for o in self.search_results]

  async def _send_payment_status(self, order_id: str, status: str) -> Dict[str, Any]:
    r = await self.client.patch(f"{self.path}/{order_id}/payment-status", json={"status": status})
    return _body(r)

  @staticmethod
  def _log_background_failure(task: asyncio.Task) -> None:
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.warning("Background payment status update failed: %s", exc)

  async def set_payment_status(self, order_id: str, status: str) -> None:
    """Optimistically set an order's payment status.

    The local copy changes before any request is made. When the change drops
    a row of the loaded page out of the "paid" filter, the write runs in the
    background and a failure is only logged. Otherwise the write is awaited,
    and a failure restores the previous status, reloads the current page and
    re-raises.
    """
    if status not in PAYMENT_STATUSES:
      raise InvalidPaymentStatus(f"Valid status is required ({' or '.join(PAYMENT_STATUSES)})")
    order = self._find(order_id)
    if order is None:
      raise LookupError(f"Order {order_id} is not loaded")
    previous = order.get("payment_status")

    self._patch_local(order_id, payment_status=status)

    # search results ignore the filter, so only the page view can drop the row
    if not self.searching and self.filter == "paid" and status != "paid":
      task = self._spawn(self._send_payment_status(order_id, status))
      task.add_done_callback(self._log_background_failure)
      return

    try:
      await self._send_payment_status(order_id, status)
    except (ListingError, httpx.HTTPError) as e:
      logger.error("Error updating payment status of %s: %s", order_id, e)
      self._patch_local(order_id, payment_status=previous)
      await self.load(self.pagination.page)
      self.error = str(e)
      raise

  async def trigger_full_analysis(self, order: Dict[str, Any]) -> Dict[str, Any]:
    if not order.get("user_id"):
      raise MissingOwner(f"Order {order.get('id')} has no owning user")
    r = await self.client.post(f"{self.path}/{order['id']}/full-analysis")
    body = _body(r)
    # completion is only visible on the next refresh, this picks up the queued state
    await self.load(self.pagination.page)
    if self.searching and self.query.strip():
      await self.search(self.query)
    return body

  async def download_invoice(self, order: Dict[str, Any]) -> Tuple[str, bytes]:
    r = await self.client.post("/api/create-invoice", json={
      "order_id": order["id"],
      "customer_name": f"{order.get('first_name') or ''} {order.get('last_name') or ''}".strip() or None,
      "company_name": order.get("company") or order.get("company_name"),
    })
    invoice = _body(r)
    if not invoice.get("id"):
      raise ListingError("Invoice creation failed")

    r = await self.client.post("/api/generate-invoice-pdf", json={"id": invoice["id"]})
    if r.status_code >= 400:
      _body(r)
    return f"invoice_{order['id'][:8]}.pdf", r.content


class UserListing(_Listing):
  path = "/api/users"

  def __init__(self, client: httpx.AsyncClient, page_size: int = 20, search_delay: float = SEARCH_DELAY):
    super().__init__(client, page_size, search_delay)

  async def reset_password(self, user_id: str, password: str) -> Dict[str, Any]:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
      raise PasswordTooShort(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    r = await self.client.patch(f"{self.path}/{user_id}/change-password", json={"password": password})
    return _body(r)

  async def issue_magic_link(self, user_id: str, email: str) -> str:
    if not email:
      raise ValueError("Email address is required")
    r = await self.client.post(f"{self.path}/{user_id}/generate-magic-link", json={"email": email})
    return _body(r)["magicLink"]
