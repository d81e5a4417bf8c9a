# orders_route.py
import logging
from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from db import get_session
from external import get_http_client, start_full_analysis
from models import Order, OrderPage, OrderSearchResult, PaymentStatusUpdate, PAYMENT_STATUSES
from pagination import total_pages
from query import is_uuid_like, merge_unique, normalize, search_clause

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["orders"])

SEARCH_COLUMNS = (Order.first_name, Order.last_name, Order.company, Order.company_name, Order.email)
SEARCH_LIMIT = 100
FULL_TEXT_LIMIT = 50
FULL_TEXT_BELOW = 5  # only supplement when the primary search is this thin

def _check_page(page: int, page_size: int) -> None:
  if page < 1 or page_size < 1:
    raise HTTPException(status_code=400, detail="page and pageSize must be positive integers")

def full_text_orders(session: Session, normalized: str, limit: int = FULL_TEXT_LIMIT) -> List[Order]:
  stmt = select(Order).where(Order.company_details.match(normalized, postgresql_regconfig="english")).limit(limit)
  try:
    return list(session.exec(stmt).all())
  except SQLAlchemyError as e:
    # the supplement is best effort, the primary results still stand
    logger.warning("Full text search failed for %r: %s", normalized, e)
    session.rollback()
    return []

@router.get("/orders", response_model=OrderPage)
def list_orders(page: int = 1, pageSize: int = 15, session: Session = Depends(get_session)):
  _check_page(page, pageSize)
  total = session.exec(select(func.count()).select_from(Order)).one()
  rows = session.exec(
    select(Order).order_by(Order.created_at.desc()).offset((page - 1) * pageSize).limit(pageSize)
  ).all()
  return {
    "data": rows,
    "pagination": {
      "page": page,
      "pageSize": pageSize,
      "totalCount": total,
      "totalPages": total_pages(total, pageSize),
    },
  }

@router.get("/orders/search", response_model=OrderSearchResult)
def search_orders(query: Optional[str] = None, session: Session = Depends(get_session)):
  normalized = normalize(query)
  if not normalized:
    raise HTTPException(status_code=400, detail="Search query is required")

  clause = search_clause(normalized, Order.id, SEARCH_COLUMNS)
  count = session.exec(select(func.count()).select_from(Order).where(clause)).one()
  results = list(session.exec(
    select(Order).where(clause).order_by(Order.created_at.desc()).limit(SEARCH_LIMIT)
  ).all())

  full_text_used = False
  if not is_uuid_like(normalized) and len(results) < FULL_TEXT_BELOW and len(normalized) > 2:
    extra = full_text_orders(session, normalized)
    if extra:
      results = merge_unique(results, extra)
      full_text_used = True

  return {
    "data": results,
    "totalCount": count or len(results),
    "fullTextSearchUsed": full_text_used,
  }

@router.patch("/orders/{order_id}/payment-status")
def update_payment_status(order_id: str, body: PaymentStatusUpdate, session: Session = Depends(get_session)):
  if body.status not in PAYMENT_STATUSES:
    raise HTTPException(status_code=400, detail="Valid status is required (pending or paid)")

  order = session.get(Order, order_id)
  if not order:
    raise HTTPException(status_code=404, detail="Order not found")

  order.payment_status = body.status
  session.add(order)
  session.commit()
  session.refresh(order)
  logger.info("Order %s payment status set to %s", order_id, body.status)
  return {"message": "Payment status updated successfully", "data": order}

@router.post("/orders/{order_id}/full-analysis")
async def run_full_analysis(
  order_id: str,
  session: Session = Depends(get_session),
  client: httpx.AsyncClient = Depends(get_http_client),
):
  order = session.get(Order, order_id)
  if not order:
    raise HTTPException(status_code=404, detail="Order not found")
  if not order.user_id:
    raise HTTPException(status_code=400, detail="Order has no owning user, cannot start the analysis")

  await start_full_analysis(client, order.id, order.user_id)
  logger.info("Full analysis started for order %s", order.id)
  return {"message": "Full analysis started", "order_id": order.id}
