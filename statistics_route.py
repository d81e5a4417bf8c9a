# statistics_route.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlmodel import Session, select

from db import get_session
from models import DONE, Order, Profile, Statistics
from query import DateWindow, InvalidDateRange, resolve_window

router = APIRouter(prefix="/api", tags=["statistics"])

def _count(session: Session, model, window: Optional[DateWindow], *conditions) -> int:
  stmt = select(func.count()).select_from(model)
  for cond in conditions:
    stmt = stmt.where(cond)
  if window is not None:
    stmt = window.apply(stmt, model.created_at)
  return session.exec(stmt).one()

def compute_statistics(session: Session, window: DateWindow) -> dict:
  # registered users are counted over all time unless a bound is in effect
  users_window = window if window.bounded else None
  return {
    "paidOrdersCount": _count(session, Order, window, Order.payment_status == "paid"),
    "quickAnalysesCount": _count(session, Order, window, Order.quick_status == DONE),
    "fullAnalysesCount": _count(session, Order, window, Order.full_status == DONE),
    "usersCount": _count(session, Profile, users_window),
    "period": window.label,
  }

@router.get("/statistics", response_model=Statistics)
def get_statistics(
  period: str = "all",
  date_from: Optional[str] = Query(default=None, alias="from"),
  date_to: Optional[str] = Query(default=None, alias="to"),
  session: Session = Depends(get_session),
):
  try:
    window = resolve_window(period, date_from, date_to)
  except InvalidDateRange as e:
    raise HTTPException(status_code=400, detail=str(e))
  return compute_statistics(session, window)
