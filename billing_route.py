# billing_route.py
import logging
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from db import get_session
from external import get_http_client, render_invoice_pdf
from models import Invoice, InvoiceRequest, Order, PdfRequest

load_dotenv()

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])

BASE_AMOUNT = float(os.getenv("INVOICE_BASE_AMOUNT", "20"))
VAT_RATE = float(os.getenv("INVOICE_VAT_RATE", "20"))  # percent
CURRENCY = os.getenv("INVOICE_CURRENCY", "EUR").strip()
DUE_DAYS = 14
SERVICE_DESCRIPTION = "Company grant analysis"

def invoice_number(now_ms: Optional[int] = None) -> str:
  # not unique if two invoices are issued within the same second
  if now_ms is None:
    now_ms = int(time.time() * 1000)
  return f"INV-{str(now_ms)[:10]}"

def build_invoice(order: Order, customer_name: Optional[str] = None, company_name: Optional[str] = None,
                  now: Optional[datetime] = None) -> Invoice:
  now = now or datetime.now(timezone.utc)
  subtotal = BASE_AMOUNT
  vat_amount = round(subtotal * VAT_RATE / 100, 2)
  default_name = f"{order.first_name or ''} {order.last_name or ''}".strip()

  return Invoice(
    order_id=order.id,
    user_id=order.user_id,
    invoice_number=invoice_number(),
    invoice_date=now,
    due_date=now + timedelta(days=DUE_DAYS),
    subtotal=subtotal,
    vat_rate=VAT_RATE,
    vat_amount=vat_amount,
    amount=round(subtotal + vat_amount, 2),
    currency=CURRENCY,
    status=order.payment_status or "pending",
    customer_name=customer_name or default_name,
    customer_email=order.email,
    company_name=company_name or order.company or order.company_name,
    company_registry_code=order.company_registry_code,
    company_address=order.company_address,
    service_description=SERVICE_DESCRIPTION,
    recipient_type=order.recipient_type or "private",
    recipient_legal_address=order.recipient_legal_address,
    order_first_name=order.first_name,
    order_last_name=order.last_name,
    order_email=order.email,
    order_company=order.company,
    order_reference=f"ORD-{order.id[:8]}",
  )

def _existing(session: Session, order_id: str) -> Optional[Invoice]:
  return session.exec(select(Invoice).where(Invoice.order_id == order_id)).first()

def resolve_invoice(session: Session, order_id: str, customer_name: Optional[str] = None,
                    company_name: Optional[str] = None) -> Invoice:
  """Return the invoice of an order, creating it on first use.

  The unique constraint on invoices.order_id decides concurrent creations:
  the loser rolls back and returns the row that was stored first.
  """
  invoice = _existing(session, order_id)
  if invoice:
    return invoice

  order = session.get(Order, order_id)
  if not order:
    raise HTTPException(status_code=404, detail="Order not found")

  invoice = build_invoice(order, customer_name, company_name)
  session.add(invoice)
  try:
    session.commit()
  except IntegrityError:
    session.rollback()
    winner = _existing(session, order_id)
    if winner is None:
      raise
    logger.info("Invoice for order %s was created concurrently, returning stored one", order_id)
    return winner

  session.refresh(invoice)
  logger.info("Created invoice %s for order %s", invoice.invoice_number, order_id)
  return invoice

@router.post("/create-invoice", response_model=Invoice)
def create_invoice(body: InvoiceRequest, session: Session = Depends(get_session)):
  if not body.order_id:
    raise HTTPException(status_code=400, detail="Order ID is required")
  return resolve_invoice(session, body.order_id, body.customer_name, body.company_name)

@router.post("/generate-invoice-pdf")
async def generate_invoice_pdf(body: PdfRequest, client: httpx.AsyncClient = Depends(get_http_client)):
  if not body.id:
    raise HTTPException(status_code=400, detail="Invoice ID is required")

  pdf = await render_invoice_pdf(client, body.id)
  return Response(
    content=pdf,
    media_type="application/pdf",
    headers={"Content-Disposition": f'attachment; filename="invoice-{body.id[:8]}.pdf"'},
  )
