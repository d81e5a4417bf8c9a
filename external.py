# external.py
import logging
import os

import httpx
from dotenv import load_dotenv
from fastapi import HTTPException

load_dotenv()

logger = logging.getLogger(__name__)

ANALYSIS_API_URL = os.getenv("ANALYSIS_API_URL", "").strip().rstrip("/")
ANALYSIS_API_TOKEN = os.getenv("ANALYSIS_API_TOKEN", "").strip()
PDF_RENDERER_URL = os.getenv("PDF_RENDERER_URL", "").strip().rstrip("/")


async def get_http_client():
  async with httpx.AsyncClient(timeout=60) as client:
    yield client


async def start_full_analysis(client: httpx.AsyncClient, order_id: str, user_id: str) -> None:
  if not ANALYSIS_API_URL or not ANALYSIS_API_TOKEN:
    raise HTTPException(status_code=500, detail="ANALYSIS_API_URL / ANALYSIS_API_TOKEN is not set")

  headers = {
    "Authorization": f"Bearer {ANALYSIS_API_TOKEN}",
    "Content-Type": "application/json",
  }
  r = await client.post(f"{ANALYSIS_API_URL}/final-match-start", headers=headers,
                        json={"order_id": order_id, "user_id": user_id})
  if r.status_code >= 400:
    logger.error("Analysis service rejected order %s: %s %s", order_id, r.status_code, r.text)
    try:
      message = r.json().get("error")
    except ValueError:
      message = None
    raise HTTPException(status_code=500, detail=message or f"Analysis service error: {r.status_code}")


async def render_invoice_pdf(client: httpx.AsyncClient, invoice_id: str) -> bytes:
  if not PDF_RENDERER_URL:
    raise HTTPException(status_code=500, detail="PDF_RENDERER_URL is not set")

  r = await client.post(f"{PDF_RENDERER_URL}/generate-invoice-pdf", json={"id": invoice_id})
  if r.status_code >= 400:
    logger.error("PDF renderer error for invoice %s: %s %s", invoice_id, r.status_code, r.text)
    raise HTTPException(status_code=r.status_code, detail="PDF generation failed")
  return r.content
