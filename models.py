# models.py
import uuid
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from pydantic import BaseModel
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field

PAYMENT_STATUSES = ("pending", "paid")
DONE = "Done"

def _utcnow() -> datetime:
  return datetime.now(timezone.utc)

def _uuid() -> str:
  return str(uuid.uuid4())

class Order(SQLModel, table=True):
  __tablename__ = "one_time_orders"

  id: str = Field(default_factory=_uuid, primary_key=True)
  first_name: Optional[str] = None
  last_name: Optional[str] = None
  company: Optional[str] = None
  company_name: Optional[str] = None
  email: Optional[str] = None
  created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True), index=True)
  payment_status: str = "pending"  # pending|paid
  quick_status: Optional[str] = None  # "Done" once the quick analysis finished
  full_status: Optional[str] = None
  total_cost: float = 20
  user_id: Optional[str] = Field(default=None, index=True)
  company_registry_code: Optional[str] = None
  company_address: Optional[str] = None
  recipient_type: Optional[str] = None  # private|company
  recipient_legal_address: Optional[str] = None
  company_details: Optional[str] = None  # full-text search column

class Profile(SQLModel, table=True):
  __tablename__ = "profiles"

  id: str = Field(primary_key=True)  # same id as the auth user
  email: Optional[str] = None
  first_name: Optional[str] = None
  last_name: Optional[str] = None
  created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True), index=True)

class Invoice(SQLModel, table=True):
  __tablename__ = "invoices"

  id: str = Field(default_factory=_uuid, primary_key=True)
  order_id: str = Field(unique=True, index=True)  # at most one invoice per order
  user_id: Optional[str] = None
  invoice_number: str  # INV-1718000000
  invoice_date: datetime = Field(sa_type=DateTime(timezone=True))
  due_date: datetime = Field(sa_type=DateTime(timezone=True))
  subtotal: float
  vat_rate: float
  vat_amount: float
  amount: float
  currency: str = "EUR"
  status: str = "pending"
  customer_name: Optional[str] = None
  customer_email: Optional[str] = None
  company_name: Optional[str] = None
  company_registry_code: Optional[str] = None
  company_address: Optional[str] = None
  service_description: Optional[str] = None
  recipient_type: str = "private"
  recipient_legal_address: Optional[str] = None
  order_first_name: Optional[str] = None
  order_last_name: Optional[str] = None
  order_email: Optional[str] = None
  order_company: Optional[str] = None
  order_reference: Optional[str] = None  # ORD-1a2b3c4d


class PaginationInfo(BaseModel):
  page: int
  pageSize: int
  totalCount: int
  totalPages: int

class OrderPage(BaseModel):
  data: List[Order]
  pagination: PaginationInfo

class OrderSearchResult(BaseModel):
  data: List[Order]
  totalCount: int
  fullTextSearchUsed: bool = False
  message: str = "Search completed successfully"

class AdminUser(BaseModel):
  id: str
  email: Optional[str] = None
  created_at: Optional[str] = None
  last_sign_in_at: Optional[str] = None
  email_confirmed_at: Optional[str] = None
  phone: Optional[str] = None
  first_name: str = ""
  last_name: str = ""
  profile_created_at: Optional[datetime] = None
  user_metadata: Dict[str, Any] = {}
  app_metadata: Dict[str, Any] = {}

class UserPage(BaseModel):
  data: List[AdminUser]
  pagination: PaginationInfo

class UserSearchResult(BaseModel):
  data: List[AdminUser]
  totalCount: int
  query: str

class Statistics(BaseModel):
  paidOrdersCount: int
  quickAnalysesCount: int
  fullAnalysesCount: int
  usersCount: int
  period: str


class PaymentStatusUpdate(BaseModel):
  status: Optional[str] = None

class PasswordChange(BaseModel):
  password: Optional[str] = None

class MagicLinkRequest(BaseModel):
  email: Optional[str] = None

class InvoiceRequest(BaseModel):
  order_id: Optional[str] = None
  customer_name: Optional[str] = None
  company_name: Optional[str] = None

class PdfRequest(BaseModel):
  id: Optional[str] = None
