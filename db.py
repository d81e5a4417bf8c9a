# db.py
import os
from dotenv import load_dotenv
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
if not DATABASE_URL:
  raise RuntimeError("DATABASE_URL is not set in backend .env")

def normalize_url(url: str) -> str:
  # hosted providers hand out postgres:// urls, SQLAlchemy wants postgresql://
  if url.startswith("postgres://"):
    return "postgresql://" + url[len("postgres://"):]
  return url

def make_engine(url: str):
  url = normalize_url(url)
  if url.startswith("sqlite"):
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
      # one shared connection, otherwise every checkout sees an empty database
      kwargs["poolclass"] = StaticPool
    return create_engine(url, echo=False, **kwargs)
  return create_engine(url, echo=False, pool_pre_ping=True)

engine = make_engine(DATABASE_URL)

def init_db(bind=None) -> None:
  SQLModel.metadata.create_all(bind or engine)

def get_session():
  with Session(engine) as session:
    yield session
