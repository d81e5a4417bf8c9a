import logging
from contextlib import asynccontextmanager
import os
import sys

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import billing_route
import orders_route
import statistics_route
import users_route
from auth_admin import AuthAdminError
from db import init_db

load_dotenv()

logging.basicConfig(
  level=logging.INFO,
  format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
  handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

CORS_ORIGINS = [
  x.strip()
  for x in os.getenv("CORS_ORIGINS", "http://127.0.0.1:3000,http://localhost:3000").split(",")
  if x.strip()
]


@asynccontextmanager
async def lifespan(app: FastAPI):
  init_db()
  yield


app = FastAPI(title="Order Desk Backend", version="1.0.0", lifespan=lifespan)
app.add_middleware(
  CORSMiddleware,
  allow_origins=CORS_ORIGINS,
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)

app.include_router(orders_route.router)
app.include_router(users_route.router)
app.include_router(statistics_route.router)
app.include_router(billing_route.router)


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
  return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
  errors = exc.errors()
  if errors:
    first = errors[0]
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else first.get("msg")
  else:
    message = "Invalid request"
  return JSONResponse({"error": message}, status_code=400)


@app.exception_handler(AuthAdminError)
async def auth_admin_error(request: Request, exc: AuthAdminError):
  logger.error("Auth provider error on %s: %s", request.url.path, exc.message)
  return JSONResponse({"error": exc.message}, status_code=500)


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
  logger.exception("Unhandled error on %s", request.url.path)
  return JSONResponse({"error": "Internal server error"}, status_code=500)


@app.get("/health")
def health():
  return {"ok": True}
