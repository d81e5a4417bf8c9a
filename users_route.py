# users_route.py
import logging
from typing import Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from auth_admin import AuthAdmin, AuthAdminError, get_auth_admin
from db import get_session
from models import MagicLinkRequest, PasswordChange, Profile, UserPage, UserSearchResult
from pagination import page_slice, total_pages
from query import normalize

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["users"])

MIN_PASSWORD_LENGTH = 6

def _profiles_by_id(session: Session, ids: Iterable[str]) -> Dict[str, Profile]:
  ids = list(ids)
  if not ids:
    return {}
  try:
    rows = session.exec(select(Profile).where(Profile.id.in_(ids))).all()
  except SQLAlchemyError as e:
    # names are decoration, the directory entry is still worth showing
    logger.warning("Error fetching profiles: %s", e)
    session.rollback()
    return {}
  return {p.id: p for p in rows}

def _enrich(user: dict, profile: Optional[Profile]) -> dict:
  return {
    "id": user["id"],
    "email": user.get("email"),
    "created_at": user.get("created_at"),
    "last_sign_in_at": user.get("last_sign_in_at"),
    "email_confirmed_at": user.get("email_confirmed_at"),
    "phone": user.get("phone") or None,
    "first_name": (profile.first_name if profile else None) or "",
    "last_name": (profile.last_name if profile else None) or "",
    "profile_created_at": profile.created_at if profile else None,
    "user_metadata": user.get("user_metadata") or {},
    "app_metadata": user.get("app_metadata") or {},
  }

def _merge(session: Session, users: List[dict]) -> List[dict]:
  profiles = _profiles_by_id(session, [u["id"] for u in users])
  return [_enrich(u, profiles.get(u["id"])) for u in users]

@router.get("/users", response_model=UserPage)
def list_users(
  page: int = 1,
  pageSize: int = 20,
  session: Session = Depends(get_session),
  admin: AuthAdmin = Depends(get_auth_admin),
):
  if page < 1 or pageSize < 1:
    raise HTTPException(status_code=400, detail="page and pageSize must be positive integers")

  all_users = list(admin.iter_users())
  total = len(all_users)
  return {
    "data": _merge(session, all_users[page_slice(page, pageSize)]),
    "pagination": {
      "page": page,
      "pageSize": pageSize,
      "totalCount": total,
      "totalPages": total_pages(total, pageSize),
    },
  }

def _profile_ids_by_name(session: Session, normalized: str) -> List[str]:
  pattern = f"%{normalized}%"
  try:
    return session.exec(
      select(Profile.id).where(or_(
        Profile.first_name.ilike(pattern),
        Profile.last_name.ilike(pattern),
        Profile.email.ilike(pattern),
      ))
    ).all()
  except SQLAlchemyError as e:
    # fall back to the email matches alone
    logger.warning("Error searching profiles by name: %s", e)
    session.rollback()
    return []

@router.get("/users/search", response_model=UserSearchResult)
def search_users(
  query: Optional[str] = None,
  session: Session = Depends(get_session),
  admin: AuthAdmin = Depends(get_auth_admin),
):
  normalized = normalize(query)
  if not normalized:
    raise HTTPException(status_code=400, detail="Search query is required")

  all_users = list(admin.iter_users())
  matched = [u for u in all_users if normalized in (u.get("email") or "").lower()]
  matched_ids = {u["id"] for u in matched}

  by_name = _profile_ids_by_name(session, normalized)
  extra_ids = set(by_name) - matched_ids
  if extra_ids:
    matched.extend(u for u in all_users if u["id"] in extra_ids)

  data = _merge(session, matched)
  return {"data": data, "totalCount": len(data), "query": normalized}

@router.patch("/users/{user_id}/change-password")
def change_password(user_id: str, body: PasswordChange, admin: AuthAdmin = Depends(get_auth_admin)):
  if not body.password or len(body.password) < MIN_PASSWORD_LENGTH:
    raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

  try:
    admin.update_password(user_id, body.password)
  except AuthAdminError as e:
    logger.error("Error updating password for user %s: %s", user_id, e.message)
    if e.status_code in (400, 404):
      raise HTTPException(status_code=404, detail="User not found")
    raise HTTPException(status_code=500, detail=e.message)

  # never echo the credential back
  return {"message": "Password updated successfully", "user_id": user_id}

@router.post("/users/{user_id}/generate-magic-link")
def generate_magic_link(user_id: str, body: MagicLinkRequest, admin: AuthAdmin = Depends(get_auth_admin)):
  if not body.email:
    raise HTTPException(status_code=400, detail="Email address is required")

  try:
    admin.get_user(user_id)
  except AuthAdminError as e:
    logger.error("Error fetching user %s: %s", user_id, e.message)
    if e.status_code in (400, 404):
      raise HTTPException(status_code=404, detail="User not found")
    raise HTTPException(status_code=500, detail=e.message)

  try:
    link = admin.generate_magic_link(body.email)
  except AuthAdminError as e:
    logger.error("Error generating magic link for user %s: %s", user_id, e.message)
    raise HTTPException(status_code=500, detail=f"Magic link generation failed: {e.message}")

  return {"magicLink": link, "user": {"id": user_id, "email": body.email}}
