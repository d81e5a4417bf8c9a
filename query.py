# query.py
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Sequence

from sqlalchemy import or_

UUID_RE = re.compile(r"^[0-9a-f]{8}(-[0-9a-f]{4}){3}-[0-9a-f]{12}$")
HEXISH_RE = re.compile(r"^[0-9a-f-]+$")

PERIODS = ("all", "today", "7days", "30days", "3months", "6months", "1year")


class InvalidDateRange(ValueError):
  pass


def normalize(query: Optional[str]) -> str:
  return (query or "").strip().lower()


def is_uuid_like(normalized: str) -> bool:
  if UUID_RE.match(normalized):
    return True
  return len(normalized) >= 8 and bool(HEXISH_RE.match(normalized))


def search_clause(normalized: str, id_column, text_columns: Sequence):
  """Filter for a normalized search string.

  Identifier-looking input becomes a prefix match on the id column, anything
  else a case-insensitive contains test OR-ed across the text columns.
  """
  if is_uuid_like(normalized):
    return id_column.ilike(f"{normalized}%")
  return or_(*[col.ilike(f"%{normalized}%") for col in text_columns])


def merge_unique(primary: Sequence, supplemental: Sequence, key=lambda item: item.id) -> list:
  # primary rows win, supplemental rows keep their own order
  seen = {key(item) for item in primary}
  merged = list(primary)
  for item in supplemental:
    k = key(item)
    if k not in seen:
      seen.add(k)
      merged.append(item)
  return merged


@dataclass(frozen=True)
class DateWindow:
  start: Optional[datetime] = None
  end: Optional[datetime] = None
  label: str = "all"

  @property
  def bounded(self) -> bool:
    return self.start is not None or self.end is not None

  @property
  def custom(self) -> bool:
    return self.label == "custom"

  def apply(self, stmt, column):
    if self.start is not None:
      stmt = stmt.where(column >= self.start)
    if self.end is not None:
      stmt = stmt.where(column <= self.end)
    return stmt


def _months_back(moment: datetime, months: int) -> datetime:
  month_index = moment.year * 12 + (moment.month - 1) - months
  year, month = divmod(month_index, 12)
  month += 1
  # clamp the day, e.g. 31 May minus 3 months is 28/29 Feb
  for day in (moment.day, 30, 29, 28):
    try:
      return moment.replace(year=year, month=month, day=day)
    except ValueError:
      continue
  raise ValueError(f"cannot step back {months} months from {moment}")


def _to_utc(moment: datetime) -> datetime:
  # naive input is taken to be UTC already
  if moment.tzinfo is None:
    return moment.replace(tzinfo=timezone.utc)
  return moment.astimezone(timezone.utc)


def _parse_bound(raw: str, end_of_day: bool) -> datetime:
  raw = raw.strip()
  if raw.endswith("Z"):
    raw = raw[:-1] + "+00:00"
  try:
    if len(raw) == 10:
      day = date.fromisoformat(raw)
      return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)
    return _to_utc(datetime.fromisoformat(raw))
  except ValueError:
    raise InvalidDateRange(f"Invalid date: {raw}")


def resolve_window(period: Optional[str] = None, date_from: Optional[str] = None,
                   date_to: Optional[str] = None, now: Optional[datetime] = None) -> DateWindow:
  """Turn a period token or an explicit from/to pair into a creation-time window."""
  if date_from or date_to:
    if not (date_from and date_to):
      raise InvalidDateRange("Both 'from' and 'to' are required for a custom range")
    start = _parse_bound(date_from, end_of_day=False)
    end = _parse_bound(date_to, end_of_day=True)
    if start > end:
      raise InvalidDateRange("'from' must not be after 'to'")
    return DateWindow(start=start, end=end, label="custom")

  period = period or "all"
  now = now or datetime.now().astimezone()
  if now.tzinfo is None:
    now = now.astimezone()

  if period == "today":
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
  elif period == "7days":
    start = now - timedelta(days=7)
  elif period == "30days":
    start = now - timedelta(days=30)
  elif period == "3months":
    start = _months_back(now, 3)
  elif period == "6months":
    start = _months_back(now, 6)
  elif period == "1year":
    start = _months_back(now, 12)
  else:
    # unknown tokens fall back to all time
    return DateWindow(label=period)

  return DateWindow(start=_to_utc(start), label=period)
