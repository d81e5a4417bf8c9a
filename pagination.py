# pagination.py
import math
from dataclasses import dataclass


class PageOutOfRange(ValueError):
  pass


def total_pages(total_count: int, page_size: int) -> int:
  return math.ceil((total_count or 0) / page_size)


def page_slice(page: int, page_size: int) -> slice:
  start = (page - 1) * page_size
  return slice(start, start + page_size)


@dataclass
class Pagination:
  page: int = 1
  pageSize: int = 15
  totalCount: int = 0

  @property
  def totalPages(self) -> int:
    return total_pages(self.totalCount, self.pageSize)

  @classmethod
  def from_payload(cls, payload: dict) -> "Pagination":
    return cls(page=payload["page"], pageSize=payload["pageSize"], totalCount=payload["totalCount"] or 0)

  def as_dict(self) -> dict:
    return {
      "page": self.page,
      "pageSize": self.pageSize,
      "totalCount": self.totalCount,
      "totalPages": self.totalPages,
    }

  def request(self, page: int, local_mode: bool) -> bool:
    """Decide what a page change does.

    Returns True when `page` has to be fetched, False when the change is a
    no-op because a local filter or a search owns the displayed set.
    Out-of-range pages raise PageOutOfRange.
    """
    if page < 1 or page > self.totalPages:
      raise PageOutOfRange(f"Page {page} is outside 1..{self.totalPages}")
    return not local_mode
