from __future__ import annotations

import math
from urllib.parse import urlparse

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
MAX_TITLE_LENGTH = 200
MAX_URL_LENGTH = 2000


def sanitize(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def is_valid_url(url: str, max_length: int = MAX_URL_LENGTH) -> bool:
    if not url or len(url) > max_length:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme.lower() in {"http", "https"} and bool(parsed.netloc)


def is_valid_title(title: str, max_length: int = MAX_TITLE_LENGTH) -> bool:
    return bool(title and title.strip()) and len(title) <= max_length


def _to_int(value, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def clamp_pagination(
    page=None,
    page_size=None,
    default_page_size: int = DEFAULT_PAGE_SIZE,
    max_page_size: int = MAX_PAGE_SIZE,
) -> tuple[int, int]:
    page = max(_to_int(page, DEFAULT_PAGE), 1)
    page_size = _to_int(page_size, default_page_size)
    page_size = min(max(page_size, 1), max_page_size)
    return page, page_size


def total_pages(total: int, page_size: int) -> int:
    if total <= 0:
        return 0
    return math.ceil(total / page_size)
