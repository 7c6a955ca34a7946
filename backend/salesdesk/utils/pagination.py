import math


def compute_total_pages(total_items: int, page_size: int) -> int:
    safe_total = max(0, int(total_items))
    safe_page_size = max(1, int(page_size))
    return max(1, math.ceil(safe_total / safe_page_size))


def is_valid_page_request(page: int, limit: int, max_limit: int) -> bool:
    try:
        page, limit = int(page), int(limit)
    except (TypeError, ValueError):
        return False
    return page >= 1 and 1 <= limit <= max_limit


def page_offset(page: int, limit: int) -> int:
    return (max(1, int(page)) - 1) * max(1, int(limit))
